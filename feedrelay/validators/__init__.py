"""Validators for feed URLs."""

from feedrelay.validators.url_validator import (
    alternative_urls,
    is_fetchable_url,
    is_private_ip,
    is_valid_feed_url,
    validate_url,
)

__all__ = [
    "alternative_urls",
    "is_fetchable_url",
    "is_private_ip",
    "is_valid_feed_url",
    "validate_url",
]
