"""Middleware: error hierarchy, classification and exception handlers."""

from feedrelay.middleware.error_handler import (
    AllProvidersFailedError,
    CorsError,
    FeedFetchError,
    FeedNotFoundError,
    FeedRelayError,
    FeedTimeoutError,
    LoadCancelledError,
    NetworkError,
    NoHealthyProxiesError,
    ParseError,
    ProxyNotFoundError,
    SecurityValidationError,
    UnknownFeedError,
    ValidationError,
    classify_error,
    register_error_handlers,
)

__all__ = [
    "AllProvidersFailedError",
    "CorsError",
    "FeedFetchError",
    "FeedNotFoundError",
    "FeedRelayError",
    "FeedTimeoutError",
    "LoadCancelledError",
    "NetworkError",
    "NoHealthyProxiesError",
    "ParseError",
    "ProxyNotFoundError",
    "SecurityValidationError",
    "UnknownFeedError",
    "ValidationError",
    "classify_error",
    "register_error_handlers",
]
