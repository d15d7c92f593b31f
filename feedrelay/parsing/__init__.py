"""Feed payload decoding, secure XML checks and sanitization."""

from feedrelay.parsing.feed_parser import parse_payload, parse_rss2json, parse_xml_feed
from feedrelay.parsing.providers import (
    FeedPayload,
    Rss2JsonPayload,
    XmlPayload,
    decode_payload,
    unwrap_response,
    validate_payload,
)
from feedrelay.parsing.secure_xml import XmlSecurityPolicy, parse_secure_xml

__all__ = [
    "FeedPayload",
    "Rss2JsonPayload",
    "XmlPayload",
    "XmlSecurityPolicy",
    "decode_payload",
    "parse_payload",
    "parse_rss2json",
    "parse_secure_xml",
    "parse_xml_feed",
    "unwrap_response",
    "validate_payload",
]
