"""Unit tests for feed URL validation and alternative URLs."""

from __future__ import annotations

import socket
from unittest.mock import patch

import pytest

from feedrelay.validators.url_validator import (
    alternative_urls,
    is_fetchable_url,
    is_private_ip,
    is_valid_feed_url,
    validate_url,
)


def _addrinfo(*ips: str) -> list:
    return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", (ip, 0)) for ip in ips]


class TestIsValidFeedUrl:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://example.com/rss", True),
            ("http://example.com/feed.xml", True),
            ("ftp://example.com/feed", False),
            ("example.com/rss", False),
            ("https://", False),
        ],
    )
    def test_cases(self, url, expected):
        assert is_valid_feed_url(url) is expected


class TestIsFetchableUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "http://localhost/rss",
            "http://127.0.0.1:8080/rss",
            "http://10.0.0.5/feed",
            "http://192.168.1.1/feed",
            "http://169.254.169.254/latest/meta-data",
            "http://[::1]/feed",
        ],
    )
    def test_rejects_local_targets(self, url):
        assert is_fetchable_url(url) is False

    @pytest.mark.parametrize("url", ["https://example.com/rss", "https://8.8.8.8/feed"])
    def test_accepts_public_targets(self, url):
        assert is_fetchable_url(url) is True

    def test_invalid_ip_string_is_private(self):
        assert is_private_ip("not-an-ip") is True

    def test_ipv4_mapped_ipv6_is_unwrapped(self):
        assert is_private_ip("::ffff:10.0.0.1") is True
        assert is_private_ip("::ffff:8.8.8.8") is False


class TestValidateUrl:
    @pytest.mark.asyncio
    async def test_public_hostname_is_allowed(self):
        assert await validate_url("https://example.com/rss") is True

    @pytest.mark.asyncio
    async def test_hostname_resolving_to_private_address_is_rejected(self):
        assert await validate_url("https://feeds.internal/rss") is False

    @pytest.mark.asyncio
    async def test_any_private_address_rejects_the_host(self):
        with patch(
            "feedrelay.validators.url_validator.socket.getaddrinfo",
            return_value=_addrinfo("93.184.216.34", "169.254.169.254"),
        ):
            assert await validate_url("https://mixed.example.com/rss") is False

    @pytest.mark.asyncio
    async def test_resolution_failure_is_rejected(self):
        with patch(
            "feedrelay.validators.url_validator.socket.getaddrinfo",
            side_effect=socket.gaierror("no such host"),
        ):
            assert await validate_url("https://nowhere.example.com/rss") is False

    @pytest.mark.asyncio
    async def test_literal_checks_run_before_resolution(self):
        with patch("feedrelay.validators.url_validator.socket.getaddrinfo") as resolver:
            assert await validate_url("http://localhost/rss") is False
            assert await validate_url("ftp://example.com/rss") is False
        resolver.assert_not_called()


class TestAlternativeUrls:
    def test_plain_https_url_has_no_alternatives(self):
        assert alternative_urls("https://a.test/rss") == ["https://a.test/rss"]

    def test_http_url_gets_https_variant(self):
        assert alternative_urls("http://a.test/rss") == ["http://a.test/rss", "https://a.test/rss"]

    def test_feedburner_mapping_comes_before_https_variant(self):
        assert alternative_urls("http://feeds.feedburner.com/Techcrunch") == [
            "http://feeds.feedburner.com/Techcrunch",
            "https://techcrunch.com/feed/",
            "https://feeds.feedburner.com/Techcrunch",
        ]

    def test_duplicates_are_removed(self):
        urls = alternative_urls("http://meiobit.com/index.xml")
        assert urls == [
            "http://meiobit.com/index.xml",
            "https://meiobit.com/feed/",
            "https://meiobit.com/index.xml",
        ]
