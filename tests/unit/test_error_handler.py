"""Unit tests for the error hierarchy, classification and FastAPI exception handlers."""

from __future__ import annotations

import asyncio

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from feedrelay.middleware.error_handler import (
    AllProvidersFailedError,
    CorsError,
    FeedNotFoundError,
    FeedRelayError,
    FeedTimeoutError,
    LoadCancelledError,
    NetworkError,
    NoHealthyProxiesError,
    ParseError,
    SecurityValidationError,
    UnknownFeedError,
    ValidationError,
    classify_error,
    register_error_handlers,
)
from feedrelay.models.feeds import ErrorType


# ---------------------------------------------------------------------------
# Test app fixture
# ---------------------------------------------------------------------------


def _make_app() -> FastAPI:
    """Build a minimal FastAPI app with error handlers registered."""
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/raise-base")
    async def _raise_base():
        raise FeedRelayError()

    @app.get("/raise-timeout")
    async def _raise_timeout():
        raise FeedTimeoutError()

    @app.get("/raise-not-found")
    async def _raise_not_found():
        raise FeedNotFoundError("Feed gone")

    @app.get("/raise-no-proxies")
    async def _raise_no_proxies():
        raise NoHealthyProxiesError()

    @app.get("/raise-all-failed")
    async def _raise_all_failed():
        raise AllProvidersFailedError(
            "All proxies failed. Last error: boom", error_type=ErrorType.PARSE, attempts=3
        )

    @app.get("/raise-unknown-feed")
    async def _raise_unknown_feed():
        raise UnknownFeedError(urls=["https://x.test/rss"])

    @app.get("/raise-validation")
    async def _raise_validation():
        raise ValidationError("Bad field", fields=["url"])

    @app.get("/raise-unhandled")
    async def _raise_unhandled():
        raise RuntimeError("kaboom")

    @app.get("/typed/{count}")
    async def _typed(count: int):
        return {"count": count}

    return app


@pytest.fixture
def client() -> TestClient:
    return TestClient(_make_app(), raise_server_exceptions=False)


# ---------------------------------------------------------------------------
# Envelope responses
# ---------------------------------------------------------------------------


class TestErrorEnvelope:
    def test_base_error_is_500(self, client: TestClient):
        resp = client.get("/raise-base")
        assert resp.status_code == 500
        body = resp.json()
        assert body == {"success": False, "data": None, "error": "Internal server error", "meta": None}

    def test_timeout_is_504_with_error_type(self, client: TestClient):
        resp = client.get("/raise-timeout")
        assert resp.status_code == 504
        assert resp.json()["meta"] == {"error_type": "timeout_error"}

    def test_not_found_uses_custom_message(self, client: TestClient):
        resp = client.get("/raise-not-found")
        assert resp.status_code == 404
        assert resp.json()["error"] == "Feed gone"
        assert resp.json()["meta"]["error_type"] == "not_found"

    def test_no_healthy_proxies_is_503(self, client: TestClient):
        resp = client.get("/raise-no-proxies")
        assert resp.status_code == 503
        assert resp.json()["error"] == "No healthy proxies available"

    def test_all_failed_carries_classified_type_and_details(self, client: TestClient):
        resp = client.get("/raise-all-failed")
        assert resp.status_code == 502
        body = resp.json()
        assert body["error"].startswith("All proxies failed. Last error:")
        assert body["meta"] == {"attempts": 3, "error_type": "parse_error"}

    def test_unknown_feed_is_404_with_urls(self, client: TestClient):
        resp = client.get("/raise-unknown-feed")
        assert resp.status_code == 404
        assert resp.json()["meta"] == {"urls": ["https://x.test/rss"]}

    def test_validation_error_is_422(self, client: TestClient):
        resp = client.get("/raise-validation")
        assert resp.status_code == 422
        assert resp.json()["meta"] == {"fields": ["url"]}

    def test_request_validation_lists_fields(self, client: TestClient):
        resp = client.get("/typed/not-a-number")
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "Validation error"
        assert body["meta"]["fields"][0]["field"] == "path -> count"

    def test_unhandled_exception_is_generic_500(self, client: TestClient):
        resp = client.get("/raise-unhandled")
        assert resp.status_code == 500
        assert resp.json()["error"] == "Internal server error"
        assert "kaboom" not in resp.text


# ---------------------------------------------------------------------------
# Hierarchy
# ---------------------------------------------------------------------------


class TestHierarchy:
    @pytest.mark.parametrize(
        ("exc_cls", "error_type"),
        [
            (NetworkError, ErrorType.NETWORK),
            (FeedTimeoutError, ErrorType.TIMEOUT),
            (ParseError, ErrorType.PARSE),
            (CorsError, ErrorType.CORS),
            (SecurityValidationError, ErrorType.SECURITY),
            (FeedNotFoundError, ErrorType.NOT_FOUND),
            (NoHealthyProxiesError, ErrorType.NETWORK),
            (LoadCancelledError, ErrorType.TIMEOUT),
        ],
    )
    def test_fetch_errors_carry_error_type(self, exc_cls, error_type):
        assert exc_cls().error_type is error_type

    def test_cancelled_message(self):
        assert LoadCancelledError().message == "Request was cancelled"
        assert LoadCancelledError().status_code == 499

    def test_all_providers_failed_defaults_to_unknown(self):
        assert AllProvidersFailedError().error_type is ErrorType.UNKNOWN


# ---------------------------------------------------------------------------
# classify_error
# ---------------------------------------------------------------------------


class TestClassifyError:
    def test_typed_error_wins_over_message(self):
        assert classify_error(ParseError("network timeout while parsing")) is ErrorType.PARSE

    def test_httpx_timeout(self):
        assert classify_error(httpx.ReadTimeout("slow")) is ErrorType.TIMEOUT

    def test_asyncio_timeout(self):
        assert classify_error(asyncio.TimeoutError()) is ErrorType.TIMEOUT

    def test_httpx_transport_error(self):
        assert classify_error(httpx.ConnectError("refused")) is ErrorType.NETWORK

    def test_http_status_404(self):
        request = httpx.Request("GET", "https://x.test/rss")
        response = httpx.Response(404, request=request)
        error = httpx.HTTPStatusError("not found", request=request, response=response)
        assert classify_error(error) is ErrorType.NOT_FOUND

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("The operation was aborted", ErrorType.TIMEOUT),
            ("Request timed out after 5s", ErrorType.TIMEOUT),
            ("Blocked by CORS policy", ErrorType.CORS),
            ("Potentially malicious XML", ErrorType.SECURITY),
            ("HTTP 404", ErrorType.NOT_FOUND),
            ("Failed to fetch", ErrorType.NETWORK),
            ("connection reset", ErrorType.NETWORK),
            ("XML syntax error", ErrorType.PARSE),
            ("Unexpected token in JSON", ErrorType.PARSE),
            ("something odd", ErrorType.UNKNOWN),
        ],
    )
    def test_message_heuristics(self, message, expected):
        assert classify_error(message) is expected
