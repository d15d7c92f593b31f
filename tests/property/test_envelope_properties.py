"""Property tests for JSON envelope consistency.

Validates that error responses conform to the { success, data, error, meta }
envelope schema, that feed acquisition errors always carry their failure
type, and that unhandled exceptions never leak details.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from hypothesis import given, settings
from hypothesis import strategies as st

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
    register_error_handlers,
)
from feedrelay.models.feeds import ErrorType
from feedrelay.models.responses import ApiResponse

_ERROR_CLASSES: list[type[FeedRelayError]] = [
    ValidationError,
    NetworkError,
    FeedTimeoutError,
    ParseError,
    CorsError,
    SecurityValidationError,
    FeedNotFoundError,
    AllProvidersFailedError,
    NoHealthyProxiesError,
    LoadCancelledError,
    UnknownFeedError,
    ProxyNotFoundError,
]


# ---------------------------------------------------------------------------
# Minimal test app
# ---------------------------------------------------------------------------


def _create_test_app() -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/ok")
    async def ok_endpoint() -> dict:
        return ApiResponse(success=True, data={"msg": "ok"}).model_dump()

    @app.get("/raise-unhandled")
    async def raise_unhandled() -> None:
        raise RuntimeError("unexpected failure with secret details")

    for cls in _ERROR_CLASSES:

        def _make_handler(error_cls: type[FeedRelayError]):  # noqa: ANN001
            async def handler(request: Request, message: str | None = None) -> None:
                raise error_cls(message)

            return handler

        app.add_api_route(f"/raise/{cls.__name__}", _make_handler(cls), methods=["GET"])

    return app


_app = _create_test_app()
_client = TestClient(_app, raise_server_exceptions=False)

error_classes = st.sampled_from(_ERROR_CLASSES)
messages = st.text(
    alphabet=st.characters(min_codepoint=32, max_codepoint=126), min_size=1, max_size=40
).filter(lambda s: s.strip() == s)


# ---------------------------------------------------------------------------
# Envelope consistency
# ---------------------------------------------------------------------------


@settings(max_examples=100)
@given(error_cls=error_classes, message=messages)
def test_error_responses_have_envelope(error_cls: type[FeedRelayError], message: str) -> None:
    resp = _client.get(f"/raise/{error_cls.__name__}", params={"message": message})
    body = resp.json()

    assert set(body) == {"success", "data", "error", "meta"}
    assert resp.status_code == error_cls.status_code
    assert resp.status_code >= 400
    assert body["success"] is False
    assert body["data"] is None
    assert body["error"] == message


@settings(max_examples=100)
@given(error_cls=error_classes)
def test_fetch_errors_carry_a_known_error_type(error_cls: type[FeedRelayError]) -> None:
    body = _client.get(f"/raise/{error_cls.__name__}").json()

    if issubclass(error_cls, FeedFetchError):
        assert body["meta"]["error_type"] in {t.value for t in ErrorType}
    else:
        assert body["meta"] is None or "error_type" not in body["meta"]


def test_success_response_has_envelope() -> None:
    resp = _client.get("/ok")
    body = resp.json()

    assert resp.status_code == 200
    assert body == {"success": True, "data": {"msg": "ok"}, "error": None, "meta": None}


def test_unhandled_exception_returns_generic_500() -> None:
    resp = _client.get("/raise-unhandled")
    body = resp.json()

    assert resp.status_code == 500
    assert body["success"] is False
    assert body["error"] == "Internal server error"
    assert "secret" not in resp.text
