"""Global error hierarchy, failure classification and FastAPI exception handlers.

All feed-relay errors extend FeedRelayError. Acquisition failures additionally
carry an ``error_type`` from the shared taxonomy so the loader and error
history can record them without string matching. The FastAPI exception
handlers return a consistent JSON envelope: { success, data, error, meta }.
"""

from __future__ import annotations

import asyncio
import logging
import traceback

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from feedrelay.models.feeds import ErrorType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class FeedRelayError(Exception):
    """Base error for all feed-relay errors."""

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, **kwargs: object) -> None:
        self.message = message or self.__class__.message
        self.details = kwargs
        super().__init__(self.message)


class ValidationError(FeedRelayError):
    """Payload validation failures."""

    status_code = 422
    message = "Validation error"


class FeedFetchError(FeedRelayError):
    """A failure while acquiring or decoding a feed."""

    status_code = 502
    message = "Feed acquisition failed"
    error_type: ErrorType = ErrorType.UNKNOWN


class NetworkError(FeedFetchError):
    status_code = 502
    message = "Network error while fetching feed"
    error_type = ErrorType.NETWORK


class FeedTimeoutError(FeedFetchError):
    status_code = 504
    message = "Feed request timed out"
    error_type = ErrorType.TIMEOUT


class ParseError(FeedFetchError):
    status_code = 502
    message = "Feed could not be parsed"
    error_type = ErrorType.PARSE


class CorsError(FeedFetchError):
    status_code = 502
    message = "Cross-origin request blocked"
    error_type = ErrorType.CORS


class SecurityValidationError(FeedFetchError):
    """Content rejected by the secure XML / payload checks."""

    status_code = 502
    message = "Feed content failed security validation"
    error_type = ErrorType.SECURITY


class FeedNotFoundError(FeedFetchError):
    status_code = 404
    message = "Feed not found"
    error_type = ErrorType.NOT_FOUND


class AllProvidersFailedError(FeedFetchError):
    """Every acquisition path failed. ``error_type`` follows the last failure."""

    status_code = 502
    message = "All proxies failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        error_type: ErrorType = ErrorType.UNKNOWN,
        **kwargs: object,
    ) -> None:
        super().__init__(message, **kwargs)
        self.error_type = error_type


class NoHealthyProxiesError(FeedFetchError):
    status_code = 503
    message = "No healthy proxies available"
    error_type = ErrorType.NETWORK


class LoadCancelledError(FeedFetchError):
    status_code = 499
    message = "Request was cancelled"
    error_type = ErrorType.TIMEOUT


class UnknownFeedError(FeedRelayError):
    """A retry referenced a URL that is not a configured feed source."""

    status_code = 404
    message = "Feed source not configured"


class ProxyNotFoundError(FeedRelayError):
    status_code = 404
    message = "Proxy endpoint not found"


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify_error(error: BaseException | str) -> ErrorType:
    """Map an exception or error message onto the failure taxonomy.

    Typed errors are classified by type; anything else falls back to keyword
    matching on the message.
    """
    if isinstance(error, FeedFetchError):
        return error.error_type
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ErrorType.TIMEOUT
    if isinstance(error, httpx.HTTPStatusError):
        if error.response.status_code in (404, 410):
            return ErrorType.NOT_FOUND
        return ErrorType.NETWORK
    if isinstance(error, httpx.TransportError):
        return ErrorType.NETWORK

    text = str(error).lower()
    if "timeout" in text or "timed out" in text or "abort" in text:
        return ErrorType.TIMEOUT
    if "cors" in text or "cross-origin" in text:
        return ErrorType.CORS
    if "security" in text or "malicious" in text or "dangerous" in text:
        return ErrorType.SECURITY
    if "404" in text or "not found" in text:
        return ErrorType.NOT_FOUND
    if "network" in text or "fetch" in text or "connection" in text:
        return ErrorType.NETWORK
    if "parse" in text or "xml" in text or "json" in text:
        return ErrorType.PARSE
    return ErrorType.UNKNOWN


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------


def _envelope(
    status_code: int,
    error: str,
    meta: dict | None = None,
) -> JSONResponse:
    """Build a JSON envelope error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "data": None,
            "error": error,
            "meta": meta,
        },
    )


async def _feedrelay_error_handler(_request: Request, exc: FeedRelayError) -> JSONResponse:
    """Handle FeedRelayError subclasses."""
    meta = dict(exc.details) if exc.details else {}
    if isinstance(exc, FeedFetchError):
        meta["error_type"] = exc.error_type.value
    return _envelope(exc.status_code, exc.message, meta=meta or None)


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI / Pydantic RequestValidationError (422)."""
    field_errors = [
        {
            "field": " -> ".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    return _envelope(
        status_code=422,
        error="Validation error",
        meta={"fields": field_errors},
    )


async def _unhandled_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: log traceback, return generic 500."""
    logger.error(
        "Unhandled exception: %s\n%s",
        exc,
        traceback.format_exc(),
    )
    return _envelope(status_code=500, error="Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Wire up all exception handlers on the FastAPI application."""
    app.add_exception_handler(FeedRelayError, _feedrelay_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)  # type: ignore[arg-type]
