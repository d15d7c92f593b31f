"""Structured JSON logging configuration.

Configures Python logging to emit JSON-formatted log entries with the fields
timestamp, level, logger and message. Acquisition-specific fields are added
contextually through ``extra=`` (feed_url, provider, attempt, error_type for
failures; duration_ms, articles_count, batch_index for progress).

SECURITY: Provider API keys and tokens embedded in messages or request URLs
are redacted before the entry is written.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone


# key=value style secrets, including query-string API keys
_SENSITIVE_PATTERNS = re.compile(
    r"(api.key|apikey|key|secret|password|token|authorization)"
    r"[\s]*[=:]\s*[^\s&]+",
    re.IGNORECASE,
)

_CONTEXT_FIELDS = (
    "feed_url",
    "provider",
    "attempt",
    "error_type",
    "duration_ms",
    "articles_count",
    "batch_index",
)


class JsonFormatter(logging.Formatter):
    """Formats log records as JSON with structured fields.

    Each entry contains at minimum: timestamp, level, logger, message.
    Context fields are copied from the record when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": self._sanitize(record.getMessage()),
        }

        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                value = getattr(record, name)
                entry[name] = self._sanitize(value) if isinstance(value, str) else value

        if hasattr(record, "error_reason"):
            entry["error_reason"] = self._sanitize(str(getattr(record, "error_reason")))

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self._sanitize(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)

    @staticmethod
    def _sanitize(text: str) -> str:
        """Remove sensitive values from log text."""
        return _SENSITIVE_PATTERNS.sub(lambda m: f"{m.group(1)}=[REDACTED]", text)


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger with JSON formatting.

    Parameters
    ----------
    level:
        Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    # httpx logs every request URL at INFO, including provider keys
    logging.getLogger("httpx").setLevel(logging.WARNING)
