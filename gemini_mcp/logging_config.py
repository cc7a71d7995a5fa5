"""
Structured JSON logging for gemini-mcp.

One JSON object per line on stderr. stdout is reserved for the stdio
transport, so nothing here may ever write to it.

Usage:
    logger = logging.getLogger(__name__)
    logger.info("Session initialized", extra={"session_id": sid})
"""

from __future__ import annotations

import datetime
import json
import logging
import sys

_LOGGING_CONFIGURED = False

REDACTED = "[REDACTED]"
_SENSITIVE_MARKERS = ("api_key", "apikey", "key", "password", "secret", "token")

LEVEL_MAP = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

# Attributes every LogRecord carries; anything else came in via ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}


def _is_sensitive(field: str) -> bool:
    lowered = field.lower()
    return any(marker in lowered for marker in _SENSITIVE_MARKERS)


def redact(fields: dict) -> dict:
    """Return a copy of ``fields`` with secret-looking keys masked.

    Nested dicts are walked so ``{"headers": {"x-api-key": ...}}`` is masked too.
    """
    out = {}
    for key, value in fields.items():
        if _is_sensitive(str(key)):
            out[key] = REDACTED
        elif isinstance(value, dict):
            out[key] = redact(value)
        else:
            out[key] = value
    return out


class JsonFormatter(logging.Formatter):
    """Render records as single-line JSON with redacted extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.datetime.fromtimestamp(
                record.created, tz=datetime.timezone.utc
            ).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra = {k: v for k, v in vars(record).items() if k not in _RESERVED_ATTRS}
        payload.update(redact(extra))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def resolve_level(level: str | int) -> int:
    """Map the configured level name (error/warn/info/debug) to a logging level."""
    if isinstance(level, int):
        return level
    return LEVEL_MAP.get(level.strip().lower(), logging.INFO)


def configure_logging(level: str | int = "info", stream=None) -> None:
    """Install the JSON handler on the package and uvicorn loggers.

    Safe to call more than once; later calls only adjust the level.
    """
    global _LOGGING_CONFIGURED
    numeric = resolve_level(level)
    names = ("gemini_mcp", "uvicorn", "uvicorn.error", "uvicorn.access", "mcp")

    if not _LOGGING_CONFIGURED:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(JsonFormatter())
        for name in names:
            log = logging.getLogger(name)
            log.handlers = [handler]
            log.propagate = False
        _LOGGING_CONFIGURED = True

    for name in names:
        logging.getLogger(name).setLevel(numeric)
