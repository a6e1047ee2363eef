"""
Structured logging configuration for Edwiges.

Provides JSON-formatted structured logging with:
- Secret filtering (bot tokens, Authorization headers)
- Redaction of message content and raw gateway payloads
- Per-process context (worker id, pid) for clustered deployments

Usage:
    from edwiges.logging_config import setup_logging, get_logger

    setup_logging()  # Call once per process at startup
    logger = get_logger(__name__)
    logger.info("message", extra={"shard_id": 0})
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

# Bot tokens: three dot-separated base64url segments
_TOKEN_PATTERN = re.compile(r"\b[\w-]{23,28}\.[\w-]{6,7}\.[\w-]{27,40}\b")
# Query strings carry no secrets on this API, but keep logs at path level
_URL_PATTERN = re.compile(r"((?:https?|wss?)://[^\s\"'<>]+)")
_SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Authorization header values: "Authorization: Bot <token>"
    (re.compile(r"\b(authorization)\s*[=:]\s*['\"]?(bot\s+|bearer\s+)?[\w\-\.]+['\"]?", re.I), "[AUTH]"),
    (_TOKEN_PATTERN, "[TOKEN]"),
    (re.compile(r"\b(token)\s*[=:]\s*['\"]?[\w\-\.]+['\"]?", re.I), "[TOKEN]"),
    (re.compile(r"\b[\w\.-]+@[\w\.-]+\.\w+\b"), "[EMAIL]"),
]

# Fields that should NEVER appear in logs
BLOCKED_FIELDS: frozenset[str] = frozenset(
    {
        "token",
        "password",
        "secret",
        "authorization",
        "auth",
        "bearer",
        "credential",
        "email",
        "phone",
        "ip",
    }
)

# Fields that are user content or unbounded and are replaced wholesale
REDACTED_FIELDS: dict[str, str] = {
    "url": "endpoint",  # Extract path only
    "content": "[CONTENT]",
    "payload": "[PAYLOAD]",
    "data": "[PAYLOAD]",
    "body": "[BODY]",
    "raw": "[RAW]",
}

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS: frozenset[str] = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "message",
        "taskName",
    }
)


def _normalize_url(url: str) -> str:
    """Reduce a URL to its path."""
    from urllib.parse import urlsplit

    parts = urlsplit(url)
    return parts.path or "/"


def _sanitize_url_in_text(match: re.Match[str]) -> str:
    url = match.group(1)
    path = _normalize_url(url)
    return path if path != "/" else "[URL]"


def _sanitize_text(text: str) -> str:
    """Strip URLs down to paths and redact tokens and auth headers."""
    if not text:
        return text

    result = _URL_PATTERN.sub(_sanitize_url_in_text, text)
    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def _filter_log_record(record: dict[str, Any], *, _depth: int = 0) -> dict[str, Any]:
    """Drop secret fields and redact content fields, recursing into dicts."""
    if _depth > 3:
        return {"_truncated": "max depth exceeded"}

    filtered: dict[str, Any] = {}

    for key, value in record.items():
        key_lower = key.lower()

        if key_lower in BLOCKED_FIELDS:
            continue
        if any(blocked in key_lower.split("_") for blocked in BLOCKED_FIELDS):
            continue

        if key_lower in REDACTED_FIELDS:
            if key_lower == "url" and isinstance(value, str):
                filtered["endpoint"] = _normalize_url(value)
            else:
                filtered[key] = REDACTED_FIELDS[key_lower]
            continue

        if isinstance(value, (int, float, bool, type(None))):
            filtered[key] = value
        elif isinstance(value, str):
            filtered[key] = _sanitize_text(value)
        elif isinstance(value, (list, tuple)):
            if len(value) <= 10:
                filtered[key] = list(value)
            else:
                filtered[key] = f"[list:{len(value)} items]"
        elif isinstance(value, dict):
            filtered[key] = _filter_log_record(value, _depth=_depth + 1)
        else:
            filtered[key] = _sanitize_text(str(value))

    return filtered


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class ProcessContextFilter(logging.Filter):
    """Stamp every record from a cluster worker with its worker id."""

    def __init__(self, worker_id: int | None = None) -> None:
        super().__init__()
        self._worker_id = worker_id

    def filter(self, record: logging.LogRecord) -> bool:
        if self._worker_id is not None and not hasattr(record, "worker_id"):
            record.worker_id = self._worker_id
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Output format:
    {"ts":"2024-01-01T00:00:00.000+00:00","level":"INFO","logger":"module","pid":1,"msg":"...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_dict: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "pid": record.process,
            "msg": _sanitize_text(record.getMessage()),
        }

        if record.levelno >= logging.WARNING:
            log_dict["file"] = record.filename
            log_dict["line"] = record.lineno

        if record.exc_info:
            log_dict["exc"] = _sanitize_text(self.formatException(record.exc_info))

        extra = _extra_fields(record)
        if extra:
            log_dict.update(_filter_log_record(extra))

        return json.dumps(log_dict, default=str, ensure_ascii=False)


class SimpleFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        base = f"{record.levelname:8s} {record.name}: {_sanitize_text(record.getMessage())}"

        extra = _extra_fields(record)
        if extra:
            filtered = _filter_log_record(extra)
            if filtered:
                extra_str = " ".join(f"{k}={v}" for k, v in filtered.items())
                base = f"{base} | {extra_str}"

        if record.exc_info:
            base = f"{base}\n{_sanitize_text(self.formatException(record.exc_info))}"

        return base


def setup_logging(
    *,
    level: int | str = logging.INFO,
    json_format: bool = True,
    stream: Any = None,
    worker_id: int | None = None,
) -> None:
    """Configure logging for this process.

    Args:
        level: Log level (default INFO).
        json_format: Use JSON formatter (default True for production).
        stream: Output stream (default stderr).
        worker_id: Cluster worker id to stamp on records, if any.
    """
    if stream is None:
        stream = sys.stderr

    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter() if json_format else SimpleFormatter())
    handler.addFilter(ProcessContextFilter(worker_id))

    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers to avoid duplicates
    root.handlers.clear()
    root.addHandler(handler)

    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically ``get_logger(__name__)``)."""
    return logging.getLogger(name)
