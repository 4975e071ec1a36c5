"""Structured logging for the auth service.

Production emits one JSON object per line; development uses a plain text
format. Credential material (passwords, hashes, tokens, Authorization headers)
passed through ``extra`` is masked before any handler sees it.
"""
import json
import logging
import sys
import time
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO


SERVICE_NAME = "healthportal-auth"

# Keys whose values must never reach a log sink
SENSITIVE_KEYS = frozenset({
    "password",
    "password_hash",
    "new_password",
    "token",
    "access_token",
    "refresh_token",
    "reset_token",
    "authorization",
})

REDACTED = "[REDACTED]"

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

# Chatty third-party loggers kept at WARNING unless the app runs at DEBUG
_NOISY_LOGGERS = ("sqlalchemy.engine", "urllib3", "httpx")

# Attributes the logging module itself sets on every record
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def redact(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``fields`` with sensitive values masked."""
    return {
        key: REDACTED if key.lower() in SENSITIVE_KEYS else value
        for key, value in fields.items()
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record: core fields, redacted ``extra`` fields and
    the exception, if any."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        entry.update(redact({
            key: value for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }))

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            entry["error"] = {
                "type": exc_type.__name__,
                "detail": str(exc_value),
                "stack": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            }

        return json.dumps(entry, default=str)


class ContextLogger(logging.LoggerAdapter):
    """Adapter that stamps fixed context (e.g. ``request_id``) on every record.

    Per-call ``extra`` wins over the adapter's context on key clashes.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def setup_logging(level: str = "INFO", json_format: bool = True, stream: Optional[TextIO] = None) -> logging.Logger:
    """(Re)configure the root logger with a single handler.

    Args:
        level: Log level name
        json_format: JSON lines (production) instead of plain text
        stream: Output stream, stdout by default
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(numeric_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(numeric_level if numeric_level <= logging.DEBUG else logging.WARNING)

    return root


def get_logger(name: str, context: Optional[Dict[str, Any]] = None):
    """Module logger, wrapped in a ``ContextLogger`` when ``context`` is given.

    Example:
        >>> log = get_logger(__name__, {"request_id": "abc123"})
        >>> log.info("Login succeeded", extra={"user_id": "123"})
    """
    logger = logging.getLogger(name)
    return ContextLogger(logger, context) if context else logger


class LogTimer:
    """Log how long a block took, or that it was aborted by an exception.

    Example:
        >>> with LogTimer(logger, "user_authentication"):
        ...     service.login(email, password)
    """

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self._started: Optional[float] = None

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed_ms = round((time.perf_counter() - self._started) * 1000, 1)
        fields = {"operation": self.operation, "duration_ms": elapsed_ms}
        if exc_type is None:
            self.logger.info(f"{self.operation} completed in {elapsed_ms}ms", extra=fields)
        else:
            # Expected auth failures are logged by the caller at WARNING
            self.logger.info(f"{self.operation} aborted after {elapsed_ms}ms: {exc_type.__name__}", extra=fields)
        return False


# Plain-text logging until create_app() applies the configured level/format
setup_logging(level="INFO", json_format=False)
