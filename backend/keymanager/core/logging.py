"""Structured logging for key operations.

Log calls take keyword fields, which travel on the record as
``extra_fields``:

    logger = get_logger(__name__)
    logger.info("Rotated key", kms_key_id=new_id, replaced=old_id)

The logical key id and operation name of the call in flight live in
context variables (see ``key_context``). ``KeyContextFilter`` copies them
onto each record when it is emitted, so records formatted later (or on
another thread) still carry the right key id.

Field values are masked when the field name looks like a credential, and
bytes values are rendered as hex.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

key_id_var: ContextVar[Optional[str]] = ContextVar("key_id", default=None)
operation_var: ContextVar[Optional[str]] = ContextVar("operation", default=None)

# Substrings of field names whose values never reach the log
SENSITIVE_FIELDS = frozenset({
    "password", "secret", "token", "credential", "authorization",
    "access_key", "private_key",
})

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("botocore", "boto3", "urllib3")


def _is_sensitive(name: str) -> bool:
    name = name.lower()
    return any(marker in name for marker in SENSITIVE_FIELDS)


def _redact(value: Any) -> str:
    # Long strings keep their ends so distinct credentials stay tellable apart
    if isinstance(value, str) and len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return "[REDACTED]"


def mask_sensitive(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``data`` with credential-like fields masked, recursing into dicts."""
    masked: dict[str, Any] = {}
    for name, value in data.items():
        if _is_sensitive(name):
            masked[name] = _redact(value)
        elif isinstance(value, dict):
            masked[name] = mask_sensitive(value)
        elif isinstance(value, (bytes, bytearray)):
            masked[name] = value.hex()
        else:
            masked[name] = value
    return masked


@contextmanager
def key_context(key_id: Optional[str], operation: Optional[str] = None) -> Iterator[None]:
    """Tag records logged inside the block with a key id and operation name."""
    key_token = key_id_var.set(key_id)
    operation_token = operation_var.set(operation)
    try:
        yield
    finally:
        operation_var.reset(operation_token)
        key_id_var.reset(key_token)


class KeyContextFilter(logging.Filter):
    """Stamps the in-flight key id and operation onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "key_id"):
            record.key_id = key_id_var.get()
        if not hasattr(record, "operation"):
            record.operation = operation_var.get()
        return True


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    return mask_sensitive(getattr(record, "extra_fields", None) or {})


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for attr in ("key_id", "operation"):
            value = getattr(record, attr, None)
            if value:
                entry[attr] = value

        entry.update(_record_fields(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.pathname}:{record.lineno}"

        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Single-line colored output for terminals."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]

        parts = [
            f"{timestamp} {color}{record.levelname:<7}{self.RESET}",
            f"{record.name}:",
            record.getMessage(),
        ]

        context = " ".join(
            f"{label}={value}"
            for label, value in (
                ("op", getattr(record, "operation", None)),
                ("key", getattr(record, "key_id", None)),
            )
            if value
        )
        if context:
            parts.append(f"[{context}]")

        parts.extend(f"{name}={value}" for name, value in _record_fields(record).items())

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger(logging.Logger):
    """Logger whose methods accept arbitrary keyword fields."""

    def _log(
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: Optional[dict[str, Any]] = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **fields: Any,
    ) -> None:
        if fields:
            extra = {**(extra or {}), "extra_fields": fields}
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for a module."""
    logging.setLoggerClass(StructuredLogger)
    try:
        return logging.getLogger(name)
    finally:
        logging.setLoggerClass(logging.Logger)


def setup_logging(json_output: bool = False, level: str = "INFO") -> None:
    """Send all logging to stderr in the chosen format.

    Args:
        json_output: Emit JSON records instead of colored lines
        level: Root logging level name (DEBUG, INFO, WARNING, ERROR)
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter() if json_output else HumanFormatter())
    handler.addFilter(KeyContextFilter())

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
