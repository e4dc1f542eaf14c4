"""Loguru configuration for EngagementDB.

Two output modes share one patched logger:

- development: coloured, human-readable lines on stdout
- production/staging: one JSON document per line, carrying the acting user,
  the operation and a request id taken from context variables

Service operations scope those variables with ``request_context``::

    >>> from engagementdb.logging import logger, request_context
    >>> with request_context(user_id="ca-7", operation="record_lead_view"):
    ...     logger.info("Recording view")
"""

import json
import sys
import traceback
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, TextIO

from loguru import logger as loguru_logger

from engagementdb.config import settings

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
operation_var: ContextVar[str | None] = ContextVar("operation", default=None)

_CONTEXT_VARS = {
    "request_id": request_id_var,
    "user_id": user_id_var,
    "operation": operation_var,
}

HUMAN_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def context_fields() -> dict[str, str]:
    """Request context values that are currently set."""
    return {name: value for name, var in _CONTEXT_VARS.items() if (value := var.get())}


def serialize(record: dict[str, Any]) -> str:
    """Render a log record as a compact JSON line.

    Bound extras (``logger.bind(...)``) override context fields of the same
    name. Exceptions are flattened into type, value and formatted traceback.
    """
    document: dict[str, Any] = {
        "time": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": f"{record['name']}:{record['function']}:{record['line']}",
        **context_fields(),
        **record["extra"],
    }

    exc = record["exception"]
    if exc is not None:
        document["exception"] = {
            "type": exc.type.__name__ if exc.type else None,
            "value": str(exc.value),
            "traceback": "".join(traceback.format_exception(exc.type, exc.value, exc.traceback)),
        }

    return json.dumps(document, default=str)


def _patch(record: dict[str, Any]) -> None:
    record["extra"]["serialized"] = serialize(record)


def _json_format(record: dict[str, Any]) -> str:
    return "{extra[serialized]}\n"


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Path | None = None,
    colorize: bool = True,
    sink: TextIO | None = None,
) -> Any:
    """Replace loguru's default sink with the EngagementDB sinks.

    Args:
        level: Minimum log level
        json_logs: Emit JSON lines instead of human-readable output
        log_file: Also write to this file (rotated at 100 MB, kept 30 days)
        colorize: Colour the human-readable output
        sink: Stream for console output (defaults to stdout)

    Returns:
        The patched logger
    """
    loguru_logger.remove()
    patched = loguru_logger.patch(_patch)
    stream = sink or sys.stdout

    if json_logs:
        patched.add(stream, level=level, format=_json_format)
    else:
        patched.add(stream, level=level, format=HUMAN_FORMAT, colorize=colorize)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        patched.add(
            log_file,
            level=level,
            format=_json_format if json_logs else "{time} | {level} | {message}",
            rotation="100 MB",
            retention="30 days",
            compression="zip",
            enqueue=True,
        )

    return patched


logger = setup_logging(
    level=settings.log_level,
    json_logs=settings.log_json,
    log_file=settings.data_dir / "engagementdb.log" if settings.log_to_file else None,
    colorize=not settings.log_json,
)


@contextmanager
def request_context(
    user_id: str | None = None,
    operation: str | None = None,
    request_id: str | None = None,
) -> Iterator[str]:
    """Scope the logging context to one operation.

    Previous values are restored on exit, so nested operations (a toggle that
    refetches a summary) log under the innermost operation only while it runs.
    A fresh 12-character request id is generated when none is given.
    """
    rid = request_id or uuid.uuid4().hex[:12]
    tokens = [
        (request_id_var, request_id_var.set(rid)),
        (user_id_var, user_id_var.set(user_id)),
        (operation_var, operation_var.set(operation)),
    ]
    try:
        yield rid
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


__all__ = [
    "logger",
    "request_id_var",
    "user_id_var",
    "operation_var",
    "context_fields",
    "request_context",
    "serialize",
    "setup_logging",
]
