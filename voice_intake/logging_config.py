"""
Structured logging for the voice pipeline.

structlog renders JSON in production and colored console output
elsewhere. Two context variables are stamped on every entry:

- ``trace_id``: one HTTP request (set by ``RequestIdMiddleware``)
- ``log_id``: one processing log, for the whole pipeline run

Transcripts and model answers can be long; string fields are cut at
``MAX_FIELD_CHARS`` so a single report never floods the log sink.

Usage:
    from voice_intake.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("transcription_complete", chars=212)
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

import structlog

from voice_intake.config import get_settings

trace_id_var: ContextVar[str] = ContextVar("trace_id", default="")
log_id_var: ContextVar[str] = ContextVar("log_id", default="")

MAX_FIELD_CHARS = 500
QUIET_LOGGERS = ("httpx", "httpcore", "hpack", "postgrest", "supabase", "multipart", "asyncio")


def _inject_context_vars(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    trace_id = trace_id_var.get()
    if trace_id:
        event_dict.setdefault("trace_id", trace_id)
    log_id = log_id_var.get()
    if log_id:
        event_dict.setdefault("log_id", log_id)
    return event_dict


def _truncate_long_values(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str) and len(value) > MAX_FIELD_CHARS:
            event_dict[key] = f"{value[:MAX_FIELD_CHARS]}… (+{len(value) - MAX_FIELD_CHARS} chars)"
    return event_dict


def generate_trace_id() -> str:
    """Short random id for request correlation."""
    return uuid.uuid4().hex[:12]


@contextmanager
def bound_log_id(log_id: str) -> Iterator[None]:
    """Attach ``log_id`` to every entry logged inside the block."""
    token = log_id_var.set(log_id)
    try:
        yield
    finally:
        log_id_var.reset(token)


def setup_logging(level: str | None = None) -> None:
    """
    Configure structlog and route stdlib logging (uvicorn, httpx,
    supabase) through the same renderer. Call once per process.
    """
    settings = get_settings()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_context_vars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _truncate_long_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor
    if settings.is_production:
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel((level or settings.log_level).upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
