"""
Structured logging for the livescores services.
Uses structlog on top of stdlib logging so library logs share one format.

Every line carries ``service``, ``instance_id`` and ``provider``; lines
emitted while a poll tick runs also carry ``tick``.
"""
from __future__ import annotations

import logging
import sys
from typing import Any, ContextManager

import structlog
from shared.config import Environment, get_settings

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "asyncio")


def _shared_processors(utc: bool) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=utc),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderers(environment: Environment) -> list[structlog.types.Processor]:
    if environment == Environment.DEV:
        return [structlog.dev.ConsoleRenderer(colors=True)]
    # tick_failed and unhandled_exception lines keep their traceback as JSON
    return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]


def setup_logging(service_name: str, extra_context: dict[str, Any] | None = None) -> None:
    """
    Configure structured logging for a service.

    Args:
        service_name: Identifier bound to every entry (api, scheduler).
        extra_context: Additional static fields bound to every entry.
    """
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    shared = _shared_processors(utc=True)

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *_renderers(settings.environment),
        ],
        foreign_pre_chain=shared,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service=service_name,
        instance_id=settings.instance_id,
        provider=settings.provider_name,
        **(extra_context or {}),
    )


def tick_context(tick: str, **fields: Any) -> ContextManager[Any]:
    """Bind ``tick`` (and any extra fields) to every line logged inside the block."""
    return structlog.contextvars.bound_contextvars(tick=tick, **fields)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name)
