"""
Logging — structlog setup and per-invocation context.
"""

from __future__ import annotations

import logging
from typing import Any

import structlog

from encore.config import EncoreSettings

SEQ_CONTEXT_KEY = "idempotency_seq"


def configure_logging(settings: EncoreSettings | None = None) -> None:
    """
    Install structlog processors.

    Call once from the composition root; library code only calls
    structlog.get_logger().
    """
    settings = settings or EncoreSettings()
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping().get(settings.log_level.upper(), logging.INFO)
        ),
    )


def current_seq() -> str | None:
    """
    seq of the intercepted invocation running in this context.

    Error handlers use it to echo the token back on failure responses.
    """
    value = structlog.contextvars.get_contextvars().get(SEQ_CONTEXT_KEY)
    return value if isinstance(value, str) else None


__all__ = ("SEQ_CONTEXT_KEY", "configure_logging", "current_seq")
