"""
Structured logging configuration using structlog.

Development gets a human-readable console renderer, every other environment
emits JSON lines. Request-scoped identity (actor, tenant) is carried through
structlog contextvars so every event logged while serving a call is tagged
with who made it.
"""

import logging
import sys
from typing import cast
from uuid import UUID

import structlog
from structlog.types import Processor

from entitygraph.core.config import get_settings


def configure_logging() -> None:
    """Configure structlog and bridge the standard library root logger."""
    settings = get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.environment == "development":
        renderer: list[Processor] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderer = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    # SQL echo is driven by the engine's own ``echo`` flag
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def bind_call_context(actor_id: UUID | str, tenant_id: UUID | str | None) -> None:
    """Tag subsequent log events in this task with the caller identity."""
    structlog.contextvars.bind_contextvars(
        actor_id=str(actor_id),
        tenant_id=str(tenant_id) if tenant_id is not None else None,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance with the given name."""
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
