"""Structured logging for the reconciliation engine.

Engine modules log events through ``structlog.get_logger(__name__)``.
``document_context`` binds the identity of the document being worked on to
every event emitted inside it, so ledger, recompute and workflow events for
one reconciliation or filing can be pulled out of a shared log stream.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Literal, Optional

import structlog

from recon_core.config import get_config


def decimals_as_strings(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Render Decimal values as plain strings ("12.50", not "Decimal('12.50')")."""
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
    return event_dict


@contextmanager
def document_context(document: Any) -> Iterator[None]:
    """Bind ``document_id``, ``period`` and ``status`` to events logged in the block.

    Works for reconciliations and filings alike. Nested blocks for the same
    document rebind the same values.
    """
    status = getattr(document, "status", None)
    with structlog.contextvars.bound_contextvars(
        document_id=document.document_id,
        period=document.period,
        status=getattr(status, "value", status),
    ):
        yield


def configure_logging(
    level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = None,
    format: Optional[Literal["json", "console"]] = None,
) -> None:
    """Configure structured logging for the host application.

    Args:
        level: Log level. Defaults to ``RECON_LOG_LEVEL``.
        format: Output format (json or console). Defaults to ``RECON_LOG_FORMAT``.
    """
    config = get_config()
    log_level = level or config.log_level
    log_format = format or config.log_format

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level),
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=False,
            exception_formatter=structlog.dev.plain_traceback,
        )

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        decimals_as_strings,
        structlog.processors.format_exc_info,
        renderer,
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
