"""Structured logging for contactbook.

Every module logs through ``logging.getLogger(__name__)``; ``configure_logging``
routes those records through structlog's ProcessorFormatter. Log lines emitted
while an operation runs carry the tenant it acts on and, when a span is
active, the OTel trace and span ids.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

_tenant_context: ContextVar[str | None] = ContextVar("contactbook_tenant", default=None)

# Third-party loggers kept at WARNING
_NOISE_LOGGERS = ("asyncpg", "testcontainers")


@contextmanager
def tenant_context(tenant: str | None) -> Iterator[None]:
    """Bind *tenant* to every log line emitted inside the block."""
    token = _tenant_context.set(tenant)
    try:
        yield
    finally:
        _tenant_context.reset(token)


def add_tenant_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Add ``tenant`` when a tenant is bound; lines outside operations stay untagged."""
    tenant = _tenant_context.get()
    if tenant is not None:
        event_dict["tenant"] = tenant
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Add ``trace_id`` and ``span_id`` when a recording span is current."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def _formatter(renderer: structlog.types.Processor, time_fmt: str) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt=time_fmt),
            add_tenant_context,
            add_otel_context,
            structlog.stdlib.ExtraAdder(),
        ],
    )


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
    service_name: str = "contactbook",
) -> None:
    """Install the console handler, and a JSON file handler when *log_root* is set.

    Parameters
    ----------
    level:
        Root log level name, case-insensitive.
    fmt:
        ``"text"`` for the coloured console renderer, ``"json"`` for JSON lines.
    log_root:
        Directory for ``{service_name}.log``; always JSON regardless of *fmt*.
    service_name:
        Used for the log file name.
    """
    if fmt == "json":
        console = _formatter(structlog.processors.JSONRenderer(), "iso")
    else:
        console = _formatter(structlog.dev.ConsoleRenderer(), "%H:%M:%S")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(console)

    root = logging.getLogger()
    # Reconfiguring replaces, never stacks, handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        log_root = Path(log_root)
        log_root.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_root / f"{service_name}.log")
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), "iso"))
        root.addHandler(file_handler)
