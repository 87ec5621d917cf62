"""OpenTelemetry span wrapper for contact operations."""

from __future__ import annotations

from contextlib import ExitStack
from typing import Any

from opentelemetry import trace

from contactbook.core.logging import tenant_context

_TRACER_NAME = "contactbook"


def get_tracer(name: str = _TRACER_NAME) -> trace.Tracer:
    """Get a tracer from the current provider."""
    return trace.get_tracer(name)


class operation_span:
    """Context manager that wraps one core operation in an OTel span.

    The span is named ``contactbook.<operation>`` and tagged with
    ``contactbook.tenant`` plus any extra attributes. The tenant is also bound
    to the logging context for the duration of the block.

    Exceptions are recorded on the span and the status set to ERROR before the
    exception is re-raised.
    """

    def __init__(self, operation: str, *, tenant: str | None, **attributes: Any) -> None:
        self._span_name = f"contactbook.{operation}"
        self._tenant = tenant
        self._attributes = {k: v for k, v in attributes.items() if v is not None}
        self._stack = ExitStack()

    def __enter__(self) -> trace.Span:
        span = self._stack.enter_context(
            get_tracer().start_as_current_span(
                self._span_name,
                record_exception=False,
                set_status_on_exception=False,
            )
        )
        span.set_attribute("contactbook.tenant", self._tenant or "")
        for key, value in self._attributes.items():
            span.set_attribute(f"contactbook.{key}", value)
        self._stack.enter_context(tenant_context(self._tenant))
        self._span = span
        return span

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:  # noqa: ANN001
        if exc_val is not None:
            self._span.set_status(trace.StatusCode.ERROR, str(exc_val))
            self._span.record_exception(exc_val)
        return self._stack.__exit__(exc_type, exc_val, exc_tb)
