"""Reconcile context: cancellation, deadlines and correlation IDs."""

from __future__ import annotations

import contextvars
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from opentelemetry import trace

from ..exceptions import ReconcileCancelled

# Context variable for storing correlation ID
correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


@dataclass
class ReconcileContext:
    """Cancellation signal passed through one reconciliation pass.

    ``stop_flag`` is any object exposing ``is_set()``, such as kopf's
    ``stopped`` flag or a ``threading.Event``.
    """

    deadline: float | None = None
    stop_flag: Any = None

    @classmethod
    def with_timeout(cls, timeout: float | None, stop_flag: Any = None) -> ReconcileContext:
        """Create a context whose deadline is ``timeout`` seconds from now."""
        deadline = time.monotonic() + timeout if timeout is not None else None
        return cls(deadline=deadline, stop_flag=stop_flag)

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when there is none."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self, what: str = "reconcile") -> None:
        """Raise if the pass was cancelled or ran out of time.

        Args:
            what: Description of the step about to run, used in the message

        Raises:
            ReconcileCancelled: If the stop flag is set or the deadline passed
        """
        if self.stop_flag is not None and self.stop_flag.is_set():
            raise ReconcileCancelled(f"{what}: operator is stopping")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise ReconcileCancelled(f"{what}: reconcile deadline exceeded")


def set_correlation_id(corr_id: str) -> None:
    """Set the correlation ID in the current context."""
    correlation_id.set(corr_id)


def get_correlation_id() -> str | None:
    """Get the correlation ID from the current context."""
    return correlation_id.get()


@contextmanager
def with_correlation_id(corr_id: str) -> Iterator[str]:
    """Context manager to set a correlation ID for the duration of a block.

    Args:
        corr_id: Correlation ID to use

    Yields:
        The correlation ID
    """
    token = correlation_id.set(corr_id)
    try:
        yield corr_id
    finally:
        correlation_id.reset(token)


def get_context_dict(additional: dict[str, Any] | None = None) -> dict[str, Any]:
    """Get a dictionary of context values.

    Args:
        additional: Additional key-value pairs to include

    Returns:
        Dictionary with context values including correlation_id and trace ids
    """
    ctx: dict[str, Any] = {}

    corr_id = get_correlation_id()
    if corr_id:
        ctx["correlation_id"] = corr_id

    trace_ctx = propagate_trace_context()
    if trace_ctx:
        ctx.update(trace_ctx)

    if additional:
        ctx.update(additional)

    return ctx


def propagate_trace_context() -> dict[str, Any] | None:
    """Get OpenTelemetry trace context of the current span, if one is recording."""
    span = trace.get_current_span()
    if span and span.is_recording():
        span_context = span.get_span_context()
        if span_context.is_valid:
            return {
                "trace_id": format(span_context.trace_id, "032x"),
                "span_id": format(span_context.span_id, "016x"),
            }
    return None
