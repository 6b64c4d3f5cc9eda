from __future__ import annotations

from dataclasses import dataclass, field, replace
import threading
import time
from typing import Callable

from opentelemetry.context import Context

from .errors import AuthorisationError, Cancelled, DeadlineExceeded


@dataclass(frozen=True, eq=False)
class CallContext:
    """Per-call context passed explicitly as the first argument of every layer.

    Carries the opentelemetry context holding the tracing identifiers, an
    optional deadline on the ``time.monotonic`` clock, and the cancellation
    signals of every scope it was derived from. Values are immutable: each
    ``with_*`` call returns a child and never touches the parent.
    """

    trace: Context = field(default_factory=Context)
    deadline: float | None = None
    _signals: tuple[threading.Event, ...] = ()

    def with_cancel(self) -> tuple["CallContext", Callable[[], None]]:
        signal = threading.Event()
        child = replace(self, _signals=self._signals + (signal,))
        return child, signal.set

    def with_deadline(self, deadline: float) -> "CallContext":
        if self.deadline is not None and self.deadline <= deadline:
            return self
        return replace(self, deadline=deadline)

    def with_timeout(self, seconds: float) -> "CallContext":
        return self.with_deadline(time.monotonic() + seconds)

    def with_trace(self, trace_context: Context) -> "CallContext":
        return replace(self, trace=trace_context)

    def err(self) -> AuthorisationError | None:
        if any(signal.is_set() for signal in self._signals):
            return Cancelled("context cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return DeadlineExceeded("context deadline exceeded")
        return None

    def done(self) -> bool:
        return self.err() is not None

    def raise_if_done(self) -> None:
        exc = self.err()
        if exc is not None:
            raise exc


def background() -> CallContext:
    return CallContext()
