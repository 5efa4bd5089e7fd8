"""Cancellation context threaded through every long-running operation.

One root context is created per CLI invocation. Poll loops and the task
runner consult it at their wake points; they never interrupt a sleep or a
remote call half-way through.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Literal

from delorean.core.result import Err, Ok, Result

__all__ = ["RunContext", "TaskCancelled"]


@dataclass(frozen=True, slots=True)
class TaskCancelled:
    kind: Literal["cancelled", "timeout"]
    message: str
    hint: str | None = None


class RunContext:
    """A cancellable context with an optional deadline.

    Child contexts created with :meth:`with_timeout` share the parent's
    cancellation event, so cancelling the root stops every child. A child's
    deadline never extends past its parent's.
    """

    def __init__(
        self,
        *,
        deadline: float | None = None,
        event: threading.Event | None = None,
    ) -> None:
        self._event = event if event is not None else threading.Event()
        self._deadline = deadline

    @classmethod
    def background(cls) -> RunContext:
        return cls()

    def with_timeout(self, seconds: float) -> RunContext:
        deadline = time.monotonic() + seconds
        if self._deadline is not None:
            deadline = min(deadline, self._deadline)
        return RunContext(deadline=deadline, event=self._event)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> float | None:
        """Seconds left before the deadline (None when unbounded)."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self) -> Result[None, TaskCancelled]:
        if self.cancelled:
            return Err(TaskCancelled(kind="cancelled", message="operation cancelled"))
        if self.expired:
            return Err(TaskCancelled(kind="timeout", message="operation timed out"))
        return Ok(None)

    def sleep(self, seconds: float) -> Result[None, TaskCancelled]:
        """Sleep, then report whether the context is still live."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if seconds > 0:
            time.sleep(seconds)
        return self.check()
