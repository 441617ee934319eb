"""Run-level cancellation shared by the orchestrator, consensus, and checks."""

from __future__ import annotations

import threading
import time


class PipelineCancelled(RuntimeError):
    """Raised when a run was cancelled explicitly or exceeded its deadline."""


class CancellationToken:
    """Cooperative cancellation flag with an optional deadline.

    Parameters
    ----------
    timeout_seconds:
        If given, the token reports itself cancelled once this many seconds
        have elapsed since construction.
    """

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = (
            time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        )
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("run timeout exceeded")
            return True
        return False

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise PipelineCancelled(self.reason or "cancelled")

    def __repr__(self) -> str:
        return f"<CancellationToken cancelled={self._event.is_set()} reason={self.reason!r}>"
