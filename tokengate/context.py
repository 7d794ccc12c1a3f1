from __future__ import annotations

import threading
import time
from typing import Optional

from tokengate.storage.errors import OperationCancelled


class CallContext:
    """Cancellation and deadline carrier for a single inbound call.

    Store and issuance operations call ``check()`` before doing any work so a
    caller that has already given up does not pay for hashing, signing or a
    database round-trip.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._cancelled = threading.Event()
        self.deadline: Optional[float] = (
            time.monotonic() + timeout if timeout is not None else None
        )

    @classmethod
    def background(cls) -> "CallContext":
        return cls()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when unbounded."""
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def check(self, operation: str = "operation") -> None:
        if self.cancelled:
            raise OperationCancelled(f"{operation} cancelled by caller")


def ensure_context(ctx: Optional[CallContext]) -> CallContext:
    return ctx if ctx is not None else CallContext.background()


__all__ = ["CallContext", "ensure_context"]
