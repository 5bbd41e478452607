"""
Cooperative cancellation shared by crawl stages, pools and fetch clients.
"""

from __future__ import annotations

import threading
import time
from typing import Any


class OperationCancelledError(RuntimeError):
    """
    Raised when work is attempted on a cancelled token.
    """


class CancellationToken:
    """
    Thread-safe cancellation flag with optional deadline and parent link.

    A child token is cancelled when its parent is cancelled or when its own
    deadline passes. Workers poll ``cancelled`` between items and use
    ``wait`` for sleeps that must end early on cancellation.
    """

    def __init__(
        self,
        *,
        parent: CancellationToken | None = None,
        timeout_seconds: float | None = None,
        values: dict[str, Any] | None = None,
    ) -> None:
        self._event = threading.Event()
        self._parent = parent
        self._deadline = (
            time.monotonic() + max(0.0, timeout_seconds) if timeout_seconds is not None else None
        )
        self._values: dict[str, Any] = dict(values or {})

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._event.set()
            return True
        if self._parent is not None and self._parent.cancelled:
            self._event.set()
            return True
        return False

    @property
    def deadline_exceeded(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining_seconds(self) -> float | None:
        if self._deadline is None:
            return self._parent.remaining_seconds() if self._parent is not None else None
        own = max(0.0, self._deadline - time.monotonic())
        if self._parent is not None:
            parent_remaining = self._parent.remaining_seconds()
            if parent_remaining is not None:
                return min(own, parent_remaining)
        return own

    def wait(self, timeout_seconds: float) -> bool:
        """
        Sleep up to ``timeout_seconds``; return True if cancelled meanwhile.
        """

        end = time.monotonic() + max(0.0, timeout_seconds)
        while True:
            if self.cancelled:
                return True
            remaining = end - time.monotonic()
            if remaining <= 0:
                return False
            # Parent cancellation is only observed by polling.
            self._event.wait(min(remaining, 0.05))

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelledError("operation cancelled")

    def child(
        self,
        *,
        timeout_seconds: float | None = None,
        **values: Any,
    ) -> CancellationToken:
        return CancellationToken(parent=self, timeout_seconds=timeout_seconds, values=values)

    def value(self, key: str, default: Any = None) -> Any:
        if key in self._values:
            return self._values[key]
        if self._parent is not None:
            return self._parent.value(key, default)
        return default


def background_token() -> CancellationToken:
    """
    Token that is never cancelled unless someone calls ``cancel`` on it.
    """

    return CancellationToken()
