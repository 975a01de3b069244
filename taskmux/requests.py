"""Cancellable requests for background work whose result may go stale.

Issuing a new request supersedes the previous one. In-flight work is never
interrupted; it can poll its ticket, and its result is dropped on arrival
unless :meth:`CancellableRequest.is_current` still holds for its id.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field


@dataclass
class Ticket:
    id: int
    cancelled: threading.Event = field(default_factory=threading.Event)

    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()


class CancellableRequest:
    def __init__(self):
        self._lock = threading.Lock()
        self._generation = 0
        self._current: Ticket | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending(self) -> bool:
        return self._current is not None

    def issue(self) -> Ticket:
        """Start a new request, cancelling whatever was outstanding."""
        with self._lock:
            if self._current is not None:
                self._current.cancelled.set()
            self._generation += 1
            self._current = Ticket(self._generation)
            return self._current

    def cancel(self) -> None:
        with self._lock:
            if self._current is not None:
                self._current.cancelled.set()
            self._current = None

    def is_current(self, request_id: int) -> bool:
        """Guard for applying a result: only the latest, uncancelled request passes."""
        with self._lock:
            return self._current is not None and self._current.id == request_id

    def complete(self, request_id: int) -> bool:
        """Retire the current request if it is ``request_id``; returns whether it was."""
        with self._lock:
            if self._current is None or self._current.id != request_id:
                return False
            self._current = None
            return True
