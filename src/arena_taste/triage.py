"""
Manual triage as an explicit session object.

A session walks a queue of unclassified blocks one at a time. States are
``loading`` (nothing loaded yet), ``presenting`` (an item at ``index`` is
shown) and ``done`` (queue exhausted). Handlers hold a session instead of a
shared queue position. Transitions hold the session lock, so handlers
running in a threadpool can share one session.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar

T = TypeVar("T")

LOADING = "loading"
PRESENTING = "presenting"
DONE = "done"


class InvalidTransition(RuntimeError):
    """Raised when a transition is not allowed from the current state."""

    def __init__(self, action: str, state: str):
        super().__init__(f"Cannot {action} while {state}")
        self.action = action
        self.state = state


@dataclass
class TriageSession(Generic[T]):
    items: List[T] = field(default_factory=list)
    state: str = LOADING
    index: Optional[int] = None
    skipped: List[T] = field(default_factory=list)
    handled: int = 0
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def load(self, items: Sequence[T]) -> "TriageSession[T]":
        with self.lock:
            if self.state != LOADING:
                raise InvalidTransition("load", self.state)
            self.items = list(items)
            self.skipped = []
            self.handled = 0
            self._present(0)
            return self

    def _present(self, index: int) -> None:
        if index < len(self.items):
            self.state = PRESENTING
            self.index = index
        else:
            self.state = DONE
            self.index = None

    def _require_presenting(self, action: str) -> int:
        if self.state != PRESENTING or self.index is None:
            raise InvalidTransition(action, self.state)
        return self.index

    def current(self) -> Optional[T]:
        if self.state != PRESENTING or self.index is None:
            return None
        return self.items[self.index]

    def advance(self) -> Optional[T]:
        """Mark the current item handled and move to the next one."""
        with self.lock:
            index = self._require_presenting("advance")
            self.handled += 1
            self._present(index + 1)
            return self.current()

    def skip(self) -> Optional[T]:
        with self.lock:
            index = self._require_presenting("skip")
            self.skipped.append(self.items[index])
            self._present(index + 1)
            return self.current()

    def reset(self) -> "TriageSession[T]":
        with self.lock:
            self.items = []
            self.skipped = []
            self.handled = 0
            self.state = LOADING
            self.index = None
            return self

    @property
    def remaining(self) -> int:
        if self.state != PRESENTING or self.index is None:
            return 0
        return len(self.items) - self.index

    def status(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "state": self.state,
                "index": self.index,
                "total": len(self.items),
                "remaining": self.remaining,
                "handled": self.handled,
                "skipped": len(self.skipped),
            }
