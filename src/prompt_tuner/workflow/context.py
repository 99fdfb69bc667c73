"""Per-run execution state."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from prompt_tuner.errors import DeadlineExceededError


class Deadline:
    """Wall-clock budget and cancellation signal for one run.

    Checked at every suspension point: before each step, before handler and
    remote calls, and around cache reads and writes.
    """

    def __init__(self, seconds: float | None = None) -> None:
        self._expires_at = time.monotonic() + seconds if seconds else None
        self._cancelled = threading.Event()

    @classmethod
    def unbounded(cls) -> Deadline:
        return cls(None)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(self._expires_at - time.monotonic(), 0.0)

    def timeout(self, cap: float | None = None) -> float | None:
        """Seconds an external call may take: the smaller of `cap` and what is left."""
        remaining = self.remaining()
        if remaining is None:
            return cap
        if cap is None:
            return remaining
        return min(cap, remaining)

    def check(self, where: str) -> None:
        if self._cancelled.is_set():
            raise DeadlineExceededError(f"Run cancelled before {where}")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0.0:
            raise DeadlineExceededError(f"Run deadline exceeded before {where}")


@dataclass
class ExecutionContext:
    """Mutable variable store and iteration bookkeeping for a single run."""

    max_iterations: int
    target_score: float
    variables: dict[str, Any] = field(default_factory=dict)
    iteration: int = 0
    loop_backs: int = 0
    deadline: Deadline = field(default_factory=Deadline.unbounded)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def get(self, name: str, default: Any = None) -> Any:
        return self.variables.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self.variables[name] = value

    def has(self, name: str) -> bool:
        return name in self.variables
