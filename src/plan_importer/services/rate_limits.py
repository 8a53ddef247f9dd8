"""Per-user limits on how often imports may be started."""

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class ImportRateLimiter(Protocol):
    """Tracks completed imports per user."""

    def retry_after(self, user_id: UUID) -> float | None:
        """Return seconds until the user may import again, or None if allowed."""

    def record(self, user_id: UUID) -> None:
        """Count one completed import for the user."""


@dataclass
class InMemoryImportRateLimiter(ImportRateLimiter):
    """Sliding-window limiter kept in process memory.

    ``max_imports`` of 0 disables the limit.
    """

    max_imports: int
    window_seconds: int
    clock: Callable[[], datetime] = _utcnow
    _history: dict[UUID, deque[datetime]] = field(default_factory=dict)

    def retry_after(self, user_id: UUID) -> float | None:
        if self.max_imports <= 0:
            return None
        history = self._prune(user_id)
        if len(history) < self.max_imports:
            return None
        reset_at = history[0] + timedelta(seconds=self.window_seconds)
        return (reset_at - self.clock()).total_seconds()

    def record(self, user_id: UUID) -> None:
        if self.max_imports <= 0:
            return
        history = self._prune(user_id)
        history.append(self.clock())
        self._history[user_id] = history

    def _prune(self, user_id: UUID) -> deque[datetime]:
        history = self._history.pop(user_id, deque())
        cutoff = self.clock() - timedelta(seconds=self.window_seconds)
        while history and history[0] <= cutoff:
            history.popleft()
        if history:
            self._history[user_id] = history
        return history
