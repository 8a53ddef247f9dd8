"""Storage for import runs suspended for review."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID, uuid4

from plan_importer.domain.imports import PendingReview


class ReviewStore(Protocol):
    """Keeps suspended runs until the caller sends review decisions."""

    def save(self, user_id: UUID, review: PendingReview) -> UUID:
        """Store a pending review and return its id."""

    def get(self, review_id: UUID, user_id: UUID) -> PendingReview | None:
        """Return a pending review owned by ``user_id`` if it has not expired."""

    def discard(self, review_id: UUID) -> None:
        """Forget a pending review."""


@dataclass
class _ReviewEntry:
    user_id: UUID
    review: PendingReview
    expires_at: datetime


@dataclass
class InMemoryReviewStore(ReviewStore):
    """In-memory review store with a fixed time to live."""

    ttl_seconds: int
    _entries: dict[UUID, _ReviewEntry]

    def __init__(self, ttl_seconds: int = 3600) -> None:
        self.ttl_seconds = ttl_seconds
        self._entries = {}

    def save(self, user_id: UUID, review: PendingReview) -> UUID:
        """Store a pending review with a TTL, dropping expired ones."""
        now = datetime.now(tz=UTC)
        self._prune(now)
        review_id = uuid4()
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        self._entries[review_id] = _ReviewEntry(
            user_id=user_id, review=review, expires_at=expires_at
        )
        return review_id

    def get(self, review_id: UUID, user_id: UUID) -> PendingReview | None:
        """Return the review if it exists, belongs to the user and is fresh."""
        entry = self._entries.get(review_id)
        if entry is None:
            return None
        if datetime.now(tz=UTC) >= entry.expires_at:
            self._entries.pop(review_id, None)
            return None
        if entry.user_id != user_id:
            return None
        return entry.review

    def discard(self, review_id: UUID) -> None:
        """Remove a review."""
        self._entries.pop(review_id, None)

    def _prune(self, now: datetime) -> None:
        expired = [
            key for key, entry in self._entries.items() if now >= entry.expires_at
        ]
        for key in expired:
            del self._entries[key]
