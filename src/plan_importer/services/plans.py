"""Atomic persistence of final plans."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

from plan_importer.domain.plans import FinalPlan
from plan_importer.errors import PersistenceError

_logger = logging.getLogger(__name__)


class PlanStore(Protocol):
    """Persistence interface for final plans."""

    def commit(self, user_id: UUID, plan: FinalPlan) -> UUID:
        """Write the whole plan tree as one atomic unit and return its id."""


@dataclass
class _UserLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass
class PlanWriter:
    """Commit plans with at most one commit in flight per user.

    The store is called in a worker thread so a blocking database client
    does not stall the event loop. A user's lock is dropped once nobody
    holds or waits for it.
    """

    store: PlanStore
    _locks: dict[UUID, _UserLock] = field(default_factory=dict)

    async def commit(self, user_id: UUID, plan: FinalPlan) -> UUID:
        """Commit a plan, wrapping store failures in PersistenceError."""
        entry = self._locks.setdefault(user_id, _UserLock())
        entry.users += 1
        try:
            async with entry.lock:
                try:
                    plan_id = await asyncio.to_thread(self.store.commit, user_id, plan)
                except Exception as exc:
                    _logger.exception("Failed to commit %s plan %s", plan.kind, plan.id)
                    raise PersistenceError(f"Failed to save plan: {exc}") from exc
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(user_id, None)
        _logger.info("Committed %s plan %s for %s", plan.kind, plan_id, user_id)
        return plan_id
