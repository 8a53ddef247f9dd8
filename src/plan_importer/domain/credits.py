"""Domain models for credit metering."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class LedgerEntry:
    """Append-only credit ledger row."""

    id: UUID | None
    user_id: UUID
    amount: int
    reason: str
    balance_after: int | None
    created_at: datetime
