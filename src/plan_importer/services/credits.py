"""Credit metering for imports."""

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from plan_importer.domain.credits import LedgerEntry
from plan_importer.domain.imports import ImportFile
from plan_importer.errors import InsufficientCreditsError

_logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024


class CreditLedger(Protocol):
    """Persistence interface for user credits."""

    def check_balance(self, user_id: UUID, amount: int) -> bool:
        """Return True when the user can spend ``amount`` or has unlimited credits."""

    def charge(self, user_id: UUID, amount: int, reason: str) -> LedgerEntry:
        """Debit credits atomically and return the resulting ledger entry."""


@dataclass
class CreditService:
    """Compute, check and charge import costs."""

    ledger: CreditLedger
    cost_per_file: int = 1
    cost_per_mb: int = 0

    def compute_cost(self, files: Sequence[ImportFile]) -> int:
        """Deterministic cost of importing a batch."""
        cost = self.cost_per_file * len(files)
        if self.cost_per_mb:
            total_bytes = sum(file.size_bytes for file in files)
            cost += self.cost_per_mb * math.ceil(total_bytes / _BYTES_PER_MB)
        return cost

    def ensure_affordable(self, user_id: UUID, amount: int) -> None:
        """Raise when the user cannot pay for the import."""
        if amount <= 0:
            return
        if not self.ledger.check_balance(user_id, amount):
            raise InsufficientCreditsError(amount)

    def charge(self, user_id: UUID, amount: int, reason: str) -> LedgerEntry | None:
        """Debit credits after a successful commit."""
        if amount <= 0:
            return None
        entry = self.ledger.charge(user_id, amount, reason)
        _logger.info(
            "Charged %s credits to %s (balance after: %s)",
            amount,
            user_id,
            entry.balance_after,
        )
        return entry
