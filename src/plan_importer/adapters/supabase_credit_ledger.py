"""Supabase implementation for the credit ledger."""

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from supabase import Client

from plan_importer.domain.credits import LedgerEntry
from plan_importer.services.credits import CreditLedger


@dataclass
class SupabaseCreditLedger(CreditLedger):
    """Supabase-backed credit balances and append-only transactions."""

    client: Client

    def check_balance(self, user_id: UUID, amount: int) -> bool:
        """Return True when the user has enough credits or unlimited usage."""
        response = (
            self.client.table("user_credits")
            .select("balance, unlimited")
            .eq("user_id", str(user_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return False
        row = response.data[0]
        if row.get("unlimited"):
            return True
        return int(row.get("balance") or 0) >= amount

    def charge(self, user_id: UUID, amount: int, reason: str) -> LedgerEntry:
        """Debit credits and append a ledger row in one database function call."""
        response = self.client.rpc(
            "consume_credits",
            {"p_user_id": str(user_id), "p_amount": amount, "p_reason": reason},
        ).execute()
        rows = response.data
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            raise RuntimeError("Failed to charge credits")
        row = rows[0]
        balance_after = row.get("balance_after")
        return LedgerEntry(
            id=UUID(str(row["id"])) if row.get("id") else None,
            user_id=user_id,
            amount=-amount,
            reason=reason,
            balance_after=int(balance_after) if balance_after is not None else None,
            created_at=_parse_datetime(row.get("created_at")),
        )


def _parse_datetime(value: object) -> datetime:
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return datetime.now(tz=UTC)
