"""Supabase implementation for committing final plans."""

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from supabase import Client

from plan_importer.domain.plans import FinalPlan, PlanKind
from plan_importer.services.plans import PlanStore

_COMMIT_FUNCTIONS = {
    PlanKind.NUTRITION: "import_nutrition_plan",
    PlanKind.WORKOUT: "import_workout_program",
}


@dataclass
class SupabasePlanStore(PlanStore):
    """Write plan trees through a database function so the insert is atomic."""

    client: Client

    def commit(self, user_id: UUID, plan: FinalPlan) -> UUID:
        """Insert the whole plan tree and return the stored plan id."""
        response = self.client.rpc(
            _COMMIT_FUNCTIONS[plan.kind],
            {"p_user_id": str(user_id), "p_plan": serialize_plan(plan)},
        ).execute()
        data = response.data
        if isinstance(data, list):
            data = data[0] if data else None
        if isinstance(data, dict):
            data = data.get("id")
        if not data:
            raise RuntimeError("Plan commit returned no id")
        return UUID(str(data))


def serialize_plan(plan: FinalPlan) -> dict[str, object]:
    """Convert a plan tree to JSON-compatible data."""
    payload = _jsonable(asdict(plan))
    payload["kind"] = plan.kind.value
    return payload


def _jsonable(value: object) -> object:
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_jsonable(item) for item in value]
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value
