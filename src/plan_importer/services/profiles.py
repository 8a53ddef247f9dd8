"""Plan-kind specific pieces plugged into the import orchestrator."""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from plan_importer.domain.catalog import CatalogKind
from plan_importer.domain.drafts import (
    DraftNutritionPlan,
    DraftNutritionWeek,
    DraftWorkoutProgram,
    DraftWorkoutWeek,
)
from plan_importer.domain.plans import PlanKind
from plan_importer.services.conversion import (
    convert_nutrition_plan,
    convert_workout_program,
)

NUTRITION_PROMPT = (
    "Extract the nutrition plan described in this document. "
    "Return weeks, each with numbered days, each day with meals and the foods "
    "of every meal. For each food give its name as written, the quantity, the "
    "unit (g, ml, piece, ...) and its macros for that quantity: calories, "
    "protein_g, fat_g, carbs_g, fiber_g. If the document has no weeks, put all "
    "days in week 1. Do not invent foods that are not in the document."
)

WORKOUT_PROMPT = (
    "Extract the training program described in this document. "
    "Return weeks, each with numbered training days, each day with its "
    "exercises in order. For each exercise give its name as written, the number "
    "of sets, reps (a number or a range such as '8-10'), weight in kg when "
    "given, rest_seconds, rpe and notes. If the document has no weeks, put all "
    "days in week 1. Do not invent exercises that are not in the document."
)


@dataclass(frozen=True)
class ImportProfile:
    """Everything the orchestrator needs to know about one plan kind."""

    kind: PlanKind
    catalog_kind: CatalogKind
    draft_model: type[BaseModel]
    prompt: str
    entity_names: Callable[[Any], list[str]]
    combine: Callable[[list[Any]], Any]
    convert: Callable[..., Any]


def nutrition_entity_names(draft: DraftNutritionPlan) -> list[str]:
    """Food names in document order, duplicates included."""
    return [
        food.name
        for week in draft.weeks
        for day in week.days
        for meal in day.meals
        for food in meal.foods
    ]


def workout_entity_names(draft: DraftWorkoutProgram) -> list[str]:
    """Exercise names in document order, duplicates included."""
    return [
        exercise.name
        for week in draft.weeks
        for day in week.days
        for exercise in day.exercises
    ]


def combine_nutrition_drafts(drafts: list[DraftNutritionPlan]) -> DraftNutritionPlan:
    """Merge drafts from several files, renumbering weeks in input order."""
    if len(drafts) == 1:
        return drafts[0]
    weeks = _renumber(week for draft in drafts for week in draft.weeks)
    first = drafts[0]
    return DraftNutritionPlan(
        name=first.name,
        description=_first(draft.description for draft in drafts),
        goals=_union(draft.goals for draft in drafts),
        duration_weeks=None,
        target_macros=_first(draft.target_macros for draft in drafts),
        weeks=weeks,
        restrictions=_union(draft.restrictions for draft in drafts),
        preferences=_union(draft.preferences for draft in drafts),
    )


def combine_workout_drafts(drafts: list[DraftWorkoutProgram]) -> DraftWorkoutProgram:
    """Merge drafts from several files, renumbering weeks in input order."""
    if len(drafts) == 1:
        return drafts[0]
    weeks = _renumber(week for draft in drafts for week in draft.weeks)
    first = drafts[0]
    return DraftWorkoutProgram(
        name=first.name,
        description=_first(draft.description for draft in drafts),
        difficulty=_first(draft.difficulty for draft in drafts),
        duration_weeks=None,
        goals=_union(draft.goals for draft in drafts),
        original_author=_first(draft.original_author for draft in drafts),
        weeks=weeks,
    )


def _renumber(
    weeks: Iterable[DraftNutritionWeek | DraftWorkoutWeek],
) -> list[Any]:
    return [
        week.model_copy(update={"week_number": index})
        for index, week in enumerate(weeks, start=1)
    ]


def _first(values: Iterable[Any]) -> Any:
    for value in values:
        if value:
            return value
    return None


def _union(groups: Iterable[list[str]]) -> list[str]:
    seen: dict[str, None] = {}
    for group in groups:
        for value in group:
            seen.setdefault(value, None)
    return list(seen)


NUTRITION_PROFILE = ImportProfile(
    kind=PlanKind.NUTRITION,
    catalog_kind=CatalogKind.FOOD,
    draft_model=DraftNutritionPlan,
    prompt=NUTRITION_PROMPT,
    entity_names=nutrition_entity_names,
    combine=combine_nutrition_drafts,
    convert=convert_nutrition_plan,
)

WORKOUT_PROFILE = ImportProfile(
    kind=PlanKind.WORKOUT,
    catalog_kind=CatalogKind.EXERCISE,
    draft_model=DraftWorkoutProgram,
    prompt=WORKOUT_PROMPT,
    entity_names=workout_entity_names,
    combine=combine_workout_drafts,
    convert=convert_workout_program,
)

_PROFILES = {profile.kind: profile for profile in (NUTRITION_PROFILE, WORKOUT_PROFILE)}


def get_profile(kind: PlanKind) -> ImportProfile:
    """Return the profile for a plan kind."""
    return _PROFILES[kind]
