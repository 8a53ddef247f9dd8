"""Convert resolved drafts into final plans.

Every node receives a fresh id and every aggregate is recomputed from its
leaves; totals reported by the extraction model are ignored.
"""

import re
from collections.abc import Iterable, Mapping
from datetime import datetime
from uuid import UUID, uuid4

from plan_importer.domain.drafts import (
    DraftExercise,
    DraftFood,
    DraftMacros,
    DraftMeal,
    DraftNutritionDay,
    DraftNutritionPlan,
    DraftNutritionWeek,
    DraftWorkoutDay,
    DraftWorkoutProgram,
    DraftWorkoutWeek,
)
from plan_importer.domain.imports import MatchResult
from plan_importer.domain.plans import (
    ZERO_MACROS,
    Exercise,
    ExerciseSet,
    Food,
    Macros,
    Meal,
    NutritionDay,
    NutritionPlan,
    NutritionWeek,
    WorkoutDay,
    WorkoutProgram,
    WorkoutWeek,
)
from plan_importer.errors import ConversionError
from plan_importer.services.matching import cache_key

KG_TO_LBS = 2.20462
DEFAULT_REPS = 10
DEFAULT_REST_SECONDS = 90
DEFAULT_DIFFICULTY = "INTERMEDIATE"

_FIRST_INT = re.compile(r"\d+")


def sum_macros(values: Iterable[Macros]) -> Macros:
    """Sum macros in iteration order."""
    total = ZERO_MACROS
    for value in values:
        total = Macros(
            calories=total.calories + value.calories,
            protein_g=total.protein_g + value.protein_g,
            fat_g=total.fat_g + value.fat_g,
            carbs_g=total.carbs_g + value.carbs_g,
            fiber_g=total.fiber_g + value.fiber_g,
        )
    return total


def convert_nutrition_plan(
    draft: DraftNutritionPlan,
    matches: Mapping[str, MatchResult],
    *,
    user_id: UUID,
    source_files: list[str],
    now: datetime,
) -> NutritionPlan:
    """Build a nutrition plan from a draft whose foods are all resolved."""
    if not draft.weeks:
        raise ConversionError("Draft plan has no weeks")
    weeks = [_convert_nutrition_week(week, matches) for week in draft.weeks]
    return NutritionPlan(
        id=uuid4(),
        user_id=user_id,
        name=draft.name,
        description=draft.description or _imported_from(source_files),
        goals=list(draft.goals),
        duration_weeks=draft.duration_weeks or len(weeks),
        weeks=weeks,
        target_macros=_macros(draft.target_macros) if draft.target_macros else None,
        restrictions=list(draft.restrictions),
        preferences=list(draft.preferences),
        created_at=now,
        metadata={
            "imported_at": now.isoformat(),
            "source_files": list(source_files),
        },
    )


def convert_workout_program(
    draft: DraftWorkoutProgram,
    matches: Mapping[str, MatchResult],
    *,
    user_id: UUID,
    source_files: list[str],
    now: datetime,
) -> WorkoutProgram:
    """Build a workout program from a draft whose exercises are all resolved."""
    if not draft.weeks:
        raise ConversionError("Draft program has no weeks")
    weeks = [_convert_workout_week(week, matches) for week in draft.weeks]
    return WorkoutProgram(
        id=uuid4(),
        user_id=user_id,
        name=draft.name,
        description=draft.description or _imported_from(source_files),
        difficulty=(draft.difficulty or DEFAULT_DIFFICULTY).upper(),
        duration_weeks=draft.duration_weeks or len(weeks),
        goals=list(draft.goals),
        weeks=weeks,
        created_at=now,
        metadata={
            "imported_at": now.isoformat(),
            "source_files": list(source_files),
            "original_author": draft.original_author,
        },
    )


def _convert_nutrition_week(
    week: DraftNutritionWeek, matches: Mapping[str, MatchResult]
) -> NutritionWeek:
    days = [_convert_nutrition_day(day, matches) for day in week.days]
    return NutritionWeek(
        id=uuid4(),
        week_number=week.week_number,
        days=days,
        total_macros=sum_macros(day.total_macros for day in days),
        notes=week.notes,
    )


def _convert_nutrition_day(
    day: DraftNutritionDay, matches: Mapping[str, MatchResult]
) -> NutritionDay:
    meals = [_convert_meal(meal, matches) for meal in day.meals]
    return NutritionDay(
        id=uuid4(),
        day_number=day.day_number,
        name=day.name or f"Day {day.day_number}",
        meals=meals,
        total_macros=sum_macros(meal.total_macros for meal in meals),
        notes=day.notes,
    )


def _convert_meal(meal: DraftMeal, matches: Mapping[str, MatchResult]) -> Meal:
    foods = [_convert_food(food, matches) for food in meal.foods]
    return Meal(
        id=uuid4(),
        name=meal.name,
        foods=foods,
        total_macros=sum_macros(food.macros for food in foods),
        time=meal.time,
        notes=meal.notes,
    )


def _convert_food(food: DraftFood, matches: Mapping[str, MatchResult]) -> Food:
    return Food(
        id=uuid4(),
        food_item_id=_catalog_id(food.name, matches),
        name=food.name,
        quantity=food.quantity,
        unit=food.unit,
        macros=_macros(food.macros),
        notes=food.notes,
    )


def _convert_workout_week(
    week: DraftWorkoutWeek, matches: Mapping[str, MatchResult]
) -> WorkoutWeek:
    days = [_convert_workout_day(day, matches) for day in week.days]
    return WorkoutWeek(
        id=uuid4(),
        week_number=week.week_number,
        days=days,
        total_sets=sum(day.total_sets for day in days),
        total_volume=sum(day.total_volume for day in days),
        focus=week.focus,
        notes=week.notes,
    )


def _convert_workout_day(
    day: DraftWorkoutDay, matches: Mapping[str, MatchResult]
) -> WorkoutDay:
    exercises = [_convert_exercise(exercise, matches) for exercise in day.exercises]
    return WorkoutDay(
        id=uuid4(),
        day_number=day.day_number,
        name=day.name or f"Day {day.day_number}",
        exercises=exercises,
        total_sets=sum(exercise.total_sets for exercise in exercises),
        total_volume=sum(exercise.total_volume for exercise in exercises),
        target_muscles=list(day.target_muscles),
        duration_minutes=day.duration_minutes,
        notes=day.notes,
    )


def _convert_exercise(
    exercise: DraftExercise, matches: Mapping[str, MatchResult]
) -> Exercise:
    reps, rep_range = _parse_reps(exercise.reps)
    weight = exercise.weight
    sets = [
        ExerciseSet(
            reps=reps,
            weight=weight,
            weight_lbs=round(weight * KG_TO_LBS, 2) if weight else None,
            rest_seconds=exercise.rest_seconds
            if exercise.rest_seconds is not None
            else DEFAULT_REST_SECONDS,
            volume=reps * weight if weight else 0.0,
            rpe=exercise.rpe,
            intensity_percent=exercise.intensity_percent,
        )
        for _ in range(exercise.sets)
    ]
    return Exercise(
        id=uuid4(),
        catalog_exercise_id=_catalog_id(exercise.name, matches),
        name=exercise.name,
        sets=sets,
        rep_range=rep_range,
        total_sets=len(sets),
        total_volume=sum(item.volume for item in sets),
        variant=exercise.variant,
        equipment=list(exercise.equipment),
        notes=exercise.notes,
    )


def _catalog_id(name: str, matches: Mapping[str, MatchResult]) -> UUID:
    match = matches.get(cache_key(name))
    if match is None or match.matched_id is None:
        raise ConversionError(f"Unresolved catalog reference: {name}")
    return match.matched_id


def _parse_reps(value: int | str | None) -> tuple[int, str]:
    """Return per-set reps and the prescribed rep range text."""
    if isinstance(value, int):
        return value, str(value)
    if isinstance(value, str) and value.strip():
        found = _FIRST_INT.search(value)
        return (int(found.group()) if found else DEFAULT_REPS), value.strip()
    return DEFAULT_REPS, str(DEFAULT_REPS)


def _macros(value: DraftMacros) -> Macros:
    return Macros(
        calories=value.calories,
        protein_g=value.protein_g,
        fat_g=value.fat_g,
        carbs_g=value.carbs_g,
        fiber_g=value.fiber_g,
    )


def _imported_from(source_files: list[str]) -> str:
    return f"Imported from {', '.join(source_files) or 'file'}"
