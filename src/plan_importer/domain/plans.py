"""Final plan models in their persistence shape."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from uuid import UUID


class PlanKind(StrEnum):
    """Kinds of plans the importer can produce."""

    NUTRITION = "nutrition"
    WORKOUT = "workout"


@dataclass(frozen=True)
class Macros:
    """Macronutrient totals."""

    calories: float
    protein_g: float
    fat_g: float
    carbs_g: float
    fiber_g: float = 0.0


ZERO_MACROS = Macros(0.0, 0.0, 0.0, 0.0, 0.0)


@dataclass(frozen=True)
class Food:
    """Food entry pointing at a catalog food item."""

    id: UUID
    food_item_id: UUID
    name: str
    quantity: float
    unit: str
    macros: Macros
    notes: str | None = None


@dataclass(frozen=True)
class Meal:
    """Meal with totals summed from its foods."""

    id: UUID
    name: str
    foods: list[Food]
    total_macros: Macros
    time: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class NutritionDay:
    """Day with totals summed from its meals."""

    id: UUID
    day_number: int
    name: str
    meals: list[Meal]
    total_macros: Macros
    notes: str | None = None


@dataclass(frozen=True)
class NutritionWeek:
    """Week with totals summed from its days."""

    id: UUID
    week_number: int
    days: list[NutritionDay]
    total_macros: Macros
    notes: str | None = None


@dataclass(frozen=True)
class NutritionPlan:
    """Persistence-ready nutrition plan."""

    id: UUID
    user_id: UUID
    name: str
    description: str
    goals: list[str]
    duration_weeks: int
    weeks: list[NutritionWeek]
    target_macros: Macros | None
    restrictions: list[str]
    preferences: list[str]
    created_at: datetime
    status: str = "DRAFT"
    metadata: dict[str, object] = field(default_factory=dict)

    kind = PlanKind.NUTRITION


@dataclass(frozen=True)
class ExerciseSet:
    """Single prescribed set."""

    reps: int
    weight: float | None
    weight_lbs: float | None
    rest_seconds: int
    volume: float
    rpe: float | None = None
    intensity_percent: float | None = None


@dataclass(frozen=True)
class Exercise:
    """Exercise entry pointing at a catalog exercise."""

    id: UUID
    catalog_exercise_id: UUID
    name: str
    sets: list[ExerciseSet]
    rep_range: str
    total_sets: int
    total_volume: float
    variant: str | None = None
    equipment: list[str] = field(default_factory=list)
    notes: str | None = None


@dataclass(frozen=True)
class WorkoutDay:
    """Workout session with volume summed from its exercises."""

    id: UUID
    day_number: int
    name: str
    exercises: list[Exercise]
    total_sets: int
    total_volume: float
    target_muscles: list[str] = field(default_factory=list)
    duration_minutes: int | None = None
    notes: str | None = None


@dataclass(frozen=True)
class WorkoutWeek:
    """Workout week with volume summed from its days."""

    id: UUID
    week_number: int
    days: list[WorkoutDay]
    total_sets: int
    total_volume: float
    focus: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class WorkoutProgram:
    """Persistence-ready workout program."""

    id: UUID
    user_id: UUID
    name: str
    description: str
    difficulty: str
    duration_weeks: int
    goals: list[str]
    weeks: list[WorkoutWeek]
    created_at: datetime
    status: str = "DRAFT"
    metadata: dict[str, object] = field(default_factory=dict)

    kind = PlanKind.WORKOUT


FinalPlan = NutritionPlan | WorkoutProgram
