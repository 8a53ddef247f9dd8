"""Models for AI-extracted draft plans.

Drafts reference catalog entities by name only. Totals provided by the model
are accepted for diagnostics but are recomputed during conversion.
"""

from pydantic import BaseModel, Field


class DraftMacros(BaseModel):
    """Macronutrients as reported by the extraction model."""

    calories: float = Field(default=0.0, ge=0.0)
    protein_g: float = Field(default=0.0, ge=0.0)
    fat_g: float = Field(default=0.0, ge=0.0)
    carbs_g: float = Field(default=0.0, ge=0.0)
    fiber_g: float = Field(default=0.0, ge=0.0)


class DraftFood(BaseModel):
    """Single food line inside a meal."""

    name: str = Field(min_length=1)
    quantity: float = Field(default=0.0, ge=0.0)
    unit: str = "g"
    macros: DraftMacros = Field(default_factory=DraftMacros)
    notes: str | None = None


class DraftMeal(BaseModel):
    """Meal with its foods."""

    name: str = "Meal"
    time: str | None = None
    foods: list[DraftFood] = Field(default_factory=list)
    total_macros: DraftMacros | None = None
    notes: str | None = None


class DraftNutritionDay(BaseModel):
    """Nutrition day."""

    day_number: int = Field(ge=1)
    name: str | None = None
    meals: list[DraftMeal] = Field(default_factory=list)
    total_macros: DraftMacros | None = None
    notes: str | None = None


class DraftNutritionWeek(BaseModel):
    """Nutrition week."""

    week_number: int = Field(ge=1)
    days: list[DraftNutritionDay] = Field(default_factory=list)
    notes: str | None = None


class DraftNutritionPlan(BaseModel):
    """Structured output for nutrition plan extraction."""

    name: str = "Imported nutrition plan"
    description: str | None = None
    goals: list[str] = Field(default_factory=list)
    duration_weeks: int | None = Field(default=None, ge=1)
    target_macros: DraftMacros | None = None
    weeks: list[DraftNutritionWeek] = Field(default_factory=list)
    restrictions: list[str] = Field(default_factory=list)
    preferences: list[str] = Field(default_factory=list)


class DraftExercise(BaseModel):
    """Exercise prescription inside a workout day."""

    name: str = Field(min_length=1)
    variant: str | None = None
    sets: int = Field(default=3, ge=0)
    reps: int | str | None = None
    weight: float | None = Field(default=None, ge=0.0)
    rest_seconds: int | None = Field(default=None, ge=0)
    rpe: float | None = Field(default=None, ge=0.0, le=10.0)
    intensity_percent: float | None = Field(default=None, ge=0.0)
    equipment: list[str] = Field(default_factory=list)
    notes: str | None = None


class DraftWorkoutDay(BaseModel):
    """Workout session."""

    day_number: int = Field(ge=1)
    name: str | None = None
    exercises: list[DraftExercise] = Field(default_factory=list)
    target_muscles: list[str] = Field(default_factory=list)
    duration_minutes: int | None = Field(default=None, ge=0)
    notes: str | None = None


class DraftWorkoutWeek(BaseModel):
    """Workout week."""

    week_number: int = Field(ge=1)
    days: list[DraftWorkoutDay] = Field(default_factory=list)
    focus: str | None = None
    notes: str | None = None


class DraftWorkoutProgram(BaseModel):
    """Structured output for workout program extraction."""

    name: str = "Imported workout program"
    description: str | None = None
    difficulty: str | None = None
    duration_weeks: int | None = Field(default=None, ge=1)
    goals: list[str] = Field(default_factory=list)
    original_author: str | None = None
    weeks: list[DraftWorkoutWeek] = Field(default_factory=list)


DraftPlan = DraftNutritionPlan | DraftWorkoutProgram
