"""Shared data models for planning runs, drafts and shopping lists."""

from __future__ import annotations

import copy
import re
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime, timedelta
from enum import Enum

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MAX_RUN_DAYS = 35


class RunStatus(Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    APPLIED = "applied"


class MealType(Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    SNACK = "snack"


class MealSource(Enum):
    FRESH = "fresh"
    LEFTOVERS = "leftovers"
    MEAL_PREP = "meal_prep"
    FROZEN = "frozen"


class TimeSlot(Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class SessionPurpose(Enum):
    MEAL_PREP = "meal_prep"
    BATCH_COOKING = "batch_cooking"
    WEEKLY_PREP = "weekly_prep"
    DAILY_COOKING = "daily_cooking"


def is_iso_date(value: object) -> bool:
    """True for a 'YYYY-MM-DD' string naming a real calendar date."""
    if not isinstance(value, str) or not ISO_DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _from_fields(cls, data: dict):
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (data or {}).items() if k in names})


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _str_to_dt(value: object) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass(frozen=True)
class DateRange:
    start: str
    end: str

    def dates(self, limit: int | None = MAX_RUN_DAYS) -> list[str]:
        """Expand to inclusive ISO dates, capped at ``limit`` days."""
        cursor = date.fromisoformat(self.start)
        end = date.fromisoformat(self.end)
        result: list[str] = []
        while cursor <= end and (limit is None or len(result) < limit):
            result.append(cursor.isoformat())
            cursor += timedelta(days=1)
        return result

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: dict) -> DateRange:
        return cls(start=data["start"], end=data["end"])


@dataclass(frozen=True)
class Nutrition:
    # Per serving
    calories: float | None = None
    protein_g: float | None = None
    carbs_g: float | None = None
    fat_g: float | None = None


@dataclass(frozen=True)
class Recipe:
    """Catalog snapshot of a recipe, immutable for the lifetime of a run."""

    id: str
    title: str
    ingredients: tuple[str, ...] = ()
    instructions: tuple[str, ...] = ()
    servings: int | None = None
    category: str | None = None
    prep_time_min: int | None = None
    is_global: bool = False
    owner_id: str | None = None
    nutrition: Nutrition = field(default_factory=Nutrition)

    @property
    def base_servings(self) -> int:
        if self.servings and self.servings > 0:
            return self.servings
        return 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "ingredients": list(self.ingredients),
            "instructions": list(self.instructions),
            "servings": self.servings,
            "category": self.category,
            "prep_time_min": self.prep_time_min,
            "is_global": self.is_global,
            "owner_id": self.owner_id,
            "nutrition": asdict(self.nutrition),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Recipe:
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            ingredients=tuple(str(i) for i in data.get("ingredients") or []),
            instructions=tuple(str(i) for i in data.get("instructions") or []),
            servings=data.get("servings"),
            category=data.get("category"),
            prep_time_min=data.get("prep_time_min"),
            is_global=bool(data.get("is_global", False)),
            owner_id=data.get("owner_id"),
            nutrition=_from_fields(Nutrition, data.get("nutrition") or {}),
        )


@dataclass
class Meal:
    type: MealType
    recipe_id: str
    notes: str = ""
    source: MealSource = MealSource.FRESH
    planned_servings: float = 1
    exclude_from_shopping: bool = False

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "recipe": self.recipe_id,
            "notes": self.notes,
            "source": self.source.value,
            "planned_servings": self.planned_servings,
            "exclude_from_shopping": self.exclude_from_shopping,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Meal:
        return cls(
            type=MealType(data["type"]),
            recipe_id=str(data["recipe"]),
            notes=data.get("notes", ""),
            source=MealSource(data.get("source", "fresh")),
            planned_servings=data.get("planned_servings", 1),
            exclude_from_shopping=bool(data.get("exclude_from_shopping", False)),
        )


@dataclass
class CookingSession:
    recipe_id: str
    notes: str = ""
    time_slot: TimeSlot = TimeSlot.AFTERNOON
    servings: float = 1
    planned_servings: float | None = None
    purpose: SessionPurpose = SessionPurpose.MEAL_PREP
    exclude_from_shopping: bool = False

    def __post_init__(self) -> None:
        if self.planned_servings is None:
            self.planned_servings = self.servings

    def to_dict(self) -> dict:
        return {
            "recipe": self.recipe_id,
            "notes": self.notes,
            "time_slot": self.time_slot.value,
            "servings": self.servings,
            "planned_servings": self.planned_servings,
            "purpose": self.purpose.value,
            "exclude_from_shopping": self.exclude_from_shopping,
        }

    @classmethod
    def from_dict(cls, data: dict) -> CookingSession:
        return cls(
            recipe_id=str(data["recipe"]),
            notes=data.get("notes", ""),
            time_slot=TimeSlot(data.get("time_slot", "afternoon")),
            servings=data.get("servings", 1),
            planned_servings=data.get("planned_servings"),
            purpose=SessionPurpose(data.get("purpose", "meal_prep")),
            exclude_from_shopping=bool(data.get("exclude_from_shopping", False)),
        )


@dataclass
class MealPlanDay:
    date: str
    meals: list[Meal] = field(default_factory=list)
    cooking_sessions: list[CookingSession] = field(default_factory=list)

    def recipe_ids(self) -> list[str]:
        ids = [m.recipe_id for m in self.meals]
        ids.extend(s.recipe_id for s in self.cooking_sessions)
        return ids

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "meals": [m.to_dict() for m in self.meals],
            "cooking_sessions": [s.to_dict() for s in self.cooking_sessions],
        }

    @classmethod
    def from_dict(cls, data: dict) -> MealPlanDay:
        return cls(
            date=data["date"],
            meals=[Meal.from_dict(m) for m in data.get("meals", [])],
            cooking_sessions=[
                CookingSession.from_dict(s) for s in data.get("cooking_sessions", [])
            ],
        )


@dataclass
class PopulatedDay:
    """A plan day whose entries carry resolved catalog recipes."""

    date: str
    meals: list[tuple[Meal, Recipe]] = field(default_factory=list)
    cooking_sessions: list[tuple[CookingSession, Recipe]] = field(default_factory=list)


@dataclass
class ShoppingItem:
    normalized_name: str
    quantity: float | None
    unit: str | None
    aisle: str
    source_count: int = 0
    sources: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> ShoppingItem:
        return _from_fields(cls, data)


@dataclass
class ShoppingStats:
    total_items: int = 0
    resolved_items: int = 0
    needs_review_items: int = 0
    planned_meals: int = 0
    cooking_sessions: int = 0
    recipes_considered: int = 0
    ingredient_lines: int = 0
    total_planned_servings: float = 0.0


@dataclass
class ShoppingList:
    totals: list[ShoppingItem] = field(default_factory=list)
    needs_review: list[ShoppingItem] = field(default_factory=list)
    stats: ShoppingStats = field(default_factory=ShoppingStats)

    def to_dict(self) -> dict:
        return {
            "totals": [i.to_dict() for i in self.totals],
            "needs_review": [i.to_dict() for i in self.needs_review],
            "stats": asdict(self.stats),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ShoppingList:
        return cls(
            totals=[ShoppingItem.from_dict(i) for i in data.get("totals", [])],
            needs_review=[ShoppingItem.from_dict(i) for i in data.get("needs_review", [])],
            stats=_from_fields(ShoppingStats, data.get("stats") or {}),
        )


@dataclass(frozen=True)
class Violation:
    constraint: str
    keyword: str
    recipe_id: str
    recipe_title: str
    dates: tuple[str, ...] = ()
    message: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["dates"] = list(self.dates)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Violation:
        data = dict(data)
        data["dates"] = tuple(data.get("dates") or ())
        return _from_fields(cls, data)


@dataclass
class Validation:
    hard_constraint_violations: list[Violation] = field(default_factory=list)
    unchecked_constraints: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.hard_constraint_violations

    def to_dict(self) -> dict:
        return {
            "hard_constraint_violations": [
                v.to_dict() for v in self.hard_constraint_violations
            ],
            "unchecked_constraints": list(self.unchecked_constraints),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Validation:
        return cls(
            hard_constraint_violations=[
                Violation.from_dict(v) for v in data.get("hard_constraint_violations", [])
            ],
            unchecked_constraints=list(data.get("unchecked_constraints", [])),
        )


@dataclass
class Summary:
    """Narrative for humans. Never consulted by transitions."""

    why_this_plan: str = ""
    unmet_constraints: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Summary:
        return _from_fields(cls, data)


@dataclass
class OutputDraft:
    recipe_catalog: list[Recipe] = field(default_factory=list)
    meal_plan_days: list[MealPlanDay] = field(default_factory=list)
    shopping_list: ShoppingList | None = None
    validation: Validation | None = None
    cooking_schedule: list[dict] = field(default_factory=list)
    tool_trace: list[dict] = field(default_factory=list)

    def catalog_map(self) -> dict[str, Recipe]:
        return {r.id: r for r in self.recipe_catalog}

    def to_dict(self) -> dict:
        return {
            "recipe_catalog": [r.to_dict() for r in self.recipe_catalog],
            "meal_plan_days": [d.to_dict() for d in self.meal_plan_days],
            "shopping_list": self.shopping_list.to_dict() if self.shopping_list else None,
            "validation": self.validation.to_dict() if self.validation else None,
            "cooking_schedule": copy.deepcopy(self.cooking_schedule),
            "tool_trace": copy.deepcopy(self.tool_trace),
        }

    @classmethod
    def from_dict(cls, data: dict) -> OutputDraft:
        shopping = data.get("shopping_list")
        validation = data.get("validation")
        return cls(
            recipe_catalog=[Recipe.from_dict(r) for r in data.get("recipe_catalog", [])],
            meal_plan_days=[MealPlanDay.from_dict(d) for d in data.get("meal_plan_days", [])],
            shopping_list=ShoppingList.from_dict(shopping) if shopping else None,
            validation=Validation.from_dict(validation) if validation else None,
            cooking_schedule=list(data.get("cooking_schedule", [])),
            tool_trace=list(data.get("tool_trace", [])),
        )


@dataclass
class NutritionTargets:
    source: str = "none"  # user | estimated | none
    calories: float | None = None
    protein: float | None = None
    carbs: float | None = None
    fat: float | None = None


@dataclass
class ProfileMetrics:
    height_cm: float | None = None
    weight_kg: float | None = None
    age: int | None = None
    sex: str = "unspecified"
    activity_level: str = "unspecified"


@dataclass
class PlanPreferences:
    include_global_recipes: bool = True
    include_user_recipes: bool = True
    avoid_repeat_meals: bool = True
    leftovers_preference: str = "moderate"  # none | light | moderate | heavy
    batch_cooking_preference: str = "moderate"
    max_cook_time_minutes: int | None = None
    meal_types: list[str] = field(default_factory=list)


@dataclass
class Profile:
    user_id: str
    hard_constraints: list[str] = field(default_factory=list)
    medical_disclaimer_accepted_at: datetime | None = None
    soft_preferences: list[str] = field(default_factory=list)
    optimization_goal: str = ""
    strictness: str = "balanced"  # flexible | balanced | strict
    nutrition_targets: NutritionTargets = field(default_factory=NutritionTargets)
    metrics: ProfileMetrics = field(default_factory=ProfileMetrics)
    preferences: PlanPreferences = field(default_factory=PlanPreferences)

    def snapshot(self) -> Profile:
        """Point-in-time value copy; later edits to self never reach it."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "hard_constraints": list(self.hard_constraints),
            "medical_disclaimer_accepted_at": _dt_to_str(self.medical_disclaimer_accepted_at),
            "soft_preferences": list(self.soft_preferences),
            "optimization_goal": self.optimization_goal,
            "strictness": self.strictness,
            "nutrition_targets": asdict(self.nutrition_targets),
            "metrics": asdict(self.metrics),
            "preferences": asdict(self.preferences),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Profile:
        return cls(
            user_id=str(data["user_id"]),
            hard_constraints=[str(c) for c in data.get("hard_constraints") or []],
            medical_disclaimer_accepted_at=_str_to_dt(data.get("medical_disclaimer_accepted_at")),
            soft_preferences=[str(p) for p in data.get("soft_preferences") or []],
            optimization_goal=data.get("optimization_goal") or "",
            strictness=data.get("strictness") or "balanced",
            nutrition_targets=_from_fields(NutritionTargets, data.get("nutrition_targets") or {}),
            metrics=_from_fields(ProfileMetrics, data.get("metrics") or {}),
            preferences=_from_fields(PlanPreferences, data.get("preferences") or {}),
        )


@dataclass
class Run:
    id: str
    user_id: str
    date_range: DateRange
    input_snapshot: Profile
    status: RunStatus = RunStatus.DRAFT
    output_draft: OutputDraft = field(default_factory=OutputDraft)
    summary: Summary = field(default_factory=Summary)
    error_message: str = ""
    approved_at: datetime | None = None
    applied_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def violations(self) -> list[Violation]:
        validation = self.output_draft.validation
        return list(validation.hard_constraint_violations) if validation else []

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status.value,
            "date_range": self.date_range.to_dict(),
            "input_snapshot": self.input_snapshot.to_dict(),
            "output_draft": self.output_draft.to_dict(),
            "summary": self.summary.to_dict(),
            "error_message": self.error_message,
            "approved_at": _dt_to_str(self.approved_at),
            "applied_at": _dt_to_str(self.applied_at),
            "created_at": _dt_to_str(self.created_at),
            "updated_at": _dt_to_str(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Run:
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            status=RunStatus(data.get("status", "draft")),
            date_range=DateRange.from_dict(data["date_range"]),
            input_snapshot=Profile.from_dict(data["input_snapshot"]),
            output_draft=OutputDraft.from_dict(data.get("output_draft") or {}),
            summary=Summary.from_dict(data.get("summary") or {}),
            error_message=data.get("error_message", ""),
            approved_at=_str_to_dt(data.get("approved_at")),
            applied_at=_str_to_dt(data.get("applied_at")),
            created_at=_str_to_dt(data.get("created_at")),
            updated_at=_str_to_dt(data.get("updated_at")),
        )
