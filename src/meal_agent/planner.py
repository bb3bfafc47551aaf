"""Deterministic meal plan assignment using the OR-Tools CP-SAT solver."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from ortools.sat.python import cp_model

from meal_agent.models import (
    CookingSession,
    Meal,
    MealPlanDay,
    MealSource,
    MealType,
    PlanPreferences,
    Recipe,
    SessionPurpose,
    TimeSlot,
)
from meal_agent.normalizer import singularize

logger = logging.getLogger(__name__)

MEAL_TYPE_ORDER = [t.value for t in MealType]

# Objective weights (integer costs, lower is better)
SAME_DAY_REPEAT_COST = 100
BACK_TO_BACK_COST = 40
MAX_USE_COST = 10
CATEGORY_MISS_COST = 3

BATCH_DAYS_PER_COOK = {"heavy": 5, "moderate": 3, "light": 2}
PLANNED_SERVINGS = {"heavy": 3, "moderate": 2}

_EXCLUSION_RE = re.compile(
    r"\b(?:no|avoid|without|exclude|skip)\s+([a-z][a-z\s-]*?)(?=\s*(?:[,.;!]|\band\b|\bor\b|\bplease\b|$))"
)


@dataclass
class PlanResult:
    days: list[MealPlanDay]
    meal_types: list[str]
    recipe_pool: int
    batch_cooking: bool = False
    intentional_repeat_slots: int = 0
    repeat_pressure: bool = False
    excluded_keywords: list[str] = field(default_factory=list)
    objective: float = 0.0


@dataclass
class _Slot:
    meal_type: str
    day_indices: list[int]
    batch: bool = False


def parse_meal_types(text: str | None) -> list[str]:
    """Meal types named in free text, in canonical order; empty if none."""
    lowered = str(text or "").lower()
    return [t for t in MEAL_TYPE_ORDER if re.search(rf"\b{t}s?\b", lowered)]


def normalize_meal_types(values) -> list[str]:
    wanted = {str(v).strip().lower() for v in values or []}
    return [t for t in MEAL_TYPE_ORDER if t in wanted]


def choose_meal_types(
    instruction: str | None,
    prior_days: list[MealPlanDay] | None,
    preferences: PlanPreferences,
    default: list[str],
) -> list[str]:
    """Instruction first, then the prior draft, then preferences, then config."""
    from_text = parse_meal_types(instruction)
    if from_text:
        return from_text
    if prior_days:
        prior = normalize_meal_types(m.type.value for d in prior_days for m in d.meals)
        if prior:
            return prior
    from_prefs = normalize_meal_types(preferences.meal_types)
    if from_prefs:
        return from_prefs
    return normalize_meal_types(default) or ["lunch", "dinner"]


def parse_exclusions(text: str | None) -> list[str]:
    """Keywords a revision asks to drop, e.g. "no pork and avoid beans"."""
    keywords = []
    for m in _EXCLUSION_RE.finditer(str(text or "").lower()):
        kw = re.sub(r"\s+", " ", m.group(1)).strip(" -")
        if kw and kw not in keywords:
            keywords.append(kw)
    return keywords


def recipe_mentions(recipe: Recipe, keyword: str) -> bool:
    haystack = "\n".join([recipe.title, *recipe.ingredients]).lower()
    singular = " ".join(singularize(w) for w in keyword.split())
    return keyword in haystack or singular in haystack


def apply_exclusions(recipes: list[Recipe], keywords: list[str]) -> list[Recipe]:
    if not keywords:
        return recipes
    kept = [r for r in recipes if not any(recipe_mentions(r, kw) for kw in keywords)]
    if not kept:
        logger.warning("Excluding %s would empty the recipe pool, ignoring", ", ".join(keywords))
        return recipes
    return kept


def get_batch_days_per_cook(leftovers_preference: str) -> int:
    return BATCH_DAYS_PER_COOK.get(leftovers_preference, 1)


def get_default_planned_servings(leftovers_preference: str) -> int:
    return PLANNED_SERVINGS.get(leftovers_preference, 1)


def get_primary_batch_meal_type(meal_types: list[str]) -> str:
    if "dinner" in meal_types:
        return "dinner"
    if "lunch" in meal_types:
        return "lunch"
    return meal_types[0] if meal_types else "dinner"


def _fits_category(recipe: Recipe, meal_type: str) -> bool:
    category = (recipe.category or "").lower()
    return not category or meal_type in category


def _build_slots(num_days: int, meal_types: list[str], batch_days: int) -> list[_Slot]:
    slots: list[_Slot] = []
    primary = get_primary_batch_meal_type(meal_types) if batch_days > 1 else None
    if primary:
        for start in range(0, num_days, batch_days):
            covered = list(range(start, min(num_days, start + batch_days)))
            slots.append(_Slot(primary, covered, batch=True))
    for d in range(num_days):
        for meal_type in meal_types:
            if meal_type != primary:
                slots.append(_Slot(meal_type, [d]))
    return slots


def solve_assignment(
    slots: list[_Slot],
    num_days: int,
    recipes: list[Recipe],
    avoid_repeat_meals: bool = True,
    max_deterministic_time: float = 10.0,
    random_seed: int = 0,
) -> tuple[list[int], float] | None:
    """Pick one recipe index per slot.

    Every rule is soft: same-day repeats, back-to-back repeats of a meal type
    and heavy reuse of one recipe are penalized, category mismatch costs a
    little. A single worker with a fixed seed keeps results reproducible.
    """
    n = len(recipes)
    model = cp_model.CpModel()

    x = {}
    for s in range(len(slots)):
        for r in range(n):
            x[s, r] = model.new_bool_var(f"x_s{s}_r{r}")
        model.add_exactly_one([x[s, r] for r in range(n)])

    penalty_terms = []

    for s, slot in enumerate(slots):
        for r, recipe in enumerate(recipes):
            if not _fits_category(recipe, slot.meal_type):
                penalty_terms.append(CATEGORY_MISS_COST * x[s, r])

    if avoid_repeat_meals:
        # Same recipe twice on one day
        for d in range(num_days):
            on_day = [s for s, slot in enumerate(slots) if d in slot.day_indices]
            if len(on_day) < 2:
                continue
            for r in range(n):
                over = model.new_int_var(0, len(on_day) - 1, f"same_day_d{d}_r{r}")
                model.add(sum(x[s, r] for s in on_day) <= 1 + over)
                penalty_terms.append(SAME_DAY_REPEAT_COST * over)

        # Same recipe for the same meal type on consecutive slots
        for meal_type in {slot.meal_type for slot in slots}:
            ordered = sorted(
                (s for s, slot in enumerate(slots) if slot.meal_type == meal_type),
                key=lambda s: slots[s].day_indices[0],
            )
            for a, b in zip(ordered, ordered[1:]):
                if slots[a].day_indices[-1] + 1 != slots[b].day_indices[0]:
                    continue
                for r in range(n):
                    repeat = model.new_bool_var(f"b2b_s{a}_s{b}_r{r}")
                    model.add(repeat >= x[a, r] + x[b, r] - 1)
                    penalty_terms.append(BACK_TO_BACK_COST * repeat)

    max_use = model.new_int_var(0, len(slots), "max_use")
    for r in range(n):
        model.add(sum(x[s, r] for s in range(len(slots))) <= max_use)
    penalty_terms.append(MAX_USE_COST * max_use)

    model.minimize(sum(penalty_terms))

    solver = cp_model.CpSolver()
    solver.parameters.num_workers = 1
    solver.parameters.random_seed = random_seed
    solver.parameters.max_deterministic_time = max_deterministic_time
    status = solver.solve(model)

    if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
        logger.error("Solver could not find a feasible plan")
        return None

    logger.debug(
        "Solver status %s, objective %.0f", solver.status_name(status), solver.objective_value
    )

    assignment = []
    for s in range(len(slots)):
        chosen = next(r for r in range(n) if solver.value(x[s, r]) == 1)
        assignment.append(chosen)
    return assignment, solver.objective_value


def build_plan_days(
    dates: list[str],
    meal_types: list[str],
    recipes: list[Recipe],
    preferences: PlanPreferences,
    max_deterministic_time: float = 10.0,
    random_seed: int = 0,
    max_pool: int = 40,
) -> PlanResult | None:
    """Assign recipes to every meal slot of the date range.

    With a leftovers preference, the primary meal type (dinner, else lunch)
    is batch cooked: one cooking session on the anchor day covers the
    following days, whose meals are leftovers excluded from shopping.
    """
    pool = recipes[:max_pool]
    if not dates or not meal_types or not pool:
        return PlanResult(days=[MealPlanDay(date=d) for d in dates], meal_types=meal_types, recipe_pool=len(pool))

    batch_days = get_batch_days_per_cook(preferences.leftovers_preference)
    per_meal = min(4, max(1, get_default_planned_servings(preferences.leftovers_preference)))
    slots = _build_slots(len(dates), meal_types, batch_days)

    solved = solve_assignment(
        slots,
        len(dates),
        pool,
        avoid_repeat_meals=preferences.avoid_repeat_meals,
        max_deterministic_time=max_deterministic_time,
        random_seed=random_seed,
    )
    if solved is None:
        return None
    assignment, objective = solved

    days = [MealPlanDay(date=d) for d in dates]
    meals_by_day: dict[int, dict[str, Meal]] = {d: {} for d in range(len(dates))}
    intentional_repeats = 0

    for slot, r in zip(slots, assignment):
        recipe = pool[r]
        if slot.batch:
            coverage = len(slot.day_indices)
            servings = min(20, max(2, coverage * per_meal))
            anchor = slot.day_indices[0]
            days[anchor].cooking_sessions.append(
                CookingSession(
                    recipe_id=recipe.id,
                    notes=f"Batch cook for {coverage} {slot.meal_type} meals",
                    time_slot=TimeSlot.AFTERNOON,
                    servings=servings,
                    planned_servings=servings,
                    purpose=SessionPurpose.MEAL_PREP,
                )
            )
            for d in slot.day_indices:
                fresh = d == anchor
                meals_by_day[d][slot.meal_type] = Meal(
                    type=MealType(slot.meal_type),
                    recipe_id=recipe.id,
                    notes="Fresh batch-cooked portion" if fresh else "Leftover portion from batch cook",
                    source=MealSource.FRESH if fresh else MealSource.LEFTOVERS,
                    planned_servings=per_meal,
                    # Ingredients are bought for the cooking session
                    exclude_from_shopping=True,
                )
            intentional_repeats += coverage - 1
        else:
            meals_by_day[slot.day_indices[0]][slot.meal_type] = Meal(
                type=MealType(slot.meal_type),
                recipe_id=recipe.id,
                notes="Planned meal",
                source=MealSource.FRESH,
                planned_servings=per_meal,
            )

    for d, day in enumerate(days):
        day.meals = [meals_by_day[d][t] for t in meal_types if t in meals_by_day[d]]

    variety_slots = len(dates) * len(meal_types) - intentional_repeats
    return PlanResult(
        days=days,
        meal_types=meal_types,
        recipe_pool=len(pool),
        batch_cooking=batch_days > 1,
        intentional_repeat_slots=intentional_repeats,
        repeat_pressure=preferences.avoid_repeat_meals and len(pool) < variety_slots,
        objective=objective,
    )


def build_cooking_schedule(dates: list[str], batch_preference: str) -> list[dict]:
    """Per-day time slot and task list for the kitchen."""
    every = {"heavy": 2, "moderate": 3}.get(batch_preference, 5)
    schedule = []
    for i, date in enumerate(dates):
        batch_day = i % every == 0
        schedule.append(
            {
                "date": date,
                "time_slot": "afternoon" if batch_day else "evening",
                "tasks": (
                    ["Batch cook proteins", "Prep vegetables", "Portion meals"]
                    if batch_day
                    else ["Cook planned meals", "Prep next-day ingredients"]
                ),
            }
        )
    return schedule
