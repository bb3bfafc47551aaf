"""Shared resolution step for generated, revised and hand-edited plan days.

Raw day dicts are coerced into ``MealPlanDay`` values, then every meal and
cooking session whose recipe id is missing from the run's catalog is
dropped. Nothing here raises for bad input; what was dropped is returned as
``ResolutionIssue`` records so callers can report it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from meal_agent.models import (
    CookingSession,
    Meal,
    MealPlanDay,
    MealSource,
    MealType,
    PopulatedDay,
    Recipe,
    SessionPurpose,
    TimeSlot,
    is_iso_date,
)

logger = logging.getLogger(__name__)

MEAL_SERVINGS_RANGE = (1, 4)
SESSION_SERVINGS_RANGE = (1, 20)


class IssueKind(Enum):
    UNRESOLVED_REFERENCE = "unresolved_reference"
    MALFORMED_DAY = "malformed_day"


@dataclass(frozen=True)
class ResolutionIssue:
    kind: IssueKind
    date: str
    recipe_id: str = ""
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "date": self.date,
            "recipe_id": self.recipe_id,
            "detail": self.detail,
        }


def _get(data: Mapping, *keys: str, default=None):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _enum_or_default(enum_cls, value, default):
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return default


def _number(value) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    if n != n or n in (float("inf"), float("-inf")):
        return None
    return n


def clamp_servings(value, bounds: tuple[int, int], default=None) -> int | float:
    """Clamp a servings value into bounds; non-numeric values take the default."""
    low, high = bounds
    n = _number(value)
    if n is None:
        return low if default is None else default
    n = min(high, max(low, n))
    return int(n) if n.is_integer() else n


def _recipe_ref(entry: Mapping) -> str:
    ref = _get(entry, "recipe", "recipe_id", "recipeId", default="")
    if isinstance(ref, Mapping):
        ref = _get(ref, "id", "_id", default="")
    return str(ref).strip()


def _normalize_meal(entry: Mapping) -> Meal | None:
    recipe_id = _recipe_ref(entry)
    if not recipe_id:
        return None
    return Meal(
        type=_enum_or_default(MealType, entry.get("type"), MealType.LUNCH),
        recipe_id=recipe_id,
        notes=str(entry.get("notes") or ""),
        source=_enum_or_default(MealSource, entry.get("source"), MealSource.FRESH),
        planned_servings=clamp_servings(
            _get(entry, "planned_servings", "plannedServings"), MEAL_SERVINGS_RANGE
        ),
        exclude_from_shopping=_get(entry, "exclude_from_shopping", "excludeFromShopping") is True,
    )


def _normalize_session(entry: Mapping) -> CookingSession | None:
    recipe_id = _recipe_ref(entry)
    if not recipe_id:
        return None
    servings = clamp_servings(entry.get("servings"), SESSION_SERVINGS_RANGE)
    return CookingSession(
        recipe_id=recipe_id,
        notes=str(entry.get("notes") or ""),
        time_slot=_enum_or_default(TimeSlot, _get(entry, "time_slot", "timeSlot"), TimeSlot.AFTERNOON),
        servings=servings,
        planned_servings=clamp_servings(
            _get(entry, "planned_servings", "plannedServings"),
            SESSION_SERVINGS_RANGE,
            default=servings,
        ),
        purpose=_enum_or_default(SessionPurpose, entry.get("purpose"), SessionPurpose.MEAL_PREP),
        exclude_from_shopping=_get(entry, "exclude_from_shopping", "excludeFromShopping") is True,
    )


def _as_dict(day) -> Mapping | None:
    if isinstance(day, MealPlanDay):
        return day.to_dict()
    if isinstance(day, Mapping):
        return day
    return None


def normalize_days(
    raw_days, dates: Iterable[str] | None = None
) -> tuple[list[MealPlanDay], list[ResolutionIssue]]:
    """Coerce raw day dicts into plan days, clamping values into range.

    When ``dates`` is given, days outside it are dropped.
    """
    days: list[MealPlanDay] = []
    issues: list[ResolutionIssue] = []
    allowed = set(dates) if dates is not None else None

    if not isinstance(raw_days, (list, tuple)):
        return days, issues

    for raw in raw_days:
        data = _as_dict(raw)
        if data is None:
            issues.append(ResolutionIssue(IssueKind.MALFORMED_DAY, date="", detail="day is not an object"))
            continue

        date = str(data.get("date") or "").strip()
        if not is_iso_date(date):
            issues.append(
                ResolutionIssue(IssueKind.MALFORMED_DAY, date=date, detail="date is not YYYY-MM-DD")
            )
            continue
        if allowed is not None and date not in allowed:
            issues.append(
                ResolutionIssue(IssueKind.MALFORMED_DAY, date=date, detail="date outside the run's range")
            )
            continue

        day = MealPlanDay(date=date)
        for entry in _get(data, "meals", default=[]) or []:
            meal = _normalize_meal(entry) if isinstance(entry, Mapping) else None
            if meal is None:
                issues.append(
                    ResolutionIssue(IssueKind.MALFORMED_DAY, date=date, detail="meal without a recipe reference")
                )
                continue
            day.meals.append(meal)

        for entry in _get(data, "cooking_sessions", "cookingSessions", default=[]) or []:
            session = _normalize_session(entry) if isinstance(entry, Mapping) else None
            if session is None:
                issues.append(
                    ResolutionIssue(
                        IssueKind.MALFORMED_DAY, date=date, detail="cooking session without a recipe reference"
                    )
                )
                continue
            day.cooking_sessions.append(session)

        days.append(day)

    return days, issues


def resolve_days(
    days: Iterable[MealPlanDay], catalog: Mapping[str, Recipe]
) -> tuple[list[MealPlanDay], list[ResolutionIssue]]:
    """Drop meals and sessions whose recipe is not in the catalog."""
    resolved: list[MealPlanDay] = []
    issues: list[ResolutionIssue] = []

    for day in days:
        kept = MealPlanDay(date=day.date)
        for meal in day.meals:
            if meal.recipe_id in catalog:
                kept.meals.append(meal)
            else:
                issues.append(
                    ResolutionIssue(
                        IssueKind.UNRESOLVED_REFERENCE,
                        date=day.date,
                        recipe_id=meal.recipe_id,
                        detail=f"{meal.type.value} recipe not in catalog",
                    )
                )
        for session in day.cooking_sessions:
            if session.recipe_id in catalog:
                kept.cooking_sessions.append(session)
            else:
                issues.append(
                    ResolutionIssue(
                        IssueKind.UNRESOLVED_REFERENCE,
                        date=day.date,
                        recipe_id=session.recipe_id,
                        detail="cooking session recipe not in catalog",
                    )
                )
        resolved.append(kept)

    return resolved, issues


def prepare_days(
    raw_days, catalog: Mapping[str, Recipe], dates: Iterable[str] | None = None
) -> tuple[list[MealPlanDay], list[ResolutionIssue]]:
    """Normalize then resolve; the single path for generate, revise and edit."""
    days, issues = normalize_days(raw_days, dates)
    days, unresolved = resolve_days(days, catalog)
    issues.extend(unresolved)
    if issues:
        logger.warning("Dropped %d plan entr%s during resolution", len(issues), "y" if len(issues) == 1 else "ies")
        for issue in issues:
            logger.debug("  %s %s %s %s", issue.kind.value, issue.date, issue.recipe_id, issue.detail)
    return days, issues


def populate_days(days: Iterable[MealPlanDay], catalog: Mapping[str, Recipe]) -> list[PopulatedDay]:
    """Pair each entry with its catalog recipe; unresolved entries are skipped."""
    populated = []
    for day in days:
        populated.append(
            PopulatedDay(
                date=day.date,
                meals=[(m, catalog[m.recipe_id]) for m in day.meals if m.recipe_id in catalog],
                cooking_sessions=[
                    (s, catalog[s.recipe_id]) for s in day.cooking_sessions if s.recipe_id in catalog
                ],
            )
        )
    return populated


def referenced_recipes(days: Iterable[MealPlanDay], catalog: Mapping[str, Recipe]) -> list[Recipe]:
    """Catalog recipes used by the days, in order of first use."""
    seen: dict[str, Recipe] = {}
    for day in days:
        for recipe_id in day.recipe_ids():
            if recipe_id in catalog and recipe_id not in seen:
                seen[recipe_id] = catalog[recipe_id]
    return list(seen.values())
