"""Collaborator store interfaces and in-memory implementations."""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable
from typing import Protocol

from meal_agent.models import (
    CookingSession,
    Meal,
    MealPlanDay,
    PlanPreferences,
    Profile,
    Recipe,
    Run,
)
from meal_agent.normalizer import DEFAULT_AISLE, normalize_name

logger = logging.getLogger(__name__)


class ProfileStore(Protocol):
    def find_by_user(self, user_id: str) -> Profile | None: ...


class RecipeStore(Protocol):
    def list_eligible(self, user_id: str, preferences: PlanPreferences | None = None) -> list[Recipe]: ...


class MealPlanStore(Protocol):
    def commit_day(
        self, date: str, user_id: str, meals: list[Meal], cooking_sessions: list[CookingSession]
    ) -> MealPlanDay: ...

    def find_day(self, date: str, user_id: str) -> MealPlanDay | None: ...

    def delete_day(self, date: str, user_id: str) -> None: ...


class RunStore(Protocol):
    def create(self, run: Run) -> Run: ...

    def find(self, run_id: str, user_id: str) -> Run | None: ...

    def update(self, run: Run) -> Run: ...

    def list_for_user(self, user_id: str, limit: int = 20) -> list[Run]: ...


class AisleOverrideStore(Protocol):
    def get_overrides(self, user_id: str) -> dict[str, str]: ...

    def upsert(self, user_id: str, name: str, aisle: str) -> tuple[str, str]: ...


def normalize_override(name: str, aisle: str) -> tuple[str, str]:
    """Key an aisle override the way shopping items are keyed."""
    key = normalize_name(str(name or ""))
    if not key:
        raise ValueError("Ingredient name is required")
    return key, str(aisle or "").strip() or DEFAULT_AISLE


def newest_first(runs: Iterable[Run], limit: int) -> list[Run]:
    ordered = sorted(runs, key=lambda r: (r.created_at is not None, r.created_at), reverse=True)
    return ordered[:limit]


class InMemoryProfileStore:
    def __init__(self, profiles: Iterable[Profile] = ()):
        self._profiles = {p.user_id: copy.deepcopy(p) for p in profiles}

    def find_by_user(self, user_id: str) -> Profile | None:
        profile = self._profiles.get(user_id)
        return copy.deepcopy(profile) if profile else None

    def save(self, profile: Profile) -> None:
        self._profiles[profile.user_id] = copy.deepcopy(profile)


class InMemoryRecipeStore:
    """Global recipes plus recipes owned by the requesting user."""

    def __init__(self, recipes: Iterable[Recipe] = ()):
        self._recipes = {r.id: r for r in recipes}

    def add(self, recipe: Recipe) -> None:
        self._recipes[recipe.id] = recipe

    def list_eligible(self, user_id: str, preferences: PlanPreferences | None = None) -> list[Recipe]:
        return [r for r in self._recipes.values() if r.is_global or r.owner_id == user_id]


class InMemoryMealPlanStore:
    def __init__(self):
        self._days: dict[tuple[str, str], MealPlanDay] = {}

    def commit_day(
        self, date: str, user_id: str, meals: list[Meal], cooking_sessions: list[CookingSession]
    ) -> MealPlanDay:
        day = MealPlanDay(
            date=date,
            meals=copy.deepcopy(list(meals)),
            cooking_sessions=copy.deepcopy(list(cooking_sessions)),
        )
        self._days[(user_id, date)] = day
        return copy.deepcopy(day)

    def find_day(self, date: str, user_id: str) -> MealPlanDay | None:
        day = self._days.get((user_id, date))
        return copy.deepcopy(day) if day else None

    def delete_day(self, date: str, user_id: str) -> None:
        self._days.pop((user_id, date), None)

    def days_for_user(self, user_id: str) -> list[MealPlanDay]:
        return [copy.deepcopy(d) for (uid, _), d in sorted(self._days.items()) if uid == user_id]


class InMemoryRunStore:
    def __init__(self):
        self._runs: dict[str, Run] = {}

    def create(self, run: Run) -> Run:
        if run.id in self._runs:
            raise ValueError(f"Run already exists: {run.id}")
        self._runs[run.id] = copy.deepcopy(run)
        return copy.deepcopy(run)

    def find(self, run_id: str, user_id: str) -> Run | None:
        run = self._runs.get(run_id)
        if run is None or run.user_id != user_id:
            return None
        return copy.deepcopy(run)

    def update(self, run: Run) -> Run:
        if run.id not in self._runs:
            raise KeyError(run.id)
        self._runs[run.id] = copy.deepcopy(run)
        return copy.deepcopy(run)

    def list_for_user(self, user_id: str, limit: int = 20) -> list[Run]:
        runs = [copy.deepcopy(r) for r in self._runs.values() if r.user_id == user_id]
        return newest_first(runs, limit)


class InMemoryAisleOverrideStore:
    def __init__(self):
        self._overrides: dict[str, dict[str, str]] = {}

    def get_overrides(self, user_id: str) -> dict[str, str]:
        return dict(self._overrides.get(user_id, {}))

    def upsert(self, user_id: str, name: str, aisle: str) -> tuple[str, str]:
        key, value = normalize_override(name, aisle)
        self._overrides.setdefault(user_id, {})[key] = value
        logger.info("Aisle override for %s: %s -> %s", user_id, key, value)
        return key, value
