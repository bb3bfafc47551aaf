"""Hard-constraint validation of draft recipes.

Matching is keyword based: "no shellfish" flags any recipe whose title or
ingredient text contains "shellfish". It is not semantic, so "shrimp" does
not violate "no shellfish". Constraints no rule understands are reported as
unchecked rather than guessed at.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from meal_agent.models import MealPlanDay, Recipe, Validation, Violation
from meal_agent.normalizer import singularize

logger = logging.getLogger(__name__)

_FORBID_PATTERNS = [
    re.compile(r"^no\s+(.+)$"),
    re.compile(r"^avoid\s+(.+)$"),
    re.compile(r"^exclude\s+(.+)$"),
    re.compile(r"^without\s+(.+)$"),
    re.compile(r"^(.+?)[\s-]free$"),
]
_MAX_TIME_RE = re.compile(r"max(?:imum)?\s*(\d+)\s*min")


def _normalize_text(value: object) -> str:
    return re.sub(r"\s+", " ", str(value or "").lower()).strip()


def parse_forbidden_keyword(constraint: str) -> str | None:
    """Keyword forbidden by a single constraint, e.g. "no pork" -> "pork"."""
    text = _normalize_text(constraint).rstrip(".!")
    for pattern in _FORBID_PATTERNS:
        m = pattern.match(text)
        if m and m.group(1).strip():
            return m.group(1).strip()
    return None


def parse_max_cook_time(constraint: str) -> int | None:
    m = _MAX_TIME_RE.search(_normalize_text(constraint))
    if m:
        return int(m.group(1))
    return None


def _keyword_variants(keyword: str) -> list[str]:
    variants = [keyword]
    singular = " ".join(singularize(w) for w in keyword.split())
    if singular != keyword:
        variants.append(singular)
    return variants


def _haystack(recipe: Recipe) -> str:
    lines = [recipe.title, *recipe.ingredients]
    return "\n".join(_normalize_text(line) for line in lines)


def _schedule(days: Iterable[MealPlanDay] | None) -> dict[str, list[str]]:
    dates_by_recipe: dict[str, list[str]] = {}
    for day in days or []:
        for recipe_id in day.recipe_ids():
            dates = dates_by_recipe.setdefault(recipe_id, [])
            if day.date not in dates:
                dates.append(day.date)
    return dates_by_recipe


def validate(constraints, recipes: Iterable[Recipe], days: Iterable[MealPlanDay] | None = None) -> Validation:
    """Check recipes against the hard constraints of a profile snapshot.

    ``constraints`` is anything with ``hard_constraints`` (a ``Profile``).
    A missing medical disclaimer does not change the result; that gate lives
    at the boundary that exposes medically sensitive output.
    """
    hard_constraints = [
        c for c in (getattr(constraints, "hard_constraints", None) or []) if _normalize_text(c)
    ]
    recipes = list(recipes)
    dates_by_recipe = _schedule(days)

    violations: list[Violation] = []
    unchecked: list[str] = []

    for constraint in hard_constraints:
        keyword = parse_forbidden_keyword(constraint)
        max_minutes = parse_max_cook_time(constraint)

        if keyword is None and max_minutes is None:
            unchecked.append(constraint)
            continue

        for recipe in recipes:
            message = None
            if keyword is not None:
                text = _haystack(recipe)
                if any(v in text for v in _keyword_variants(keyword)):
                    message = f'Hard constraint violation: "{keyword}" found in recipe "{recipe.title}".'
            elif recipe.prep_time_min is not None and recipe.prep_time_min > max_minutes:
                message = (
                    f'Hard constraint violation: "{recipe.title}" prep time '
                    f"{recipe.prep_time_min} exceeds max {max_minutes} min."
                )

            if message:
                violations.append(
                    Violation(
                        constraint=constraint,
                        keyword=keyword or f"max {max_minutes} min",
                        recipe_id=recipe.id,
                        recipe_title=recipe.title,
                        dates=tuple(dates_by_recipe.get(recipe.id, [])),
                        message=message,
                    )
                )

    if violations:
        logger.debug("Validation found %d violation(s)", len(violations))
    if unchecked:
        logger.debug("Constraints not machine-checkable: %s", unchecked)

    return Validation(hard_constraint_violations=violations, unchecked_constraints=unchecked)
