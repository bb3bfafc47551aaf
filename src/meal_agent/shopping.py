"""Shopping list aggregation across planned meals and cooking sessions."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from fractions import Fraction

from meal_agent.models import PopulatedDay, Recipe, ShoppingItem, ShoppingList, ShoppingStats
from meal_agent.normalizer import AISLE_ORDER, NormalizedIngredient, normalize_ingredient

logger = logging.getLogger(__name__)

KITCHEN_DENOMINATORS = (2, 3, 4)

# (parsed line, scale factor, source label)
_Entry = tuple[NormalizedIngredient, Fraction, str]


def _to_fraction(value: object) -> Fraction | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, Fraction)):
        return Fraction(value)
    try:
        return Fraction(str(value))
    except (ValueError, ZeroDivisionError):
        return None


def scale_factor(planned_servings: object, recipe: Recipe) -> Fraction:
    """Exact multiplier planned / base servings; base servings default to 1."""
    planned = _to_fraction(planned_servings)
    if planned is None or planned <= 0:
        planned = Fraction(recipe.base_servings)
    return planned / recipe.base_servings


def _dedupe(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for v in values:
        if v not in seen:
            seen.add(v)
            result.append(v)
    return result


def aggregate(
    days: Iterable[PopulatedDay],
    include_meals: bool = True,
    include_cooking_sessions: bool = True,
    aisle_overrides: Mapping[str, str] | None = None,
    extra_keywords: Mapping[str, str] | None = None,
) -> ShoppingList:
    """Build a shopping list from days whose entries carry resolved recipes.

    Lines merge on (normalized_name, unit). A name with any unquantified line
    is routed whole to needs_review with its per-source text; it is never
    summed with the quantified lines.
    """
    stats = ShoppingStats()
    entries_by_name: dict[str, list[_Entry]] = {}
    total_servings = Fraction(0)

    def collect(recipe: Recipe, scale: Fraction, label: str) -> None:
        if scale <= 0:
            return
        for raw in recipe.ingredients:
            parsed = normalize_ingredient(raw, aisle_overrides, extra_keywords)
            if parsed is None:
                continue
            stats.ingredient_lines += 1
            entries_by_name.setdefault(parsed.normalized_name, []).append(
                (parsed, scale, label)
            )

    for day in days:
        if include_meals:
            for meal, recipe in day.meals:
                if meal.exclude_from_shopping:
                    continue
                stats.planned_meals += 1
                scale = scale_factor(meal.planned_servings, recipe)
                total_servings += scale * recipe.base_servings
                collect(recipe, scale, f"{day.date} • {recipe.title or 'Meal'} ({float(scale):.2f}x)")

        if include_cooking_sessions:
            for session, recipe in day.cooking_sessions:
                if session.exclude_from_shopping:
                    continue
                stats.cooking_sessions += 1
                planned = session.planned_servings
                if planned is None:
                    planned = session.servings
                scale = scale_factor(planned, recipe)
                total_servings += scale * recipe.base_servings
                collect(
                    recipe,
                    scale,
                    f"{day.date} • {recipe.title or 'Cooking Session'} ({float(scale):.2f}x)",
                )

    totals: list[ShoppingItem] = []
    needs_review: list[ShoppingItem] = []

    for name, entries in entries_by_name.items():
        aisle = entries[0][0].aisle

        if any(parsed.quantity is None for parsed, _, _ in entries):
            needs_review.append(
                ShoppingItem(
                    normalized_name=name,
                    quantity=None,
                    unit=None,
                    aisle=aisle,
                    source_count=len(entries),
                    sources=_dedupe(f"{label}: {parsed.original}" for parsed, _, label in entries),
                )
            )
            continue

        by_unit: dict[str, list[_Entry]] = defaultdict(list)
        for entry in entries:
            by_unit[entry[0].unit].append(entry)

        for unit, group in by_unit.items():
            quantity = sum((parsed.quantity * scale for parsed, scale, _ in group), Fraction(0))
            totals.append(
                ShoppingItem(
                    normalized_name=name,
                    quantity=float(quantity),
                    unit=unit,
                    aisle=aisle,
                    source_count=len(group),
                    sources=_dedupe(label for _, _, label in group),
                )
            )

    def sort_key(item: ShoppingItem) -> tuple[str, str]:
        return (item.normalized_name, item.unit or "")

    totals.sort(key=sort_key)
    needs_review.sort(key=sort_key)

    stats.recipes_considered = stats.planned_meals + stats.cooking_sessions
    stats.total_planned_servings = float(total_servings)
    stats.resolved_items = len(totals)
    stats.needs_review_items = len(needs_review)
    stats.total_items = len(totals) + len(needs_review)

    if needs_review:
        logger.debug(
            "%d shopping item(s) need review: %s",
            len(needs_review),
            ", ".join(i.normalized_name for i in needs_review),
        )

    return ShoppingList(totals=totals, needs_review=needs_review, stats=stats)


def group_by_aisle(items: Iterable[ShoppingItem]) -> dict[str, list[ShoppingItem]]:
    """Group items by aisle in store order; custom aisles follow, alphabetically."""
    sections: dict[str, list[ShoppingItem]] = defaultdict(list)
    for item in items:
        sections[item.aisle].append(item)

    ordered = {}
    for s in AISLE_ORDER:
        if s in sections:
            ordered[s] = sections[s]
    for s in sorted(set(sections) - set(AISLE_ORDER)):
        ordered[s] = sections[s]
    return ordered


def format_qty(qty: float) -> str:
    """Whole part plus a half, third or quarter when close enough, else a short decimal."""
    if qty == 0:
        return ""

    whole = int(qty)
    rest = qty - whole
    if rest == 0:
        return str(whole)

    for den in KITCHEN_DENOMINATORS:
        num = round(rest * den)
        if 0 < num < den and abs(rest - num / den) < 0.05:
            part = f"{num}/{den}"
            return f"{whole} {part}" if whole else part

    return f"{qty:.2f}".rstrip("0").rstrip(".")


def format_item_line(item: ShoppingItem) -> str:
    qty_str = format_qty(item.quantity) if item.quantity else ""
    unit_str = f" {item.unit}" if item.unit and item.unit != "whole" else ""
    if qty_str:
        return f"{qty_str}{unit_str} {item.normalized_name}"
    return item.normalized_name


def format_shopping_markdown(shopping_list: ShoppingList) -> str:
    """Format a shopping list as markdown checkboxes grouped by aisle."""
    lines = ["# Shopping List", ""]

    for aisle, items in group_by_aisle(shopping_list.totals).items():
        lines.append(f"## {aisle}")
        lines.append("")
        for item in items:
            lines.append(f"- [ ] {format_item_line(item)}")
        lines.append("")

    if shopping_list.needs_review:
        lines.append("## Needs review")
        lines.append("")
        for item in shopping_list.needs_review:
            lines.append(f"- [ ] {item.normalized_name} ({item.aisle})")
            for source in item.sources:
                lines.append(f"  - {source}")
        lines.append("")

    stats = shopping_list.stats
    lines.append(
        f"*{stats.resolved_items} resolved, {stats.needs_review_items} to review "
        f"from {stats.planned_meals} meals and {stats.cooking_sessions} cooking sessions*"
    )
    return "\n".join(lines)


def format_shopping_json(shopping_list: ShoppingList) -> str:
    """Format a shopping list as JSON."""
    return json.dumps(shopping_list.to_dict(), indent=2)


def build_shopping_table(shopping_list: ShoppingList):
    """Rich table of resolved totals, one row per item, in aisle order."""
    from rich.table import Table

    table = Table(title="Shopping List")
    table.add_column("Aisle", style="cyan")
    table.add_column("Item")
    table.add_column("Qty", justify="right")
    table.add_column("Unit")
    table.add_column("Sources", justify="right")

    for aisle, items in group_by_aisle(shopping_list.totals).items():
        for item in items:
            table.add_row(
                aisle,
                item.normalized_name,
                format_qty(item.quantity or 0),
                item.unit or "",
                str(item.source_count),
            )
    for item in shopping_list.needs_review:
        table.add_row(item.aisle, item.normalized_name, "?", "", str(item.source_count), style="yellow")
    return table
