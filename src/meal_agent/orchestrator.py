"""Run orchestration: candidate recipes in, validated draft out.

The backend only proposes days. Resolution, aggregation and validation are
always re-run here, so a backend can never vouch for its own output.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field

from meal_agent.backends import GenerationBackend, GenerationContext, GenerationResult
from meal_agent.config import DEFAULTS
from meal_agent.errors import GenerationFailed
from meal_agent.models import (
    DateRange,
    NutritionTargets,
    OutputDraft,
    PlanPreferences,
    Profile,
    Recipe,
    Summary,
)
from meal_agent.planner import build_cooking_schedule
from meal_agent.resolution import (
    IssueKind,
    ResolutionIssue,
    populate_days,
    prepare_days,
    referenced_recipes,
)
from meal_agent.shopping import aggregate
from meal_agent.stores import AisleOverrideStore, RecipeStore
from meal_agent.validation import validate

logger = logging.getLogger(__name__)

ACTIVITY_MULTIPLIERS = {
    "sedentary": 1.2,
    "light": 1.375,
    "moderate": 1.55,
    "active": 1.725,
    "very_active": 1.9,
    "unspecified": 1.4,
}


@dataclass
class OrchestrationResult:
    output_draft: OutputDraft
    summary: Summary
    issues: list[ResolutionIssue] = field(default_factory=list)


def select_candidate_recipes(recipes: list[Recipe], preferences: PlanPreferences) -> list[Recipe]:
    """Apply the profile's inclusion flags and cook-time ceiling."""
    max_time = preferences.max_cook_time_minutes
    selected = []
    for recipe in recipes:
        if recipe.is_global and not preferences.include_global_recipes:
            continue
        if not recipe.is_global and not preferences.include_user_recipes:
            continue
        if max_time and max_time > 0 and recipe.prep_time_min is not None and recipe.prep_time_min > max_time:
            continue
        selected.append(recipe)
    return selected


def estimate_nutrition_targets(profile: Profile) -> NutritionTargets | None:
    """Daily targets from Mifflin-St Jeor BMR and an activity multiplier."""
    m = profile.metrics
    if not m.weight_kg or not m.height_cm or not m.age:
        return None

    sex_factor = -161 if m.sex == "female" else 5
    bmr = 10 * float(m.weight_kg) + 6.25 * float(m.height_cm) - 5 * float(m.age) + sex_factor
    maintenance = max(1200, round(bmr * ACTIVITY_MULTIPLIERS.get(m.activity_level, 1.4)))
    return NutritionTargets(
        source="estimated",
        calories=maintenance,
        protein=round(maintenance * 0.3 / 4),
        carbs=round(maintenance * 0.4 / 4),
        fat=round(maintenance * 0.3 / 9),
    )


def _plural(n: int, word: str, plural: str | None = None) -> str:
    return f"{n} {word if n == 1 else plural or word + 's'}"


class Orchestrator:
    def __init__(
        self,
        recipe_store: RecipeStore,
        backend: GenerationBackend,
        aisle_overrides: AisleOverrideStore | None = None,
        config: dict | None = None,
    ):
        self.recipe_store = recipe_store
        self.backend = backend
        self.aisle_overrides = aisle_overrides
        self.config = config if config is not None else copy.deepcopy(DEFAULTS)

    def run_dates(self, date_range: DateRange) -> list[str]:
        """The dates a run may plan, capped at ``planning.max_days``."""
        return date_range.dates(limit=int(self.config["planning"].get("max_days", 35)))

    def build_draft(
        self,
        user_id: str,
        profile: Profile,
        raw_days,
        catalog: list[Recipe],
        tool_trace: list[dict] | None = None,
        dates: list[str] | None = None,
    ) -> tuple[OutputDraft, list[ResolutionIssue]]:
        """Resolve raw days against the catalog, then aggregate and validate.

        Shared by generate, revise and manual edits. Days outside ``dates``
        are dropped when it is given.
        """
        trace = tool_trace if tool_trace is not None else []
        catalog_map = {r.id: r for r in catalog}

        days, issues = prepare_days(raw_days, catalog_map, dates)
        trace.append(
            {
                "tool": "resolve_days",
                "days": len(days),
                "dropped": len(issues),
            }
        )

        overrides = self.aisle_overrides.get_overrides(user_id) if self.aisle_overrides else {}
        shopping = aggregate(
            populate_days(days, catalog_map),
            aisle_overrides=overrides,
            extra_keywords=self.config.get("aisles", {}).get("keywords") or {},
        )
        trace.append(
            {
                "tool": "build_shopping_list",
                "item_count": len(shopping.totals),
                "needs_review": len(shopping.needs_review),
            }
        )

        validation = validate(profile, referenced_recipes(days, catalog_map), days)
        trace.append(
            {
                "tool": "validate_constraints",
                "pass": validation.passed,
                "violations": len(validation.hard_constraint_violations),
            }
        )

        schedule = build_cooking_schedule(
            [d.date for d in days], profile.preferences.batch_cooking_preference
        )

        draft = OutputDraft(
            recipe_catalog=list(catalog),
            meal_plan_days=days,
            shopping_list=shopping,
            validation=validation,
            cooking_schedule=schedule,
            tool_trace=trace,
        )
        return draft, issues

    async def orchestrate(
        self,
        *,
        user_id: str,
        run_id: str,
        profile: Profile,
        date_range: DateRange,
        revision_instruction: str | None = None,
        prior_draft: OutputDraft | None = None,
    ) -> OrchestrationResult:
        planning = self.config["planning"]
        trace: list[dict] = []

        dates = self.run_dates(date_range)

        all_recipes = self.recipe_store.list_eligible(user_id, profile.preferences)
        trace.append({"tool": "get_candidate_recipes", "total": len(all_recipes)})

        candidates = select_candidate_recipes(all_recipes, profile.preferences)
        trace.append({"tool": "filter_recipes", "total": len(candidates)})

        if not candidates:
            raise GenerationFailed("No candidate recipes available for this run.")

        context = GenerationContext(
            user_id=user_id,
            run_id=run_id,
            profile=profile,
            dates=dates,
            recipes=candidates,
            revision_instruction=revision_instruction,
            prior_days=list(prior_draft.meal_plan_days) if prior_draft else [],
            default_meal_types=list(planning.get("meal_types") or ["lunch", "dinner"]),
        )

        backend_name = getattr(self.backend, "name", type(self.backend).__name__)
        try:
            result = await self.backend.generate(context)
        except GenerationFailed:
            raise
        except Exception as e:
            logger.error("Generation backend %s failed: %s", backend_name, e)
            raise GenerationFailed(f"Generation backend {backend_name} failed: {e}") from e

        if not isinstance(result, GenerationResult) or not isinstance(result.meal_plan_days, list):
            raise GenerationFailed(f"Generation backend {backend_name} returned a malformed result")

        trace.append(
            {
                "tool": "generate_plan",
                "backend": backend_name,
                "revision": bool(revision_instruction),
                "days": len(result.meal_plan_days),
                **{k: v for k, v in result.meta.items() if k != "excluded_keywords"},
            }
        )

        draft, issues = self.build_draft(user_id, profile, result.meal_plan_days, candidates, trace, dates)
        if result.meal_plan_days and not draft.meal_plan_days:
            logger.error("Run %s: none of the %d returned day(s) were usable", run_id, len(result.meal_plan_days))
            raise GenerationFailed(
                f"Generation backend {backend_name} returned no usable days "
                f"({_plural(len(issues), 'entry', 'entries')} dropped)"
            )
        trace.append({"tool": "build_cooking_schedule", "day_count": len(draft.cooking_schedule)})

        summary = Summary(
            why_this_plan=result.rationale
            or f"Built a {len(dates)}-day plan from {len(candidates)} candidate recipes.",
            unmet_constraints=[v.message for v in draft.validation.hard_constraint_violations],
            notes=self._summary_notes(profile, result, draft, issues),
        )

        logger.info(
            "Run %s: %s, %d violation(s), %d dropped",
            run_id,
            _plural(len(draft.meal_plan_days), "day"),
            len(summary.unmet_constraints),
            len(issues),
        )
        return OrchestrationResult(output_draft=draft, summary=summary, issues=issues)

    def _summary_notes(
        self,
        profile: Profile,
        result: GenerationResult,
        draft: OutputDraft,
        issues: list[ResolutionIssue],
    ) -> list[str]:
        notes = list(result.notes)
        meta = result.meta

        if meta.get("repeat_pressure"):
            notes.append("Recipe pool is smaller than the number of meals, so some repeats were unavoidable.")
        if meta.get("batch_cooking"):
            notes.append(
                f"Batch cooking enabled: leftovers cover "
                f"{_plural(int(meta.get('intentional_repeat_slots', 0)), 'meal slot')}."
            )

        targets = profile.nutrition_targets
        if targets.source != "user":
            targets = estimate_nutrition_targets(profile)
        if targets and targets.calories:
            label = "your targets" if targets.source == "user" else "estimated targets"
            notes.append(
                f"Nutrition ({label}): ~{targets.calories:.0f} kcal, {targets.protein or 0:.0f}g protein, "
                f"{targets.carbs or 0:.0f}g carbs, {targets.fat or 0:.0f}g fat per day."
            )

        if profile.medical_disclaimer_accepted_at is None:
            notes.append("Medical disclaimer not accepted; hard constraints are checked by keyword only.")

        unchecked = draft.validation.unchecked_constraints if draft.validation else []
        if unchecked:
            notes.append(f"Could not check automatically: {'; '.join(unchecked)}.")

        unresolved = [i for i in issues if i.kind is IssueKind.UNRESOLVED_REFERENCE]
        malformed = [i for i in issues if i.kind is IssueKind.MALFORMED_DAY]
        if unresolved:
            notes.append(f"Dropped {_plural(len(unresolved), 'entry', 'entries')} referencing unknown recipes.")
        if malformed:
            notes.append(f"Dropped {_plural(len(malformed), 'malformed entry', 'malformed entries')}.")

        review_count = len(draft.shopping_list.needs_review) if draft.shopping_list else 0
        if review_count:
            verb = "needs" if review_count == 1 else "need"
            notes.append(f"{_plural(review_count, 'shopping item')} {verb} review.")
        return notes
