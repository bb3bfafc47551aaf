"""Pluggable plan generation backends: CP-SAT solver or the Claude CLI."""

from __future__ import annotations

import asyncio
import json
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Protocol

from meal_agent.errors import GenerationFailed
from meal_agent.models import MealPlanDay, Profile, Recipe
from meal_agent.planner import (
    apply_exclusions,
    build_plan_days,
    choose_meal_types,
    parse_exclusions,
)

logger = logging.getLogger(__name__)


@dataclass
class GenerationContext:
    user_id: str
    run_id: str
    profile: Profile
    dates: list[str]
    recipes: list[Recipe]
    revision_instruction: str | None = None
    prior_days: list[MealPlanDay] = field(default_factory=list)
    default_meal_types: list[str] = field(default_factory=lambda: ["lunch", "dinner"])


@dataclass
class GenerationResult:
    # Raw day dicts; the caller normalizes and resolves them
    meal_plan_days: list[dict]
    rationale: str = ""
    notes: list[str] = field(default_factory=list)
    meta: dict = field(default_factory=dict)


class GenerationBackend(Protocol):
    name: str

    async def generate(self, context: GenerationContext) -> GenerationResult: ...


class SolverBackend:
    """Deterministic plans: same context in, same days out."""

    name = "solver"

    def __init__(self, max_deterministic_time: float = 10.0, random_seed: int = 0, max_pool: int = 40):
        self.max_deterministic_time = max_deterministic_time
        self.random_seed = random_seed
        self.max_pool = max_pool

    async def generate(self, context: GenerationContext) -> GenerationResult:
        return await asyncio.to_thread(self._solve, context)

    def _solve(self, context: GenerationContext) -> GenerationResult:
        prefs = context.profile.preferences
        meal_types = choose_meal_types(
            context.revision_instruction, context.prior_days, prefs, context.default_meal_types
        )
        excluded = parse_exclusions(context.revision_instruction)
        pool = apply_exclusions(list(context.recipes), excluded)

        result = build_plan_days(
            context.dates,
            meal_types,
            pool,
            prefs,
            max_deterministic_time=self.max_deterministic_time,
            random_seed=self.random_seed,
            max_pool=self.max_pool,
        )
        if result is None:
            raise GenerationFailed("Solver could not find a feasible plan")

        notes = []
        if excluded:
            notes.append(f"Left out recipes mentioning: {', '.join(excluded)}.")

        strictness = context.profile.strictness or "balanced"
        rationale = (
            f"Built a {len(context.dates)}-day plan with {', '.join(meal_types)} meals "
            f"from {result.recipe_pool} candidate recipes using {strictness} strictness."
        )
        return GenerationResult(
            meal_plan_days=[d.to_dict() for d in result.days],
            rationale=rationale,
            notes=notes,
            meta={
                "meal_types": meal_types,
                "recipe_pool": result.recipe_pool,
                "batch_cooking": result.batch_cooking,
                "intentional_repeat_slots": result.intentional_repeat_slots,
                "repeat_pressure": result.repeat_pressure,
                "excluded_keywords": excluded,
            },
        )


PLAN_PROMPT = """\
You are a meal planning assistant. Build a meal plan for the dates below using ONLY recipes from the
candidate list (refer to them by "id").

Return a single JSON object with keys:
- "meal_plan_days": array of {"date": "YYYY-MM-DD", "meals": [...], "cooking_sessions": [...]}
  - each meal: {"type": "breakfast"|"lunch"|"dinner"|"snack", "recipe": <id>, "notes": str,
    "source": "fresh"|"leftovers"|"meal_prep"|"frozen", "planned_servings": 1-4,
    "exclude_from_shopping": bool}
  - each cooking session: {"recipe": <id>, "notes": str, "time_slot": "morning"|"afternoon"|"evening",
    "servings": 1-20, "planned_servings": 1-20, "purpose": "meal_prep"|"batch_cooking"|"weekly_prep"|"daily_cooking"}
- "why_this_plan": short explanation string
- "notes": array of short strings

Rules:
- Never use a recipe that conflicts with a hard constraint.
- When a batch cooking session covers later meals, mark those meals "leftovers" with exclude_from_shopping true.
- Prefer variety when avoid_repeat_meals is true.

Return ONLY valid JSON, no markdown fences, no explanation.

"""


def _call_claude_raw(prompt: str, model: str = "haiku", timeout: int = 120) -> str:
    """Call Claude via CLI and return raw text output, raising GenerationFailed on failure."""
    try:
        result = subprocess.run(
            ["claude", "--model", model, "-p"],
            input=prompt,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        logger.error("claude CLI timed out after %ds", timeout)
        raise GenerationFailed(f"claude CLI timed out after {timeout}s") from e
    except FileNotFoundError as e:
        logger.error("'claude' CLI not found. Install it first.")
        raise GenerationFailed("'claude' CLI not found") from e

    if result.returncode != 0:
        logger.error("claude CLI error: %s", result.stderr.strip())
        raise GenerationFailed(f"claude CLI exited with status {result.returncode}")

    text = result.stdout.strip()

    # Strip markdown fences if present
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.endswith("```"):
            text = text[: text.rfind("```")]
        text = text.strip()

    return text


def parse_plan_json(text: str) -> dict:
    """Pull the outermost JSON object out of model output."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise GenerationFailed("Backend returned no JSON object")
    try:
        data = json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        logger.error("JSON parse error: %s", e)
        raise GenerationFailed(f"Backend returned malformed JSON: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("meal_plan_days"), list):
        raise GenerationFailed("Backend response has no meal_plan_days list")
    return data


class ClaudeBackend:
    name = "claude"

    def __init__(self, model: str = "haiku", timeout_seconds: int = 120, max_prompt_recipes: int = 120):
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_prompt_recipes = max_prompt_recipes

    def build_prompt(self, context: GenerationContext) -> str:
        profile = context.profile
        prefs = profile.preferences
        payload = {
            "dates": context.dates,
            "meal_types": choose_meal_types(
                context.revision_instruction, context.prior_days, prefs, context.default_meal_types
            ),
            "hard_constraints": profile.hard_constraints,
            "soft_preferences": profile.soft_preferences,
            "optimization_goal": profile.optimization_goal,
            "strictness": profile.strictness,
            "avoid_repeat_meals": prefs.avoid_repeat_meals,
            "leftovers_preference": prefs.leftovers_preference,
            "batch_cooking_preference": prefs.batch_cooking_preference,
            "candidate_recipes": [
                {
                    "id": r.id,
                    "title": r.title,
                    "category": r.category,
                    "prep_time_min": r.prep_time_min,
                    "servings": r.base_servings,
                }
                for r in context.recipes[: self.max_prompt_recipes]
            ],
        }
        if context.prior_days:
            payload["prior_draft"] = [d.to_dict() for d in context.prior_days]
        if context.revision_instruction:
            payload["revision_instruction"] = context.revision_instruction
        return PLAN_PROMPT + json.dumps(payload, indent=2)

    async def generate(self, context: GenerationContext) -> GenerationResult:
        return await asyncio.to_thread(self._generate_sync, context)

    def _generate_sync(self, context: GenerationContext) -> GenerationResult:
        logger.info("Requesting plan from claude (%s) for %d days", self.model, len(context.dates))
        text = _call_claude_raw(self.build_prompt(context), model=self.model, timeout=self.timeout_seconds)
        data = parse_plan_json(text)
        notes = data.get("notes")
        return GenerationResult(
            meal_plan_days=data["meal_plan_days"],
            rationale=str(data.get("why_this_plan") or ""),
            notes=[str(n) for n in notes[:5]] if isinstance(notes, list) else [],
            meta={"model": self.model},
        )


def build_backend(config: dict) -> GenerationBackend:
    """Instantiate the configured backend."""
    gen = config["generation"]
    name = str(gen.get("backend", "solver")).lower()
    if name == "solver":
        solver = config.get("solver", {})
        return SolverBackend(
            max_deterministic_time=float(solver.get("max_deterministic_time", 10.0)),
            random_seed=int(solver.get("random_seed", 0)),
        )
    if name == "claude":
        return ClaudeBackend(
            model=str(gen.get("model", "haiku")),
            timeout_seconds=int(gen.get("timeout_seconds", 120)),
            max_prompt_recipes=int(config.get("planning", {}).get("max_prompt_recipes", 120)),
        )
    raise ValueError(f"Unknown generation backend: {name}")
