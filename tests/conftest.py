import copy
from dataclasses import dataclass
from datetime import datetime, timezone

import pytest
from meal_agent.backends import GenerationResult
from meal_agent.config import DEFAULTS
from meal_agent.models import Profile, Recipe
from meal_agent.orchestrator import Orchestrator
from meal_agent.runs import RunService
from meal_agent.stores import (
    InMemoryAisleOverrideStore,
    InMemoryMealPlanStore,
    InMemoryProfileStore,
    InMemoryRecipeStore,
    InMemoryRunStore,
)

USER = "u1"


@pytest.fixture
def sample_recipes() -> list[Recipe]:
    """Small catalog of global recipes for unit tests."""
    return [
        Recipe(id="R1", title="Rice Bowl", ingredients=("1 cup rice", "2 tbsp soy sauce"),
               servings=1, category="lunch", prep_time_min=15, is_global=True),
        Recipe(id="R2", title="Seafood Paella",
               ingredients=("1 lb shellfish mix", "2 cups rice", "pinch of saffron"),
               servings=4, category="dinner", prep_time_min=50, is_global=True),
        Recipe(id="R3", title="Chicken Stir Fry",
               ingredients=("1 lb chicken breast", "2 cups broccoli", "1 tbsp olive oil"),
               servings=2, category="dinner", prep_time_min=25, is_global=True),
        Recipe(id="R4", title="Veggie Omelette",
               ingredients=("3 eggs", "1/2 cup spinach", "salt to taste"),
               servings=1, category="breakfast", prep_time_min=10, is_global=True),
        Recipe(id="R5", title="Lentil Soup",
               ingredients=("1 cup lentils", "2 carrots, diced", "4 cups vegetable broth"),
               servings=4, category="lunch", prep_time_min=40, is_global=True),
        Recipe(id="R6", title="Pasta Primavera",
               ingredients=("8 oz pasta", "1 cup cherry tomatoes", "2 cloves garlic, minced"),
               servings=2, category="dinner", prep_time_min=30, is_global=True),
    ]


@pytest.fixture
def profile() -> Profile:
    return Profile(
        user_id=USER,
        hard_constraints=["no shellfish"],
        medical_disclaimer_accepted_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class ScriptedBackend:
    """Returns preset days; records every context it is called with."""

    name = "scripted"

    def __init__(self, days: list[dict], rationale: str = "Scripted plan", error: Exception | None = None):
        self.days = days
        self.rationale = rationale
        self.error = error
        self.calls = []

    async def generate(self, context):
        self.calls.append(context)
        if self.error is not None:
            raise self.error
        return GenerationResult(meal_plan_days=copy.deepcopy(self.days), rationale=self.rationale)


@pytest.fixture
def scripted_backend():
    return ScriptedBackend


@dataclass
class Harness:
    service: RunService
    runs: InMemoryRunStore
    profiles: InMemoryProfileStore
    meal_plans: InMemoryMealPlanStore
    aisles: InMemoryAisleOverrideStore
    backend: object


@pytest.fixture
def make_harness(sample_recipes, profile):
    """Build a RunService over in-memory stores with the given backend."""

    def _make(backend, recipes=None, meal_plans=None) -> Harness:
        runs = InMemoryRunStore()
        profiles = InMemoryProfileStore([profile])
        plans = meal_plans if meal_plans is not None else InMemoryMealPlanStore()
        aisles = InMemoryAisleOverrideStore()
        orchestrator = Orchestrator(
            recipe_store=InMemoryRecipeStore(sample_recipes if recipes is None else recipes),
            backend=backend,
            aisle_overrides=aisles,
            config=copy.deepcopy(DEFAULTS),
        )
        service = RunService(runs, profiles, plans, orchestrator)
        return Harness(service, runs, profiles, plans, aisles, backend)

    return _make
