"""Tests for the CP-SAT plan builder and its text helpers."""

from meal_agent.models import Meal, MealPlanDay, MealSource, MealType, PlanPreferences, SessionPurpose
from meal_agent.planner import (
    apply_exclusions,
    build_cooking_schedule,
    build_plan_days,
    choose_meal_types,
    get_batch_days_per_cook,
    get_primary_batch_meal_type,
    parse_exclusions,
    parse_meal_types,
)

DATES_3 = ["2024-06-10", "2024-06-11", "2024-06-12"]
DATES_5 = DATES_3 + ["2024-06-13", "2024-06-14"]


class TestMealTypes:
    def test_parse_from_text(self):
        assert parse_meal_types("Add breakfasts and dinner please") == ["breakfast", "dinner"]
        assert parse_meal_types("make it cheaper") == []
        assert parse_meal_types(None) == []

    def test_instruction_wins(self):
        prefs = PlanPreferences(meal_types=["breakfast"])
        assert choose_meal_types("just dinner", None, prefs, ["lunch"]) == ["dinner"]

    def test_prior_draft_next(self):
        prior = [MealPlanDay(date="2024-06-10", meals=[Meal(type=MealType.SNACK, recipe_id="R1")])]
        prefs = PlanPreferences(meal_types=["breakfast"])
        assert choose_meal_types("cheaper", prior, prefs, ["lunch"]) == ["snack"]

    def test_preferences_then_default(self):
        assert choose_meal_types(None, [], PlanPreferences(meal_types=["Dinner", "breakfast"]), ["lunch"]) == [
            "breakfast",
            "dinner",
        ]
        assert choose_meal_types(None, [], PlanPreferences(), ["dinner"]) == ["dinner"]
        assert choose_meal_types(None, [], PlanPreferences(), []) == ["lunch", "dinner"]


class TestExclusions:
    def test_parse(self):
        assert parse_exclusions("No pork and avoid beans, please") == ["pork", "beans"]
        assert parse_exclusions("without red onion.") == ["red onion"]
        assert parse_exclusions("skip rice please") == ["rice"]
        assert parse_exclusions("more variety") == []

    def test_apply(self, sample_recipes):
        kept = apply_exclusions(sample_recipes, ["rice"])
        assert [r.id for r in kept] == ["R3", "R4", "R5", "R6"]

    def test_plural_keyword(self, sample_recipes):
        kept = apply_exclusions(sample_recipes, ["carrots"])
        assert "R5" not in [r.id for r in kept]

    def test_ignored_when_pool_would_be_empty(self, sample_recipes):
        only_rice = [r for r in sample_recipes if r.id in ("R1", "R2")]
        assert apply_exclusions(only_rice, ["rice"]) == only_rice


class TestBatchHelpers:
    def test_batch_days(self):
        assert get_batch_days_per_cook("heavy") == 5
        assert get_batch_days_per_cook("moderate") == 3
        assert get_batch_days_per_cook("light") == 2
        assert get_batch_days_per_cook("none") == 1

    def test_primary_meal_type(self):
        assert get_primary_batch_meal_type(["lunch", "dinner"]) == "dinner"
        assert get_primary_batch_meal_type(["breakfast", "lunch"]) == "lunch"
        assert get_primary_batch_meal_type(["snack"]) == "snack"


class TestBuildPlanDays:
    def test_fresh_plan_avoids_repeats(self, sample_recipes):
        prefs = PlanPreferences(leftovers_preference="none")
        result = build_plan_days(DATES_3, ["lunch", "dinner"], sample_recipes, prefs)

        assert [d.date for d in result.days] == DATES_3
        assert all([m.type.value for m in d.meals] == ["lunch", "dinner"] for d in result.days)
        used = [m.recipe_id for d in result.days for m in d.meals]
        assert len(set(used)) == 6
        assert all(d.cooking_sessions == [] for d in result.days)
        assert result.batch_cooking is False
        assert result.repeat_pressure is False

    def test_category_fit_preferred(self, sample_recipes):
        prefs = PlanPreferences(leftovers_preference="none")
        result = build_plan_days(DATES_3, ["lunch", "dinner"], sample_recipes, prefs)
        dinners = {m.recipe_id for d in result.days for m in d.meals if m.type is MealType.DINNER}
        assert dinners == {"R2", "R3", "R6"}

    def test_batch_cooking_anchors_sessions(self, sample_recipes):
        prefs = PlanPreferences(leftovers_preference="moderate")
        result = build_plan_days(DATES_5, ["lunch", "dinner"], sample_recipes, prefs)

        sessions = [(i, s) for i, d in enumerate(result.days) for s in d.cooking_sessions]
        assert [(i, s.servings) for i, s in sessions] == [(0, 6), (3, 4)]
        assert all(s.purpose is SessionPurpose.MEAL_PREP for _, s in sessions)

        dinners = [next(m for m in d.meals if m.type is MealType.DINNER) for d in result.days]
        assert [m.source for m in dinners] == [
            MealSource.FRESH,
            MealSource.LEFTOVERS,
            MealSource.LEFTOVERS,
            MealSource.FRESH,
            MealSource.LEFTOVERS,
        ]
        assert all(m.exclude_from_shopping for m in dinners)
        assert dinners[0].recipe_id == dinners[1].recipe_id == dinners[2].recipe_id
        assert dinners[0].recipe_id == sessions[0][1].recipe_id
        assert all(m.planned_servings == 2 for d in result.days for m in d.meals)

        assert result.batch_cooking is True
        assert result.intentional_repeat_slots == 3

    def test_deterministic(self, sample_recipes):
        prefs = PlanPreferences(leftovers_preference="light")
        first = build_plan_days(DATES_5, ["breakfast", "lunch", "dinner"], sample_recipes, prefs, random_seed=7)
        second = build_plan_days(DATES_5, ["breakfast", "lunch", "dinner"], sample_recipes, prefs, random_seed=7)
        assert [d.to_dict() for d in first.days] == [d.to_dict() for d in second.days]

    def test_small_pool_flags_repeat_pressure(self, sample_recipes):
        prefs = PlanPreferences(leftovers_preference="none")
        result = build_plan_days(DATES_3, ["lunch", "dinner"], sample_recipes[:2], prefs)
        assert result.repeat_pressure is True
        assert all(len(d.meals) == 2 for d in result.days)

    def test_empty_pool(self):
        result = build_plan_days(DATES_3, ["lunch"], [], PlanPreferences())
        assert [d.date for d in result.days] == DATES_3
        assert all(d.meals == [] for d in result.days)
        assert result.recipe_pool == 0

    def test_pool_capped(self, sample_recipes):
        prefs = PlanPreferences(leftovers_preference="none")
        result = build_plan_days(DATES_3, ["dinner"], sample_recipes, prefs, max_pool=2)
        assert result.recipe_pool == 2
        assert {m.recipe_id for d in result.days for m in d.meals} <= {"R1", "R2"}


class TestCookingSchedule:
    def test_moderate_every_third_day(self):
        schedule = build_cooking_schedule(DATES_5, "moderate")
        assert [e["time_slot"] for e in schedule] == ["afternoon", "evening", "evening", "afternoon", "evening"]
        assert schedule[0]["tasks"][0] == "Batch cook proteins"
        assert schedule[1]["tasks"] == ["Cook planned meals", "Prep next-day ingredients"]

    def test_unknown_preference_every_fifth_day(self):
        schedule = build_cooking_schedule(DATES_5, "none")
        assert [e["date"] for e in schedule if e["time_slot"] == "afternoon"] == ["2024-06-10"]
