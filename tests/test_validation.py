"""Tests for hard-constraint validation."""

from meal_agent.models import Meal, MealPlanDay, MealType, Profile, Recipe
from meal_agent.validation import parse_forbidden_keyword, parse_max_cook_time, validate


def constraints(*rules, disclaimer=True):
    from datetime import datetime, timezone

    return Profile(
        user_id="u1",
        hard_constraints=list(rules),
        medical_disclaimer_accepted_at=datetime(2024, 1, 1, tzinfo=timezone.utc) if disclaimer else None,
    )


class TestParsing:
    def test_forbidden_keyword_forms(self):
        assert parse_forbidden_keyword("no shellfish") == "shellfish"
        assert parse_forbidden_keyword("Avoid Pork.") == "pork"
        assert parse_forbidden_keyword("exclude peanuts") == "peanuts"
        assert parse_forbidden_keyword("without  dairy") == "dairy"
        assert parse_forbidden_keyword("gluten-free") == "gluten"
        assert parse_forbidden_keyword("Nut free") == "nut"

    def test_unparseable(self):
        assert parse_forbidden_keyword("low sodium please") is None

    def test_max_cook_time(self):
        assert parse_max_cook_time("max 30 min") == 30
        assert parse_max_cook_time("Maximum 45 minutes") == 45
        assert parse_max_cook_time("no pork") is None


class TestValidate:
    def test_no_constraints_no_violations(self, sample_recipes):
        result = validate(constraints(), sample_recipes)
        assert result.hard_constraint_violations == []
        assert result.passed

    def test_keyword_in_ingredients(self, sample_recipes):
        result = validate(constraints("no shellfish"), sample_recipes)
        [violation] = result.hard_constraint_violations
        assert violation.recipe_id == "R2"
        assert violation.constraint == "no shellfish"
        assert violation.keyword == "shellfish"
        assert "Seafood Paella" in violation.message

    def test_keyword_in_title(self, sample_recipes):
        result = validate(constraints("avoid paella"), sample_recipes)
        assert [v.recipe_id for v in result.hard_constraint_violations] == ["R2"]

    def test_matching_is_textual_not_semantic(self):
        shrimp = Recipe(id="S", title="Garlic Shrimp", ingredients=("1 lb shrimp",))
        assert validate(constraints("no shellfish"), [shrimp]).passed

    def test_plural_keyword_matches_singular_text(self):
        salad = Recipe(id="T", title="Salad", ingredients=("1 tomato", "1 cucumber"))
        result = validate(constraints("without tomatoes"), [salad])
        assert len(result.hard_constraint_violations) == 1

    def test_one_violation_per_constraint_and_recipe(self, sample_recipes):
        result = validate(constraints("no shellfish", "no rice"), sample_recipes)
        pairs = [(v.constraint, v.recipe_id) for v in result.hard_constraint_violations]
        assert pairs == [("no shellfish", "R2"), ("no rice", "R1"), ("no rice", "R2")]

    def test_dates_from_days(self, sample_recipes):
        days = [
            MealPlanDay(date="2024-06-10", meals=[Meal(type=MealType.DINNER, recipe_id="R2")]),
            MealPlanDay(date="2024-06-11", meals=[Meal(type=MealType.LUNCH, recipe_id="R1")]),
            MealPlanDay(date="2024-06-12", meals=[Meal(type=MealType.DINNER, recipe_id="R2")]),
        ]
        [violation] = validate(constraints("no shellfish"), sample_recipes, days).hard_constraint_violations
        assert violation.dates == ("2024-06-10", "2024-06-12")

    def test_max_cook_time_rule(self, sample_recipes):
        result = validate(constraints("max 30 min"), sample_recipes)
        assert sorted(v.recipe_id for v in result.hard_constraint_violations) == ["R2", "R5"]

    def test_unchecked_constraints_do_not_block(self, sample_recipes):
        result = validate(constraints("low sodium please"), sample_recipes)
        assert result.passed
        assert result.unchecked_constraints == ["low sodium please"]

    def test_missing_disclaimer_does_not_change_result(self, sample_recipes):
        with_disclaimer = validate(constraints("no shellfish"), sample_recipes)
        without = validate(constraints("no shellfish", disclaimer=False), sample_recipes)
        assert without.to_dict() == with_disclaimer.to_dict()

    def test_removing_recipe_clears_violation(self, sample_recipes):
        remaining = [r for r in sample_recipes if r.id != "R2"]
        assert validate(constraints("no shellfish"), remaining).passed
