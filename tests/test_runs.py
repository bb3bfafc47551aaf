"""Tests for the run lifecycle: create, generate, revise, approve, apply, edit."""

import asyncio
import itertools
from datetime import datetime, timedelta, timezone

import pytest
from meal_agent.errors import (
    CommitFailed,
    GenerationFailed,
    InvalidTransition,
    NoPlanDays,
    NotApproved,
    RunNotFound,
    ValidationBlocked,
)
from meal_agent.models import CookingSession, Meal, MealType, RunStatus
from meal_agent.resolution import IssueKind
from meal_agent.stores import InMemoryMealPlanStore

USER = "u1"

CLEAN_DAYS = [
    {"date": "2024-06-10", "meals": [{"type": "lunch", "recipe": "R1"}, {"type": "dinner", "recipe": "R3"}]},
    {"date": "2024-06-11", "meals": [{"type": "lunch", "recipe": "R5"}, {"type": "dinner", "recipe": "R6"}]},
]

SHELLFISH_DAYS = [
    {"date": "2024-06-10", "meals": [{"type": "lunch", "recipe": "R1"}, {"type": "dinner", "recipe": "R2"}]},
    {"date": "2024-06-11", "meals": [{"type": "lunch", "recipe": "R5"}, {"type": "dinner", "recipe": "R3"}]},
]


def generated(h, days=None):
    run = h.service.create_run(USER, "2024-06-10", "2024-06-11")
    if days is not None:
        h.backend.days = days
    return asyncio.run(h.service.generate(run.id, USER)).run


class FlakyMealPlanStore(InMemoryMealPlanStore):
    """Fails when committing a given date."""

    def __init__(self, fail_on: str):
        super().__init__()
        self.fail_on = fail_on
        self.armed = True

    def commit_day(self, date, user_id, meals, cooking_sessions):
        if self.armed and date == self.fail_on:
            raise OSError("disk full")
        return super().commit_day(date, user_id, meals, cooking_sessions)


class TestCreateRun:
    def test_defaults_to_seven_days_from_today(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        h.service.clock = lambda: datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc)
        run = h.service.create_run(USER)
        assert run.status is RunStatus.DRAFT
        assert (run.date_range.start, run.date_range.end) == ("2024-06-10", "2024-06-16")

    def test_malformed_end_uses_span(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = h.service.create_run(USER, "2024-06-10", "next week")
        assert run.date_range.end == "2024-06-16"

    def test_end_before_start(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        with pytest.raises(ValueError):
            h.service.create_run(USER, "2024-06-10", "2024-06-01")

    def test_snapshot_is_independent_of_profile(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = h.service.create_run(USER, "2024-06-10", "2024-06-11")

        profile = h.profiles.find_by_user(USER)
        profile.hard_constraints.append("no rice")
        h.profiles.save(profile)

        stored = h.service.get_run(run.id, USER)
        assert stored.input_snapshot.hard_constraints == ["no shellfish"]

    def test_unknown_user_gets_empty_profile(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = h.service.create_run("someone-else", "2024-06-10", "2024-06-11")
        assert run.input_snapshot.hard_constraints == []

    def test_runs_are_scoped_to_user(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = h.service.create_run(USER, "2024-06-10", "2024-06-11")
        with pytest.raises(RunNotFound):
            h.service.get_run(run.id, "intruder")


class TestGenerate:
    def test_shellfish_scenario(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(SHELLFISH_DAYS))
        run = generated(h)

        assert run.status is RunStatus.DRAFT
        [violation] = run.violations
        assert violation.recipe_id == "R2"
        assert run.summary.unmet_constraints == [violation.message]

        with pytest.raises(ValidationBlocked) as excinfo:
            h.service.approve(run.id, USER)
        assert excinfo.value.violations == run.violations
        assert h.service.get_run(run.id, USER).status is RunStatus.DRAFT

        with pytest.raises(ValidationBlocked):
            h.service.apply(run.id, USER)
        assert h.meal_plans.find_day("2024-06-10", USER) is None

    def test_revise_clears_violation(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(SHELLFISH_DAYS))
        run = generated(h)

        h.backend.days = CLEAN_DAYS
        revised = asyncio.run(h.service.revise(run.id, USER, "swap the paella")).run
        assert revised.violations == []
        assert h.backend.calls[-1].revision_instruction == "swap the paella"
        assert [d.date for d in h.backend.calls[-1].prior_days] == ["2024-06-10", "2024-06-11"]

        approved = h.service.approve(run.id, USER)
        assert approved.status is RunStatus.APPROVED
        assert approved.approved_at is not None

    def test_empty_revision_instruction(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)
        with pytest.raises(ValueError):
            asyncio.run(h.service.revise(run.id, USER, "   "))

    def test_regenerate_resets_approval(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)
        h.service.approve(run.id, USER)

        regenerated = asyncio.run(h.service.generate(run.id, USER)).run
        assert regenerated.status is RunStatus.DRAFT
        assert regenerated.approved_at is None

    def test_failure_records_error_message(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)

        h.backend.error = GenerationFailed("backend down")
        with pytest.raises(GenerationFailed):
            asyncio.run(h.service.generate(run.id, USER))

        stored = h.service.get_run(run.id, USER)
        assert stored.error_message == "backend down"
        assert len(stored.output_draft.meal_plan_days) == 2

        h.backend.error = None
        assert asyncio.run(h.service.generate(run.id, USER)).run.error_message == ""

    def test_unknown_run(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        with pytest.raises(RunNotFound):
            asyncio.run(h.service.generate("missing", USER))

    def test_only_malformed_days_keeps_prior_draft(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)
        before = h.service.get_run(run.id, USER).output_draft.to_dict()

        h.backend.days = [{"date": "Monday", "meals": [{"type": "lunch", "recipe": "R1"}]}, "not a day"]
        with pytest.raises(GenerationFailed, match="no usable days"):
            asyncio.run(h.service.generate(run.id, USER))

        stored = h.service.get_run(run.id, USER)
        assert stored.output_draft.to_dict() == before
        assert "no usable days" in stored.error_message

    def test_days_outside_range_never_committed(self, make_harness, scripted_backend):
        stray = {"date": "2031-01-01", "meals": [{"type": "lunch", "recipe": "R1"}]}
        h = make_harness(scripted_backend([*CLEAN_DAYS, stray]))
        run = h.service.create_run(USER, "2024-06-10", "2024-06-11")

        result = asyncio.run(h.service.generate(run.id, USER))
        assert [d.date for d in result.run.output_draft.meal_plan_days] == ["2024-06-10", "2024-06-11"]
        assert [(i.kind, i.date) for i in result.issues] == [(IssueKind.MALFORMED_DAY, "2031-01-01")]

        h.service.approve(run.id, USER)
        h.service.apply(run.id, USER)
        assert h.meal_plans.find_day("2031-01-01", USER) is None

    def test_revise_reports_dropped_entries(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)

        h.backend.days = [
            {"date": "2024-06-10", "meals": [{"type": "lunch", "recipe": "R1"}, {"type": "dinner", "recipe": "R99"}]}
        ]
        result = asyncio.run(h.service.revise(run.id, USER, "lighter dinners"))
        assert [(i.kind, i.recipe_id) for i in result.issues] == [(IssueKind.UNRESOLVED_REFERENCE, "R99")]
        assert "Dropped 1 entry referencing unknown recipes." in result.run.summary.notes


class TestApproveApply:
    def test_happy_path_commits_days(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)
        h.service.approve(run.id, USER)
        applied = h.service.apply(run.id, USER)

        assert applied.status is RunStatus.APPLIED
        assert applied.applied_at is not None
        day = h.meal_plans.find_day("2024-06-11", USER)
        assert [m.recipe_id for m in day.meals] == ["R5", "R6"]

    def test_apply_before_approve(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)
        with pytest.raises(NotApproved):
            h.service.apply(run.id, USER)
        assert h.meal_plans.find_day("2024-06-10", USER) is None

    def test_approve_twice(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)
        h.service.approve(run.id, USER)
        with pytest.raises(InvalidTransition):
            h.service.approve(run.id, USER)

    def test_apply_twice(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)
        h.service.approve(run.id, USER)
        h.service.apply(run.id, USER)
        with pytest.raises(NotApproved):
            h.service.apply(run.id, USER)

    def test_apply_with_no_days(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend([]))
        run = generated(h)
        h.service.approve(run.id, USER)
        with pytest.raises(NoPlanDays):
            h.service.apply(run.id, USER)

    def test_violations_checked_before_status(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(SHELLFISH_DAYS))
        run = generated(h)
        # Force an approved run that still carries a violation
        stored = h.runs.find(run.id, USER)
        stored.status = RunStatus.APPROVED
        h.runs.update(stored)

        with pytest.raises(ValidationBlocked) as excinfo:
            h.service.apply(run.id, USER)
        assert excinfo.value.action == "apply"

    def test_apply_revalidates_when_nothing_stored(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(SHELLFISH_DAYS))
        run = generated(h)
        stored = h.runs.find(run.id, USER)
        stored.output_draft.validation = None
        stored.status = RunStatus.APPROVED
        h.runs.update(stored)

        with pytest.raises(ValidationBlocked):
            h.service.apply(run.id, USER)

    def test_apply_overwrites_existing_days(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        h.meal_plans.commit_day("2024-06-10", USER, [Meal(type=MealType.DINNER, recipe_id="R4")], [])
        run = generated(h)
        h.service.approve(run.id, USER)
        h.service.apply(run.id, USER)
        assert [m.recipe_id for m in h.meal_plans.find_day("2024-06-10", USER).meals] == ["R1", "R3"]


class TestAtomicCommit:
    def test_failure_rolls_back_earlier_days(self, make_harness, scripted_backend):
        store = FlakyMealPlanStore(fail_on="2024-06-11")
        store.armed = False
        store.commit_day(
            "2024-06-10", USER, [Meal(type=MealType.LUNCH, recipe_id="R4")], [CookingSession(recipe_id="R5")]
        )
        store.armed = True

        h = make_harness(scripted_backend(CLEAN_DAYS), meal_plans=store)
        run = generated(h)
        h.service.approve(run.id, USER)

        with pytest.raises(CommitFailed) as excinfo:
            h.service.apply(run.id, USER)
        assert excinfo.value.date == "2024-06-11"

        restored = store.find_day("2024-06-10", USER)
        assert [m.recipe_id for m in restored.meals] == ["R4"]
        assert [s.recipe_id for s in restored.cooking_sessions] == ["R5"]
        assert store.find_day("2024-06-11", USER) is None
        assert h.service.get_run(run.id, USER).status is RunStatus.APPROVED

    def test_new_days_deleted_on_failure(self, make_harness, scripted_backend):
        store = FlakyMealPlanStore(fail_on="2024-06-11")
        h = make_harness(scripted_backend(CLEAN_DAYS), meal_plans=store)
        run = generated(h)
        h.service.approve(run.id, USER)

        with pytest.raises(CommitFailed):
            h.service.apply(run.id, USER)
        assert store.days_for_user(USER) == []


class TestEditDraft:
    def test_edit_drops_unknown_and_revalidates(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)
        h.service.approve(run.id, USER)

        result = h.service.edit_draft(
            run.id,
            USER,
            [{"date": "2024-06-10", "meals": [{"type": "dinner", "recipe": "R2"}, {"type": "lunch", "recipe": "R77"}]}],
        )
        assert [i.recipe_id for i in result.issues] == ["R77"]
        assert result.run.status is RunStatus.DRAFT
        assert result.run.approved_at is None
        assert len(result.run.violations) == 1
        assert result.run.summary.unmet_constraints == [result.run.violations[0].message]
        assert result.run.output_draft.tool_trace[-4] == {"tool": "edit_draft", "apply_to_plan": False}
        assert result.applied_days == 0

    def test_edit_with_apply_blocked_by_violation(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)
        before = h.service.get_run(run.id, USER).to_dict()

        with pytest.raises(ValidationBlocked):
            h.service.edit_draft(
                run.id, USER, [{"date": "2024-06-10", "meals": [{"type": "dinner", "recipe": "R2"}]}], apply_to_plan=True
            )
        assert h.service.get_run(run.id, USER).to_dict() == before
        assert h.meal_plans.find_day("2024-06-10", USER) is None

    def test_edit_with_apply_commits(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)
        result = h.service.edit_draft(
            run.id, USER, [{"date": "2024-06-11", "meals": [{"type": "dinner", "recipe": "R6"}]}], apply_to_plan=True
        )
        assert result.run.status is RunStatus.APPLIED
        assert result.run.approved_at is not None
        assert result.applied_days == 1
        assert [m.recipe_id for m in h.meal_plans.find_day("2024-06-11", USER).meals] == ["R6"]

    def test_edit_out_shellfish_then_approve_and_apply(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(SHELLFISH_DAYS))
        run = generated(h)
        assert [v.recipe_id for v in run.violations] == ["R2"]

        without_paella = [
            {"date": "2024-06-10", "meals": [{"type": "lunch", "recipe": "R1"}, {"type": "dinner", "recipe": "R6"}]},
            SHELLFISH_DAYS[1],
        ]
        result = h.service.edit_draft(run.id, USER, without_paella)
        assert result.run.output_draft.validation.hard_constraint_violations == []
        assert result.run.summary.unmet_constraints == []

        assert h.service.approve(run.id, USER).status is RunStatus.APPROVED
        assert h.service.apply(run.id, USER).status is RunStatus.APPLIED
        assert [m.recipe_id for m in h.meal_plans.find_day("2024-06-10", USER).meals] == ["R1", "R6"]

    def test_edit_drops_days_outside_range(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)
        result = h.service.edit_draft(
            run.id,
            USER,
            [CLEAN_DAYS[0], {"date": "2024-06-12", "meals": [{"type": "dinner", "recipe": "R6"}]}],
            apply_to_plan=True,
        )
        assert [d.date for d in result.run.output_draft.meal_plan_days] == ["2024-06-10"]
        assert [(i.date, i.detail) for i in result.issues] == [("2024-06-12", "date outside the run's range")]
        assert result.applied_days == 1
        assert h.meal_plans.find_day("2024-06-12", USER) is None

    def test_edit_with_no_days(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        run = generated(h)
        with pytest.raises(NoPlanDays):
            h.service.edit_draft(run.id, USER, [{"date": "tomorrow"}])


class TestListRuns:
    def test_newest_first_and_clamped(self, make_harness, scripted_backend):
        h = make_harness(scripted_backend(CLEAN_DAYS))
        start = datetime(2024, 6, 1, tzinfo=timezone.utc)
        ticks = itertools.count()
        h.service.clock = lambda: start + timedelta(minutes=next(ticks))

        ids = [h.service.create_run(USER, "2024-06-10", "2024-06-11").id for _ in range(3)]

        assert [r.id for r in h.service.list_runs(USER)] == list(reversed(ids))
        assert [r.id for r in h.service.list_runs(USER, limit=1)] == [ids[-1]]
        assert len(h.service.list_runs(USER, limit=0)) == 1
        assert len(h.service.list_runs(USER, limit=500)) == 3
        assert h.service.list_runs("nobody") == []
