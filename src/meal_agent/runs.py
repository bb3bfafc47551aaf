"""Planning run lifecycle: draft -> approved -> applied.

Every transition works on a copy loaded from the run store and persists it
only once the transition has succeeded, so a refused transition leaves the
stored run as it was. The one exception is a generation failure, which
records ``error_message``.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from meal_agent.errors import (
    CommitFailed,
    GenerationFailed,
    InvalidTransition,
    NoPlanDays,
    NotApproved,
    RunNotFound,
    ValidationBlocked,
)
from meal_agent.log import run_logger
from meal_agent.models import DateRange, MealPlanDay, Profile, Run, RunStatus, Violation, is_iso_date
from meal_agent.orchestrator import Orchestrator
from meal_agent.resolution import ResolutionIssue, referenced_recipes
from meal_agent.stores import MealPlanStore, ProfileStore, RunStore
from meal_agent.validation import validate

logger = logging.getLogger(__name__)

DEFAULT_SPAN_DAYS = 7
DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 50


@dataclass
class RunResult:
    """A run after a draft-changing transition, with the entries it dropped."""

    run: Run
    issues: list[ResolutionIssue] = field(default_factory=list)
    applied_days: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunService:
    def __init__(
        self,
        run_store: RunStore,
        profile_store: ProfileStore,
        meal_plan_store: MealPlanStore,
        orchestrator: Orchestrator,
        clock: Callable[[], datetime] = _utcnow,
        default_span_days: int = DEFAULT_SPAN_DAYS,
    ):
        self.run_store = run_store
        self.profile_store = profile_store
        self.meal_plan_store = meal_plan_store
        self.orchestrator = orchestrator
        self.clock = clock
        self.default_span_days = max(1, int(default_span_days))

    def _load(self, run_id: str, user_id: str) -> Run:
        run = self.run_store.find(run_id, user_id)
        if run is None:
            raise RunNotFound(run_id)
        return run

    def _save(self, run: Run) -> Run:
        run.updated_at = self.clock()
        return self.run_store.update(run)

    def create_run(self, user_id: str, start: str | None = None, end: str | None = None) -> Run:
        """Open a draft run over a date range with a snapshot of the profile.

        Malformed dates fall back to today and a default-length span.
        """
        now = self.clock()
        start_s = start if is_iso_date(start) else now.date().isoformat()
        if is_iso_date(end):
            end_s = end
        else:
            end_s = (date.fromisoformat(start_s) + timedelta(days=self.default_span_days - 1)).isoformat()
        if end_s < start_s:
            raise ValueError(f"End date {end_s} is before start date {start_s}")

        profile = self.profile_store.find_by_user(user_id) or Profile(user_id=user_id)
        run = Run(
            id=uuid.uuid4().hex,
            user_id=user_id,
            date_range=DateRange(start=start_s, end=end_s),
            input_snapshot=profile.snapshot(),
            created_at=now,
            updated_at=now,
        )
        created = self.run_store.create(run)
        run_logger(logger, created.id).info("Created run for %s (%s to %s)", user_id, start_s, end_s)
        return created

    def get_run(self, run_id: str, user_id: str) -> Run:
        return self._load(run_id, user_id)

    def list_runs(self, user_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[Run]:
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            limit = DEFAULT_LIST_LIMIT
        return self.run_store.list_for_user(user_id, min(MAX_LIST_LIMIT, max(1, limit)))

    async def generate(self, run_id: str, user_id: str) -> RunResult:
        return await self._regenerate(run_id, user_id, instruction=None)

    async def revise(self, run_id: str, user_id: str, instruction: str) -> RunResult:
        instruction = str(instruction or "").strip()
        if not instruction:
            raise ValueError("Revision instruction is required")
        return await self._regenerate(run_id, user_id, instruction=instruction)

    async def _regenerate(self, run_id: str, user_id: str, instruction: str | None) -> RunResult:
        run = self._load(run_id, user_id)
        log = run_logger(logger, run.id)
        prior = run.output_draft if instruction and run.output_draft.meal_plan_days else None

        try:
            result = await self.orchestrator.orchestrate(
                user_id=user_id,
                run_id=run.id,
                profile=run.input_snapshot,
                date_range=run.date_range,
                revision_instruction=instruction,
                prior_draft=prior,
            )
        except GenerationFailed as e:
            log.error("Generation failed: %s", e)
            run.error_message = str(e)
            self._save(run)
            raise

        run.output_draft = result.output_draft
        run.summary = result.summary
        run.status = RunStatus.DRAFT
        run.error_message = ""
        run.approved_at = None
        run.applied_at = None
        saved = self._save(run)

        log.info(
            "%s draft: %d day(s), %d violation(s)",
            "Revised" if instruction else "Generated",
            len(saved.output_draft.meal_plan_days),
            len(saved.violations),
        )
        return RunResult(run=saved, issues=list(result.issues))

    def approve(self, run_id: str, user_id: str) -> Run:
        run = self._load(run_id, user_id)
        violations = run.violations
        if violations:
            raise ValidationBlocked(violations, action="approve")
        if run.status is not RunStatus.DRAFT:
            raise InvalidTransition("approve", run.status.value)

        run.status = RunStatus.APPROVED
        run.approved_at = self.clock()
        saved = self._save(run)
        run_logger(logger, run.id).info("Approved")
        return saved

    def _outstanding_violations(self, run: Run) -> list[Violation]:
        """Stored violations, or a fresh check when none are stored."""
        stored = run.violations
        if stored:
            return stored
        days = run.output_draft.meal_plan_days
        catalog = run.output_draft.catalog_map()
        check = validate(run.input_snapshot, referenced_recipes(days, catalog), days)
        return check.hard_constraint_violations

    def apply(self, run_id: str, user_id: str) -> Run:
        run = self._load(run_id, user_id)
        violations = self._outstanding_violations(run)
        if violations:
            raise ValidationBlocked(violations, action="apply")
        if run.status is not RunStatus.APPROVED:
            raise NotApproved(run.status.value)
        days = run.output_draft.meal_plan_days
        if not days:
            raise NoPlanDays()

        self._commit_days(run, days)

        run.status = RunStatus.APPLIED
        run.applied_at = self.clock()
        saved = self._save(run)
        run_logger(logger, run.id).info("Applied %d day(s) to the meal plan", len(days))
        return saved

    def edit_draft(
        self,
        run_id: str,
        user_id: str,
        meal_plan_days,
        apply_to_plan: bool = False,
    ) -> RunResult:
        """Replace the draft's days by hand, re-aggregating and re-validating.

        References to recipes outside the run's catalog are dropped and
        reported, never raised.
        """
        run = self._load(run_id, user_id)
        log = run_logger(logger, run.id)

        trace = list(run.output_draft.tool_trace)
        trace.append({"tool": "edit_draft", "apply_to_plan": apply_to_plan})
        draft, issues = self.orchestrator.build_draft(
            user_id,
            run.input_snapshot,
            meal_plan_days,
            run.output_draft.recipe_catalog,
            trace,
            dates=self.orchestrator.run_dates(run.date_range),
        )
        if not draft.meal_plan_days:
            raise NoPlanDays("meal_plan_days is required")
        if apply_to_plan and not draft.validation.passed:
            raise ValidationBlocked(draft.validation.hard_constraint_violations, action="apply")

        run.output_draft = draft
        run.summary.unmet_constraints = [v.message for v in draft.validation.hard_constraint_violations]

        if apply_to_plan:
            self._commit_days(run, draft.meal_plan_days)
            now = self.clock()
            run.status = RunStatus.APPLIED
            run.approved_at = now
            run.applied_at = now
        else:
            run.status = RunStatus.DRAFT
            run.approved_at = None
            run.applied_at = None

        saved = self._save(run)
        log.info(
            "Draft edited: %d day(s), %d dropped, %s",
            len(draft.meal_plan_days),
            len(issues),
            "applied" if apply_to_plan else "back to draft",
        )
        return RunResult(
            run=saved,
            issues=issues,
            applied_days=len(draft.meal_plan_days) if apply_to_plan else 0,
        )

    def _commit_days(self, run: Run, days: list[MealPlanDay]) -> None:
        """Commit all days or none: on failure, earlier dates are restored."""
        touched: list[tuple[str, MealPlanDay | None]] = []
        for day in days:
            touched.append((day.date, self.meal_plan_store.find_day(day.date, run.user_id)))
            try:
                self.meal_plan_store.commit_day(day.date, run.user_id, day.meals, day.cooking_sessions)
            except Exception as e:
                run_logger(logger, run.id).error("Commit failed on %s, rolling back: %s", day.date, e)
                self._restore(run.user_id, touched)
                raise CommitFailed(day.date, e) from e

    def _restore(self, user_id: str, touched: list[tuple[str, MealPlanDay | None]]) -> None:
        for day_date, previous in reversed(touched):
            try:
                if previous is None:
                    self.meal_plan_store.delete_day(day_date, user_id)
                else:
                    self.meal_plan_store.commit_day(
                        day_date, user_id, previous.meals, previous.cooking_sessions
                    )
            except Exception:
                logger.exception("Could not restore meal plan day %s", day_date)
