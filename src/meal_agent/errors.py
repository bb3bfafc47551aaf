"""Error taxonomy for the planning pipeline.

Only illegal transitions and backend failures raise. Dropped meals and
malformed days are reported as ``ResolutionIssue`` records instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from meal_agent.models import Violation


class PlanningError(Exception):
    """Base class for recoverable planning failures."""


class RunNotFound(PlanningError):
    def __init__(self, run_id: str):
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id


class ValidationBlocked(PlanningError):
    """Approve/apply attempted while hard-constraint violations remain."""

    def __init__(self, violations: list[Violation], action: str = "approve"):
        super().__init__(
            f"Run has {len(violations)} unmet hard constraint(s). "
            f"Revise before {action}."
        )
        self.violations = violations
        self.action = action


UnmetConstraints = ValidationBlocked


class GenerationFailed(PlanningError):
    """The generation backend was unreachable or returned malformed output."""


class NotApproved(PlanningError):
    def __init__(self, status: str):
        super().__init__(f"Run must be approved before apply (status: {status})")
        self.status = status


class NoPlanDays(PlanningError):
    def __init__(self, message: str = "Run has no meal plan days to apply"):
        super().__init__(message)


class InvalidTransition(PlanningError):
    def __init__(self, action: str, status: str):
        super().__init__(f"Cannot {action} a run in status '{status}'")
        self.action = action
        self.status = status


class CommitFailed(PlanningError):
    """A day commit failed; dates committed earlier in the loop were rolled back."""

    def __init__(self, date: str, cause: Exception):
        super().__init__(f"Failed to commit meal plan day {date}: {cause}")
        self.date = date
        self.cause = cause
