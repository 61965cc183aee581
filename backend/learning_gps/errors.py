"""Caller-facing error taxonomy for planner operations."""

from __future__ import annotations


class PlannerError(ValueError):
    """Base class for invalid requests against the planner."""


class GoalNotFoundError(LookupError):
    def __init__(self, goal_id: str) -> None:
        super().__init__(f"Learning goal '{goal_id}' was not found.")
        self.goal_id = goal_id


class StudentNotFoundError(LookupError):
    def __init__(self, student_id: str) -> None:
        super().__init__(f"Student '{student_id}' was not found.")
        self.student_id = student_id


class PlanNotFoundError(LookupError):
    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Learning plan '{plan_id}' was not found.")
        self.plan_id = plan_id


class MilestoneNotFoundError(LookupError):
    def __init__(self, plan_id: str, week_number: int) -> None:
        super().__init__(f"Week {week_number} milestone not found for plan '{plan_id}'.")
        self.plan_id = plan_id
        self.week_number = week_number


class MilestoneAttemptNotFoundError(LookupError):
    """Raised when no live attempt (or no such question in it) exists."""


class EmptyGoalError(PlannerError):
    """Raised when a goal lists no required concepts."""


class PlanStateError(PlannerError):
    """Raised when an operation is not allowed in the plan's current status."""


class MilestoneAlreadyEvaluatedError(PlannerError):
    def __init__(self, week_number: int) -> None:
        super().__init__(f"Week {week_number} milestone already completed.")
        self.week_number = week_number


class MilestoneSessionError(PlannerError):
    """Raised when an in-progress milestone attempt cannot accept the request."""


class PlanLimitExceededError(PlannerError):
    def __init__(self, active_count: int, limit: int) -> None:
        super().__init__(
            f"Maximum {limit} concurrent goals allowed. Please complete or pause an existing goal first."
        )
        self.active_count = active_count
        self.limit = limit


class DuplicatePlanError(PlannerError):
    def __init__(self, existing_plan_id: str) -> None:
        super().__init__("You already have an active plan for this goal.")
        self.existing_plan_id = existing_plan_id


__all__ = [
    "DuplicatePlanError",
    "EmptyGoalError",
    "GoalNotFoundError",
    "MilestoneAlreadyEvaluatedError",
    "MilestoneAttemptNotFoundError",
    "MilestoneNotFoundError",
    "MilestoneSessionError",
    "PlanLimitExceededError",
    "PlanNotFoundError",
    "PlanStateError",
    "PlannerError",
    "StudentNotFoundError",
]
