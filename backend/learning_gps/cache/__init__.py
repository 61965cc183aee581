"""In-memory caches shared across planner services."""

from .milestone_sessions import MilestoneSessionStore, milestone_sessions

__all__ = ["MilestoneSessionStore", "milestone_sessions"]
