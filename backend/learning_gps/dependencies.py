"""FastAPI dependency providers wiring settings into planner services."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends

from .cache import milestone_sessions
from .config import Settings, get_settings
from .eta_calculator import ETACalculator
from .milestone_assessor import MilestoneAssessor
from .plan_adapter import PlanAdapter
from .plan_builder import PlanBuilder
from .plan_lifecycle import PlanLifecycleManager
from .session_reporting import SessionReporter
from .text_generation import TextGenerator, get_text_generator

_text_generator: Optional[TextGenerator] = None


def get_text_generator_dependency(settings: Settings = Depends(get_settings)) -> TextGenerator:
    global _text_generator
    if _text_generator is None:
        _text_generator = get_text_generator(settings)
    return _text_generator


def reset_text_generator() -> None:
    global _text_generator
    _text_generator = None


def get_lifecycle(settings: Settings = Depends(get_settings)) -> PlanLifecycleManager:
    return PlanLifecycleManager(max_active_plans=settings.max_active_plans)


def get_plan_builder(
    settings: Settings = Depends(get_settings),
    text_generator: TextGenerator = Depends(get_text_generator_dependency),
) -> PlanBuilder:
    return PlanBuilder(settings, text_generator)


def get_milestone_assessor(
    settings: Settings = Depends(get_settings),
    text_generator: TextGenerator = Depends(get_text_generator_dependency),
) -> MilestoneAssessor:
    milestone_sessions.configure(ttl_seconds=settings.milestone_session_ttl_seconds)
    return MilestoneAssessor(text_generator, time_limit_seconds=settings.milestone_time_limit_seconds)


def get_eta_calculator(
    settings: Settings = Depends(get_settings),
    text_generator: TextGenerator = Depends(get_text_generator_dependency),
    lifecycle: PlanLifecycleManager = Depends(get_lifecycle),
) -> ETACalculator:
    return ETACalculator(settings, text_generator, lifecycle=lifecycle)


def get_plan_adapter(text_generator: TextGenerator = Depends(get_text_generator_dependency)) -> PlanAdapter:
    return PlanAdapter(text_generator)


def get_session_reporter(
    lifecycle: PlanLifecycleManager = Depends(get_lifecycle),
    eta: ETACalculator = Depends(get_eta_calculator),
    adapter: PlanAdapter = Depends(get_plan_adapter),
) -> SessionReporter:
    return SessionReporter(lifecycle=lifecycle, eta=eta, adapter=adapter)


__all__ = [
    "get_eta_calculator",
    "get_lifecycle",
    "get_milestone_assessor",
    "get_plan_adapter",
    "get_plan_builder",
    "get_session_reporter",
    "get_text_generator_dependency",
    "reset_text_generator",
]
