"""ORM models backing the Learning GPS planner."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from ..clock import utcnow
from .base import Base, TimestampMixin

JSONType = JSON


def _uuid() -> str:
    return str(uuid.uuid4())


class ConceptModel(Base):
    __tablename__ = "concepts"
    __table_args__ = (Index("ix_concepts_code", "code", unique=True),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    domain: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    subject: Mapped[str] = mapped_column(String(32), default="MATH", nullable=False)
    grade_level: Mapped[str] = mapped_column(String(8), nullable=False)
    difficulty: Mapped[int] = mapped_column(Integer, nullable=False)


class ConceptPrerequisiteModel(Base):
    __tablename__ = "concept_prerequisites"
    __table_args__ = (
        UniqueConstraint("prerequisite_code", "concept_code", name="uq_concept_prerequisite_pair"),
        Index("ix_concept_prerequisites_concept", "concept_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    prerequisite_code: Mapped[str] = mapped_column(String(64), nullable=False)
    concept_code: Mapped[str] = mapped_column(String(64), nullable=False)


class StudentModel(TimestampMixin, Base):
    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    grade_level: Mapped[str] = mapped_column(String(8), nullable=False)

    plans: Mapped[list["LearningPlanModel"]] = relationship(
        back_populates="student", cascade="all, delete-orphan"
    )


class LearningGoalModel(TimestampMixin, Base):
    __tablename__ = "learning_goals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    grade_level: Mapped[str | None] = mapped_column(String(8), nullable=True)
    estimated_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    required_concept_codes: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)


class MasteryScoreModel(Base):
    __tablename__ = "mastery_scores"
    __table_args__ = (
        UniqueConstraint("student_id", "concept_code", name="uq_mastery_student_concept"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    concept_code: Mapped[str] = mapped_column(String(64), nullable=False)
    probability: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    practice_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_practiced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LearningSessionModel(Base):
    __tablename__ = "learning_sessions"
    __table_args__ = (Index("ix_learning_sessions_student_started", "student_id", "started_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    concept_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    state: Mapped[str] = mapped_column(String(16), default="COMPLETED", nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    questions_answered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    correct_answers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class LearningPlanModel(TimestampMixin, Base):
    __tablename__ = "learning_plans"
    __table_args__ = (Index("ix_learning_plans_student_status", "student_id", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    goal_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("learning_goals.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), default="ACTIVE", nullable=False)
    concept_sequence: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    concept_estimates: Mapped[dict[str, float]] = mapped_column(JSONType, default=dict, nullable=False)
    current_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_estimated_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    hours_completed: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    weekly_milestones: Mapped[list[dict]] = mapped_column(JSONType, default=list, nullable=False)
    narrative: Mapped[str] = mapped_column(Text, default="", nullable=False)
    target_completion_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    projected_completion_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_ahead_of_schedule: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    velocity_hours_per_week: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    last_recalculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    student: Mapped[StudentModel] = relationship(back_populates="plans")
    goal: Mapped[LearningGoalModel] = relationship()
    milestone_results: Mapped[list["MilestoneResultModel"]] = relationship(
        back_populates="plan", cascade="all, delete-orphan"
    )
    eta_snapshots: Mapped[list["ETASnapshotModel"]] = relationship(
        back_populates="plan", cascade="all, delete-orphan"
    )


class MilestoneResultModel(Base):
    __tablename__ = "milestone_results"
    __table_args__ = (UniqueConstraint("plan_id", "week_number", name="uq_milestone_result_plan_week"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    plan_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("learning_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    week_number: Mapped[int] = mapped_column(Integer, nullable=False)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    concepts_tested: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    plan: Mapped[LearningPlanModel] = relationship(back_populates="milestone_results")


class ETASnapshotModel(Base):
    __tablename__ = "eta_snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    plan_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("learning_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    triggered_by_session_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    concepts_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    concepts_mastered: Mapped[int] = mapped_column(Integer, nullable=False)
    hours_remaining: Mapped[float] = mapped_column(Float, nullable=False)
    projected_completion: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    velocity_at_snapshot: Mapped[float] = mapped_column(Float, nullable=False)
    is_ahead_of_schedule: Mapped[bool] = mapped_column(Boolean, nullable=False)
    days_difference: Mapped[int] = mapped_column(Integer, nullable=False)
    insight: Mapped[str] = mapped_column(Text, default="", nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    plan: Mapped[LearningPlanModel] = relationship(back_populates="eta_snapshots")


__all__ = [
    "ConceptModel",
    "ConceptPrerequisiteModel",
    "ETASnapshotModel",
    "LearningGoalModel",
    "LearningPlanModel",
    "LearningSessionModel",
    "MasteryScoreModel",
    "MilestoneResultModel",
    "StudentModel",
]
