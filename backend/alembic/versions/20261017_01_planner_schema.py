"""Planner schema: catalog, mastery, sessions, plans, milestone results, ETA snapshots."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261017_01_planner_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "concepts",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("domain", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("subject", sa.String(length=32), nullable=False, server_default="MATH"),
        sa.Column("grade_level", sa.String(length=8), nullable=False),
        sa.Column("difficulty", sa.Integer(), nullable=False),
    )
    op.create_index("ix_concepts_code", "concepts", ["code"], unique=True)

    op.create_table(
        "concept_prerequisites",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("prerequisite_code", sa.String(length=64), nullable=False),
        sa.Column("concept_code", sa.String(length=64), nullable=False),
        sa.UniqueConstraint("prerequisite_code", "concept_code", name="uq_concept_prerequisite_pair"),
    )
    op.create_index("ix_concept_prerequisites_concept", "concept_prerequisites", ["concept_code"])

    op.create_table(
        "students",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("display_name", sa.String(length=128), nullable=False),
        sa.Column("grade_level", sa.String(length=8), nullable=False),
    )

    op.create_table(
        "learning_goals",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("grade_level", sa.String(length=8), nullable=True),
        sa.Column("estimated_hours", sa.Float(), nullable=False, server_default="0"),
        sa.Column("required_concept_codes", sa.JSON(), nullable=False),
    )

    op.create_table(
        "mastery_scores",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("student_id", sa.String(length=36), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("concept_code", sa.String(length=64), nullable=False),
        sa.Column("probability", sa.Float(), nullable=False, server_default="0"),
        sa.Column("practice_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_practiced_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("student_id", "concept_code", name="uq_mastery_student_concept"),
    )
    op.create_index("ix_mastery_scores_student_id", "mastery_scores", ["student_id"])

    op.create_table(
        "learning_sessions",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("student_id", sa.String(length=36), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("concept_code", sa.String(length=64), nullable=True),
        sa.Column("state", sa.String(length=16), nullable=False, server_default="COMPLETED"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("questions_answered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("correct_answers", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_learning_sessions_student_started", "learning_sessions", ["student_id", "started_at"])

    op.create_table(
        "learning_plans",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("student_id", sa.String(length=36), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("goal_id", sa.String(length=36), sa.ForeignKey("learning_goals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="ACTIVE"),
        sa.Column("concept_sequence", sa.JSON(), nullable=False),
        sa.Column("concept_estimates", sa.JSON(), nullable=False),
        sa.Column("current_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_estimated_hours", sa.Float(), nullable=False, server_default="0"),
        sa.Column("hours_completed", sa.Float(), nullable=False, server_default="0"),
        sa.Column("weekly_milestones", sa.JSON(), nullable=False),
        sa.Column("narrative", sa.Text(), nullable=False, server_default=""),
        sa.Column("target_completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("projected_completion_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_ahead_of_schedule", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("velocity_hours_per_week", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_recalculated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_learning_plans_student_status", "learning_plans", ["student_id", "status"])

    op.create_table(
        "milestone_results",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("plan_id", sa.String(length=36), sa.ForeignKey("learning_plans.id", ondelete="CASCADE"), nullable=False),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.Column("passed", sa.Boolean(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("concepts_tested", sa.JSON(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("plan_id", "week_number", name="uq_milestone_result_plan_week"),
    )
    op.create_index("ix_milestone_results_plan_id", "milestone_results", ["plan_id"])

    op.create_table(
        "eta_snapshots",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("plan_id", sa.String(length=36), sa.ForeignKey("learning_plans.id", ondelete="CASCADE"), nullable=False),
        sa.Column("triggered_by_session_id", sa.String(length=36), nullable=True),
        sa.Column("concepts_remaining", sa.Integer(), nullable=False),
        sa.Column("concepts_mastered", sa.Integer(), nullable=False),
        sa.Column("hours_remaining", sa.Float(), nullable=False),
        sa.Column("projected_completion", sa.DateTime(timezone=True), nullable=False),
        sa.Column("velocity_at_snapshot", sa.Float(), nullable=False),
        sa.Column("is_ahead_of_schedule", sa.Boolean(), nullable=False),
        sa.Column("days_difference", sa.Integer(), nullable=False),
        sa.Column("insight", sa.Text(), nullable=False, server_default=""),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_eta_snapshots_plan_id", "eta_snapshots", ["plan_id"])


def downgrade() -> None:
    op.drop_index("ix_eta_snapshots_plan_id", table_name="eta_snapshots")
    op.drop_table("eta_snapshots")
    op.drop_index("ix_milestone_results_plan_id", table_name="milestone_results")
    op.drop_table("milestone_results")
    op.drop_index("ix_learning_plans_student_status", table_name="learning_plans")
    op.drop_table("learning_plans")
    op.drop_index("ix_learning_sessions_student_started", table_name="learning_sessions")
    op.drop_table("learning_sessions")
    op.drop_index("ix_mastery_scores_student_id", table_name="mastery_scores")
    op.drop_table("mastery_scores")
    op.drop_table("learning_goals")
    op.drop_table("students")
    op.drop_index("ix_concept_prerequisites_concept", table_name="concept_prerequisites")
    op.drop_table("concept_prerequisites")
    op.drop_index("ix_concepts_code", table_name="concepts")
    op.drop_table("concepts")
