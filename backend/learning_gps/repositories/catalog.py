"""Read access to curriculum concepts, prerequisite edges, mastery and session history."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..clock import ensure_utc, utcnow
from ..db.models import (
    ConceptModel,
    ConceptPrerequisiteModel,
    LearningGoalModel,
    LearningSessionModel,
    MasteryScoreModel,
    StudentModel,
)
from ..learning_plan import Concept, LearningGoal, SessionRecord, Student


class CatalogRepository:
    """Prerequisite graph, mastery store and session log as seen by the planner."""

    def get_concepts(self, session: Session, codes: Iterable[str]) -> Dict[str, Concept]:
        wanted = list(dict.fromkeys(codes))
        if not wanted:
            return {}
        stmt = select(ConceptModel).where(ConceptModel.code.in_(wanted))
        return {model.code: self._concept(model) for model in session.execute(stmt).scalars()}

    def edges_among(self, session: Session, codes: Iterable[str]) -> List[Tuple[str, str]]:
        wanted = list(dict.fromkeys(codes))
        if not wanted:
            return []
        stmt = (
            select(ConceptPrerequisiteModel.prerequisite_code, ConceptPrerequisiteModel.concept_code)
            .where(ConceptPrerequisiteModel.prerequisite_code.in_(wanted))
            .where(ConceptPrerequisiteModel.concept_code.in_(wanted))
            .order_by(ConceptPrerequisiteModel.id)
        )
        return [(row[0], row[1]) for row in session.execute(stmt)]

    def mastery_of(self, session: Session, student_id: str, codes: Iterable[str]) -> Dict[str, float]:
        """Mastery probability per code; codes without a score read as 0."""
        wanted = list(dict.fromkeys(codes))
        mastery = {code: 0.0 for code in wanted}
        if not wanted:
            return mastery
        stmt = (
            select(MasteryScoreModel.concept_code, MasteryScoreModel.probability)
            .where(MasteryScoreModel.student_id == student_id)
            .where(MasteryScoreModel.concept_code.in_(wanted))
        )
        for code, probability in session.execute(stmt):
            mastery[code] = min(max(float(probability), 0.0), 1.0)
        return mastery

    def record_mastery(
        self,
        session: Session,
        student_id: str,
        concept_code: str,
        probability: float,
        *,
        practiced_at: Optional[datetime] = None,
    ) -> None:
        stmt = (
            select(MasteryScoreModel)
            .where(MasteryScoreModel.student_id == student_id)
            .where(MasteryScoreModel.concept_code == concept_code)
        )
        model = session.execute(stmt).scalar_one_or_none()
        if model is None:
            model = MasteryScoreModel(student_id=student_id, concept_code=concept_code, practice_count=0)
            session.add(model)
        model.probability = min(max(probability, 0.0), 1.0)
        model.practice_count = (model.practice_count or 0) + 1
        model.last_practiced_at = practiced_at or utcnow()
        session.flush()

    def get_goal(self, session: Session, goal_id: str) -> LearningGoal | None:
        model = session.get(LearningGoalModel, goal_id)
        if model is None:
            return None
        return LearningGoal(
            id=model.id,
            name=model.name,
            description=model.description,
            category=model.category,  # type: ignore[arg-type]
            grade_level=model.grade_level,
            estimated_hours=model.estimated_hours,
            required_concept_codes=list(model.required_concept_codes or []),
        )

    def get_student(self, session: Session, student_id: str) -> Student | None:
        model = session.get(StudentModel, student_id)
        if model is None:
            return None
        return Student(id=model.id, display_name=model.display_name, grade_level=model.grade_level)

    def record_session(self, session: Session, record: SessionRecord) -> SessionRecord:
        model = session.get(LearningSessionModel, record.id)
        if model is None:
            model = LearningSessionModel(id=record.id, student_id=record.student_id)
            session.add(model)
        model.concept_code = record.concept_code
        model.state = record.state
        model.started_at = record.started_at
        model.duration_seconds = record.duration_seconds
        model.questions_answered = record.questions_answered
        model.correct_answers = record.correct_answers
        if record.duration_seconds is not None:
            model.ended_at = utcnow()
        session.flush()
        return self._session(model)

    def recent_completed_sessions(
        self, session: Session, student_id: str, *, limit: int = 10
    ) -> List[SessionRecord]:
        """Most recent first."""
        stmt = (
            select(LearningSessionModel)
            .where(LearningSessionModel.student_id == student_id)
            .where(LearningSessionModel.state == "COMPLETED")
            .order_by(LearningSessionModel.started_at.desc())
            .limit(limit)
        )
        return [self._session(model) for model in session.execute(stmt).scalars()]

    def completed_sessions_between(
        self,
        session: Session,
        student_id: str,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> List[SessionRecord]:
        stmt = (
            select(LearningSessionModel)
            .where(LearningSessionModel.student_id == student_id)
            .where(LearningSessionModel.state == "COMPLETED")
            .where(LearningSessionModel.started_at >= start)
        )
        if end is not None:
            stmt = stmt.where(LearningSessionModel.started_at < end)
        return [self._session(model) for model in session.execute(stmt).scalars()]

    @staticmethod
    def _concept(model: ConceptModel) -> Concept:
        return Concept(
            code=model.code,
            title=model.title,
            description=model.description,
            domain=model.domain,
            subject=model.subject,
            grade_level=model.grade_level,
            difficulty=model.difficulty,
        )

    @staticmethod
    def _session(model: LearningSessionModel) -> SessionRecord:
        return SessionRecord(
            id=model.id,
            student_id=model.student_id,
            concept_code=model.concept_code,
            state=model.state,
            started_at=ensure_utc(model.started_at),
            duration_seconds=model.duration_seconds,
            questions_answered=model.questions_answered,
            correct_answers=model.correct_answers,
        )


catalog_repository = CatalogRepository()

__all__ = ["CatalogRepository", "catalog_repository"]
