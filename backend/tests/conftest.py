from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

import pytest

os.environ.setdefault("LEARNING_GPS_DATABASE_URL", "sqlite://")

from learning_gps.cache import milestone_sessions  # noqa: E402
from learning_gps.clock import utcnow  # noqa: E402
from learning_gps.config import get_settings  # noqa: E402
from learning_gps.db import Base, dispose_engine, get_engine, session_scope  # noqa: E402
from learning_gps.db import models  # noqa: E402
from learning_gps.text_generation import TextGenerationResult  # noqa: E402

Reply = Union[Dict[str, Any], TextGenerationResult, Callable[[str], Any]]


class FakeTextGenerator:
    """Records prompts and answers from a queue of canned replies.

    An empty queue answers ``unavailable`` so callers exercise their fallbacks.
    """

    def __init__(self, replies: Optional[List[Reply]] = None) -> None:
        self.replies: List[Reply] = list(replies or [])
        self.prompts: List[str] = []
        self.max_tokens: List[int] = []

    def generate(self, prompt: str, *, max_tokens: int) -> TextGenerationResult:
        self.prompts.append(prompt)
        self.max_tokens.append(max_tokens)
        if not self.replies:
            return TextGenerationResult.unavailable("no canned reply")
        reply = self.replies.pop(0)
        if callable(reply):
            reply = reply(prompt)
        if isinstance(reply, TextGenerationResult):
            return reply
        return TextGenerationResult.success(reply)


@pytest.fixture
def fake_generator() -> FakeTextGenerator:
    return FakeTextGenerator()


@pytest.fixture
def database(tmp_path, monkeypatch) -> Iterator[str]:
    url = f"sqlite:///{tmp_path / 'planner.sqlite'}"
    monkeypatch.setenv("LEARNING_GPS_DATABASE_URL", url)
    get_settings.cache_clear()
    dispose_engine()
    Base.metadata.create_all(get_engine())
    milestone_sessions.clear()
    yield url
    milestone_sessions.clear()
    dispose_engine()
    get_settings.cache_clear()


@pytest.fixture
def db_session(database) -> Iterator[Any]:
    with session_scope() as session:
        yield session


@dataclass
class Seeder:
    """Writes catalog rows the planner reads from its collaborators."""

    session: Any
    grade_level: str = "G5"
    created: List[str] = field(default_factory=list)

    def student(self, student_id: str = "student-1", *, name: str = "Maya", grade_level: str = "G5") -> str:
        self.session.add(models.StudentModel(id=student_id, display_name=name, grade_level=grade_level))
        self.session.flush()
        return student_id

    def concept(
        self,
        code: str,
        *,
        difficulty: int = 5,
        grade_level: Optional[str] = None,
        title: Optional[str] = None,
    ) -> str:
        self.session.add(
            models.ConceptModel(
                code=code,
                title=title or f"Concept {code}",
                description=f"All about {code}",
                domain="NBT",
                grade_level=grade_level or self.grade_level,
                difficulty=difficulty,
            )
        )
        self.session.flush()
        return code

    def prerequisite(self, prerequisite: str, concept: str) -> None:
        self.session.add(models.ConceptPrerequisiteModel(prerequisite_code=prerequisite, concept_code=concept))
        self.session.flush()

    def goal(self, codes: List[str], *, goal_id: str = "goal-1", name: str = "Grade 5 Math") -> str:
        self.session.add(
            models.LearningGoalModel(
                id=goal_id,
                name=name,
                category="GRADE_PROFICIENCY",
                grade_level="G5",
                required_concept_codes=list(codes),
            )
        )
        self.session.flush()
        return goal_id

    def mastery(self, student_id: str, code: str, probability: float) -> None:
        self.session.add(
            models.MasteryScoreModel(
                student_id=student_id,
                concept_code=code,
                probability=probability,
                practice_count=1,
                last_practiced_at=utcnow(),
            )
        )
        self.session.flush()

    def learning_session(
        self,
        student_id: str,
        code: Optional[str],
        *,
        started_at: datetime,
        duration_seconds: Optional[int] = 1800,
        questions: int = 10,
        correct: int = 8,
        session_id: Optional[str] = None,
    ) -> str:
        model = models.LearningSessionModel(
            student_id=student_id,
            concept_code=code,
            state="COMPLETED",
            started_at=started_at,
            ended_at=started_at + timedelta(seconds=duration_seconds or 0),
            duration_seconds=duration_seconds,
            questions_answered=questions,
            correct_answers=correct,
        )
        if session_id:
            model.id = session_id
        self.session.add(model)
        self.session.flush()
        return model.id


@pytest.fixture
def seed(db_session) -> Seeder:
    return Seeder(db_session)
