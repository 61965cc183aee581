from __future__ import annotations

from datetime import timedelta

import pytest

from learning_gps.cache import milestone_sessions
from learning_gps.config import get_settings
from learning_gps.errors import (
    MilestoneAlreadyEvaluatedError,
    MilestoneAttemptNotFoundError,
    MilestoneNotFoundError,
    MilestoneSessionError,
)
from learning_gps.learning_plan import Concept
from learning_gps.milestone_assessor import MilestoneAssessor, evaluate_milestone, fallback_questions
from learning_gps.milestone_models import MilestoneAnswer, MilestoneOption, MilestoneQuestion
from learning_gps.plan_builder import PlanBuilder
from learning_gps.repositories import plan_repository

from conftest import FakeTextGenerator


def _question(qid: str, concept: str) -> MilestoneQuestion:
    return MilestoneQuestion(
        question_id=qid,
        concept_code=concept,
        concept_title=concept.title(),
        question_text=f"Question {qid}",
        options=[
            MilestoneOption(id="A", text="right", is_correct=True),
            MilestoneOption(id="B", text="wrong"),
        ],
    )


def _answers(questions, correct_ids):
    return {
        q.question_id: MilestoneAnswer(
            question_id=q.question_id,
            selected_option_id="A" if q.question_id in correct_ids else "B",
            is_correct=q.question_id in correct_ids,
        )
        for q in questions
    }


def test_six_of_eight_passes_at_the_threshold() -> None:
    questions = [_question(f"q{i}", "ratios" if i < 4 else "area") for i in range(8)]
    answers = _answers(questions, {"q0", "q1", "q2", "q3", "q4", "q5"})

    evaluation = evaluate_milestone(questions, answers)

    assert evaluation.score == 75
    assert evaluation.passed
    assert evaluation.failed_concepts == []
    assert [(r.concept_code, r.correct, r.total) for r in evaluation.concept_results] == [
        ("ratios", 4, 4),
        ("area", 2, 4),
    ]


def test_unanswered_questions_count_as_incorrect() -> None:
    questions = [_question(f"q{i}", "ratios" if i < 2 else "area") for i in range(4)]
    answers = _answers(questions[:2], {"q0", "q1"})

    evaluation = evaluate_milestone(questions, answers)

    assert evaluation.score == 50
    assert not evaluation.passed
    assert evaluation.failed_concepts == ["area"]
    assert "close to passing" in evaluation.message


def test_score_bands() -> None:
    questions = [_question(f"q{i}", "ratios") for i in range(8)]

    perfect = evaluate_milestone(questions, _answers(questions, {q.question_id for q in questions}))
    assert perfect.score == 100
    assert perfect.message.startswith("Perfect score!")

    seven = evaluate_milestone(questions, _answers(questions, {f"q{i}" for i in range(7)}))
    assert seven.score == 88
    assert seven.message.startswith("Excellent work!")

    empty = evaluate_milestone([], {})
    assert empty.score == 0
    assert not empty.passed

    none_right = evaluate_milestone(questions, _answers(questions, set()))
    assert none_right.score == 0
    assert none_right.message == "You scored 0%. Let's spend more time on this week's concepts."


def test_fallback_questions_key_option_a() -> None:
    concept = Concept(code="frac", title="Fractions", grade_level="G4", difficulty=4)
    reading = Concept(code="read", title="Main Idea", grade_level="G4", difficulty=4, subject="ELA")

    math_questions = fallback_questions(concept, 2, stamp=7)
    ela_questions = fallback_questions(reading, 1, stamp=7)

    assert [q.question_id for q in math_questions] == ["frac-fb1-7", "frac-fb2-7"]
    assert all(q.correct_option_id() == "A" for q in math_questions + ela_questions)
    assert "understanding" in math_questions[0].question_text
    assert ela_questions[0].question_text == 'How confident are you with "Main Idea"?'


@pytest.fixture
def weekly_plan(db_session, seed, fake_generator):
    seed.student()
    seed.concept("a", difficulty=1, title="Place Value")
    seed.concept("b", difficulty=2, title="Rounding")
    seed.concept("c", difficulty=3, title="Estimation")
    goal_id = seed.goal(["a", "b", "c"])
    return PlanBuilder(get_settings(), fake_generator).build_plan(db_session, goal_id, "student-1", 3.0).plan


def test_generate_questions_covers_hardest_concepts_first(db_session, weekly_plan, fake_generator) -> None:
    generated = MilestoneAssessor(fake_generator).generate_questions(db_session, weekly_plan.id, 1)

    assert [q.concept_code for q in generated.questions] == ["c", "c", "b", "b", "a", "a"]
    assert sorted(generated.concepts_covered) == ["a", "b", "c"]
    assert generated.student_id == "student-1"


def test_generated_questions_are_relettered(db_session, weekly_plan) -> None:
    def reply(prompt: str):
        return {
            "questions": [
                {
                    "questionText": "What is 10 x 10?",
                    "options": [
                        {"id": "1", "text": "100", "isCorrect": False},
                        {"id": "2", "text": "1000", "isCorrect": False},
                        {"id": "3", "text": "10", "isCorrect": False},
                        {"id": "4", "text": "20", "isCorrect": True},
                    ],
                    "explanation": "Multiply.",
                }
            ]
        }

    generator = FakeTextGenerator([reply])
    generated = MilestoneAssessor(generator).generate_questions(db_session, weekly_plan.id, 1)

    first = generated.questions[0]
    assert [option.id for option in first.options] == ["A", "B", "C", "D"]
    assert first.correct_option_id() == "D"
    # one generated, one padded from the fallback set
    assert generated.questions[1].question_id.startswith("c-fb1-")
    assert "Code: c" in generator.prompts[0]


def test_full_attempt_persists_result(db_session, weekly_plan, fake_generator) -> None:
    assessor = MilestoneAssessor(fake_generator)
    attempt = assessor.start(db_session, weekly_plan.id, 1)

    for question in attempt.questions:
        assessor.answer(weekly_plan.id, 1, "student-1", question.question_id, "A")
    evaluation, result, _ = assessor.complete(db_session, weekly_plan.id, 1, "student-1")

    assert evaluation.passed and evaluation.score == 100
    assert result.score == 1.0
    assert result.concepts_tested == ["c", "b", "a"]
    stored = plan_repository.get_milestone_result(db_session, weekly_plan.id, 1)
    assert stored is not None and stored.id == result.id and stored.passed
    assert milestone_sessions.get(weekly_plan.id, 1, "student-1") is None
    with pytest.raises(MilestoneAlreadyEvaluatedError):
        assessor.start(db_session, weekly_plan.id, 1)


def test_answer_rejections(db_session, weekly_plan, fake_generator) -> None:
    assessor = MilestoneAssessor(fake_generator)
    attempt = assessor.start(db_session, weekly_plan.id, 1)
    first = attempt.questions[0].question_id

    _, question, answer = assessor.answer(weekly_plan.id, 1, "student-1", first, "B")
    assert answer.is_correct is False
    assert question.question_id == first

    with pytest.raises(MilestoneSessionError, match="already answered"):
        assessor.answer(weekly_plan.id, 1, "student-1", first, "A")
    with pytest.raises(MilestoneAttemptNotFoundError):
        assessor.answer(weekly_plan.id, 1, "student-1", "bogus", "A")
    with pytest.raises(MilestoneAttemptNotFoundError):
        assessor.answer(weekly_plan.id, 1, "someone-else", first, "A")
    late = attempt.started_at + timedelta(seconds=attempt.time_limit_seconds + 1)
    with pytest.raises(MilestoneSessionError, match="Time limit"):
        assessor.answer(weekly_plan.id, 1, "student-1", attempt.questions[1].question_id, "A", now=late)


def test_complete_requires_every_answer(db_session, weekly_plan, fake_generator) -> None:
    assessor = MilestoneAssessor(fake_generator)
    attempt = assessor.start(db_session, weekly_plan.id, 1)
    assessor.answer(weekly_plan.id, 1, "student-1", attempt.questions[0].question_id, "A")

    with pytest.raises(MilestoneSessionError, match="Only 1/6 questions answered."):
        assessor.complete(db_session, weekly_plan.id, 1, "student-1")


def test_start_rejects_unknown_week(db_session, weekly_plan, fake_generator) -> None:
    with pytest.raises(MilestoneNotFoundError):
        MilestoneAssessor(fake_generator).start(db_session, weekly_plan.id, 7)


def test_restarting_replaces_the_attempt(db_session, weekly_plan, fake_generator) -> None:
    assessor = MilestoneAssessor(fake_generator)
    first = assessor.start(db_session, weekly_plan.id, 1)
    assessor.answer(weekly_plan.id, 1, "student-1", first.questions[0].question_id, "A")

    second = assessor.start(db_session, weekly_plan.id, 1)

    stored = milestone_sessions.get(weekly_plan.id, 1, "student-1")
    assert stored is not None
    assert stored.answers == {}
    assert stored.started_at == second.started_at
