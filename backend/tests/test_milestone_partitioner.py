from __future__ import annotations

from learning_gps.milestone_partitioner import (
    EstimatedConcept,
    partition_into_weeks,
    requires_milestone_check,
)


def _concepts(*hours: float) -> list[EstimatedConcept]:
    return [EstimatedConcept(code=f"c{i}", title=f"Concept {i}", hours=h) for i, h in enumerate(hours, start=1)]


def test_weeks_fill_greedily_in_sequence_order() -> None:
    weeks = partition_into_weeks(_concepts(1.0, 1.5, 1.0, 2.0), 3.0)

    assert [week.concepts for week in weeks] == [["c1", "c2"], ["c3", "c4"]]
    assert [week.estimated_hours for week in weeks] == [2.5, 3.0]
    assert [week.week_number for week in weeks] == [1, 2]
    assert weeks[0].concept_titles == ["Concept 1", "Concept 2"]


def test_oversized_concept_gets_its_own_week() -> None:
    weeks = partition_into_weeks(_concepts(0.5, 6.0, 0.5), 2.0)

    assert [week.concepts for week in weeks] == [["c1"], ["c2"], ["c3"]]
    assert weeks[1].estimated_hours == 6.0


def test_cumulative_progress_tracks_hours_and_ends_at_100() -> None:
    weeks = partition_into_weeks(_concepts(1.0, 1.0, 1.0), 1.0)

    assert [week.cumulative_progress for week in weeks] == [33, 67, 100]


def test_zero_hour_concepts_are_skipped() -> None:
    weeks = partition_into_weeks(_concepts(0.0, 1.0), 3.0)

    assert len(weeks) == 1
    assert weeks[0].concepts == ["c2"]
    assert partition_into_weeks(_concepts(0.0, 0.0), 3.0) == []


def test_milestone_checks_follow_interval_and_final_week() -> None:
    weeks = partition_into_weeks(_concepts(1, 1, 1, 1, 1), 1.0, check_interval_weeks=2)

    assert [week.milestone_check for week in weeks] == [False, True, False, True, True]
    assert requires_milestone_check(3, interval_weeks=1, is_final=False)
    assert requires_milestone_check(3, interval_weeks=0, is_final=False)
