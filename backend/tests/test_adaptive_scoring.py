"""Unit tests for adaptive priority factors and completion roll-ups."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional

import pytest

from studyplan.adaptive_scoring import (
    SESSION_HISTORY_LIMIT,
    apply_completion_update,
    compute_factors,
    compute_priority_score,
    difficulty_factor,
    error_rate_factor,
    exam_proximity_factor,
    infer_learner_level,
    infer_session_accuracy,
    summarize_performance,
    time_without_study_factor,
)
from studyplan.models import (
    PerformanceSnapshot,
    PerformanceStore,
    StudyPreferences,
    StudyUnit,
    Subject,
    SubjectPerformanceProfile,
)
from studyplan.subject_meta import exam_tier, exam_weight

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _subject(**overrides) -> Subject:
    payload = {"id": "math", "name": "Matemática", "priority": 8, "difficulty": 6}
    payload.update(overrides)
    return Subject(**payload)


def _unit(unit_kind: Optional[str] = "LESSON", minutes: int = 60, **overrides) -> StudyUnit:
    payload = {
        "id": f"{(unit_kind or 'break').lower()}-1",
        "subject_id": "math",
        "date": date(2024, 1, 1),
        "start_time": "09:00",
        "end_time": "10:00",
        "duration_minutes": minutes,
        "unit_kind": unit_kind,
    }
    payload.update(overrides)
    return StudyUnit(**payload)


def test_subject_ranges_are_clamped() -> None:
    subject = _subject(priority=15, difficulty=-3, exam_tier=9)

    assert subject.priority == 10
    assert subject.difficulty == 1
    assert subject.exam_tier == 5


def test_exam_weight_inference() -> None:
    assert exam_weight(_subject()) == 1.0
    assert exam_weight(_subject(name="Português")) == 0.95
    assert exam_weight(_subject(name="Redação")) == 0.9
    assert exam_weight(_subject(name="Química")) == 0.75
    assert exam_weight(_subject(name="Filosofia")) == 0.7
    assert exam_weight(_subject(name="Music")) == 0.5
    assert exam_weight(_subject(name="Music", exam_weight=2.0)) == 1.0
    assert exam_weight(_subject(name="Music", exam_weight=0.01)) == 0.1
    assert exam_tier(_subject(priority=8)) == 4
    assert exam_tier(_subject(exam_tier=2)) == 2


def test_difficulty_factor_adjusts_for_learner_level() -> None:
    assert difficulty_factor(10, "beginner") == pytest.approx(1.836)
    assert difficulty_factor(5, "intermediate") == pytest.approx(1.2)
    assert difficulty_factor(5, "advanced") == pytest.approx(1.14)


def test_time_without_study_factor_caps_after_two_weeks() -> None:
    assert time_without_study_factor(None, NOW) == pytest.approx(1.35)
    assert time_without_study_factor(NOW - timedelta(days=3), NOW) == pytest.approx(1.24)
    assert time_without_study_factor(NOW - timedelta(days=30), NOW) == pytest.approx(2.12)
    assert time_without_study_factor(NOW.replace(tzinfo=None), NOW) == pytest.approx(1.0)


def test_error_rate_factor_prefers_explicit_error_rate() -> None:
    assert error_rate_factor(None) == pytest.approx(1.34)
    assert error_rate_factor(SubjectPerformanceProfile(subject_id="math", error_rate=0.01)) == pytest.approx(0.86)
    assert error_rate_factor(SubjectPerformanceProfile(subject_id="math", accuracy_rate=0.7)) == pytest.approx(1.16)


@pytest.mark.parametrize(
    ("days_left", "expected"),
    [(0, 1.35), (19, 1.3), (45, 1.2), (80, 1.12), (150, 1.05), (400, 1.0)],
)
def test_exam_proximity_bands(days_left: int, expected: float) -> None:
    exam_date = (NOW + timedelta(days=days_left)).date()

    assert exam_proximity_factor(exam_date, NOW) == pytest.approx(expected)


def test_exam_proximity_without_exam_date_is_neutral() -> None:
    assert exam_proximity_factor(None, NOW) == 1.0


def test_priority_score_is_product_of_factors() -> None:
    subject = _subject()
    exam_date = (NOW + timedelta(days=20)).date()

    factors = compute_factors(subject, None, NOW, exam_date)
    score = compute_priority_score(subject, None, NOW, exam_date)

    expected = (
        factors.weight
        * factors.difficulty_factor
        * factors.time_without_study_factor
        * factors.error_rate_factor
        * factors.exam_proximity_factor
    )
    assert score == round(expected, 4)
    assert factors.weight == 1.0
    assert factors.exam_proximity_factor == pytest.approx(1.3)


def test_infer_learner_level() -> None:
    subjects = [_subject(difficulty=7), _subject(id="phys", name="Física", difficulty=8)]
    weak = PerformanceStore(subjects={"math": SubjectPerformanceProfile(subject_id="math", accuracy_rate=0.5)})
    strong = PerformanceStore(subjects={"math": SubjectPerformanceProfile(subject_id="math", accuracy_rate=0.8)})

    assert infer_learner_level(StudyPreferences(learner_level="advanced"), subjects, weak) == "advanced"
    assert infer_learner_level(None, subjects, weak) == "beginner"
    assert infer_learner_level(None, subjects, strong) == "advanced"
    assert infer_learner_level(None, subjects) == "intermediate"


def test_session_accuracy_band() -> None:
    assert infer_session_accuracy(_unit(), 60) == pytest.approx(0.91)
    assert infer_session_accuracy(_unit(), 30) == pytest.approx(0.83)
    assert infer_session_accuracy(_unit("FULL_MOCK_EXAM", 120), 120) == pytest.approx(0.63)


def test_completion_creates_profile_without_mutating_input() -> None:
    store = PerformanceStore()

    update = apply_completion_update(store, _unit(topic_name="Functions"), _subject(), 60, NOW)

    assert store.subjects == {}
    assert store.session_history == []
    snapshot = update.snapshot
    assert snapshot is not None
    assert snapshot.session_kind == "LESSON"
    assert snapshot.accuracy_rate == pytest.approx(0.91)
    assert snapshot.focus_score == 82
    profile = update.store.subjects["math"]
    assert profile.total_sessions == 1
    assert profile.lesson_sessions == 1
    assert update.rolling_accuracy == pytest.approx(0.91)
    topic = profile.topic_progress["Functions"]
    assert topic.mastery == pytest.approx(8.0)
    assert topic.next_review_date == NOW + timedelta(days=1)
    activity = update.store.daily[date(2024, 1, 1)]
    assert activity.sessions == 1
    assert activity.hours == pytest.approx(1.0)
    assert activity.by_subject["math"].sessions == 1


def test_breaks_and_unknown_subjects_are_ignored() -> None:
    store = PerformanceStore()
    rest = _unit(subject_id="break", is_break=True, unit_kind=None)

    skipped = apply_completion_update(store, rest, _subject(), 10, NOW)
    assert skipped.snapshot is None
    assert skipped.store.subjects == {}
    assert skipped.store is store

    flagged = apply_completion_update(store, _unit(None, 10, is_break=True), _subject(), 10, NOW)
    assert flagged.snapshot is None
    assert flagged.store.session_history == []
    assert apply_completion_update(store, _unit(), None, 60, NOW).snapshot is None


def test_rolling_accuracy_converges_and_tracks_trend() -> None:
    subject = _subject()
    update = apply_completion_update(PerformanceStore(), _unit(topic_name="Functions"), subject, 60, NOW)
    first_rolling = update.rolling_accuracy

    update = apply_completion_update(update.store, _unit("EXERCISE", id="exercise-1"), subject, 60, NOW)
    assert update.store.subjects["math"].trend == pytest.approx(-0.2)

    previous_gap = abs(first_rolling - 0.71)
    for index in range(2, 10):
        update = apply_completion_update(update.store, _unit("EXERCISE", id=f"exercise-{index}"), subject, 60, NOW)
        gap = abs(update.rolling_accuracy - 0.71)
        assert gap < previous_gap
        previous_gap = gap

    review = apply_completion_update(update.store, _unit("REVIEW", topic_name="Functions"), subject, 60, NOW)
    topic = review.store.subjects["math"].topic_progress["Functions"]
    assert topic.mastery == pytest.approx(16.1)
    assert topic.sessions_count == 2
    assert topic.next_review_date == NOW + timedelta(days=7)


def test_session_history_is_bounded() -> None:
    history = [
        PerformanceSnapshot(
            recorded_at=NOW,
            subject_id="math",
            unit_id=f"old-{index}",
            session_kind="EXERCISE",
            minutes=30,
            accuracy_rate=0.7,
            error_rate=0.3,
            focus_score=80,
            productivity_score=80,
            difficulty_score=6.0,
        )
        for index in range(SESSION_HISTORY_LIMIT)
    ]
    store = PerformanceStore(session_history=history)

    update = apply_completion_update(store, _unit(), _subject(), 60, NOW)

    assert len(update.store.session_history) == SESSION_HISTORY_LIMIT
    assert update.store.session_history[-1].unit_id == "lesson-1"
    assert update.store.session_history[0].unit_id == "old-1"


def test_summary_reports_weakest_and_strongest_subjects() -> None:
    math = _subject()
    history = _subject(id="hist", name="História", difficulty=4)
    update = apply_completion_update(PerformanceStore(), _unit(), math, 60, NOW)
    update = apply_completion_update(
        update.store, _unit("EXERCISE", id="hist-1", subject_id="hist"), history, 30, NOW
    )

    summary = summarize_performance(update.store, [math, history], now=NOW + timedelta(hours=12))

    assert summary.weakest_subject is not None and summary.weakest_subject.id == "hist"
    assert summary.strongest_subject is not None and summary.strongest_subject.id == "math"
    assert summary.avg_accuracy_rate == pytest.approx((0.91 + 0.63) / 2)
    assert summary.consistency_rate == pytest.approx(1.0)
    assert -10.0 <= summary.projected_improvement_30d <= 30.0


def test_summary_of_empty_store_is_zeroed() -> None:
    summary = summarize_performance(PerformanceStore(), [_subject()], now=NOW)

    assert summary.avg_accuracy_rate == 0.0
    assert summary.weakest_subject is None
