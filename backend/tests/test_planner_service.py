"""Tests for planner service defaults and backlog/completion workflows."""

from __future__ import annotations

from datetime import date, datetime, timezone
from pathlib import Path
from typing import List

from studyplan.cache import ScheduleCache
from studyplan.models import StudyPreferences, StudyUnit, Subject
from studyplan.performance_store import PerformanceProfileStore
from studyplan.planner_service import PlannerService, default_range, resolve_mock_exam_rules
from studyplan.telemetry import TelemetryEvent, clear_listeners, register_listener

TODAY = date(2024, 3, 13)


def _service(tmp_path: Path) -> PlannerService:
    return PlannerService(cache=ScheduleCache(), store=PerformanceProfileStore(tmp_path / "profiles.json"))


def _unit(unit_id: str, day: date, **overrides) -> StudyUnit:
    payload = {
        "id": unit_id,
        "subject_id": "math",
        "date": day,
        "start_time": "09:00",
        "end_time": "10:00",
        "duration_minutes": 60,
        "unit_kind": "LESSON",
        "session_type": "theory",
    }
    payload.update(overrides)
    return StudyUnit(**payload)


def test_mock_exam_rules_follow_goal_and_intensity() -> None:
    medicine = resolve_mock_exam_rules(
        StudyPreferences(goal="Medicina", intensity="intense", exam_date=date(2024, 5, 1)), TODAY
    )
    assert medicine.min_lessons_before_simulated == 18
    assert medicine.min_practice_before_simulated == 11
    assert medicine.min_lessons_per_subject == 3
    assert medicine.min_lessons_before_area_simulated == 8
    assert medicine.frequency_days == 5

    relaxed = resolve_mock_exam_rules(StudyPreferences(intensity="light"), TODAY)
    assert relaxed.frequency_days == 21
    assert relaxed.min_lessons_before_simulated == 22
    assert relaxed.min_practice_before_simulated == 10

    civil = resolve_mock_exam_rules(StudyPreferences(goal="concurso"), TODAY)
    assert civil.min_lessons_before_simulated == 16
    assert civil.frequency_days == 14


def test_default_range_uses_current_week() -> None:
    assert default_range(None, None, TODAY) == (date(2024, 3, 11), date(2024, 3, 17))
    assert default_range(date(2024, 3, 20), date(2024, 3, 1), TODAY) == (date(2024, 3, 20), date(2024, 3, 26))
    assert default_range(date(2024, 3, 20), date(2024, 3, 30), TODAY) == (date(2024, 3, 20), date(2024, 3, 30))


def test_reschedule_emits_telemetry(tmp_path: Path) -> None:
    captured: List[TelemetryEvent] = []
    clear_listeners()
    register_listener(captured.append)
    try:
        result = _service(tmp_path).reschedule_backlog(
            [_unit("late", date(2024, 3, 11)), _unit("today", TODAY)],
            TODAY,
            daily_capacity_by_date={TODAY: 240},
        )
    finally:
        clear_listeners()

    assert result.moved_count == 1
    assert [event.name for event in captured] == ["backlog_reschedule"]
    assert captured[0].payload["status"] == "success"
    assert captured[0].payload["backlog_before"] == 1
    assert captured[0].payload["backlog_after"] == 0


def test_completion_feeds_the_summary(tmp_path: Path) -> None:
    service = _service(tmp_path)
    subject = Subject(id="math", name="Matemática", difficulty=7)
    captured: List[TelemetryEvent] = []
    clear_listeners()
    register_listener(captured.append)
    try:
        completed_at = datetime(2024, 3, 13, 10, tzinfo=timezone.utc)
        service.record_completion("ana", _unit("u-1", TODAY), subject, 60, completed_at)
    finally:
        clear_listeners()

    assert captured[0].name == "unit_completion_recorded"
    assert captured[0].payload["learner_id"] == "ana"

    summary = service.performance_summary("ana", now=datetime(2024, 3, 13, 20, tzinfo=timezone.utc))
    assert summary.strongest_subject is not None
    assert summary.strongest_subject.name == "Matemática"
    assert summary.consistency_rate == 1.0
