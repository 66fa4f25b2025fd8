"""HTTP tests for the planner and performance routers."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from studyplan.cache import ScheduleCache
from studyplan.main import app
from studyplan.performance_store import PerformanceProfileStore
from studyplan.planner_service import PlannerService

SUBJECTS = [
    {"id": "math", "name": "Matemática", "priority": 9, "difficulty": 7, "topics": ["Functions"]},
    {"id": "port", "name": "Português", "priority": 8, "difficulty": 5},
    {"id": "hist", "name": "História", "priority": 5, "difficulty": 4},
]


def _unit(unit_id: str, day: str, **overrides) -> dict:
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
    return payload


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    service = PlannerService(cache=ScheduleCache(), store=PerformanceProfileStore(tmp_path / "profiles.json"))
    monkeypatch.setattr("studyplan.planner_routes.planner_service", service)
    monkeypatch.setattr("studyplan.performance_routes.planner_service", service)
    return TestClient(app)


def test_healthz(client: TestClient) -> None:
    response = client.get("/healthz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["cache"] in {"enabled", "disabled"}


def test_generate_requires_subjects(client: TestClient) -> None:
    response = client.post("/api/planner/generate", json={"subjects": []})

    assert response.status_code == 400
    assert response.json()["detail"] == "No subjects supplied to generate a schedule."


def test_generate_returns_units_and_meta(client: TestClient) -> None:
    body = {
        "subjects": SUBJECTS,
        "preferences": {"hours_per_day": 3},
        "schedule_range": {"start_date": "2024-03-04", "end_date": "2024-03-10"},
        "today": "2024-03-04",
    }

    response = client.post("/api/planner/generate", json=body)

    assert response.status_code == 200
    payload = response.json()
    assert payload["schedule_range"] == {"start_date": "2024-03-04", "end_date": "2024-03-10"}
    assert payload["meta"]["total_units"] > 0
    assert payload["meta"]["cache_hit"] is False
    assert payload["phase_by_date"]["2024-03-04"] == "base"
    study = [unit for unit in payload["units"] if not unit["is_break"]]
    assert study[0]["date"] == "2024-03-04"
    assert study[0]["start_time"] == "09:00"
    assert all(unit["end_time"] <= "12:00" for unit in payload["units"])


def test_generate_defaults_to_current_week(client: TestClient) -> None:
    body = {"subjects": SUBJECTS, "preferences": {"hours_per_day": 2}, "today": "2024-03-06"}

    response = client.post("/api/planner/generate", json=body)

    assert response.status_code == 200
    assert response.json()["schedule_range"] == {"start_date": "2024-03-04", "end_date": "2024-03-10"}


def test_repeated_generation_is_served_from_cache(client: TestClient) -> None:
    body = {
        "subjects": SUBJECTS,
        "preferences": {"hours_per_day": 2},
        "schedule_range": {"start_date": "2024-03-04", "end_date": "2024-03-06"},
        "today": "2024-03-04",
    }

    first = client.post("/api/planner/generate", json=body).json()
    second = client.post("/api/planner/generate", json=body).json()

    assert first["meta"]["cache_hit"] is False
    assert second["meta"]["cache_hit"] is True
    assert second["units"] == first["units"]


def test_backlog_listing(client: TestClient) -> None:
    body = {
        "today": "2024-03-13",
        "units": [
            _unit("late", "2024-03-11"),
            _unit("upcoming", "2024-03-14"),
            _unit("skipped", "2024-03-13", status="skipped"),
        ],
    }

    response = client.post("/api/planner/backlog", json=body)

    assert response.status_code == 200
    payload = response.json()
    assert payload["count"] == 2
    assert {entry["unit"]["id"] for entry in payload["entries"]} == {"late", "skipped"}


def test_backlog_reschedule(client: TestClient) -> None:
    body = {
        "today": "2024-03-13",
        "units": [_unit("late", "2024-03-11"), _unit("today", "2024-03-13")],
        "daily_capacity_by_date": {"2024-03-13": 240},
    }

    response = client.post("/api/planner/backlog/reschedule", json=body)

    assert response.status_code == 200
    payload = response.json()
    moved = next(unit for unit in payload["units"] if unit["id"] == "late")
    assert moved["date"] == "2024-03-13"
    assert moved["start_time"] == "10:00"
    assert moved["status"] == "rescheduled"
    assert payload["backlog_after"] == 0
    assert payload["changed_unit_ids"] == ["late"]


def test_completion_and_summary(client: TestClient) -> None:
    body = {
        "learner_id": "ana",
        "unit": _unit("2024-03-04-001", "2024-03-04", topic_name="Functions"),
        "subject": SUBJECTS[0],
        "minutes_spent": 60,
        "completed_at": "2024-03-04T10:00:00Z",
    }

    response = client.post("/api/performance/completions", json=body)

    assert response.status_code == 200
    payload = response.json()
    assert payload["recorded"] is True
    assert payload["snapshot"]["session_kind"] == "LESSON"
    assert payload["rolling_accuracy"] == pytest.approx(0.91)
    assert payload["profile"]["topic_progress"]["Functions"]["sessions_count"] == 1

    summary = client.get("/api/performance/ana/summary")
    assert summary.status_code == 200
    assert summary.json()["strongest_subject"]["id"] == "math"


def test_break_completion_is_not_recorded(client: TestClient) -> None:
    body = {
        "learner_id": "ana",
        "unit": _unit("2024-03-04-002", "2024-03-04", subject_id="break", is_break=True, unit_kind=None),
        "minutes_spent": 10,
    }

    response = client.post("/api/performance/completions", json=body)

    assert response.status_code == 200
    assert response.json() == {"recorded": False, "profile": None, "snapshot": None, "rolling_accuracy": None}


def test_blank_learner_is_rejected(client: TestClient) -> None:
    body = {
        "learner_id": "   ",
        "unit": _unit("2024-03-04-001", "2024-03-04"),
        "subject": SUBJECTS[0],
        "minutes_spent": 60,
    }

    response = client.post("/api/performance/completions", json=body)

    assert response.status_code == 400
