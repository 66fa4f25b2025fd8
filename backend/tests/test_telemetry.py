from __future__ import annotations

import logging
from datetime import date
from typing import List

import pytest

from studyplan.telemetry import TelemetryEvent, clear_listeners, emit_event, register_listener, timed_event


@pytest.fixture(autouse=True)
def _reset_listeners():
    clear_listeners()
    yield
    clear_listeners()


def test_events_are_logged_and_dates_serialised(caplog: pytest.LogCaptureFixture) -> None:
    captured: List[TelemetryEvent] = []
    register_listener(captured.append)

    telemetry_logger = logging.getLogger("studyplan.telemetry")
    telemetry_logger.addHandler(caplog.handler)
    try:
        with caplog.at_level(logging.INFO, logger="studyplan.telemetry"):
            emit_event("schedule_generation", status="success", start_date=date(2024, 3, 4))
    finally:
        telemetry_logger.removeHandler(caplog.handler)

    assert captured[0].payload == {"status": "success", "start_date": "2024-03-04"}
    assert any('"event": "schedule_generation"' in record.getMessage() for record in caplog.records)


def test_unregister_and_failing_listeners() -> None:
    captured: List[TelemetryEvent] = []

    def explode(event: TelemetryEvent) -> None:
        raise ValueError("listener bug")

    register_listener(explode)
    unregister = register_listener(captured.append)
    emit_event("first")
    unregister()
    emit_event("second")

    assert [event.name for event in captured] == ["first"]


def test_timed_event_merges_results_and_reports_errors() -> None:
    captured: List[TelemetryEvent] = []
    register_listener(captured.append)

    with timed_event("backlog_reschedule", today="2024-03-13") as event:
        event["moved_count"] = 2

    with pytest.raises(KeyError):
        with timed_event("backlog_reschedule"):
            raise KeyError("missing")

    success, failure = captured
    assert success.payload["status"] == "success"
    assert success.payload["moved_count"] == 2
    assert success.payload["duration_ms"] >= 0
    assert failure.payload["status"] == "error"
    assert failure.payload["exception_type"] == "KeyError"
