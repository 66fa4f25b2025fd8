"""Orchestration of the planner engines for the HTTP layer."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from .adaptive_scoring import summarize_performance
from .backlog_rescheduler import auto_reschedule, detect_backlog
from .cache import ScheduleCache, build_schedule_fingerprint, schedule_cache
from .config import get_settings
from .models import (
    BacklogEntry,
    CompletionUpdate,
    MockExamRules,
    PerformanceSummary,
    RescheduleResult,
    ScheduleRequest,
    ScheduleResult,
    StudyPreferences,
    StudyUnit,
    Subject,
)
from .performance_store import PerformanceProfileStore, performance_store
from .schedule_synthesizer import ScheduleSynthesizer, synthesizer
from .subject_meta import normalize_text
from .telemetry import emit_event, timed_event
from .timeutils import add_minutes, ensure_aware, utcnow

logger = logging.getLogger(__name__)

_GOAL_ALIASES = {
    "medicina": "medicine",
    "medicine": "medicine",
    "concurso": "civil_service",
    "civil service": "civil_service",
    "civil_service": "civil_service",
    "enem": "enem",
}


def resolve_mock_exam_rules(preferences: StudyPreferences, today: Optional[date] = None) -> MockExamRules:
    """Derive mock-exam thresholds from the learner's goal, intensity and exam date."""
    today = today or utcnow().date()
    days_to_exam = (preferences.exam_date - today).days if preferences.exam_date else None
    base_frequency = 7 if days_to_exam is not None and days_to_exam <= 90 else 14
    if preferences.intensity == "intense":
        frequency_days = max(5, base_frequency - 3)
        lesson_delta, practice_delta = -2, -1
    elif preferences.intensity == "light":
        frequency_days = base_frequency + 7
        lesson_delta, practice_delta = 2, 2
    else:
        frequency_days = base_frequency
        lesson_delta, practice_delta = 0, 0

    goal = _GOAL_ALIASES.get(normalize_text(preferences.goal))
    if goal == "medicine":
        lessons, practice, per_subject, area_lessons = 20, 12, 3, 8
    elif goal == "civil_service":
        lessons, practice, per_subject, area_lessons = 16, 10, 2, 6
    elif goal == "enem":
        lessons, practice, per_subject, area_lessons = 20, 12, 2, 8
    else:
        lessons, practice, per_subject, area_lessons = 20, 8, 2, 6

    return MockExamRules(
        min_lessons_before_simulated=max(8, lessons + lesson_delta),
        min_practice_before_simulated=max(4, practice + practice_delta),
        min_lessons_per_subject=per_subject,
        min_days_before_simulated=14,
        frequency_days=frequency_days,
        min_lessons_before_area_simulated=area_lessons,
        min_days_before_area_simulated=7,
    )


def default_window_end(window_start: str, hours_per_day: float) -> str:
    configured = get_settings().default_window_end
    if configured:
        return configured
    return add_minutes(window_start, max(60, int(round(hours_per_day * 60))))


class PlannerService:
    """Cached synthesis plus backlog and completion workflows with telemetry."""

    def __init__(
        self,
        engine: ScheduleSynthesizer = synthesizer,
        cache: ScheduleCache = schedule_cache,
        store: PerformanceProfileStore = performance_store,
    ) -> None:
        self._engine = engine
        self._cache = cache
        self._store = store

    def generate(self, request: ScheduleRequest, *, use_cache: Optional[bool] = None) -> ScheduleResult:
        settings = get_settings()
        cache_enabled = settings.schedule_cache_enabled if use_cache is None else use_cache
        fingerprint = build_schedule_fingerprint(request) if cache_enabled else None

        if fingerprint is not None:
            self._cache.configure(settings.schedule_cache_ttl_seconds)
            cached = self._cache.get(fingerprint)
            if cached is not None:
                cached.cache_hit = True
                emit_event(
                    "schedule_generation",
                    status="cache_hit",
                    duration_ms=0.0,
                    unit_count=len(cached.units),
                    total_hours=cached.total_hours,
                )
                return cached

        try:
            with timed_event(
                "schedule_generation", start_date=request.start_date, end_date=request.end_date
            ) as event:
                result = self._engine.generate(request)
                event.update(unit_count=len(result.units), total_hours=result.total_hours)
        except Exception:
            logger.exception("Failed to generate schedule for %s..%s", request.start_date, request.end_date)
            raise

        if fingerprint is not None:
            self._cache.set(fingerprint, result)
        return result

    def detect_backlog(
        self, units: Iterable[StudyUnit], today: date, subjects: Optional[Iterable[Subject]] = None
    ) -> List[BacklogEntry]:
        return detect_backlog(units, today, subjects)

    def reschedule_backlog(
        self,
        units: Iterable[StudyUnit],
        today: date,
        *,
        daily_capacity_by_date: Optional[Dict[date, int]] = None,
        allowed_weekdays: Optional[Iterable[int]] = None,
        quota_ratio: Optional[float] = None,
        lookahead_days: Optional[int] = None,
        max_backlog_subjects_per_day: Optional[int] = None,
        subjects: Optional[Iterable[Subject]] = None,
        now: Optional[datetime] = None,
    ) -> RescheduleResult:
        settings = get_settings()
        try:
            with timed_event("backlog_reschedule", today=today) as event:
                result = auto_reschedule(
                    units,
                    today,
                    daily_capacity_by_date=daily_capacity_by_date,
                    allowed_weekdays=allowed_weekdays,
                    quota_ratio=settings.backlog_quota_ratio if quota_ratio is None else quota_ratio,
                    lookahead_days=settings.backlog_lookahead_days if lookahead_days is None else lookahead_days,
                    max_backlog_subjects_per_day=(
                        settings.backlog_max_subjects_per_day
                        if max_backlog_subjects_per_day is None
                        else max_backlog_subjects_per_day
                    ),
                    subjects=subjects,
                    now=now,
                )
                event.update(
                    backlog_before=result.backlog_before,
                    backlog_after=result.backlog_after,
                    moved_count=result.moved_count,
                    pending_backlog_count=result.pending_backlog_count,
                )
        except Exception:
            logger.exception("Failed to redistribute backlog for %s", today)
            raise

        if result.pending_backlog_count:
            logger.warning(
                "Backlog could not be fully redistributed: %s units still pending", result.pending_backlog_count
            )
        return result

    def record_completion(
        self,
        learner_id: str,
        unit: StudyUnit,
        subject: Optional[Subject],
        minutes_spent: float,
        now: Optional[datetime] = None,
    ) -> CompletionUpdate:
        update = self._store.record_completion(learner_id, unit, subject, minutes_spent, now)
        if update.snapshot is not None:
            emit_event(
                "unit_completion_recorded",
                learner_id=learner_id,
                subject_id=update.snapshot.subject_id,
                unit_id=update.snapshot.unit_id,
                session_kind=update.snapshot.session_kind,
                accuracy_rate=update.snapshot.accuracy_rate,
                rolling_accuracy=update.rolling_accuracy,
            )
        return update

    def performance_summary(
        self,
        learner_id: str,
        subjects: Optional[Iterable[Subject]] = None,
        exam_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> PerformanceSummary:
        store = self._store.get(learner_id)
        if subjects is None:
            subjects = [
                Subject(id=profile.subject_id, name=profile.subject_name or profile.subject_id, area=profile.area)
                for profile in store.subjects.values()
            ]
        return summarize_performance(store, subjects, exam_date, ensure_aware(now) if now else None)


def default_range(start: Optional[date], end: Optional[date], today: date) -> Tuple[date, date]:
    """Fall back to the current week when no explicit range is given."""
    start = start or today - timedelta(days=today.weekday())
    if end is None or end < start:
        end = start + timedelta(days=6)
    return start, end


planner_service = PlannerService()

__all__ = [
    "PlannerService",
    "default_range",
    "default_window_end",
    "planner_service",
    "resolve_mock_exam_rules",
]
