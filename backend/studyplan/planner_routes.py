"""Planner REST endpoints: schedule generation and backlog redistribution."""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from .config import get_settings
from .models import (
    BacklogEntry,
    DailyWindow,
    RescheduleResult,
    ScheduleRequest,
    StudyPreferences,
    StudyUnit,
    Subject,
    SubjectPerformanceProfile,
    TimeSpan,
)
from .planner_service import default_range, default_window_end, planner_service, resolve_mock_exam_rules
from .timeutils import utcnow

router = APIRouter(prefix="/api/planner", tags=["planner"])
logger = logging.getLogger(__name__)


class ScheduleRangePayload(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class WindowSettingsPayload(BaseModel):
    preferred_start: Optional[str] = None
    preferred_end: Optional[str] = None
    max_unit_minutes: Optional[int] = Field(default=None, ge=1)
    break_minutes: Optional[int] = Field(default=None, ge=0)
    rest_days: List[int] = Field(default_factory=list)
    overrides_by_date: Dict[date, TimeSpan] = Field(default_factory=dict)


class GeneratePlanRequest(BaseModel):
    subjects: List[Subject] = Field(default_factory=list)
    preferences: StudyPreferences = Field(default_factory=StudyPreferences)
    schedule_range: Optional[ScheduleRangePayload] = None
    window: WindowSettingsPayload = Field(default_factory=WindowSettingsPayload)
    daily_limits: Dict[date, int] = Field(default_factory=dict)
    first_cycle_all_subjects: bool = True
    performance_profiles: Dict[str, SubjectPerformanceProfile] = Field(default_factory=dict)
    today: Optional[date] = None


class PlanMeta(BaseModel):
    total_hours: float
    total_units: int
    cache_hit: bool


class GeneratePlanResponse(BaseModel):
    units: List[StudyUnit]
    schedule_range: ScheduleRangePayload
    subject_distribution: Dict[str, float]
    phase_by_date: Dict[str, str]
    meta: PlanMeta


class BacklogRequest(BaseModel):
    units: List[StudyUnit] = Field(default_factory=list)
    today: date
    subjects: List[Subject] = Field(default_factory=list)


class BacklogResponse(BaseModel):
    entries: List[BacklogEntry]
    count: int


class RescheduleRequest(BacklogRequest):
    daily_capacity_by_date: Dict[date, int] = Field(default_factory=dict)
    allowed_weekdays: List[int] = Field(default_factory=list)
    quota_ratio: Optional[float] = None
    lookahead_days: Optional[int] = None
    max_backlog_subjects_per_day: Optional[int] = None


def build_schedule_request(payload: GeneratePlanRequest) -> ScheduleRequest:
    """Fill window, range and mock-exam defaults the way the planner screen expects."""
    settings = get_settings()
    today = payload.today or utcnow().date()
    requested = payload.schedule_range or ScheduleRangePayload()
    start_date, end_date = default_range(requested.start_date, requested.end_date, today)

    window_start = payload.window.preferred_start or settings.default_window_start
    window_end = payload.window.preferred_end or default_window_end(window_start, payload.preferences.hours_per_day)

    return ScheduleRequest(
        subjects=payload.subjects,
        preferences=payload.preferences,
        start_date=start_date,
        end_date=end_date,
        window=DailyWindow(
            start=window_start,
            end=window_end,
            max_unit_minutes=max(25, payload.window.max_unit_minutes or settings.default_block_minutes),
            break_minutes=max(5, payload.window.break_minutes or settings.default_break_minutes),
            rest_days=payload.window.rest_days,
            overrides_by_date=payload.window.overrides_by_date,
        ),
        daily_capacity_overrides=payload.daily_limits,
        first_cycle_all_subjects=payload.first_cycle_all_subjects,
        mock_exam_rules=resolve_mock_exam_rules(payload.preferences, today),
        performance_profiles=payload.performance_profiles,
    )


@router.post("/generate", response_model=GeneratePlanResponse)
def generate_plan(payload: GeneratePlanRequest) -> GeneratePlanResponse:
    if not payload.subjects:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No subjects supplied to generate a schedule.",
        )

    request = build_schedule_request(payload)
    result = planner_service.generate(request)
    return GeneratePlanResponse(
        units=result.units,
        schedule_range=ScheduleRangePayload(start_date=request.start_date, end_date=request.end_date),
        subject_distribution=result.subject_distribution,
        phase_by_date=result.phase_by_date,
        meta=PlanMeta(
            total_hours=result.total_hours,
            total_units=sum(1 for unit in result.units if not unit.is_break),
            cache_hit=result.cache_hit,
        ),
    )


@router.post("/backlog", response_model=BacklogResponse)
def list_backlog(payload: BacklogRequest) -> BacklogResponse:
    entries = planner_service.detect_backlog(payload.units, payload.today, payload.subjects)
    return BacklogResponse(entries=entries, count=len(entries))


@router.post("/backlog/reschedule", response_model=RescheduleResult)
def reschedule_backlog(payload: RescheduleRequest) -> RescheduleResult:
    return planner_service.reschedule_backlog(
        payload.units,
        payload.today,
        daily_capacity_by_date=payload.daily_capacity_by_date,
        allowed_weekdays=payload.allowed_weekdays,
        quota_ratio=payload.quota_ratio,
        lookahead_days=payload.lookahead_days,
        max_backlog_subjects_per_day=payload.max_backlog_subjects_per_day,
        subjects=payload.subjects,
    )


__all__ = ["build_schedule_request", "router"]
