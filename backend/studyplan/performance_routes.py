"""Performance analytics endpoints backed by the JSON profile store."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from .models import PerformanceSnapshot, PerformanceSummary, StudyUnit, Subject, SubjectPerformanceProfile
from .planner_service import planner_service

router = APIRouter(prefix="/api/performance", tags=["performance"])
logger = logging.getLogger(__name__)


class CompletionRequest(BaseModel):
    learner_id: str = Field(..., min_length=1)
    unit: StudyUnit
    subject: Optional[Subject] = None
    minutes_spent: float = Field(..., ge=0)
    completed_at: Optional[datetime] = None


class CompletionResponse(BaseModel):
    recorded: bool
    profile: Optional[SubjectPerformanceProfile] = None
    snapshot: Optional[PerformanceSnapshot] = None
    rolling_accuracy: Optional[float] = None


@router.post("/completions", response_model=CompletionResponse)
def record_completion(payload: CompletionRequest) -> CompletionResponse:
    try:
        update = planner_service.record_completion(
            payload.learner_id,
            payload.unit,
            payload.subject,
            payload.minutes_spent,
            payload.completed_at,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    if update.snapshot is None:
        logger.info("Ignoring completion of unit %s without a study subject", payload.unit.id)
        return CompletionResponse(recorded=False)
    return CompletionResponse(
        recorded=True,
        profile=update.store.subjects.get(update.snapshot.subject_id),
        snapshot=update.snapshot,
        rolling_accuracy=update.rolling_accuracy,
    )


@router.get("/{learner_id}/summary", response_model=PerformanceSummary)
def performance_summary(
    learner_id: str,
    exam_date: Optional[date] = Query(default=None),
) -> PerformanceSummary:
    try:
        return planner_service.performance_summary(learner_id, exam_date=exam_date)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


__all__ = ["router"]
