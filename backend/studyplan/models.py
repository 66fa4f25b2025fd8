"""Planner data contracts exchanged with the surrounding application."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

UnitKind = Literal["LESSON", "EXERCISE", "REVIEW", "AREA_MOCK_EXAM", "FULL_MOCK_EXAM", "ANALYSIS"]
SessionType = Literal["theory", "practice", "review", "mock_exam"]
UnitStatus = Literal["scheduled", "in-progress", "completed", "skipped", "rescheduled"]
SubjectLevel = Literal["basic", "intermediate", "advanced"]
LearnerLevel = Literal["beginner", "intermediate", "advanced"]
Intensity = Literal["light", "normal", "intense"]

MOCK_EXAM_SUBJECT_ID = "mock-exam"
BREAK_SUBJECT_ID = "break"
MOCK_EXAM_KINDS = frozenset({"AREA_MOCK_EXAM", "FULL_MOCK_EXAM"})


def _clamp_int(value: Any, low: int, high: int, fallback: int) -> int:
    try:
        coerced = int(round(float(value)))
    except (TypeError, ValueError):
        return fallback
    return max(low, min(high, coerced))


class Subject(BaseModel):
    """Topic of study owned by the subject-management collaborator."""

    id: str
    name: str
    priority: int = 5
    difficulty: int = 5
    weekly_target_hours: float = Field(default=1.0, ge=0.0)
    area: Optional[str] = None
    level: Optional[SubjectLevel] = None
    exam_weight: Optional[float] = None
    exam_tier: Optional[int] = None
    completed_hours: float = Field(default=0.0, ge=0.0)
    session_count: int = Field(default=0, ge=0)
    average_score: float = Field(default=0.0, ge=0.0)
    topics: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    def _clamp_ranges(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if data.get("priority") is not None:
                data["priority"] = _clamp_int(data["priority"], 1, 10, 5)
            if data.get("difficulty") is not None:
                data["difficulty"] = _clamp_int(data["difficulty"], 1, 10, 5)
            if data.get("exam_tier") is not None:
                data["exam_tier"] = _clamp_int(data["exam_tier"], 1, 5, 3)
        return data


class StudyUnit(BaseModel):
    """One scheduled interval (study or break) on the calendar."""

    id: str
    subject_id: str
    date: date
    start_time: str
    end_time: str
    duration_minutes: int = Field(ge=0)
    is_break: bool = False
    unit_kind: Optional[UnitKind] = None
    session_type: Optional[SessionType] = None
    status: UnitStatus = "scheduled"
    phase: Optional[str] = None
    area: Optional[str] = None
    reschedule_count: int = Field(default=0, ge=0)
    original_date: Optional[date] = None
    related_subject_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    topic_name: Optional[str] = None
    stage_index: Optional[int] = Field(default=None, ge=1)
    stage_total: Optional[int] = Field(default=None, ge=1)
    adaptive_score: Optional[float] = None
    description: Optional[str] = None

    @property
    def is_mock_exam(self) -> bool:
        return self.unit_kind in MOCK_EXAM_KINDS


class StudyPreferences(BaseModel):
    """Learner scheduling preferences."""

    hours_per_day: float = Field(default=2.0, ge=0.0)
    days_of_week: List[int] = Field(default_factory=list)
    goal: Optional[str] = None
    intensity: Intensity = "normal"
    exam_date: Optional[date] = None
    learner_level: Optional[LearnerLevel] = None


class TimeSpan(BaseModel):
    start: str
    end: str


class DailyWindow(BaseModel):
    """Time-window configuration applied to every schedulable day."""

    start: str = "09:00"
    end: str = "18:00"
    max_unit_minutes: int = Field(default=60, ge=1)
    break_minutes: int = Field(default=10, ge=0)
    rest_days: List[int] = Field(default_factory=list)
    overrides_by_date: Dict[date, TimeSpan] = Field(default_factory=dict)


class MockExamRules(BaseModel):
    """Eligibility thresholds for area and full mock exams."""

    min_lessons_before_simulated: int = Field(default=10, ge=0)
    min_lessons_per_subject: int = Field(default=2, ge=0)
    min_days_before_simulated: int = Field(default=14, ge=0)
    frequency_days: int = Field(default=7, ge=0)
    min_lessons_before_area_simulated: int = Field(default=6, ge=0)
    min_days_before_area_simulated: int = Field(default=7, ge=0)
    min_practice_before_simulated: Optional[int] = Field(default=None, ge=0)


class TopicProgress(BaseModel):
    topic_name: str
    mastery: float = Field(default=0.0, ge=0.0, le=100.0)
    accuracy_rate: float = 0.5
    sessions_count: int = Field(default=0, ge=0)
    last_studied_at: Optional[datetime] = None
    next_review_date: Optional[datetime] = None


class SubjectPerformanceProfile(BaseModel):
    """Long-lived rolling outcome statistics for a subject."""

    subject_id: str
    subject_name: Optional[str] = None
    area: Optional[str] = None
    accuracy_rate: Optional[float] = None
    error_rate: Optional[float] = None
    average_focus_score: float = 75.0
    average_productivity_score: float = 72.0
    average_difficulty_score: float = 5.0
    last_studied_at: Optional[datetime] = None
    days_without_study: Optional[int] = None
    total_sessions: int = Field(default=0, ge=0)
    lesson_sessions: int = Field(default=0, ge=0)
    exercise_sessions: int = Field(default=0, ge=0)
    review_sessions: int = Field(default=0, ge=0)
    mock_exam_sessions: int = Field(default=0, ge=0)
    trend: float = 0.0
    topic_progress: Dict[str, TopicProgress] = Field(default_factory=dict)


class PerformanceSnapshot(BaseModel):
    """Record produced for every completed unit."""

    recorded_at: datetime
    subject_id: str
    unit_id: str
    session_kind: Literal["LESSON", "EXERCISE", "REVIEW", "MOCK_EXAM", "ANALYSIS", "FREE"]
    minutes: int = Field(ge=0)
    accuracy_rate: float
    error_rate: float
    focus_score: int
    productivity_score: int
    difficulty_score: float
    topic_name: Optional[str] = None


class SubjectDailyActivity(BaseModel):
    hours: float = 0.0
    sessions: int = 0
    accuracy_rate_avg: Optional[float] = None
    focus_score_avg: Optional[float] = None
    productivity_score_avg: Optional[float] = None


class DailyActivity(SubjectDailyActivity):
    by_subject: Dict[str, SubjectDailyActivity] = Field(default_factory=dict)


class PerformanceStore(BaseModel):
    """Per-learner analytics: subject profiles, completion history and daily roll-ups."""

    subjects: Dict[str, SubjectPerformanceProfile] = Field(default_factory=dict)
    session_history: List[PerformanceSnapshot] = Field(default_factory=list)
    daily: Dict[date, DailyActivity] = Field(default_factory=dict)
    last_updated_at: Optional[datetime] = None


class ScheduleRequest(BaseModel):
    """Complete input of one synthesis run."""

    subjects: List[Subject]
    preferences: StudyPreferences = Field(default_factory=StudyPreferences)
    start_date: date
    end_date: date
    window: DailyWindow = Field(default_factory=DailyWindow)
    daily_capacity_overrides: Dict[date, int] = Field(default_factory=dict)
    first_cycle_all_subjects: bool = True
    completed_lessons_total: int = Field(default=0, ge=0)
    completed_lessons_by_subject: Dict[str, int] = Field(default_factory=dict)
    completed_practice_total: int = Field(default=0, ge=0)
    completed_practice_by_subject: Dict[str, int] = Field(default_factory=dict)
    mock_exam_rules: MockExamRules = Field(default_factory=MockExamRules)
    performance_profiles: Dict[str, SubjectPerformanceProfile] = Field(default_factory=dict)
    now: Optional[datetime] = None
    debug: bool = False


class ScheduleResult(BaseModel):
    units: List[StudyUnit] = Field(default_factory=list)
    total_hours: float = 0.0
    subject_distribution: Dict[str, float] = Field(default_factory=dict)
    phase_by_date: Dict[str, str] = Field(default_factory=dict)
    debug_log: List[str] = Field(default_factory=list)
    cache_hit: bool = False


class AdaptiveScoreFactors(BaseModel):
    weight: float
    difficulty_factor: float
    time_without_study_factor: float
    error_rate_factor: float
    exam_proximity_factor: float


class CompletionUpdate(BaseModel):
    store: PerformanceStore
    snapshot: Optional[PerformanceSnapshot] = None
    rolling_accuracy: Optional[float] = None


class SubjectAccuracy(BaseModel):
    id: str
    name: str
    accuracy_rate: float


class PerformanceSummary(BaseModel):
    avg_accuracy_rate: float = 0.0
    weakest_subject: Optional[SubjectAccuracy] = None
    strongest_subject: Optional[SubjectAccuracy] = None
    projected_improvement_30d: float = 0.0
    consistency_rate: float = 0.0
    avg_focus_score: int = 0
    avg_productivity_score: int = 0


class BacklogEntry(BaseModel):
    """Derived view of an overdue or skipped unit."""

    unit: StudyUnit
    date_key: str
    days_overdue: int = Field(ge=0)
    priority_score: float


class BacklogSuggestion(BaseModel):
    should_suggest_replan: bool = False
    should_suggest_recovery_mode: bool = False
    suggested_extra_minutes_per_day: int = 0
    suggested_reduce_new_content: bool = False


class RescheduleResult(BaseModel):
    units: List[StudyUnit] = Field(default_factory=list)
    moved_count: int = 0
    backlog_before: int = 0
    backlog_after: int = 0
    inserted_today_count: int = 0
    pending_backlog_count: int = 0
    changed_unit_ids: List[str] = Field(default_factory=list)
    suggestion: BacklogSuggestion = Field(default_factory=BacklogSuggestion)


__all__ = [
    "AdaptiveScoreFactors",
    "BREAK_SUBJECT_ID",
    "BacklogEntry",
    "BacklogSuggestion",
    "CompletionUpdate",
    "DailyActivity",
    "DailyWindow",
    "LearnerLevel",
    "MOCK_EXAM_KINDS",
    "MOCK_EXAM_SUBJECT_ID",
    "MockExamRules",
    "PerformanceSnapshot",
    "PerformanceStore",
    "PerformanceSummary",
    "RescheduleResult",
    "ScheduleRequest",
    "ScheduleResult",
    "SessionType",
    "StudyPreferences",
    "StudyUnit",
    "Subject",
    "SubjectAccuracy",
    "SubjectDailyActivity",
    "SubjectLevel",
    "SubjectPerformanceProfile",
    "TimeSpan",
    "TopicProgress",
    "UnitKind",
    "UnitStatus",
]
