"""Adaptive multipliers and rolling performance statistics.

Everything in this module is a pure transformation: callers hand in a
``PerformanceStore`` and get a new one back, the input is never mutated.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

from .models import (
    AdaptiveScoreFactors,
    BREAK_SUBJECT_ID,
    CompletionUpdate,
    DailyActivity,
    PerformanceSnapshot,
    PerformanceStore,
    PerformanceSummary,
    StudyPreferences,
    StudyUnit,
    Subject,
    SubjectAccuracy,
    SubjectDailyActivity,
    SubjectPerformanceProfile,
    TopicProgress,
)
from .subject_meta import exam_weight
from .timeutils import ensure_aware, utcnow

logger = logging.getLogger(__name__)

SESSION_HISTORY_LIMIT = 500
TREND_WINDOW = 14

_BASE_ACCURACY_BY_KIND: Dict[str, float] = {
    "LESSON": 0.88,
    "EXERCISE": 0.68,
    "REVIEW": 0.78,
    "AREA_MOCK_EXAM": 0.62,
    "FULL_MOCK_EXAM": 0.60,
    "ANALYSIS": 0.75,
}
_DEFAULT_BASE_ACCURACY = 0.72


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _running_mean(previous: Optional[float], sample: float, count_before: int) -> float:
    if previous is None:
        return sample
    return (previous * count_before + sample) / (count_before + 1)


def _days_until(target: date, now: datetime) -> int:
    delta = datetime(target.year, target.month, target.day, tzinfo=now.tzinfo) - now
    # ceil of fractional days
    return -((-int(delta.total_seconds())) // 86400)


def difficulty_factor(difficulty: int, learner_level: str) -> float:
    base = 0.7 + _clamp(difficulty or 5, 1, 10) / 10
    modifier = 1.08 if learner_level == "beginner" else 0.95 if learner_level == "advanced" else 1.0
    return round(base * modifier, 3)


def time_without_study_factor(last_studied_at: Optional[datetime], now: datetime) -> float:
    if last_studied_at is None:
        return 1.35
    elapsed = ensure_aware(now) - ensure_aware(last_studied_at)
    days = max(0, elapsed.days)
    return round(1 + min(days, 14) * 0.08, 3)


def error_rate_factor(profile: Optional[SubjectPerformanceProfile]) -> float:
    if profile is not None and profile.error_rate is not None:
        error_rate = _clamp(profile.error_rate, 0.05, 1.0)
    elif profile is not None and profile.accuracy_rate is not None:
        error_rate = _clamp(1 - profile.accuracy_rate, 0.05, 1.0)
    else:
        error_rate = 0.45
    return round(0.8 + error_rate * 1.2, 3)


def exam_proximity_factor(exam_date: Optional[date], now: datetime) -> float:
    if exam_date is None:
        return 1.0
    days_left = _days_until(exam_date, ensure_aware(now))
    if days_left <= 0:
        return 1.35
    if days_left <= 30:
        return 1.3
    if days_left <= 60:
        return 1.2
    if days_left <= 90:
        return 1.12
    if days_left <= 180:
        return 1.05
    return 1.0


def compute_factors(
    subject: Subject,
    profile: Optional[SubjectPerformanceProfile],
    now: datetime,
    exam_date: Optional[date] = None,
    learner_level: str = "intermediate",
) -> AdaptiveScoreFactors:
    return AdaptiveScoreFactors(
        weight=exam_weight(subject),
        difficulty_factor=difficulty_factor(subject.difficulty, learner_level),
        time_without_study_factor=time_without_study_factor(
            profile.last_studied_at if profile is not None else None, now
        ),
        error_rate_factor=error_rate_factor(profile),
        exam_proximity_factor=exam_proximity_factor(exam_date, now),
    )


def compute_priority_score(
    subject: Subject,
    profile: Optional[SubjectPerformanceProfile],
    now: datetime,
    exam_date: Optional[date] = None,
    learner_level: str = "intermediate",
) -> float:
    """Product of the five adaptive factors, rounded to four decimals."""
    factors = compute_factors(subject, profile, now, exam_date, learner_level)
    score = (
        factors.weight
        * factors.difficulty_factor
        * factors.time_without_study_factor
        * factors.error_rate_factor
        * factors.exam_proximity_factor
    )
    return round(score, 4)


def infer_learner_level(
    preferences: Optional[StudyPreferences],
    subjects: Iterable[Subject],
    store: Optional[PerformanceStore] = None,
) -> str:
    if preferences is not None and preferences.learner_level:
        return preferences.learner_level

    profiles = list(store.subjects.values()) if store is not None else []
    avg_accuracy = (
        sum(profile.accuracy_rate or 0.0 for profile in profiles) / len(profiles) if profiles else 0.0
    )
    subject_list = list(subjects)
    avg_difficulty = (
        sum(subject.difficulty for subject in subject_list) / len(subject_list) if subject_list else 5.0
    )

    if avg_accuracy >= 0.78 and avg_difficulty >= 6:
        return "advanced"
    if 0 < avg_accuracy < 0.55:
        return "beginner"
    return "intermediate"


def build_performance_profiles(
    subjects: Iterable[Subject],
    store: Optional[PerformanceStore],
    now: datetime,
) -> Dict[str, SubjectPerformanceProfile]:
    """Return a profile for every subject, filling defaults for unseen ones."""
    stored = store.subjects if store is not None else {}
    now = ensure_aware(now)
    profiles: Dict[str, SubjectPerformanceProfile] = {}

    for subject in subjects:
        existing = stored.get(subject.id)
        score_ratio = _clamp(subject.average_score / 100, 0.0, 1.0) if subject.average_score > 0 else None

        if existing is not None:
            profile = existing.model_copy(deep=True)
            profile.subject_name = subject.name
            profile.area = subject.area or profile.area
        else:
            profile = SubjectPerformanceProfile(
                subject_id=subject.id,
                subject_name=subject.name,
                area=subject.area,
                average_difficulty_score=float(subject.difficulty),
                total_sessions=subject.session_count,
            )

        if profile.accuracy_rate is None:
            profile.accuracy_rate = score_ratio if score_ratio is not None else 0.6
        if profile.error_rate is None:
            profile.error_rate = 1 - score_ratio if score_ratio is not None else 0.4
        if profile.last_studied_at is not None:
            profile.days_without_study = max(0, (now - ensure_aware(profile.last_studied_at)).days)

        profiles[subject.id] = profile

    return profiles


def _session_kind(unit: StudyUnit) -> str:
    if unit.unit_kind == "LESSON" or unit.session_type == "theory":
        return "LESSON"
    if unit.unit_kind == "EXERCISE" or unit.session_type == "practice":
        return "EXERCISE"
    if unit.unit_kind == "REVIEW" or unit.session_type == "review":
        return "REVIEW"
    if unit.is_mock_exam or unit.session_type == "mock_exam":
        return "MOCK_EXAM"
    if unit.unit_kind == "ANALYSIS":
        return "ANALYSIS"
    return "FREE"


def infer_session_accuracy(unit: StudyUnit, minutes_spent: float) -> float:
    base = _BASE_ACCURACY_BY_KIND.get(unit.unit_kind or "LESSON", _DEFAULT_BASE_ACCURACY)
    bonus = 0.03 if minutes_spent >= max(1, unit.duration_minutes) else -0.05
    return _clamp(base + bonus, 0.35, 0.98)


def _mastery_delta(kind: str, accuracy: float) -> float:
    if kind == "LESSON":
        return 8.0
    if kind == "EXERCISE":
        return 14 * accuracy
    if kind == "REVIEW":
        return 10 * accuracy
    if kind == "MOCK_EXAM":
        return 16 * accuracy
    return 6.0


def _next_review_date(kind: str, now: datetime) -> Optional[datetime]:
    if kind == "LESSON":
        return now + timedelta(days=1)
    if kind == "REVIEW":
        return now + timedelta(days=7)
    return None


def _trend(history: List[PerformanceSnapshot], subject_id: str) -> Optional[float]:
    recent = [entry for entry in history if entry.subject_id == subject_id][-TREND_WINDOW:]
    if len(recent) < 2:
        return None
    half = max(1, len(recent) // 2)
    earlier = recent[:half]
    later = recent[-half:]
    earlier_mean = sum(entry.accuracy_rate for entry in earlier) / len(earlier)
    later_mean = sum(entry.accuracy_rate for entry in later) / len(later)
    return round(later_mean - earlier_mean, 4)


def _roll_daily(
    activity: SubjectDailyActivity,
    minutes_spent: float,
    accuracy: float,
    focus: int,
    productivity: int,
) -> None:
    count = activity.sessions
    activity.hours = round(activity.hours + minutes_spent / 60, 2)
    activity.accuracy_rate_avg = round(_running_mean(activity.accuracy_rate_avg, accuracy, count), 4)
    activity.focus_score_avg = round(_running_mean(activity.focus_score_avg, focus, count), 2)
    activity.productivity_score_avg = round(_running_mean(activity.productivity_score_avg, productivity, count), 2)
    activity.sessions = count + 1


def apply_completion_update(
    store: PerformanceStore,
    unit: StudyUnit,
    subject: Optional[Subject],
    minutes_spent: float,
    now: Optional[datetime] = None,
) -> CompletionUpdate:
    """Fold one completed unit into the store and produce its snapshot.

    Breaks and units whose subject is unknown leave the store untouched and
    produce no snapshot.
    """
    if unit.is_break or unit.subject_id == BREAK_SUBJECT_ID or subject is None:
        return CompletionUpdate(store=store)

    now = ensure_aware(now or utcnow())
    updated = store.model_copy(deep=True)

    kind = _session_kind(unit)
    accuracy = infer_session_accuracy(unit, minutes_spent)
    error = _clamp(1 - accuracy, 0.02, 1.0)
    focus = int(round(_clamp(70 + (12 if minutes_spent >= unit.duration_minutes else 4), 45, 98)))
    productivity = int(round(_clamp(68 + accuracy * 20, 40, 98)))
    difficulty = float(subject.difficulty)

    snapshot = PerformanceSnapshot(
        recorded_at=now,
        subject_id=subject.id,
        unit_id=unit.id,
        session_kind=kind,
        minutes=int(round(minutes_spent)),
        accuracy_rate=round(accuracy, 4),
        error_rate=round(error, 4),
        focus_score=focus,
        productivity_score=productivity,
        difficulty_score=difficulty,
        topic_name=unit.topic_name,
    )

    profile = updated.subjects.get(subject.id)
    if profile is None:
        profile = SubjectPerformanceProfile(
            subject_id=subject.id,
            accuracy_rate=0.6,
            error_rate=0.4,
            average_difficulty_score=difficulty,
        )

    before = profile.total_sessions
    profile.subject_name = subject.name
    profile.area = subject.area
    profile.total_sessions = before + 1
    profile.accuracy_rate = round(_running_mean(profile.accuracy_rate, accuracy, before), 4)
    profile.error_rate = round(_running_mean(profile.error_rate, error, before), 4)
    profile.average_focus_score = round(_running_mean(profile.average_focus_score, focus, before))
    profile.average_productivity_score = round(
        _running_mean(profile.average_productivity_score, productivity, before)
    )
    profile.average_difficulty_score = round(
        _running_mean(profile.average_difficulty_score, difficulty, before), 2
    )
    profile.last_studied_at = now
    profile.days_without_study = 0
    if kind == "LESSON":
        profile.lesson_sessions += 1
    elif kind == "EXERCISE":
        profile.exercise_sessions += 1
    elif kind == "REVIEW":
        profile.review_sessions += 1
    elif kind == "MOCK_EXAM":
        profile.mock_exam_sessions += 1

    if unit.topic_name:
        topic = profile.topic_progress.get(unit.topic_name) or TopicProgress(topic_name=unit.topic_name)
        topic_before = topic.sessions_count
        profile.topic_progress[unit.topic_name] = TopicProgress(
            topic_name=unit.topic_name,
            mastery=round(_clamp(topic.mastery + _mastery_delta(kind, accuracy), 0.0, 100.0), 1),
            accuracy_rate=round(_running_mean(topic.accuracy_rate, accuracy, topic_before), 4),
            sessions_count=topic_before + 1,
            last_studied_at=now,
            next_review_date=_next_review_date(kind, now),
        )

    updated.session_history.append(snapshot)
    trend = _trend(updated.session_history, subject.id)
    if trend is not None:
        profile.trend = trend
    updated.session_history = updated.session_history[-SESSION_HISTORY_LIMIT:]
    updated.subjects[subject.id] = profile

    day = updated.daily.setdefault(unit.date, DailyActivity())
    _roll_daily(day, minutes_spent, accuracy, focus, productivity)
    _roll_daily(day.by_subject.setdefault(subject.id, SubjectDailyActivity()), minutes_spent, accuracy, focus, productivity)
    updated.last_updated_at = now

    logger.debug(
        "Recorded %s completion for subject=%s accuracy=%.3f rolling=%.3f",
        kind,
        subject.id,
        accuracy,
        profile.accuracy_rate,
    )
    return CompletionUpdate(store=updated, snapshot=snapshot, rolling_accuracy=profile.accuracy_rate)


def summarize_performance(
    store: PerformanceStore,
    subjects: Iterable[Subject],
    exam_date: Optional[date] = None,
    now: Optional[datetime] = None,
) -> PerformanceSummary:
    now = ensure_aware(now or utcnow())
    profiles = build_performance_profiles(subjects, store, now)
    active = [profile for profile in profiles.values() if profile.total_sessions > 0]
    if not active:
        return PerformanceSummary()

    avg_accuracy = sum(profile.accuracy_rate or 0.0 for profile in active) / len(active)
    avg_focus = sum(profile.average_focus_score for profile in active) / len(active)
    avg_productivity = sum(profile.average_productivity_score for profile in active) / len(active)

    weakest = min(active, key=lambda profile: profile.accuracy_rate or 0.0)
    strongest = max(active, key=lambda profile: profile.accuracy_rate or 0.0)

    today = now.date()
    recent_days = [activity for day, activity in store.daily.items() if 0 <= (today - day).days <= 30]
    study_days = sum(1 for activity in recent_days if activity.hours > 0)
    consistency = study_days / len(recent_days) if recent_days else 0.0

    avg_trend = sum(profile.trend for profile in active) / len(active)
    projected = _clamp(
        avg_trend * 100 * 4 + consistency * 6 + exam_proximity_factor(exam_date, now) * 2,
        -10.0,
        30.0,
    )

    def _accuracy(profile: SubjectPerformanceProfile) -> SubjectAccuracy:
        return SubjectAccuracy(
            id=profile.subject_id,
            name=profile.subject_name or profile.subject_id,
            accuracy_rate=profile.accuracy_rate or 0.0,
        )

    return PerformanceSummary(
        avg_accuracy_rate=round(avg_accuracy, 4),
        weakest_subject=_accuracy(weakest),
        strongest_subject=_accuracy(strongest),
        projected_improvement_30d=round(projected, 1),
        consistency_rate=round(consistency, 4),
        avg_focus_score=int(round(avg_focus)),
        avg_productivity_score=int(round(avg_productivity)),
    )


__all__ = [
    "apply_completion_update",
    "build_performance_profiles",
    "compute_factors",
    "compute_priority_score",
    "difficulty_factor",
    "error_rate_factor",
    "exam_proximity_factor",
    "infer_learner_level",
    "infer_session_accuracy",
    "summarize_performance",
    "time_without_study_factor",
]
