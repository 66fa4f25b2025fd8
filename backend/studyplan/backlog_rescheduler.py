"""Detection and redistribution of overdue or skipped study units."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from .models import BacklogEntry, BacklogSuggestion, RescheduleResult, StudyUnit, Subject
from .subject_meta import exam_tier
from .timeutils import date_key, minutes_to_time, time_to_minutes, utcnow

logger = logging.getLogger(__name__)

BACKLOG_STATUSES = frozenset({"scheduled", "in-progress", "skipped", "rescheduled"})
DEFAULT_DAY_START = "09:00"
DEFAULT_DAY_END = "22:00"
DEFAULT_QUOTA_RATIO = 0.35
DEFAULT_LOOKAHEAD_DAYS = 10
DEFAULT_MAX_SUBJECTS_PER_DAY = 2
EXAM_DAY_WEEKEND_BONUS = 200
REPLAN_BACKLOG_THRESHOLD = 6
REDUCE_CONTENT_BACKLOG_THRESHOLD = 4
RECOVERY_RESCHEDULE_THRESHOLD = 3


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def subject_weight(subject: Optional[Subject]) -> int:
    if subject is None:
        return 0
    return subject.priority * 4 + subject.difficulty * 3 + exam_tier(subject) * 2


def _subject_for(unit: StudyUnit, subjects: Mapping[str, Subject]) -> Optional[Subject]:
    return subjects.get(unit.subject_id) or (
        subjects.get(unit.related_subject_id) if unit.related_subject_id else None
    )


def backlog_priority_score(
    unit: StudyUnit, today: date, subjects: Optional[Mapping[str, Subject]] = None
) -> float:
    days_overdue = max(0, (today - unit.date).days)
    score = 0
    if unit.unit_kind == "REVIEW":
        score += 1000
    if unit.is_mock_exam:
        score += 700
    if unit.unit_kind == "ANALYSIS":
        score += 500
    if unit.status == "skipped":
        score += 120
    score += days_overdue * 30
    score += subject_weight(_subject_for(unit, subjects or {}))
    score += min(240, unit.duration_minutes)
    score -= unit.reschedule_count * 15
    return score


def _is_backlog(unit: StudyUnit, today: date) -> bool:
    if unit.is_break or unit.status not in BACKLOG_STATUSES:
        return False
    return unit.date < today or (unit.date == today and unit.status == "skipped")


def detect_backlog(
    units: Iterable[StudyUnit],
    today: date,
    subjects: Optional[Iterable[Subject]] = None,
) -> List[BacklogEntry]:
    """Overdue units plus units skipped today, highest priority first."""
    subject_map = {subject.id: subject for subject in subjects or []}
    entries = [
        BacklogEntry(
            unit=unit,
            date_key=date_key(unit.date),
            days_overdue=max(0, (today - unit.date).days),
            priority_score=backlog_priority_score(unit, today, subject_map),
        )
        for unit in units
        if _is_backlog(unit, today)
    ]
    entries.sort(key=lambda entry: entry.priority_score, reverse=True)
    return entries


def _chronological(units: Iterable[StudyUnit]) -> List[StudyUnit]:
    return sorted(units, key=lambda unit: (unit.date, time_to_minutes(unit.start_time)))


@dataclass
class _WorkingPlan:
    """Mutable copy of the unit list plus the knobs of one redistribution run."""

    units: Dict[str, StudyUnit]
    today: date
    days: List[date]
    capacity_by_date: Mapping[date, int]
    quota_ratio: float
    max_subjects_per_day: int
    subjects: Mapping[str, Subject]
    now: datetime
    day_start: int
    day_end: int
    changed_ids: Set[str] = field(default_factory=set)
    moved_count: int = 0
    inserted_today_count: int = 0

    def study_units(self, day: date) -> List[StudyUnit]:
        return [unit for unit in self.units.values() if unit.date == day and not unit.is_break]

    def active_units(self, day: date) -> List[StudyUnit]:
        return [unit for unit in self.study_units(day) if unit.status not in ("completed", "skipped")]

    def backlog_units(self, day: date) -> List[StudyUnit]:
        return [
            unit
            for unit in self.study_units(day)
            if unit.status == "rescheduled" and unit.original_date is not None and unit.original_date < day
        ]

    def capacity(self, day: date) -> int:
        explicit = self.capacity_by_date.get(day)
        if explicit is not None:
            return max(0, explicit)
        return sum(unit.duration_minutes for unit in self.study_units(day) if unit.status != "skipped")

    def current_minutes(self, day: date) -> int:
        return sum(unit.duration_minutes for unit in self.active_units(day))

    def backlog_minutes(self, day: date) -> int:
        return sum(unit.duration_minutes for unit in self.backlog_units(day))

    def quota_minutes(self, day: date) -> int:
        return int(math.floor(self.capacity(day) * self.quota_ratio))

    def last_end(self, day: date, exclude: str) -> int:
        ends = [
            time_to_minutes(unit.end_time)
            for unit in self.units.values()
            if unit.date == day and unit.id != exclude
        ]
        return max(ends + [self.day_start])


def _day_score(plan: _WorkingPlan, day: date) -> Optional[float]:
    """Attractiveness of a day for a backlog unit; None when the day has no room at all."""
    free = max(0, plan.capacity(day) - plan.current_minutes(day))
    quota_free = max(0, plan.quota_minutes(day) - plan.backlog_minutes(day))
    if free <= 0 or quota_free <= 0:
        return None
    weekend_bonus = EXAM_DAY_WEEKEND_BONUS if day.weekday() >= 5 else 0
    return free * 2 + quota_free + weekend_bonus


def _append_to_day(plan: _WorkingPlan, unit: StudyUnit, day: date) -> bool:
    start = plan.last_end(day, exclude=unit.id)
    end = start + unit.duration_minutes
    if end > plan.day_end:
        return False
    plan.units[unit.id] = unit.model_copy(
        update={
            "date": day,
            "start_time": minutes_to_time(start),
            "end_time": minutes_to_time(end),
            "status": "rescheduled",
            "original_date": unit.original_date or unit.date,
            "reschedule_count": unit.reschedule_count + 1,
            "updated_at": plan.now,
        }
    )
    plan.changed_ids.add(unit.id)
    plan.moved_count += 1
    return True


def _displace_tail(plan: _WorkingPlan, day: date, minutes_needed: int) -> int:
    """Push the day's lowest-priority ordinary units to later days until enough minutes are free.

    Units already moved in this run stay put, so each unit is rescheduled at most once.
    """
    freed = 0
    # Lowest priority first, latest start first among equals.
    tail = sorted(
        (
            unit
            for unit in plan.active_units(day)
            if unit.id not in plan.changed_ids and unit.unit_kind != "REVIEW" and not unit.is_mock_exam
        ),
        key=lambda unit: (
            backlog_priority_score(unit, plan.today, plan.subjects),
            -time_to_minutes(unit.start_time),
        ),
    )
    later_days = [candidate for candidate in plan.days if candidate > day]
    for unit in tail:
        if freed >= minutes_needed:
            break
        if _place(plan, unit, later_days, allow_displacement=False):
            freed += unit.duration_minutes
            logger.debug("Displaced unit %s from %s to free %s minutes", unit.id, day, minutes_needed)
    return freed


def _try_day(plan: _WorkingPlan, unit: StudyUnit, day: date, allow_displacement: bool) -> bool:
    capacity = plan.capacity(day)
    if capacity <= 0:
        return False

    planned_count = len(plan.active_units(day))
    quota_blocks = max(1, int(math.floor(planned_count * plan.quota_ratio))) if planned_count else 1
    backlog_units = plan.backlog_units(day)
    if len(backlog_units) >= quota_blocks:
        return False
    if plan.backlog_minutes(day) + unit.duration_minutes > plan.quota_minutes(day):
        return False
    backlog_subjects = {item.subject_id for item in backlog_units}
    if unit.subject_id not in backlog_subjects and len(backlog_subjects) >= plan.max_subjects_per_day:
        return False

    free = max(0, capacity - plan.current_minutes(day))
    if free < unit.duration_minutes and allow_displacement:
        free += _displace_tail(plan, day, unit.duration_minutes - free)
    if free < unit.duration_minutes:
        return False
    return _append_to_day(plan, unit, day)


def _place(plan: _WorkingPlan, unit: StudyUnit, days: Sequence[date], allow_displacement: bool = True) -> bool:
    """Place ``unit`` on the first of ``days`` that accepts it."""
    for day in days:
        if _try_day(plan, unit, day, allow_displacement):
            return True
    return False


def _pop_next(plan: _WorkingPlan, queue: List[str], day: date) -> Optional[StudyUnit]:
    subjects = {unit.subject_id for unit in plan.backlog_units(day)}
    ranked = sorted(
        (plan.units[unit_id] for unit_id in queue),
        key=lambda unit: backlog_priority_score(unit, plan.today, plan.subjects),
        reverse=True,
    )
    for unit in ranked:
        if len(subjects) >= plan.max_subjects_per_day and unit.subject_id not in subjects:
            continue
        queue.remove(unit.id)
        return unit
    return None


def _suggest(entries: List[BacklogEntry], units: Iterable[StudyUnit], lookahead_days: int) -> BacklogSuggestion:
    stuck = any(
        not unit.is_break
        and unit.status in BACKLOG_STATUSES
        and unit.reschedule_count >= RECOVERY_RESCHEDULE_THRESHOLD
        for unit in units
    )
    backlog_minutes = sum(entry.unit.duration_minutes for entry in entries)
    extra = math.ceil(backlog_minutes / max(1, min(lookahead_days, 5))) if entries else 0
    return BacklogSuggestion(
        should_suggest_replan=len(entries) >= REPLAN_BACKLOG_THRESHOLD,
        should_suggest_recovery_mode=stuck,
        suggested_extra_minutes_per_day=extra,
        suggested_reduce_new_content=len(entries) >= REDUCE_CONTENT_BACKLOG_THRESHOLD or stuck,
    )


def auto_reschedule(
    units: Iterable[StudyUnit],
    today: date,
    daily_capacity_by_date: Optional[Mapping[date, int]] = None,
    allowed_weekdays: Optional[Iterable[int]] = None,
    quota_ratio: float = DEFAULT_QUOTA_RATIO,
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS,
    max_backlog_subjects_per_day: int = DEFAULT_MAX_SUBJECTS_PER_DAY,
    subjects: Optional[Iterable[Subject]] = None,
    now: Optional[datetime] = None,
    day_start: str = DEFAULT_DAY_START,
    day_end: str = DEFAULT_DAY_END,
) -> RescheduleResult:
    """Move backlog units into the next ``lookahead_days`` without overrunning backlog quotas.

    Mock exams are placed first on the best scoring day. The remaining backlog
    is then walked day by day in priority order. A unit no remaining day
    accepts is requeued for the next day's pass; whatever is still queued at
    the end keeps its date and is reported through ``pending_backlog_count``.
    """
    copies = [unit.model_copy(deep=True) for unit in units]
    subject_map = {subject.id: subject for subject in subjects or []}
    before = detect_backlog(copies, today, subject_map.values())
    if not before:
        return RescheduleResult(units=_chronological(copies))

    quota_ratio = _clamp(quota_ratio, 0.2, 0.4)
    lookahead_days = int(_clamp(lookahead_days, 3, 21))
    max_backlog_subjects_per_day = int(_clamp(max_backlog_subjects_per_day, 1, 3))
    weekdays = set(allowed_weekdays or [])
    days = [
        today + timedelta(days=offset)
        for offset in range(lookahead_days + 1)
        if not weekdays or (today + timedelta(days=offset)).weekday() in weekdays
    ]

    plan = _WorkingPlan(
        units={unit.id: unit for unit in copies},
        today=today,
        days=days,
        capacity_by_date=daily_capacity_by_date or {},
        quota_ratio=quota_ratio,
        max_subjects_per_day=max_backlog_subjects_per_day,
        subjects=subject_map,
        now=now or utcnow(),
        day_start=time_to_minutes(day_start),
        day_end=time_to_minutes(day_end),
    )
    queue = [entry.unit.id for entry in before]

    for unit_id in [unit_id for unit_id in queue if plan.units[unit_id].is_mock_exam]:
        scored = [(score, day) for day in days for score in [_day_score(plan, day)] if score is not None]
        if not scored:
            continue
        best_day = max(scored, key=lambda item: item[0])[1]
        if _place(plan, plan.units[unit_id], [best_day]):
            queue.remove(unit_id)
            if best_day == today:
                plan.inserted_today_count += 1

    for day in days:
        deferred: List[str] = []
        while queue:
            unit = _pop_next(plan, queue, day)
            if unit is None:
                break
            target_days = [day] + [candidate for candidate in days if candidate > day]
            if _place(plan, unit, target_days):
                if plan.units[unit.id].date == today:
                    plan.inserted_today_count += 1
                continue
            logger.debug("No room for backlog unit %s from %s onwards; requeued", unit.id, day)
            deferred.append(unit.id)
        queue.extend(deferred)

    result_units = _chronological(plan.units.values())
    after = detect_backlog(result_units, today, subject_map.values())
    logger.info(
        "Backlog redistribution moved %s units (before=%s after=%s)", plan.moved_count, len(before), len(after)
    )
    return RescheduleResult(
        units=result_units,
        moved_count=plan.moved_count,
        backlog_before=len(before),
        backlog_after=len(after),
        inserted_today_count=plan.inserted_today_count,
        pending_backlog_count=len(after),
        changed_unit_ids=sorted(plan.changed_ids),
        suggestion=_suggest(after, result_units, lookahead_days),
    )


__all__ = [
    "BACKLOG_STATUSES",
    "auto_reschedule",
    "backlog_priority_score",
    "detect_backlog",
    "subject_weight",
]
