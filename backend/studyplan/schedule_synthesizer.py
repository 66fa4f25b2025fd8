"""Chronological study schedule synthesis."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Deque, Dict, List, Mapping, Optional, Set, Tuple

from .adaptive_scoring import compute_priority_score, infer_learner_level
from .models import (
    BREAK_SUBJECT_ID,
    MOCK_EXAM_SUBJECT_ID,
    ScheduleRequest,
    ScheduleResult,
    StudyUnit,
    Subject,
)
from .pedagogical_cycle import (
    STAGE_SESSION_TYPE,
    STAGE_TOTAL,
    STAGE_UNIT_KIND,
    CycleStage,
    CycleState,
    advance,
    resolve_stage,
)
from .subject_meta import AREA_ROTATION, exam_tier, exam_weight, infer_area, infer_level, keyword_bonus, normalize_text
from .timeutils import date_key, iter_dates, minutes_to_time, time_to_minutes, utc_midnight

logger = logging.getLogger(__name__)

MIN_UNIT_MINUTES = 25
MIN_EXAM_MINUTES = 90
REVIEW_SCALE = 0.7
EXAM_SCALE = 1.1
FORCED_REVIEW_GAP = 3
REVIEW_OFFSETS_DAYS = (2, 7, 21)
DAY_RECENT_WINDOW = 3
GLOBAL_RECENT_WINDOW = 5
MAX_CONSECUTIVE_SAME_SUBJECT = 2
EXAM_TRACKED_GOALS = frozenset({"enem"})

_LEVEL_ADJ = {"basic": 0.8, "intermediate": 0.9, "advanced": 1.0}
_STAGE_INDEX = {
    "theory": 1,
    "practice": 2,
    "review": 3,
    "mock_exam": 4,
}
_DESCRIPTIONS = {
    "LESSON": "Lesson with notes and a five minute summary",
    "EXERCISE": "Exercise set, then go over the mistakes",
    "REVIEW": "Guided review (flashcards or summary)",
    "AREA_MOCK_EXAM": "Timed {area} mock exam",
    "FULL_MOCK_EXAM": "Timed full mock exam",
    "ANALYSIS": "Mock exam correction and performance analysis",
}
# Pseudo-subject used to size exam units.
_EXAM_DIFFICULTY = 6
_EXAM_LEVEL = "intermediate"
_EXAM_TIER = 5


def phase_for_week(week_number: int) -> str:
    if week_number <= 2:
        return "base"
    if week_number <= 5:
        return "deepening"
    return "consolidation"


def phase_for_date(day: date, start: date) -> str:
    return phase_for_week((day - start).days // 7 + 1)


def is_exam_tracked_goal(goal: Optional[str]) -> bool:
    return normalize_text(goal) in EXAM_TRACKED_GOALS


def unit_minutes(cap: int, difficulty: int, level: str, tier: int) -> int:
    """Base unit length before the stage-specific scaling."""
    difficulty_adj = 0.6 + (1 - difficulty / 12)
    level_adj = _LEVEL_ADJ.get(level, 0.9)
    weight_adj = 0.85 + (tier - 3) * 0.05
    return max(MIN_UNIT_MINUTES, min(cap, int(round(cap * difficulty_adj * level_adj * weight_adj))))


def exam_minutes(max_unit_minutes: int) -> int:
    cap = max(max_unit_minutes, MIN_EXAM_MINUTES)
    base = unit_minutes(cap, _EXAM_DIFFICULTY, _EXAM_LEVEL, _EXAM_TIER)
    return max(MIN_EXAM_MINUTES, int(round(base * EXAM_SCALE)))


@dataclass
class _SubjectContext:
    subject: Subject
    area: Optional[str]
    level: str
    weight: float
    tier: int
    keyword_bonus: int
    adaptive_priority: float


@dataclass
class _PlanningState:
    """Counters carried across days for a single synthesis run."""

    remaining_slots: Dict[str, int]
    completed_lessons: Mapping[str, int] = field(default_factory=dict)
    usage: Counter = field(default_factory=Counter)
    recent_units: Deque[str] = field(default_factory=lambda: deque(maxlen=GLOBAL_RECENT_WINDOW))
    previous_day_subjects: Set[str] = field(default_factory=set)
    area_cursor: int = 0
    review_queue: Dict[date, List[str]] = field(default_factory=lambda: defaultdict(list))
    planned_lessons: Counter = field(default_factory=Counter)
    planned_practice: Counter = field(default_factory=Counter)
    cycle_states: Dict[str, CycleState] = field(default_factory=dict)
    topic_cursor: Counter = field(default_factory=Counter)
    last_full_exam_date: Optional[date] = None
    units: List[StudyUnit] = field(default_factory=list)
    debug_log: List[str] = field(default_factory=list)

    @property
    def previous_subject(self) -> Optional[str]:
        return self.recent_units[-1] if self.recent_units else None

    def streak_subject(self) -> Optional[str]:
        """Subject that filled the last two units, if any."""
        if len(self.recent_units) < MAX_CONSECUTIVE_SAME_SUBJECT:
            return None
        tail = list(self.recent_units)[-MAX_CONSECUTIVE_SAME_SUBJECT:]
        return tail[0] if len(set(tail)) == 1 else None

    def has_lesson(self, subject_id: str) -> bool:
        return self.completed_lessons.get(subject_id, 0) > 0 or self.planned_lessons[subject_id] > 0


@dataclass
class _DayState:
    day: date
    phase: str
    capacity: int
    cursor: int
    end: int
    due_reviews: Counter
    planned_minutes: int = 0
    daily_count: Counter = field(default_factory=Counter)
    recent: Deque[str] = field(default_factory=lambda: deque(maxlen=DAY_RECENT_WINDOW))
    subjects: Set[str] = field(default_factory=set)
    blocks_since_review: int = 0
    seq: int = 0

    @property
    def available(self) -> int:
        return min(self.capacity - self.planned_minutes, self.end - self.cursor)

    def next_id(self) -> str:
        self.seq += 1
        return f"{date_key(self.day)}-{self.seq:03d}"


class ScheduleSynthesizer:
    """Builds an ordered list of study and break units over a date range."""

    def generate(self, request: ScheduleRequest) -> ScheduleResult:
        if request.end_date < request.start_date:
            logger.warning(
                "No schedulable days: end date %s precedes start date %s", request.end_date, request.start_date
            )
            return ScheduleResult()
        if not request.subjects:
            logger.warning("No schedulable subjects supplied; returning an empty schedule")
            return ScheduleResult()

        active_weekdays = self._active_weekdays(request)
        dates = [day for day in iter_dates(request.start_date, request.end_date) if day.weekday() in active_weekdays]
        if not any(self._window_minutes(request, day) > 0 for day in dates):
            logger.warning(
                "No schedulable days between %s and %s (active weekdays=%s)",
                request.start_date,
                request.end_date,
                sorted(active_weekdays),
            )
            return ScheduleResult()

        now = request.now or utc_midnight(request.start_date)
        learner_level = infer_learner_level(request.preferences, request.subjects)
        contexts = {
            subject.id: self._subject_context(subject, request, now, learner_level) for subject in request.subjects
        }
        state = _PlanningState(
            remaining_slots=self._remaining_slots(request, dates, contexts),
            completed_lessons=request.completed_lessons_by_subject,
        )
        daily_cap = 1 if is_exam_tracked_goal(request.preferences.goal) else 2
        top_priority = [
            subject.id for subject in sorted(request.subjects, key=lambda item: item.priority, reverse=True)[:3]
        ]
        phase_by_date: Dict[str, str] = {}

        for day in dates:
            phase = phase_for_date(day, request.start_date)
            phase_by_date[date_key(day)] = phase
            start, end = self._window_for(request, day)
            if end <= start:
                continue
            day_state = _DayState(
                day=day,
                phase=phase,
                capacity=self._capacity_for(request, day, end - start),
                cursor=start,
                end=end,
                due_reviews=Counter(state.review_queue.get(day, [])),
            )
            self._plan_day(request, contexts, state, day_state, daily_cap, top_priority, learner_level)
            produced = sum(1 for unit in state.units if unit.date == day and not unit.is_break)
            logger.debug("Planned %s study units on %s", produced, day)
            if request.debug:
                state.debug_log.append(f"{date_key(day)}: {produced} units")
            state.previous_day_subjects = day_state.subjects

        units = sorted(state.units, key=lambda unit: (unit.date, time_to_minutes(unit.start_time)))
        study_units = [unit for unit in units if not unit.is_break]
        distribution: Dict[str, float] = {}
        for unit in study_units:
            distribution[unit.subject_id] = distribution.get(unit.subject_id, 0.0) + unit.duration_minutes / 60
        total_minutes = sum(unit.duration_minutes for unit in study_units)

        return ScheduleResult(
            units=units,
            total_hours=round(total_minutes / 60, 1),
            subject_distribution={key: round(value, 2) for key, value in distribution.items()},
            phase_by_date=phase_by_date,
            debug_log=state.debug_log,
        )

    def _plan_day(
        self,
        request: ScheduleRequest,
        contexts: Mapping[str, _SubjectContext],
        state: _PlanningState,
        day: _DayState,
        daily_cap: int,
        top_priority: List[str],
        learner_level: str,
    ) -> None:
        while day.cursor + MIN_UNIT_MINUTES <= day.end and day.planned_minutes < day.capacity:
            available = day.available
            if available < MIN_UNIT_MINUTES:
                break

            pool = [subject for subject in request.subjects if day.daily_count[subject.id] < daily_cap]
            streak = state.streak_subject()
            if streak is not None:
                pool = [subject for subject in pool if subject.id != streak]
            if not pool:
                break

            if request.first_cycle_all_subjects:
                pending = [subject for subject in pool if not state.has_lesson(subject.id)]
                if pending:
                    pool = pending

            reviews = [
                subject
                for subject in pool
                if day.due_reviews[subject.id] > 0 and state.has_lesson(subject.id)
            ]
            chosen = self._choose(reviews or pool, contexts, state, day)
            context = contexts[chosen.id]
            has_lesson = state.has_lesson(chosen.id)
            cycle_state = state.cycle_states.get(chosen.id, CycleState())
            expected = resolve_stage(cycle_state, has_lesson, context.level, learner_level)

            if day.due_reviews[chosen.id] > 0 and has_lesson:
                day.due_reviews[chosen.id] -= 1
                stage = CycleStage.REVIEW
                matched = expected is CycleStage.REVIEW
                day.blocks_since_review = 0
            elif (
                day.blocks_since_review >= FORCED_REVIEW_GAP
                and len(set(day.recent)) >= 2
                and has_lesson
            ):
                stage = CycleStage.REVIEW
                matched = expected is CycleStage.REVIEW
                day.blocks_since_review = 0
            else:
                stage = expected
                matched = True
                if stage is CycleStage.REVIEW:
                    day.blocks_since_review = 0
                else:
                    day.blocks_since_review += 1

            exam_kind = None
            if stage is CycleStage.MOCK_EXAM:
                exam_kind = self._eligible_exam(request, state, day, top_priority, available)
                if exam_kind is None:
                    stage = CycleStage.PRACTICE if has_lesson else CycleStage.THEORY
                    matched = False

            if exam_kind is not None:
                duration = exam_minutes(request.window.max_unit_minutes)
            else:
                duration = unit_minutes(
                    request.window.max_unit_minutes, chosen.difficulty, context.level, context.tier
                )
                if stage is CycleStage.REVIEW:
                    duration = max(MIN_UNIT_MINUTES, int(round(duration * REVIEW_SCALE)))
            duration = min(duration, available)
            if duration < MIN_UNIT_MINUTES:
                break

            topics = chosen.topics
            topic_name = None
            if exam_kind is None and topics:
                topic_name = topics[state.topic_cursor[chosen.id] % len(topics)]

            session_type = STAGE_SESSION_TYPE[stage]
            if exam_kind is not None:
                unit = self._make_unit(
                    day,
                    subject_id=MOCK_EXAM_SUBJECT_ID,
                    duration=duration,
                    unit_kind=exam_kind,
                    session_type=session_type,
                    area=context.area if exam_kind == "AREA_MOCK_EXAM" else "general",
                    related_subject_id=chosen.id,
                    adaptive_score=context.adaptive_priority,
                    description=_DESCRIPTIONS[exam_kind].format(area=context.area or "area"),
                )
            else:
                unit_kind = STAGE_UNIT_KIND[stage]
                unit = self._make_unit(
                    day,
                    subject_id=chosen.id,
                    duration=duration,
                    unit_kind=unit_kind,
                    session_type=session_type,
                    area=context.area,
                    related_subject_id=chosen.id if stage is CycleStage.REVIEW else None,
                    topic_name=topic_name,
                    adaptive_score=context.adaptive_priority,
                    description=_DESCRIPTIONS[unit_kind],
                )
            self._record(state, day, unit, chosen.id)

            if matched:
                advanced = advance(cycle_state, context.level)
                state.cycle_states[chosen.id] = advanced
                if advanced.stage_index == 0 and cycle_state.stage_index != 0:
                    state.topic_cursor[chosen.id] += 1

            if stage is CycleStage.THEORY:
                state.planned_lessons[chosen.id] += 1
                self._enqueue_reviews(request, state, day.day, chosen.id)
            elif stage is CycleStage.PRACTICE:
                state.planned_practice[chosen.id] += 1
            if exam_kind == "FULL_MOCK_EXAM":
                state.last_full_exam_date = day.day
            state.area_cursor += 1

            if exam_kind is not None:
                analysis_minutes = min(available - duration, max(45, min(90, duration)))
                if analysis_minutes >= MIN_UNIT_MINUTES and day.cursor + analysis_minutes <= day.end:
                    analysis = self._make_unit(
                        day,
                        subject_id=MOCK_EXAM_SUBJECT_ID,
                        duration=analysis_minutes,
                        unit_kind="ANALYSIS",
                        session_type="practice",
                        area=unit.area,
                        related_subject_id=chosen.id,
                        description=_DESCRIPTIONS["ANALYSIS"],
                    )
                    self._record(state, day, analysis, None)

            self._insert_break(request, state, day)

    def _choose(
        self,
        candidates: List[Subject],
        contexts: Mapping[str, _SubjectContext],
        state: _PlanningState,
        day: _DayState,
    ) -> Subject:
        desired_area = AREA_ROTATION[state.area_cursor % len(AREA_ROTATION)]
        previous = state.previous_subject
        # sorted() is stable, so equal scores keep declaration order.
        ranked = sorted(
            candidates,
            key=lambda subject: self._rank_score(contexts[subject.id], state, day, desired_area, previous),
            reverse=True,
        )
        for subject in ranked:
            if subject.id != previous:
                return subject
        return ranked[0]

    def _rank_score(
        self,
        context: _SubjectContext,
        state: _PlanningState,
        day: _DayState,
        desired_area: str,
        previous: Optional[str],
    ) -> float:
        subject_id = context.subject.id
        score = (
            context.weight * 10
            + state.remaining_slots.get(subject_id, 0) * 2
            - state.usage[subject_id] * 3
            + context.adaptive_priority * 18
        )
        if context.area == desired_area:
            score += 12
        if subject_id != previous:
            score += 8
        if not state.has_lesson(subject_id):
            score += 18
        score += context.keyword_bonus
        if subject_id in day.recent:
            score -= 12
        if subject_id in state.recent_units:
            score -= 10
        if subject_id in state.previous_day_subjects:
            score -= 16 if day.planned_minutes == 0 else 6
        if day.cursor < 12 * 60 and context.level == "advanced":
            score += 6
        if day.cursor >= 18 * 60 and context.level == "basic":
            score += 4
        return score

    def _eligible_exam(
        self,
        request: ScheduleRequest,
        state: _PlanningState,
        day: _DayState,
        top_priority: List[str],
        available: int,
    ) -> Optional[str]:
        if state.previous_subject == MOCK_EXAM_SUBJECT_ID or available < MIN_EXAM_MINUTES:
            return None
        if self._full_exam_ready(request, state, day.day, top_priority):
            return "FULL_MOCK_EXAM"
        if self._area_exam_ready(request, state, day.day):
            return "AREA_MOCK_EXAM"
        return None

    def _full_exam_ready(
        self, request: ScheduleRequest, state: _PlanningState, day: date, top_priority: List[str]
    ) -> bool:
        rules = request.mock_exam_rules
        if (day - request.start_date).days < rules.min_days_before_simulated:
            return False
        if self._lessons_total(request, state) < rules.min_lessons_before_simulated:
            return False
        if rules.min_practice_before_simulated and self._practice_total(request, state) < rules.min_practice_before_simulated:
            return False
        if rules.min_lessons_per_subject:
            for subject_id in top_priority:
                lessons = request.completed_lessons_by_subject.get(subject_id, 0) + state.planned_lessons[subject_id]
                if lessons < rules.min_lessons_per_subject:
                    return False
        if state.last_full_exam_date is not None:
            if (day - state.last_full_exam_date).days < rules.frequency_days:
                return False
        return True

    def _area_exam_ready(self, request: ScheduleRequest, state: _PlanningState, day: date) -> bool:
        rules = request.mock_exam_rules
        if (day - request.start_date).days < rules.min_days_before_area_simulated:
            return False
        if self._lessons_total(request, state) < rules.min_lessons_before_area_simulated:
            return False
        if rules.min_practice_before_simulated and (
            self._practice_total(request, state) < rules.min_practice_before_simulated // 2
        ):
            return False
        return True

    @staticmethod
    def _lessons_total(request: ScheduleRequest, state: _PlanningState) -> int:
        return request.completed_lessons_total + sum(state.planned_lessons.values())

    @staticmethod
    def _practice_total(request: ScheduleRequest, state: _PlanningState) -> int:
        return request.completed_practice_total + sum(state.planned_practice.values())

    def _make_unit(
        self,
        day: _DayState,
        *,
        subject_id: str,
        duration: int,
        unit_kind: str,
        session_type: str,
        area: Optional[str],
        related_subject_id: Optional[str] = None,
        topic_name: Optional[str] = None,
        adaptive_score: Optional[float] = None,
        description: Optional[str] = None,
    ) -> StudyUnit:
        return StudyUnit(
            id=day.next_id(),
            subject_id=subject_id,
            date=day.day,
            start_time=minutes_to_time(day.cursor),
            end_time=minutes_to_time(day.cursor + duration),
            duration_minutes=duration,
            unit_kind=unit_kind,
            session_type=session_type,
            phase=day.phase,
            area=area,
            related_subject_id=related_subject_id,
            topic_name=topic_name,
            stage_index=_STAGE_INDEX[session_type] if unit_kind != "ANALYSIS" else None,
            stage_total=STAGE_TOTAL if unit_kind != "ANALYSIS" else None,
            adaptive_score=round(adaptive_score, 4) if adaptive_score is not None else None,
            description=description,
        )

    @staticmethod
    def _record(state: _PlanningState, day: _DayState, unit: StudyUnit, counted_subject: Optional[str]) -> None:
        state.units.append(unit)
        day.cursor += unit.duration_minutes
        day.planned_minutes += unit.duration_minutes
        state.recent_units.append(unit.subject_id)
        day.recent.append(unit.subject_id)
        if counted_subject is not None:
            day.daily_count[counted_subject] += 1
            day.subjects.add(counted_subject)
            state.usage[counted_subject] += 1
            state.remaining_slots[counted_subject] = max(0, state.remaining_slots.get(counted_subject, 0) - 1)

    @staticmethod
    def _insert_break(request: ScheduleRequest, state: _PlanningState, day: _DayState) -> None:
        minutes = request.window.break_minutes
        if minutes <= 0 or day.cursor + minutes > day.end:
            return
        state.units.append(
            StudyUnit(
                id=day.next_id(),
                subject_id=BREAK_SUBJECT_ID,
                date=day.day,
                start_time=minutes_to_time(day.cursor),
                end_time=minutes_to_time(day.cursor + minutes),
                duration_minutes=minutes,
                is_break=True,
                phase=day.phase,
            )
        )
        day.cursor += minutes

    @staticmethod
    def _enqueue_reviews(request: ScheduleRequest, state: _PlanningState, day: date, subject_id: str) -> None:
        for offset in REVIEW_OFFSETS_DAYS:
            review_day = day + timedelta(days=offset)
            if review_day > request.end_date:
                continue
            state.review_queue[review_day].append(subject_id)

    @staticmethod
    def _active_weekdays(request: ScheduleRequest) -> Set[int]:
        preferred = {day for day in request.preferences.days_of_week if 0 <= day <= 6} or set(range(7))
        return preferred - set(request.window.rest_days)

    @staticmethod
    def _window_for(request: ScheduleRequest, day: date) -> Tuple[int, int]:
        override = request.window.overrides_by_date.get(day)
        if override is not None:
            return time_to_minutes(override.start), time_to_minutes(override.end)
        return time_to_minutes(request.window.start), time_to_minutes(request.window.end)

    @classmethod
    def _window_minutes(cls, request: ScheduleRequest, day: date) -> int:
        start, end = cls._window_for(request, day)
        return max(0, end - start)

    @staticmethod
    def _capacity_for(request: ScheduleRequest, day: date, window_minutes: int) -> int:
        override = request.daily_capacity_overrides.get(day)
        if override is not None:
            return min(window_minutes, max(0, override))
        return min(window_minutes, int(round(request.preferences.hours_per_day * 60)))

    def _subject_context(
        self, subject: Subject, request: ScheduleRequest, now: datetime, learner_level: str
    ) -> _SubjectContext:
        return _SubjectContext(
            subject=subject,
            area=infer_area(subject),
            level=infer_level(subject),
            weight=exam_weight(subject),
            tier=exam_tier(subject),
            keyword_bonus=keyword_bonus(subject),
            adaptive_priority=compute_priority_score(
                subject,
                request.performance_profiles.get(subject.id),
                now,
                request.preferences.exam_date,
                learner_level,
            ),
        )

    def _remaining_slots(
        self, request: ScheduleRequest, dates: List[date], contexts: Mapping[str, _SubjectContext]
    ) -> Dict[str, int]:
        slot_size = max(MIN_UNIT_MINUTES, request.window.max_unit_minutes)
        total_slots = 0
        for day in dates:
            start, end = self._window_for(request, day)
            capacity = self._capacity_for(request, day, max(0, end - start))
            total_slots += max(1, capacity // slot_size)
        total_slots = max(1, total_slots)

        weights = {
            subject_id: max(0.5, context.subject.weekly_target_hours) * 1.4
            + context.weight * 2
            + context.tier * 0.4
            + context.adaptive_priority
            for subject_id, context in contexts.items()
        }
        total_weight = max(0.1, sum(weights.values()))
        return {
            subject_id: max(1, int(round(weight / total_weight * total_slots)))
            for subject_id, weight in weights.items()
        }


synthesizer = ScheduleSynthesizer()


def generate_schedule(request: ScheduleRequest) -> ScheduleResult:
    return synthesizer.generate(request)


def replan_after_performance_update(request: ScheduleRequest, outcomes: Mapping[str, str]) -> ScheduleResult:
    """Regenerate after bumping the priority of subjects whose sessions were skipped."""
    subjects = [
        subject.model_copy(update={"priority": min(10, subject.priority + 1)})
        if outcomes.get(subject.id) == "skipped"
        else subject
        for subject in request.subjects
    ]
    return synthesizer.generate(request.model_copy(update={"subjects": subjects, "debug": True}))


__all__ = [
    "ScheduleSynthesizer",
    "exam_minutes",
    "generate_schedule",
    "is_exam_tracked_goal",
    "phase_for_date",
    "phase_for_week",
    "replan_after_performance_update",
    "synthesizer",
    "unit_minutes",
]
