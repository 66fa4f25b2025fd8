"""Per-subject pedagogical cycle: THEORY -> PRACTICE -> REVIEW -> MOCK_EXAM."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class CycleStage(str, Enum):
    THEORY = "THEORY"
    PRACTICE = "PRACTICE"
    REVIEW = "REVIEW"
    MOCK_EXAM = "MOCK_EXAM"


STAGE_ORDER: Tuple[CycleStage, ...] = (
    CycleStage.THEORY,
    CycleStage.PRACTICE,
    CycleStage.REVIEW,
    CycleStage.MOCK_EXAM,
)
STAGE_TOTAL = len(STAGE_ORDER)

# (stage, subject level) -> repeats required before the cycle advances.
_REPEAT_TABLE: Dict[Tuple[CycleStage, str], int] = {
    (CycleStage.THEORY, "basic"): 2,
    (CycleStage.THEORY, "intermediate"): 1,
    (CycleStage.THEORY, "advanced"): 1,
    (CycleStage.PRACTICE, "basic"): 1,
    (CycleStage.PRACTICE, "intermediate"): 2,
    (CycleStage.PRACTICE, "advanced"): 3,
    (CycleStage.REVIEW, "basic"): 1,
    (CycleStage.REVIEW, "intermediate"): 1,
    (CycleStage.REVIEW, "advanced"): 1,
    (CycleStage.MOCK_EXAM, "basic"): 1,
    (CycleStage.MOCK_EXAM, "intermediate"): 1,
    (CycleStage.MOCK_EXAM, "advanced"): 1,
}

STAGE_UNIT_KIND = {
    CycleStage.THEORY: "LESSON",
    CycleStage.PRACTICE: "EXERCISE",
    CycleStage.REVIEW: "REVIEW",
}

STAGE_SESSION_TYPE = {
    CycleStage.THEORY: "theory",
    CycleStage.PRACTICE: "practice",
    CycleStage.REVIEW: "review",
    CycleStage.MOCK_EXAM: "mock_exam",
}


def required_repeats(stage: CycleStage, level: str) -> int:
    return _REPEAT_TABLE.get((stage, level), 1)


@dataclass(frozen=True)
class CycleState:
    stage_index: int = 0
    stage_progress: int = 0

    @property
    def stage(self) -> CycleStage:
        return STAGE_ORDER[self.stage_index % STAGE_TOTAL]


def advance(state: CycleState, level: str) -> CycleState:
    """Record one completed repeat of the current stage and return the next state."""
    progress = state.stage_progress + 1
    if progress < required_repeats(state.stage, level):
        return CycleState(stage_index=state.stage_index, stage_progress=progress)
    return CycleState(stage_index=(state.stage_index + 1) % STAGE_TOTAL, stage_progress=0)


def resolve_stage(state: CycleState, has_lesson: bool, subject_level: str, learner_level: str) -> CycleStage:
    """Stage the next unit should use, before exam eligibility is considered."""
    if not has_lesson:
        return CycleStage.THEORY
    stage = state.stage
    if stage is CycleStage.MOCK_EXAM and learner_level == "beginner" and subject_level == "basic":
        return CycleStage.REVIEW
    return stage


__all__ = [
    "CycleStage",
    "CycleState",
    "STAGE_ORDER",
    "STAGE_SESSION_TYPE",
    "STAGE_TOTAL",
    "STAGE_UNIT_KIND",
    "advance",
    "required_repeats",
    "resolve_stage",
]
