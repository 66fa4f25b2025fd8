"""Tests for the per-subject pedagogical cycle state machine."""

from __future__ import annotations

from dataclasses import FrozenInstanceError

import pytest

from studyplan.pedagogical_cycle import CycleStage, CycleState, advance, required_repeats, resolve_stage


def test_basic_subjects_repeat_theory_before_practice() -> None:
    state = CycleState()

    state = advance(state, "basic")
    assert state == CycleState(stage_index=0, stage_progress=1)
    state = advance(state, "basic")
    assert state.stage is CycleStage.PRACTICE


def test_advanced_subjects_need_three_practice_units() -> None:
    state = CycleState(stage_index=1)
    for _ in range(2):
        state = advance(state, "advanced")
        assert state.stage is CycleStage.PRACTICE
    state = advance(state, "advanced")

    assert state.stage is CycleStage.REVIEW
    assert required_repeats(CycleStage.PRACTICE, "intermediate") == 2


def test_mock_exam_stage_wraps_to_theory() -> None:
    assert advance(CycleState(stage_index=3), "intermediate") == CycleState()


def test_subjects_without_a_lesson_always_start_with_theory() -> None:
    state = CycleState(stage_index=1)

    assert resolve_stage(state, False, "intermediate", "intermediate") is CycleStage.THEORY
    assert resolve_stage(state, True, "intermediate", "intermediate") is CycleStage.PRACTICE


def test_beginners_review_basic_subjects_instead_of_mock_exams() -> None:
    state = CycleState(stage_index=3)

    assert resolve_stage(state, True, "basic", "beginner") is CycleStage.REVIEW
    assert resolve_stage(state, True, "basic", "intermediate") is CycleStage.MOCK_EXAM
    assert resolve_stage(state, True, "advanced", "beginner") is CycleStage.MOCK_EXAM


def test_cycle_state_is_immutable() -> None:
    state = CycleState()

    with pytest.raises(FrozenInstanceError):
        state.stage_index = 2  # type: ignore[misc]
