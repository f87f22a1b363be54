from __future__ import annotations

import pytest
from pydantic import ValidationError

from testarchitect.state import (
    AgentState,
    Observation,
    PageSnapshot,
    PatternAnswer,
    RunContext,
    advance,
    pending_phases,
    reduce,
)


def test_reduce_sets_fields_once_and_never_clears():
    first = PageSnapshot(url="https://app.test/a", title="A")
    second = PageSnapshot(url="https://app.test/b", title="B")
    state = reduce(AgentState(), Observation(summary="inspected", state_delta={"structural_snapshot": first}))
    state = reduce(state, Observation(summary="again", state_delta={"structural_snapshot": second}))
    state = reduce(state, Observation(summary="noop", state_delta={"structural_snapshot": None}))
    assert state.structural_snapshot == first
    assert state.history == ("inspected", "again", "noop")


def test_reduce_appends_paths_and_completes():
    state = reduce(AgentState(), Observation(summary="w1", state_delta={"persisted_paths": ("a.ts",)}))
    state = reduce(
        state,
        Observation(summary="w2", state_delta={"persisted_paths": ("b.ts",)}, task_complete=True),
    )
    assert state.persisted_paths == ("a.ts", "b.ts")
    assert state.completed


def test_reduce_returns_new_state():
    original = AgentState()
    updated = reduce(
        original,
        Observation(
            summary="retrieved",
            state_delta={"retrieved_patterns": PatternAnswer(question="q", answer="a")},
        ),
    )
    assert original.retrieved_patterns is None
    assert updated.retrieved_patterns is not None
    assert advance(updated).step_count == 1
    assert updated.step_count == 0


def test_state_is_immutable():
    state = AgentState()
    with pytest.raises(ValidationError):
        state.step_count = 3


def test_pending_phases():
    context = RunContext(task="t", feature_name="f", team_name="x", target_url="https://app.test")
    assert pending_phases(context, AgentState()) == [
        "inspect",
        "retrieve",
        "generate-scenarios",
        "generate-code",
        "persist",
    ]
    no_url = context.model_copy(update={"target_url": None})
    assert pending_phases(no_url, AgentState())[0] == "retrieve"
