"""Immutable orchestration state, actions and observations."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class UIElement(BaseModel):
    model_config = ConfigDict(frozen=True)

    tag: str
    text: str = ""
    id: str = ""
    class_name: str = ""
    test_id: str = ""
    role: str = ""
    type: str = ""
    placeholder: str = ""
    xpath: str = ""
    index: int = 0


class PageStructure(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_navigation: bool = False
    has_footer: bool = False
    has_form: bool = False
    has_modal: bool = False


class AccessibilityFlags(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_aria_labels: bool = False
    has_headings: bool = False
    has_landmarks: bool = False


class PageSnapshot(BaseModel):
    """Structural snapshot of a live page."""

    model_config = ConfigDict(frozen=True)

    url: str
    title: str = ""
    elements: tuple[UIElement, ...] = ()
    structure: PageStructure = Field(default_factory=PageStructure)
    accessibility: AccessibilityFlags = Field(default_factory=AccessibilityFlags)


class PatternSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    content: str
    code_type: str = "code"
    score: float = 0.0


class PatternAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: str
    answer: str
    sources: tuple[PatternSource, ...] = ()


Priority = Literal["high", "medium", "low"]
Category = Literal["functional", "accessibility", "performance", "security", "usability"]


class TestScenario(BaseModel):
    __test__ = False

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    description: str
    priority: Priority = "medium"
    category: Category = "functional"
    steps: tuple[str, ...] = ()
    expected_results: tuple[str, ...] = Field(default=(), alias="expectedResults")


class GeneratedArtifacts(BaseModel):
    """The three correlated modules of a generated test package."""

    model_config = ConfigDict(frozen=True)

    page_object: str
    scenario_module: str
    test_spec: str


class ActionKind(str, Enum):
    INSPECT = "inspect"
    RETRIEVE = "retrieve"
    GENERATE_SCENARIOS = "generate-scenarios"
    GENERATE_CODE = "generate-code"
    PERSIST = "persist"
    DONE = "done"


class Action(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    reasoning: str
    tool_name: str | None = None
    tool_input: Any = None
    source: Literal["llm", "fallback"] = "fallback"


class Observation(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str
    state_delta: dict[str, Any] = Field(default_factory=dict)
    task_complete: bool = False
    failure: str | None = None


class RunContext(BaseModel):
    """Caller-supplied description of one generation task."""

    model_config = ConfigDict(frozen=True)

    task: str
    feature_name: str
    team_name: str
    target_url: str | None = None
    requirements: str = ""


class AgentState(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_count: int = 0
    structural_snapshot: PageSnapshot | None = None
    retrieved_patterns: PatternAnswer | None = None
    scenarios: tuple[TestScenario, ...] | None = None
    generated_artifacts: GeneratedArtifacts | None = None
    persisted_paths: tuple[str, ...] = ()
    completed: bool = False
    history: tuple[str, ...] = ()


_SET_ONCE_FIELDS = (
    "structural_snapshot",
    "retrieved_patterns",
    "scenarios",
    "generated_artifacts",
)


def reduce(state: AgentState, observation: Observation) -> AgentState:
    """Fold an observation into a new state.

    Set-once fields are only written while absent; ``persisted_paths`` is
    appended to; nothing is ever cleared.
    """
    delta = observation.state_delta
    update: dict[str, Any] = {"history": (*state.history, observation.summary)}
    for name in _SET_ONCE_FIELDS:
        value = delta.get(name)
        if value is not None and getattr(state, name) is None:
            update[name] = value
    paths = delta.get("persisted_paths")
    if paths:
        update["persisted_paths"] = (*state.persisted_paths, *paths)
    if observation.task_complete:
        update["completed"] = True
    return state.model_copy(update=update)


def advance(state: AgentState) -> AgentState:
    return state.model_copy(update={"step_count": state.step_count + 1})


def pending_phases(context: RunContext, state: AgentState) -> list[str]:
    """Names of the phases that have not produced their output yet."""
    phases: list[str] = []
    if context.target_url and state.structural_snapshot is None:
        phases.append(ActionKind.INSPECT.value)
    if state.retrieved_patterns is None:
        phases.append(ActionKind.RETRIEVE.value)
    if state.scenarios is None:
        phases.append(ActionKind.GENERATE_SCENARIOS.value)
    if state.generated_artifacts is None:
        phases.append(ActionKind.GENERATE_CODE.value)
    if not state.persisted_paths:
        phases.append(ActionKind.PERSIST.value)
    return phases
