"""Orchestration loop producing a generated test package."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable
from uuid import uuid4

from testarchitect.failures import MaxStepsExceededError, PreconditionError
from testarchitect.policy import DecisionPolicy, default_question
from testarchitect.state import (
    Action,
    ActionKind,
    AgentState,
    GeneratedArtifacts,
    Observation,
    RunContext,
    TestScenario,
    advance,
    pending_phases,
    reduce,
)
from testarchitect.tools.base import ToolResult
from testarchitect.tools.code_generator import NAME_PATTERN, CodeGeneratorTool
from testarchitect.tools.page_inspector import PageInspectorTool
from testarchitect.tools.pattern_repository import PatternRepositoryTool
from testarchitect.tools.scenario_generator import ScenarioGeneratorTool
from testarchitect.trace import TraceRecorder
from testarchitect.util.logging import get_logger

logger = get_logger(__name__)

Handler = Callable[[RunContext, AgentState, Action], Awaitable[Observation]]


@dataclass
class RunResult:
    generated_artifacts: GeneratedArtifacts | None
    persisted_paths: list[str] = field(default_factory=list)
    scenarios: list[TestScenario] = field(default_factory=list)
    steps: int = 0
    trace_path: str | None = None


def _failed(action: Action, result: ToolResult) -> Observation:
    failure = result.failure
    return Observation(
        summary=f"{action.kind.value} failed ({failure.kind.value}): {failure.message}",
        failure=failure.kind.value,
    )


def _check_name(label: str, value: str) -> None:
    if not re.fullmatch(NAME_PATTERN, value):
        raise PreconditionError(f"Invalid {label}: {value!r}")


class Orchestrator:
    """Runs the decide / dispatch / reduce loop until the package is written.

    Each action kind is bound to exactly one handler at construction time.
    Tool failures are folded into the state as observations; only the step
    budget ends a run unsuccessfully.
    """

    def __init__(
        self,
        policy: DecisionPolicy,
        inspector: PageInspectorTool,
        repository_tool: PatternRepositoryTool,
        scenario_tool: ScenarioGeneratorTool,
        code_tool: CodeGeneratorTool,
        output_dir: str = ".",
        max_steps: int = 10,
        trace_dir: str | None = None,
    ) -> None:
        self.policy = policy
        self.inspector = inspector
        self.repository_tool = repository_tool
        self.scenario_tool = scenario_tool
        self.code_tool = code_tool
        self.output_dir = Path(output_dir)
        self.max_steps = max_steps
        self.trace_dir = trace_dir
        self._handlers: dict[ActionKind, Handler] = {
            ActionKind.INSPECT: self._inspect,
            ActionKind.RETRIEVE: self._retrieve,
            ActionKind.GENERATE_SCENARIOS: self._generate_scenarios,
            ActionKind.GENERATE_CODE: self._generate_code,
            ActionKind.PERSIST: self._persist,
            ActionKind.DONE: self._done,
        }

    async def run(
        self,
        task: str,
        feature_name: str,
        team_name: str,
        target_url: str | None = None,
        requirements: str = "",
    ) -> RunResult:
        _check_name("feature name", feature_name)
        _check_name("team name", team_name)
        context = RunContext(
            task=task,
            feature_name=feature_name,
            team_name=team_name,
            target_url=target_url or None,
            requirements=requirements,
        )
        trace = TraceRecorder(trace_id=uuid4().hex, trace_dir=self.trace_dir) if self.trace_dir else None
        logger.info(
            "run.start feature=%s team=%s url=%s max_steps=%d",
            feature_name,
            team_name,
            context.target_url,
            self.max_steps,
        )
        state = AgentState()
        try:
            while not state.completed:
                state = advance(state)
                if state.step_count > self.max_steps:
                    pending = pending_phases(context, state)
                    logger.error("run.budget_exhausted max_steps=%d pending=%s", self.max_steps, pending)
                    raise MaxStepsExceededError(self.max_steps, pending)
                action = await self.policy.decide(context, state)
                logger.info(
                    "step=%d action=%s source=%s reasoning=%s",
                    state.step_count,
                    action.kind.value,
                    action.source,
                    action.reasoning,
                )
                if trace:
                    trace.record_decision(state.step_count, action)
                observation = await self._handlers[action.kind](context, state, action)
                if trace:
                    trace.record_observation(state.step_count, observation)
                state = reduce(state, observation)
        finally:
            trace_path = None
            if trace:
                trace_path = trace.finalize(
                    {"steps": state.step_count, "completed": state.completed}
                )

        logger.info("run.completed steps=%d files=%d", state.step_count, len(state.persisted_paths))
        return RunResult(
            generated_artifacts=state.generated_artifacts,
            persisted_paths=list(state.persisted_paths),
            scenarios=list(state.scenarios or ()),
            steps=state.step_count,
            trace_path=trace_path,
        )

    async def _inspect(self, context: RunContext, state: AgentState, action: Action) -> Observation:
        if not context.target_url:
            return Observation(summary="inspect skipped: no target URL", failure="precondition")
        result = await self.inspector.inspect(context.target_url)
        if not result.ok:
            return _failed(action, result)
        snapshot = result.output
        return Observation(
            summary=f"Inspected {snapshot.url}: {len(snapshot.elements)} interactive elements",
            state_delta={"structural_snapshot": snapshot},
        )

    async def _retrieve(self, context: RunContext, state: AgentState, action: Action) -> Observation:
        tool_input = action.tool_input or {"question": default_question(context)}
        result = await self.repository_tool.invoke(tool_input)
        if not result.ok:
            return _failed(action, result)
        answer = result.output
        return Observation(
            summary=f"Retrieved patterns: {len(answer.sources)} sources",
            state_delta={"retrieved_patterns": answer},
        )

    async def _generate_scenarios(
        self, context: RunContext, state: AgentState, action: Action
    ) -> Observation:
        result = await self.scenario_tool.invoke(
            {
                "requirements": context.requirements,
                "snapshot": state.structural_snapshot,
                "patterns": state.retrieved_patterns,
            }
        )
        if not result.ok:
            return _failed(action, result)
        scenarios = tuple(result.output)
        return Observation(
            summary=f"Generated {len(scenarios)} scenarios",
            state_delta={"scenarios": scenarios},
        )

    async def _generate_code(
        self, context: RunContext, state: AgentState, action: Action
    ) -> Observation:
        if not state.scenarios:
            return Observation(
                summary="generate-code skipped: no scenarios available", failure="precondition"
            )
        result = await self.code_tool.invoke(
            {
                "feature_name": context.feature_name,
                "team_name": context.team_name,
                "scenarios": list(state.scenarios),
                "snapshot": state.structural_snapshot,
                "patterns": state.retrieved_patterns,
            }
        )
        if not result.ok:
            return _failed(action, result)
        return Observation(
            summary="Generated page object, scenario module and test spec",
            state_delta={"generated_artifacts": result.output},
        )

    async def _persist(self, context: RunContext, state: AgentState, action: Action) -> Observation:
        artifacts = state.generated_artifacts
        if artifacts is None:
            return Observation(summary="persist skipped: nothing generated", failure="precondition")
        target = self.output_dir / "teams" / context.team_name / context.feature_name
        target.mkdir(parents=True, exist_ok=True)
        files = {
            f"{context.feature_name}.page.ts": artifacts.page_object,
            f"{context.feature_name}.feature.ts": artifacts.scenario_module,
            f"{context.feature_name}.spec.ts": artifacts.test_spec,
        }
        paths: list[str] = []
        for filename, content in files.items():
            path = target / filename
            path.write_text(content, encoding="utf-8")
            paths.append(str(path))
        logger.info("persist.done dir=%s files=%d", target, len(paths))
        return Observation(
            summary=f"Wrote {len(paths)} files to {target}",
            state_delta={"persisted_paths": tuple(paths)},
            task_complete=True,
        )

    async def _done(self, context: RunContext, state: AgentState, action: Action) -> Observation:
        return Observation(summary="Task complete", task_complete=True)
