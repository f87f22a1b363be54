"""Decision policy: LLM-proposed next action with a deterministic rule table."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, ValidationError

from testarchitect.models.base import BaseLLM, LLMError
from testarchitect.state import Action, ActionKind, AgentState, RunContext
from testarchitect.util.llm_json import LLMJsonError, extract_json_object
from testarchitect.util.logging import get_logger

logger = get_logger(__name__)

MAX_HISTORY_LINES = 6

ACTION_ALIASES = {
    "analyze_page": ActionKind.INSPECT,
    "analyze-page": ActionKind.INSPECT,
    "query_patterns": ActionKind.RETRIEVE,
    "query-patterns": ActionKind.RETRIEVE,
    "generate_scenarios": ActionKind.GENERATE_SCENARIOS,
    "generate_code": ActionKind.GENERATE_CODE,
    "write_files": ActionKind.PERSIST,
    "write-files": ActionKind.PERSIST,
    "complete": ActionKind.DONE,
}

TOOL_NAMES = {
    ActionKind.INSPECT: "page_inspector",
    ActionKind.RETRIEVE: "pattern_repository",
    ActionKind.GENERATE_SCENARIOS: "scenario_generator",
    ActionKind.GENERATE_CODE: "code_generator",
}

_PROMPT = """You are an autonomous test architect building a Playwright test package.

TASK: {task}
FEATURE: {feature} (team: {team})
TARGET URL: {url}
REQUIREMENTS: {requirements}

CURRENT STATE:
- Step: {step}
- Page analyzed: {inspected}
- Patterns retrieved: {retrieved}
- Scenarios generated: {scenarios}
- Code generated: {generated}
- Files written: {persisted}

RECENT OBSERVATIONS:
{history}

AVAILABLE ACTIONS:
- inspect: analyze the target page structure (only when a target URL is given)
- retrieve: query reusable page objects and test patterns
- generate-scenarios: create test scenarios from the analysis and requirements
- generate-code: produce the page object, scenario module and test spec
- persist: write the generated files
- done: finish once the files are written

Choose the single next action. Respond ONLY with JSON:
{{"action": "<action>", "reasoning": "<why>", "tool": "<tool name or null>", "input": <tool input or null>}}
"""


class _LLMDecision(BaseModel):
    action: str = Field(min_length=1)
    reasoning: str = ""
    tool: str | None = None
    input: Any = None


def default_question(context: RunContext) -> str:
    return f"page object patterns for {context.feature_name}"


def _tool_input(kind: ActionKind, context: RunContext, raw: Any = None) -> Any:
    if kind is ActionKind.INSPECT:
        return {"url": context.target_url}
    if kind is ActionKind.RETRIEVE:
        if isinstance(raw, str) and raw.strip():
            return {"question": raw.strip()}
        if isinstance(raw, dict) and str(raw.get("question", "")).strip():
            return {"question": str(raw["question"]).strip()}
        return {"question": default_question(context)}
    return None


def fallback_action(context: RunContext, state: AgentState) -> Action:
    """Pure rule table over state presence; the first unmet phase wins."""
    if context.target_url and state.structural_snapshot is None:
        kind, reasoning = ActionKind.INSPECT, "Target URL given and page not analyzed yet"
    elif state.retrieved_patterns is None:
        kind, reasoning = ActionKind.RETRIEVE, "Reusable patterns not retrieved yet"
    elif state.scenarios is None:
        kind, reasoning = ActionKind.GENERATE_SCENARIOS, "Scenarios not generated yet"
    elif state.generated_artifacts is None:
        kind, reasoning = ActionKind.GENERATE_CODE, "Code not generated yet"
    elif not state.persisted_paths:
        kind, reasoning = ActionKind.PERSIST, "Generated files not written yet"
    else:
        kind, reasoning = ActionKind.DONE, "All files written"
    return Action(
        kind=kind,
        reasoning=reasoning,
        tool_name=TOOL_NAMES.get(kind),
        tool_input=_tool_input(kind, context),
        source="fallback",
    )


def is_applicable(kind: ActionKind, context: RunContext, state: AgentState) -> bool:
    """True when the action's output is still missing and its inputs exist."""
    if kind is ActionKind.INSPECT:
        return bool(context.target_url) and state.structural_snapshot is None
    if kind is ActionKind.RETRIEVE:
        return state.retrieved_patterns is None
    if kind is ActionKind.GENERATE_SCENARIOS:
        analyzed = not context.target_url or state.structural_snapshot is not None
        return state.scenarios is None and analyzed
    if kind is ActionKind.GENERATE_CODE:
        return state.scenarios is not None and state.generated_artifacts is None
    if kind is ActionKind.PERSIST:
        return state.generated_artifacts is not None and not state.persisted_paths
    return bool(state.persisted_paths)


def parse_action_kind(name: str) -> ActionKind | None:
    normalized = name.strip().lower()
    if normalized in ACTION_ALIASES:
        return ACTION_ALIASES[normalized]
    try:
        return ActionKind(normalized.replace("_", "-"))
    except ValueError:
        return None


def _history_text(state: AgentState) -> str:
    recent = state.history[-MAX_HISTORY_LINES:]
    return "\n".join(f"- {line}" for line in recent) or "- none"


class DecisionPolicy:
    """Chooses the next action, trusting the LLM only when its choice is usable.

    Any LLM failure, unparsable reply or inapplicable action yields the
    rule-table action, so the loop always makes progress.
    """

    def __init__(self, llm: BaseLLM | None = None) -> None:
        self.llm = llm

    def build_prompt(self, context: RunContext, state: AgentState) -> str:
        return _PROMPT.format(
            task=context.task,
            feature=context.feature_name,
            team=context.team_name,
            url=context.target_url or "none",
            requirements=context.requirements or "none",
            step=state.step_count,
            inspected=state.structural_snapshot is not None,
            retrieved=state.retrieved_patterns is not None,
            scenarios=len(state.scenarios) if state.scenarios is not None else 0,
            generated=state.generated_artifacts is not None,
            persisted=len(state.persisted_paths),
            history=_history_text(state),
        )

    async def decide(self, context: RunContext, state: AgentState) -> Action:
        if self.llm is None:
            return fallback_action(context, state)
        try:
            raw = await self.llm.complete(self.build_prompt(context, state))
            decision = _LLMDecision.model_validate(extract_json_object(raw))
        except (LLMError, LLMJsonError, ValidationError) as exc:
            logger.info("policy.fallback reason=%s", type(exc).__name__)
            return fallback_action(context, state)

        kind = parse_action_kind(decision.action)
        if kind is None:
            logger.info("policy.fallback reason=unknown_action action=%s", decision.action)
            return fallback_action(context, state)
        if not is_applicable(kind, context, state):
            logger.info("policy.fallback reason=inapplicable action=%s", kind.value)
            return fallback_action(context, state)
        return Action(
            kind=kind,
            reasoning=decision.reasoning or f"Model chose {kind.value}",
            tool_name=TOOL_NAMES.get(kind),
            tool_input=_tool_input(kind, context, decision.input),
            source="llm",
        )
