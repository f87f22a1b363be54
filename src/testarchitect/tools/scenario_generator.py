"""Scenario generator: LLM-proposed test scenarios with a deterministic fallback."""

from __future__ import annotations

import json

from pydantic import BaseModel, Field, ValidationError

from testarchitect.models.base import BaseLLM, LLMError
from testarchitect.state import PageSnapshot, PatternAnswer, TestScenario
from testarchitect.tools.base import Tool
from testarchitect.util.llm_json import LLMJsonError, extract_json_object
from testarchitect.util.logging import get_logger

logger = get_logger(__name__)

MAX_PROMPT_ELEMENTS = 40

_PROMPT = """You are a senior QA engineer creating Playwright tests. Generate realistic, actionable
test scenarios based only on the UI elements actually found on the page.

UI ANALYSIS:
{analysis}

REQUIREMENTS:
{requirements}

EXISTING PATTERNS:
{patterns}

Rules:
1. Base scenarios on the listed elements only.
2. Every step is a concrete action or verification; page navigation is already handled.
3. Expected results must be specific and measurable.
4. Cover the categories functional, accessibility, performance, security and usability
   (2-3 scenarios each) with priority high, medium or low.

Return ONLY JSON of the form:
{{"scenarios": [{{"id": "FUNC001", "description": "...", "priority": "high",
"category": "functional", "steps": ["..."], "expectedResults": ["..."]}}]}}
"""


class ScenarioInput(BaseModel):
    requirements: str = ""
    snapshot: PageSnapshot | None = None
    patterns: PatternAnswer | None = None


class _ScenarioEnvelope(BaseModel):
    scenarios: list[TestScenario] = Field(min_length=1)


def fallback_scenarios(snapshot: PageSnapshot | None, requirements: str) -> tuple[TestScenario, ...]:
    """Scenario set derived only from structure flags and requirement keywords."""
    text = requirements.lower()
    has_form = (snapshot is not None and snapshot.structure.has_form) or "form" in text
    has_navigation = (snapshot is not None and snapshot.structure.has_navigation) or "nav" in text
    scenarios = [
        TestScenario(
            id="FUNC001",
            description="Verify page loads successfully with all core elements",
            priority="high",
            category="functional",
            steps=(
                "Wait for page to load completely",
                "Verify all essential elements are visible",
            ),
            expected_results=(
                "Page loads without errors",
                "All core UI elements are displayed",
                "Page is interactive",
            ),
        ),
        TestScenario(
            id="ACC001",
            description="Verify accessibility compliance and keyboard navigation",
            priority="high",
            category="accessibility",
            steps=("Navigate using only keyboard", "Verify ARIA labels", "Check heading structure"),
            expected_results=(
                "All elements are keyboard accessible",
                "ARIA labels are present",
                "Headings follow a logical hierarchy",
            ),
        ),
        TestScenario(
            id="PERF001",
            description="Verify page performance and loading times",
            priority="medium",
            category="performance",
            steps=("Measure page load time", "Verify responsive behavior"),
            expected_results=("Page loads within 3 seconds", "Page is responsive across devices"),
        ),
    ]
    if has_form:
        scenarios.append(
            TestScenario(
                id="FUNC002",
                description="Verify form functionality and validation",
                priority="high",
                category="functional",
                steps=("Fill form with valid data", "Submit form", "Submit form with invalid data"),
                expected_results=(
                    "Form submits successfully",
                    "Validation works correctly",
                    "Error messages are clear",
                ),
            )
        )
    if has_navigation:
        scenarios.append(
            TestScenario(
                id="FUNC003",
                description="Verify navigation functionality",
                priority="medium",
                category="functional",
                steps=("Click each navigation link", "Verify menu functionality"),
                expected_results=("All links work correctly", "Menu operates smoothly"),
            )
        )
    return tuple(scenarios)


def _analysis_text(snapshot: PageSnapshot | None) -> str:
    if snapshot is None:
        return "No page analysis available."
    payload = {
        "url": snapshot.url,
        "title": snapshot.title,
        "structure": snapshot.structure.model_dump(),
        "accessibility": snapshot.accessibility.model_dump(),
        "elements": [
            element.model_dump(exclude={"xpath", "index"})
            for element in snapshot.elements[:MAX_PROMPT_ELEMENTS]
        ],
    }
    return json.dumps(payload, indent=2)


class ScenarioGeneratorTool(Tool[tuple[TestScenario, ...]]):
    name = "scenario_generator"
    description = "Propose categorized, prioritized test scenarios from page analysis and requirements."
    input_schema = ScenarioInput

    def __init__(self, llm: BaseLLM, timeout_seconds: float = 180.0) -> None:
        self.llm = llm
        self.timeout_seconds = timeout_seconds

    async def run(self, data: BaseModel) -> tuple[TestScenario, ...]:
        payload = ScenarioInput.model_validate(data)
        prompt = _PROMPT.format(
            analysis=_analysis_text(payload.snapshot),
            requirements=payload.requirements or "none given",
            patterns=payload.patterns.answer if payload.patterns else "none retrieved",
        )
        try:
            raw = await self.llm.complete(prompt)
            envelope = _ScenarioEnvelope.model_validate(extract_json_object(raw))
        except (LLMError, LLMJsonError, ValidationError) as exc:
            logger.warning("scenarios.fallback reason=%s", type(exc).__name__)
            return fallback_scenarios(payload.snapshot, payload.requirements)
        logger.info("scenarios.generated count=%d", len(envelope.scenarios))
        return tuple(envelope.scenarios)
