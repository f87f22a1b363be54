"""Code generator: page object, scenario module and test spec for one feature."""

from __future__ import annotations

import json
import re

from pydantic import BaseModel, Field

from testarchitect.state import GeneratedArtifacts, PageSnapshot, PatternAnswer, TestScenario, UIElement
from testarchitect.tools.base import Tool
from testarchitect.util.logging import get_logger

logger = get_logger(__name__)

MAX_LOCATORS = 15
MAX_METHODS = 10
MAX_SPEC_SCENARIOS = 8

_IDENT_RE = re.compile(r"[^a-zA-Z0-9\s\-_]")
# Feature names become TypeScript identifiers and file names.
NAME_PATTERN = r"^[A-Za-z][A-Za-z0-9_-]*$"


def to_pascal_case(text: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[-_\s]+", text) if part)


def to_camel_case(text: str) -> str:
    pascal = to_pascal_case(text)
    return pascal[:1].lower() + pascal[1:]


def to_constant_case(text: str) -> str:
    return re.sub(r"[-\s]+", "_", text).upper()


def sanitize_identifier(text: str) -> str:
    cleaned = re.sub(r"\s+", " ", _IDENT_RE.sub("", text)).strip().replace(" ", "_")
    return cleaned or "element"


def quote(text: str) -> str:
    """Single-quoted TypeScript string literal."""
    normalized = text.replace("‘", "'").replace("’", "'")
    normalized = normalized.replace("“", '"').replace("”", '"')
    return "'" + normalized.replace("\\", "\\\\").replace("'", "\\'") + "'"


def locator_name(element: UIElement) -> str:
    for raw in (element.test_id, element.id, element.text[:30]):
        if raw:
            name = to_camel_case(sanitize_identifier(raw))
            if name and not name[0].isdigit():
                return name
    return f"{element.tag}Element{element.index}"


def selector_for(element: UIElement, test_id_attribute: str = "data-testid") -> str:
    if element.test_id:
        return f'[{test_id_attribute}="{element.test_id}"]'
    if element.id:
        return f"#{element.id}"
    if element.text and len(element.text) < 50:
        escaped = element.text.replace('"', '\\"')
        return f'{element.tag}:has-text("{escaped}")'
    return element.tag


def _action_prefix(element: UIElement) -> str:
    if element.tag == "input":
        return "check" if element.type in {"checkbox", "radio"} else "fill"
    if element.tag == "select":
        return "select"
    if element.tag == "a":
        return "clickLink"
    return "click"


def _method(element: UIElement, name: str) -> str:
    method_name = f"{_action_prefix(element)}{to_pascal_case(name)}"
    if element.tag == "input" and element.type in {"checkbox", "radio"}:
        return f"  async {method_name}(): Promise<void> {{\n    await this.{name}.check();\n  }}"
    if element.tag in {"input", "textarea"}:
        return (
            f"  async {method_name}(value: string): Promise<void> {{\n"
            f"    await this.{name}.fill(value);\n  }}"
        )
    if element.tag == "select":
        return (
            f"  async {method_name}(option: string): Promise<void> {{\n"
            f"    await this.{name}.selectOption(option);\n  }}"
        )
    return f"  async {method_name}(): Promise<void> {{\n    await this.{name}.click();\n  }}"


class CodeGenInput(BaseModel):
    feature_name: str = Field(pattern=NAME_PATTERN)
    team_name: str = Field(min_length=1)
    scenarios: list[TestScenario] = Field(min_length=1)
    snapshot: PageSnapshot | None = None
    patterns: PatternAnswer | None = None


class CodeGeneratorTool(Tool[GeneratedArtifacts]):
    name = "code_generator"
    description = "Synthesize the page object, scenario module and test spec for a feature."
    input_schema = CodeGenInput

    def __init__(self, test_id_attribute: str = "data-testid", timeout_seconds: float = 60.0) -> None:
        self.test_id_attribute = test_id_attribute
        self.timeout_seconds = timeout_seconds

    async def run(self, data: BaseModel) -> GeneratedArtifacts:
        payload = CodeGenInput.model_validate(data)
        artifacts = GeneratedArtifacts(
            page_object=self.page_object(payload.feature_name, payload.snapshot, payload.patterns),
            scenario_module=self.scenario_module(payload.feature_name, payload.scenarios),
            test_spec=self.test_spec(payload.feature_name, payload.scenarios, payload.snapshot),
        )
        logger.info(
            "codegen.done feature=%s scenarios=%d", payload.feature_name, len(payload.scenarios)
        )
        return artifacts

    def _locators(self, snapshot: PageSnapshot | None) -> list[tuple[str, str, UIElement]]:
        if snapshot is None:
            return []
        seen: set[str] = set()
        locators: list[tuple[str, str, UIElement]] = []
        for element in snapshot.elements:
            if not (element.test_id or element.id or element.text):
                continue
            name = locator_name(element)
            if name in seen:
                continue
            seen.add(name)
            locators.append((name, selector_for(element, self.test_id_attribute), element))
            if len(locators) >= MAX_LOCATORS:
                break
        return locators

    def page_object(
        self, feature_name: str, snapshot: PageSnapshot | None, patterns: PatternAnswer | None
    ) -> str:
        class_name = f"{to_pascal_case(feature_name)}Page"
        locators = self._locators(snapshot)
        declarations = "\n".join(f"  readonly {name}: Locator;" for name, _, _ in locators)
        initializers = "\n".join(
            f"    this.{name} = page.locator({quote(selector)});" for name, selector, _ in locators
        )
        method_names: set[str] = set()
        methods: list[str] = []
        for name, _, element in locators:
            if element.tag not in {"button", "input", "select", "textarea", "a"}:
                continue
            body = _method(element, name)
            signature = body.split("(", 1)[0]
            if signature in method_names:
                continue
            method_names.add(signature)
            methods.append(body)
            if len(methods) >= MAX_METHODS:
                break
        url = snapshot.url if snapshot else "/"
        title = re.escape(snapshot.title if snapshot and snapshot.title else feature_name)
        title = title.replace("/", "\\/")
        pattern_note = ""
        if patterns and patterns.sources:
            reused = sorted({source.source for source in patterns.sources})
            pattern_note = "".join(f"// Pattern source: {path}\n" for path in reused)
        a11y = snapshot.accessibility if snapshot else None
        checks = []
        if a11y and a11y.has_aria_labels:
            checks.append(
                "    await expect(this.page.locator('[aria-label], [aria-labelledby]').first()).toBeVisible();"
            )
        if a11y and a11y.has_headings:
            checks.append(
                "    await expect(this.page.locator('h1, h2, h3, h4, h5, h6').first()).toBeVisible();"
            )
        if a11y and a11y.has_landmarks and snapshot and snapshot.structure.has_navigation:
            checks.append(
                "    await expect(this.page.locator('nav, [role=\"navigation\"]').first()).toBeVisible();"
            )
        accessibility_body = "\n".join(checks) or "    // No accessibility landmarks detected"
        sections = [
            f"{pattern_note}import {{ Page, Locator, expect }} from '@playwright/test';",
            "import { BasePage } from '../../../shared/base-page';",
            "",
            f"export class {class_name} extends BasePage {{",
            declarations,
            "",
            "  constructor(page: Page) {",
            "    super(page);",
            initializers,
            "  }",
            "",
            f"  async navigateTo{to_pascal_case(feature_name)}(): Promise<void> {{",
            f"    await this.navigate({quote(url)});",
            "    await this.waitForPageLoad();",
            "  }",
            "",
            "  async verifyPageLoaded(): Promise<void> {",
            f"    await expect(this.page).toHaveTitle(/{title}/i);",
            "  }",
            "",
            "\n\n".join(methods),
            "",
            "  async verifyAccessibility(): Promise<void> {",
            accessibility_body,
            "  }",
            "}",
            "",
        ]
        return "\n".join(sections)

    def scenario_module(self, feature_name: str, scenarios: list[TestScenario]) -> str:
        constant = f"{to_constant_case(feature_name)}_SCENARIOS"
        entries = []
        for scenario in scenarios:
            entries.append(
                "  {\n"
                f"    id: {quote(scenario.id)},\n"
                f"    description: {quote(scenario.description)},\n"
                f"    priority: {quote(scenario.priority)},\n"
                f"    category: {quote(scenario.category)},\n"
                f"    steps: {json.dumps(list(scenario.steps))},\n"
                f"    expectedResults: {json.dumps(list(scenario.expected_results))},\n"
                "  }"
            )
        return (
            "export interface TestScenario {\n"
            "  id: string;\n"
            "  description: string;\n"
            "  priority: 'high' | 'medium' | 'low';\n"
            "  category: 'functional' | 'accessibility' | 'performance' | 'security' | 'usability';\n"
            "  steps: string[];\n"
            "  expectedResults: string[];\n"
            "}\n\n"
            f"export const {constant}: TestScenario[] = [\n"
            + ",\n".join(entries)
            + "\n];\n\n"
            "export const PERFORMANCE_THRESHOLDS = {\n"
            "  pageLoadTime: 3000,\n"
            "  responseTime: 2000,\n"
            "};\n"
        )

    def test_spec(
        self, feature_name: str, scenarios: list[TestScenario], snapshot: PageSnapshot | None
    ) -> str:
        class_name = f"{to_pascal_case(feature_name)}Page"
        page_var = f"{to_camel_case(feature_name)}Page"
        constant = f"{to_constant_case(feature_name)}_SCENARIOS"
        title = feature_name.replace("-", " ").replace("_", " ").title()
        cases = []
        for scenario in scenarios[:MAX_SPEC_SCENARIOS]:
            steps = "".join(
                f"\n    await test.step({quote(f'Step {index}: {step}')}, async () => {{\n"
                f"      {self._step_body(step, page_var, scenario.category)}\n"
                "    });"
                for index, step in enumerate(scenario.steps, start=1)
            )
            verifications = "\n".join(
                f"      // Expect: {result}" for result in scenario.expected_results
            )
            cases.append(
                f"  test({quote(f'{scenario.id}: {scenario.description}')}, async ({{ page }}) => {{\n"
                f"    const {page_var} = new {class_name}(page);\n"
                f"    await {page_var}.navigateTo{to_pascal_case(feature_name)}();\n"
                f"{steps}\n"
                "    await test.step('Verify: expected results', async () => {\n"
                f"{verifications}\n"
                f"      await {page_var}.verifyPageLoaded();\n"
                "    });\n"
                "  });"
            )
        return (
            "import { test, expect } from '@playwright/test';\n"
            f"import {{ {class_name} }} from './{feature_name}.page';\n"
            f"import {{ {constant} }} from './{feature_name}.feature';\n\n"
            f"test.describe({quote(f'{title} tests')}, () => {{\n"
            + "\n\n".join(cases)
            + "\n\n"
            "  test('all scenarios are defined', async () => {\n"
            f"    expect({constant}.length).toBeGreaterThan(0);\n"
            "  });\n"
            "});\n"
        )

    def _step_body(self, step: str, page_var: str, category: str) -> str:
        lowered = step.lower()
        if "keyboard" in lowered:
            return "await page.keyboard.press('Tab');"
        if "aria" in lowered or category == "accessibility":
            return f"await {page_var}.verifyAccessibility();"
        if "load" in lowered and "time" in lowered:
            return (
                "const started = Date.now();\n"
                "      await page.reload({ waitUntil: 'load' });\n"
                "      expect(Date.now() - started).toBeLessThan(3000);"
            )
        if "responsive" in lowered:
            return "await page.setViewportSize({ width: 375, height: 667 });"
        return f"await {page_var}.verifyPageLoaded();"
