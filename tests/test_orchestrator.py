from __future__ import annotations

import json
from pathlib import Path

import pytest

from fakes import FakeBrowser, FakePage, login_snapshot
from testarchitect.failures import MaxStepsExceededError, PreconditionError
from testarchitect.models.mock import MockLLM
from testarchitect.orchestrator import Orchestrator
from testarchitect.policy import DecisionPolicy
from testarchitect.tools.code_generator import CodeGeneratorTool
from testarchitect.tools.page_inspector import PageInspectorTool
from testarchitect.tools.pattern_repository import KeywordPatternRepository, PatternRepositoryTool
from testarchitect.tools.scenario_generator import ScenarioGeneratorTool


def _orchestrator(
    tmp_path: Path,
    browser: FakeBrowser | None = None,
    policy_llm: MockLLM | None = None,
    max_steps: int = 10,
    trace_dir: str | None = None,
) -> tuple[Orchestrator, FakeBrowser]:
    browser = browser or FakeBrowser()
    repository = KeywordPatternRepository(str(tmp_path / "shared"))
    orchestrator = Orchestrator(
        policy=DecisionPolicy(policy_llm),
        inspector=PageInspectorTool(browser),
        repository_tool=PatternRepositoryTool(repository),
        scenario_tool=ScenarioGeneratorTool(MockLLM()),
        code_tool=CodeGeneratorTool(),
        output_dir=str(tmp_path / "out"),
        max_steps=max_steps,
        trace_dir=trace_dir,
    )
    return orchestrator, browser


@pytest.mark.asyncio
async def test_happy_path_with_url_takes_five_steps(tmp_path):
    orchestrator, browser = _orchestrator(tmp_path)
    result = await orchestrator.run(
        "Generate login tests",
        feature_name="login",
        team_name="auth",
        target_url="https://app.test/login",
    )
    assert result.steps == 5
    assert browser.opened == ["https://app.test/login"]
    feature_dir = tmp_path / "out" / "teams" / "auth" / "login"
    assert sorted(Path(path).name for path in result.persisted_paths) == [
        "login.feature.ts",
        "login.page.ts",
        "login.spec.ts",
    ]
    page_object = (feature_dir / "login.page.ts").read_text(encoding="utf-8")
    assert "export class LoginPage extends BasePage" in page_object
    assert "[data-testid=\"submit-button\"]" in page_object
    spec = (feature_dir / "login.spec.ts").read_text(encoding="utf-8")
    assert "import { LoginPage } from './login.page';" in spec
    assert {scenario.id for scenario in result.scenarios} >= {"FUNC001", "FUNC002"}


@pytest.mark.asyncio
async def test_happy_path_without_url_takes_four_steps(tmp_path):
    orchestrator, browser = _orchestrator(tmp_path)
    result = await orchestrator.run("Generate", feature_name="search", team_name="core")
    assert result.steps == 4
    assert browser.opened == []
    assert result.generated_artifacts is not None
    assert "SEARCH_SCENARIOS" in result.generated_artifacts.scenario_module


@pytest.mark.asyncio
async def test_tool_failure_is_recoverable(tmp_path):
    orchestrator, browser = _orchestrator(tmp_path, browser=FakeBrowser(failures=1))
    result = await orchestrator.run(
        "Generate", feature_name="login", team_name="auth", target_url="https://app.test/login"
    )
    assert result.steps == 6
    assert browser.opened == ["https://app.test/login", "https://app.test/login"]


@pytest.mark.asyncio
async def test_step_budget_exhausted_after_exactly_max_steps(tmp_path):
    orchestrator, browser = _orchestrator(tmp_path, browser=FakeBrowser(failures=100), max_steps=3)
    with pytest.raises(MaxStepsExceededError) as excinfo:
        await orchestrator.run(
            "Generate", feature_name="login", team_name="auth", target_url="https://app.test/down"
        )
    assert len(browser.opened) == 3
    assert excinfo.value.max_steps == 3
    assert excinfo.value.pending_phases[0] == "inspect"
    assert "persist" in excinfo.value.pending_phases
    assert not (tmp_path / "out").exists()


@pytest.mark.asyncio
async def test_llm_choices_drive_the_loop(tmp_path):
    replies = [
        json.dumps({"action": "query_patterns", "reasoning": "conventions first"}),
        json.dumps({"action": "inspect", "reasoning": "now the page"}),
        "not json at all",
        json.dumps({"action": "generate_code", "reasoning": "write code"}),
        json.dumps({"action": "write_files", "reasoning": "save"}),
    ]
    llm = MockLLM(replies)
    browser = FakeBrowser(FakePage(login_snapshot()))
    orchestrator, _ = _orchestrator(tmp_path, browser=browser, policy_llm=llm)
    result = await orchestrator.run(
        "Generate", feature_name="login", team_name="auth", target_url="https://app.test/login"
    )
    assert result.steps == 5
    assert len(llm.prompts) == 5
    assert len(result.persisted_paths) == 3


@pytest.mark.asyncio
async def test_trace_written_on_completion(tmp_path):
    orchestrator, _ = _orchestrator(tmp_path, trace_dir=str(tmp_path / "traces"))
    result = await orchestrator.run("Generate", feature_name="search", team_name="core")
    payload = json.loads(Path(result.trace_path).read_text(encoding="utf-8"))
    assert payload["stats"] == {"steps": 4, "completed": True}
    assert [event["type"] for event in payload["events"]][:2] == ["decision", "observation"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "feature_name, team_name",
    [("../escape", "core"), ("2fa-login", "core"), ("login form", "core"), ("login", "qa team")],
)
async def test_invalid_names_are_rejected(tmp_path, feature_name, team_name):
    orchestrator, browser = _orchestrator(tmp_path)
    with pytest.raises(PreconditionError):
        await orchestrator.run("Generate", feature_name=feature_name, team_name=team_name)
    assert browser.opened == []
    assert not (tmp_path / "out").exists()


@pytest.mark.asyncio
async def test_persistence_errors_propagate(tmp_path):
    blocker = tmp_path / "out"
    blocker.write_text("not a directory", encoding="utf-8")
    orchestrator, _ = _orchestrator(tmp_path)
    with pytest.raises(OSError):
        await orchestrator.run("Generate", feature_name="search", team_name="core")
