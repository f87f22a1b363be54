from __future__ import annotations

import json
from pathlib import Path

import pytest

from testarchitect.failures import PreconditionError
from testarchitect.models.mock import MockLLM
from testarchitect.state import TestScenario
from testarchitect.tools.code_generator import CodeGeneratorTool
from testarchitect.tools.scenario_generator import ScenarioGeneratorTool
from testarchitect.tools.scenario_updater import (
    ScenarioModuleError,
    ScenarioUpdater,
    UpdateMode,
    extract_scenarios,
    merge_scenarios,
)

EXISTING = [
    TestScenario(
        id="FUNC001",
        description="User's login works",
        priority="low",
        steps=("Fill the form", "Submit"),
        expected_results=("Dashboard visible",),
    ),
    TestScenario(
        id="ACC001",
        description="Keyboard access",
        category="accessibility",
        steps=("// Custom: tab through the form in reverse",),
    ),
]
NEW = [
    TestScenario(id="FUNC001", description="Login with remember me", priority="high"),
    TestScenario(id="ACC001", description="Regenerated keyboard check", category="accessibility"),
    TestScenario(id="FUNC010", description="Lockout after five failures", priority="high"),
]


def _reply(scenarios: list[TestScenario]) -> str:
    return json.dumps({"scenarios": [scenario.model_dump(by_alias=True) for scenario in scenarios]})


def _feature_dir(tmp_path: Path) -> Path:
    feature_dir = tmp_path / "teams" / "auth" / "login"
    feature_dir.mkdir(parents=True)
    module = CodeGeneratorTool().scenario_module("login", EXISTING)
    module = module.replace("pageLoadTime: 3000", "pageLoadTime: 4500")
    (feature_dir / "login.feature.ts").write_text(module, encoding="utf-8")
    return feature_dir


def _updater(reply: str) -> ScenarioUpdater:
    return ScenarioUpdater(ScenarioGeneratorTool(MockLLM([reply])), CodeGeneratorTool())


def test_extracts_scenarios_from_generated_module():
    module = CodeGeneratorTool().scenario_module("login", EXISTING)
    assert extract_scenarios(module) == EXISTING


def test_unreadable_module_raises():
    with pytest.raises(ScenarioModuleError):
        extract_scenarios("export const LOGIN = [];\n")
    with pytest.raises(ScenarioModuleError):
        extract_scenarios("export const LOGIN_SCENARIOS: TestScenario[] = [\n  {{}: 1},\n];\n")


def test_merge_updates_by_id_and_keeps_customized_scenarios():
    outcome = merge_scenarios(EXISTING, NEW)
    assert [scenario.id for scenario in outcome.scenarios] == ["FUNC001", "ACC001", "FUNC010"]
    assert outcome.scenarios[0].description == "Login with remember me"
    assert outcome.scenarios[0].priority == "low"
    assert outcome.scenarios[1] == EXISTING[1]
    assert outcome.added == ["FUNC010"]
    assert outcome.updated == ["FUNC001"]
    assert outcome.preserved == ["ACC001"]


def test_append_never_touches_existing_ids():
    outcome = merge_scenarios(EXISTING, NEW, UpdateMode.APPEND)
    assert outcome.scenarios == [*EXISTING, NEW[2]]
    assert outcome.updated == []


def test_selective_requires_and_honours_ids():
    with pytest.raises(PreconditionError):
        merge_scenarios(EXISTING, NEW, UpdateMode.SELECTIVE)
    outcome = merge_scenarios(EXISTING, NEW, UpdateMode.SELECTIVE, selected_ids=["FUNC010"])
    assert outcome.scenarios == [*EXISTING, NEW[2]]


def test_replace_keeps_only_new_scenarios():
    outcome = merge_scenarios(EXISTING, NEW, UpdateMode.REPLACE)
    assert outcome.scenarios == NEW
    assert outcome.updated == ["FUNC001", "ACC001"]
    assert outcome.added == ["FUNC010"]


@pytest.mark.asyncio
async def test_update_rewrites_only_the_scenario_array(tmp_path):
    feature_dir = _feature_dir(tmp_path)
    feature_file = feature_dir / "login.feature.ts"
    updater = _updater(_reply(NEW))
    result = await updater.update(str(feature_dir), "remember me and lockout")

    content = feature_file.read_text(encoding="utf-8")
    assert [scenario.id for scenario in extract_scenarios(content)] == ["FUNC001", "ACC001", "FUNC010"]
    assert "pageLoadTime: 4500" in content
    assert "// Custom: tab through the form in reverse" in content
    assert result.added == ["FUNC010"]
    assert result.preserved == ["ACC001"]
    assert result.scenario_count == 3
    backup = Path(result.backup_path)
    assert backup.name.startswith("login.feature.ts.backup-")
    assert "Login with remember me" not in backup.read_text(encoding="utf-8")
    assert "remember me and lockout" in updater.scenario_tool.llm.prompts[0]


@pytest.mark.asyncio
async def test_update_without_changes_leaves_file_alone(tmp_path):
    feature_dir = _feature_dir(tmp_path)
    before = (feature_dir / "login.feature.ts").read_text(encoding="utf-8")
    result = await _updater(_reply(NEW[:2])).update(str(feature_dir), "", mode=UpdateMode.APPEND)
    assert not result.changed
    assert result.backup_path is None
    assert (feature_dir / "login.feature.ts").read_text(encoding="utf-8") == before
    assert list(feature_dir.glob("*.backup-*")) == []


@pytest.mark.asyncio
async def test_unparsable_reply_merges_fallback_scenarios(tmp_path):
    feature_dir = _feature_dir(tmp_path)
    result = await _updater('{[1]: "x"}').update(str(feature_dir), "signup form", backup=False)
    assert result.updated == ["FUNC001"]
    assert result.added == ["PERF001", "FUNC002"]
    assert result.preserved == ["ACC001"]
    assert result.backup_path is None


@pytest.mark.asyncio
async def test_missing_feature_package(tmp_path):
    updater = _updater(_reply(NEW))
    with pytest.raises(PreconditionError, match="Feature directory not found"):
        await updater.update(str(tmp_path / "nope"), "x")
    with pytest.raises(ScenarioModuleError):
        await updater.update(str(tmp_path), "x")
    assert updater.scenario_tool.llm.prompts == []
