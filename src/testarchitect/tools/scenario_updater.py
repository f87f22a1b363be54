"""Scenario updates: fold newly generated scenarios into an existing feature package."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from testarchitect.failures import PreconditionError, TestArchitectError
from testarchitect.state import PageSnapshot, TestScenario
from testarchitect.tools.code_generator import CodeGeneratorTool
from testarchitect.tools.page_inspector import PageInspectorTool
from testarchitect.tools.scenario_generator import ScenarioGeneratorTool
from testarchitect.tools.self_healing import create_backup
from testarchitect.util.llm_json import LLMJsonError, loads_lenient
from testarchitect.util.logging import get_logger

logger = get_logger(__name__)

FEATURE_SUFFIX = ".feature.ts"
CUSTOM_MARKERS = ("// Custom:", "// TODO:")

_BLOCK_RE = re.compile(r"(export const \w+_SCENARIOS: TestScenario\[\] = )(\[.*?\n\]);", re.DOTALL)
_KEY_RE = re.compile(r"^(\s*)([A-Za-z_]\w*):(?=\s)", re.MULTILINE)


class UpdateMode(str, Enum):
    """How new scenarios combine with the ones already in the module."""

    MERGE = "merge"
    APPEND = "append"
    SELECTIVE = "selective"
    REPLACE = "replace"


class ScenarioModuleError(PreconditionError):
    """The feature module is missing or its scenario array cannot be read."""


@dataclass
class MergeOutcome:
    scenarios: list[TestScenario]
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    preserved: list[str] = field(default_factory=list)


@dataclass
class UpdateResult:
    feature_file: str
    mode: UpdateMode
    scenario_count: int
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    preserved: list[str] = field(default_factory=list)
    backup_path: str | None = None

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated)


def has_customizations(scenario: TestScenario) -> bool:
    return any(marker in step for step in scenario.steps for marker in CUSTOM_MARKERS)


def _check_selection(mode: UpdateMode, selected_ids: Iterable[str] | None) -> set[str]:
    selected = {item.strip() for item in selected_ids or () if item.strip()}
    if mode is UpdateMode.SELECTIVE and not selected:
        raise PreconditionError("Selective update needs at least one scenario id")
    return selected


def merge_scenarios(
    existing: Iterable[TestScenario],
    new: Iterable[TestScenario],
    mode: UpdateMode = UpdateMode.MERGE,
    selected_ids: Iterable[str] | None = None,
) -> MergeOutcome:
    """Combine scenario lists by id.

    ``merge`` updates matching ids and appends unknown ones, ``append`` only
    adds unknown ids, ``selective`` behaves like ``merge`` restricted to
    ``selected_ids`` and ``replace`` keeps only the new set. Existing
    scenarios whose steps carry a ``// Custom:`` or ``// TODO:`` marker are
    never overwritten; an updated scenario keeps its existing priority.
    """
    selected = _check_selection(mode, selected_ids)
    existing = list(existing)
    existing_ids = {scenario.id for scenario in existing}
    outcome = MergeOutcome(scenarios=[] if mode is UpdateMode.REPLACE else existing)
    positions = {scenario.id: index for index, scenario in enumerate(outcome.scenarios)}

    for scenario in new:
        if mode is UpdateMode.SELECTIVE and scenario.id not in selected:
            continue
        index = positions.get(scenario.id)
        if index is None:
            positions[scenario.id] = len(outcome.scenarios)
            outcome.scenarios.append(scenario)
            target = outcome.updated if scenario.id in existing_ids else outcome.added
            target.append(scenario.id)
            continue
        if mode is UpdateMode.APPEND:
            continue
        current = outcome.scenarios[index]
        if has_customizations(current):
            logger.info("update.preserved id=%s", current.id)
            outcome.preserved.append(current.id)
            continue
        outcome.scenarios[index] = scenario.model_copy(update={"priority": current.priority})
        outcome.updated.append(scenario.id)
    return outcome


def extract_scenarios(content: str) -> list[TestScenario]:
    """Read the ``*_SCENARIOS`` array out of a generated feature module."""
    match = _BLOCK_RE.search(content)
    if not match:
        raise ScenarioModuleError("No scenario array found in feature module")
    try:
        raw = loads_lenient(_KEY_RE.sub(r'\1"\2":', match.group(2)))
        return [TestScenario.model_validate(item) for item in raw]
    except (LLMJsonError, ValidationError, TypeError) as exc:
        raise ScenarioModuleError(f"Could not parse existing scenarios: {exc}") from exc


def replace_scenarios(content: str, rendered_module: str) -> str:
    """Swap the scenario array of ``content`` for the one in ``rendered_module``."""
    block = _BLOCK_RE.search(rendered_module).group(2)
    return _BLOCK_RE.sub(lambda match: f"{match.group(1)}{block};", content, count=1)


def find_feature_module(feature_dir: Path) -> Path:
    if not feature_dir.is_dir():
        raise PreconditionError(f"Feature directory not found: {feature_dir}")
    modules = sorted(feature_dir.glob(f"*{FEATURE_SUFFIX}"))
    if not modules:
        raise ScenarioModuleError(f"No {FEATURE_SUFFIX} file found in {feature_dir}")
    return modules[0]


class ScenarioUpdater:
    """Generates scenarios for new requirements and merges them into a feature package.

    Only the scenario array of ``<feature>.feature.ts`` is rewritten; the rest
    of the module, the page object and the test file are left as they are.
    """

    def __init__(
        self,
        scenario_tool: ScenarioGeneratorTool,
        code_tool: CodeGeneratorTool,
        inspector: PageInspectorTool | None = None,
    ) -> None:
        self.scenario_tool = scenario_tool
        self.code_tool = code_tool
        self.inspector = inspector

    async def update(
        self,
        feature_dir: str,
        requirements: str,
        mode: UpdateMode = UpdateMode.MERGE,
        selected_ids: Iterable[str] | None = None,
        target_url: str | None = None,
        backup: bool = True,
    ) -> UpdateResult:
        selected_ids = list(selected_ids or ())
        _check_selection(mode, selected_ids)
        feature_file = find_feature_module(Path(feature_dir))
        content = feature_file.read_text(encoding="utf-8")
        existing = extract_scenarios(content)
        logger.info(
            "update.start file=%s mode=%s existing=%d", feature_file, mode.value, len(existing)
        )

        snapshot = await self._snapshot(target_url)
        result = await self.scenario_tool.invoke({"requirements": requirements, "snapshot": snapshot})
        if not result.ok:
            raise TestArchitectError(f"Scenario generation failed: {result.failure.message}")

        outcome = merge_scenarios(existing, result.output, mode, selected_ids)
        feature_name = feature_file.name[: -len(FEATURE_SUFFIX)]
        updated = replace_scenarios(
            content, self.code_tool.scenario_module(feature_name, outcome.scenarios)
        )
        backup_path = None
        if updated != content:
            if backup:
                backup_path = str(create_backup(feature_file))
            feature_file.write_text(updated, encoding="utf-8")
        logger.info(
            "update.done file=%s added=%d updated=%d preserved=%d",
            feature_file,
            len(outcome.added),
            len(outcome.updated),
            len(outcome.preserved),
        )
        return UpdateResult(
            feature_file=str(feature_file),
            mode=mode,
            scenario_count=len(outcome.scenarios),
            added=outcome.added,
            updated=outcome.updated,
            preserved=outcome.preserved,
            backup_path=backup_path,
        )

    async def _snapshot(self, target_url: str | None) -> PageSnapshot | None:
        if not target_url or self.inspector is None:
            return None
        result = await self.inspector.inspect(target_url)
        if not result.ok:
            logger.warning("update.inspect_failed url=%s error=%s", target_url, result.failure.message)
            return None
        return result.output
