"""Shared construction helpers for models, tools and the orchestrator."""

from __future__ import annotations

import json

from testarchitect.browser import Browser, PlaywrightBrowser
from testarchitect.config import Settings
from testarchitect.models.base import BaseLLM
from testarchitect.models.mock import MockLLM
from testarchitect.models.ollama import OllamaLLM
from testarchitect.models.openai_compat import OpenAICompatLLM
from testarchitect.orchestrator import Orchestrator
from testarchitect.policy import DecisionPolicy
from testarchitect.tools.code_generator import CodeGeneratorTool
from testarchitect.tools.page_inspector import PageInspectorTool
from testarchitect.tools.pattern_repository import KeywordPatternRepository, PatternRepositoryTool
from testarchitect.tools.scenario_generator import ScenarioGeneratorTool
from testarchitect.tools.scenario_updater import ScenarioUpdater
from testarchitect.tools.self_healing import SelfHealer
from testarchitect.tools.visual_comparator import VisualComparator, VisualConfig


def build_llm(settings: Settings, use_mock: bool = False) -> BaseLLM:
    provider = settings.llm_provider.lower()
    if use_mock or provider == "mock":
        return MockLLM()
    if provider == "ollama":
        return OllamaLLM(
            base_url=settings.ollama_base_url,
            model=settings.ollama_model,
            timeout_seconds=max(settings.openai_timeout_seconds, 120),
        )
    if not settings.openai_api_key:
        return MockLLM()
    extra_headers = None
    if settings.openai_extra_headers:
        extra_headers = json.loads(settings.openai_extra_headers)
    return OpenAICompatLLM(
        base_url=settings.openai_base_url,
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout_seconds=settings.openai_timeout_seconds,
        extra_headers=extra_headers,
    )


def build_browser(settings: Settings) -> Browser:
    return PlaywrightBrowser(
        headless=settings.headless,
        navigation_timeout_ms=settings.navigation_timeout_ms,
        settle_timeout_ms=settings.settle_timeout_ms,
        test_id_attribute=settings.test_id_attribute,
    )


def build_orchestrator(
    settings: Settings, llm: BaseLLM, browser: Browser | None = None
) -> Orchestrator:
    browser = browser or build_browser(settings)
    repository = KeywordPatternRepository(
        settings.pattern_dir, llm=llm, pattern_glob=settings.pattern_glob
    )
    return Orchestrator(
        policy=DecisionPolicy(llm),
        inspector=PageInspectorTool(browser, timeout_seconds=settings.tool_timeout_seconds),
        repository_tool=PatternRepositoryTool(
            repository, timeout_seconds=settings.tool_timeout_seconds
        ),
        scenario_tool=ScenarioGeneratorTool(llm, timeout_seconds=settings.tool_timeout_seconds),
        code_tool=CodeGeneratorTool(
            test_id_attribute=settings.test_id_attribute,
            timeout_seconds=settings.tool_timeout_seconds,
        ),
        output_dir=settings.output_dir,
        max_steps=settings.max_steps,
        trace_dir=settings.trace_dir,
    )


def build_healer(
    settings: Settings, llm: BaseLLM | None = None, browser: Browser | None = None
) -> SelfHealer:
    return SelfHealer(
        browser or build_browser(settings),
        llm=llm,
        test_id_attribute=settings.test_id_attribute,
        verify_timeout_ms=settings.verify_timeout_ms,
        cascade=settings.heal_cascade,
    )


def build_visual_comparator(
    settings: Settings, browser: Browser | None = None
) -> VisualComparator:
    return VisualComparator(
        browser or build_browser(settings),
        visual_dir=settings.visual_dir,
        config=VisualConfig(
            threshold=settings.visual_threshold, include_aa=settings.visual_include_aa
        ),
    )


def build_updater(
    settings: Settings, llm: BaseLLM, browser: Browser | None = None
) -> ScenarioUpdater:
    return ScenarioUpdater(
        ScenarioGeneratorTool(llm, timeout_seconds=settings.tool_timeout_seconds),
        CodeGeneratorTool(
            test_id_attribute=settings.test_id_attribute,
            timeout_seconds=settings.tool_timeout_seconds,
        ),
        inspector=PageInspectorTool(
            browser or build_browser(settings), timeout_seconds=settings.tool_timeout_seconds
        ),
    )
