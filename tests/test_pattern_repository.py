from __future__ import annotations

import pytest

from testarchitect.models.base import LLMError
from testarchitect.models.mock import MockLLM
from testarchitect.tools.pattern_repository import (
    KeywordPatternRepository,
    PatternRepositoryTool,
    detect_code_type,
    split_text,
    tokenize,
)

BASE_PAGE = """import { Page } from '@playwright/test';

export class BasePage {
  constructor(protected page: Page) {}

  async navigate(path: string): Promise<void> {
    await this.page.goto(path);
  }

  async waitForPageLoad(): Promise<void> {
    await this.page.waitForLoadState('networkidle');
  }
}
"""

HELPERS = """export function fillLoginForm(page, user) {
  return page.fill('#email', user.email);
}
"""


def _repo(tmp_path, llm=None) -> KeywordPatternRepository:
    shared = tmp_path / "shared"
    (shared / "pages").mkdir(parents=True)
    (shared / "pages" / "base-page.ts").write_text(BASE_PAGE, encoding="utf-8")
    (shared / "helpers.ts").write_text(HELPERS, encoding="utf-8")
    (shared / "notes.md").write_text("BasePage notes", encoding="utf-8")
    return KeywordPatternRepository(str(shared), llm=llm)


def test_tokenize_splits_camel_case():
    assert tokenize("waitForPageLoad in BasePage") == {"wait", "for", "page", "load", "base"}


def test_detect_code_type():
    assert detect_code_type("export class A {}") == "class"
    assert detect_code_type("const go = () => 1") == "function"
    assert detect_code_type("interface Row { id: string }") == "interface"
    assert detect_code_type("export const X = 1") == "export"
    assert detect_code_type("// nothing") == "code"


def test_split_text_respects_size_and_overlap():
    text = "\n".join(f"line {index:03d} " + "x" * 40 for index in range(100))
    chunks = split_text(text, chunk_size=500, overlap=100)
    assert len(chunks) > 1
    assert all(len(chunk) <= 500 for chunk in chunks)
    assert chunks[1].split("\n")[0] in chunks[0]


def test_index_and_search(tmp_path):
    repo = _repo(tmp_path)
    assert repo.index() == 2
    sources = repo.search("base page navigation helpers")
    assert sources[0].source.endswith("base-page.ts")
    assert sources[0].code_type == "class"
    assert all(not source.source.endswith(".md") for source in sources)


@pytest.mark.asyncio
async def test_query_answers_with_llm(tmp_path):
    llm = MockLLM(["Extend BasePage and call waitForPageLoad after navigate."])
    answer = await _repo(tmp_path, llm).query("page object base page")
    assert answer.answer.startswith("Extend BasePage")
    assert "File: " in llm.prompts[0]
    assert answer.sources


@pytest.mark.asyncio
async def test_query_lists_sources_when_llm_fails(tmp_path):
    answer = await _repo(tmp_path, MockLLM([LLMError("down")])).query("login form helpers")
    assert answer.answer.startswith("Relevant patterns:")
    assert "helpers.ts (function)" in answer.answer


@pytest.mark.asyncio
async def test_empty_repository_is_not_a_failure(tmp_path):
    tool = PatternRepositoryTool(KeywordPatternRepository(str(tmp_path / "missing")))
    result = await tool.query("page object patterns for login")
    assert result.ok
    assert result.output.sources == ()
    assert "No reusable patterns" in result.output.answer


@pytest.mark.asyncio
async def test_blank_question_is_rejected(tmp_path):
    result = await PatternRepositoryTool(_repo(tmp_path)).invoke({"question": ""})
    assert not result.ok
