"""Self-healing of selectors that no longer resolve on the live page.

A broken selector is classified by shape, the live page's interactive
elements are ranked as replacements (LLM first, heuristic fallback), and a
replacement is only written to disk after it resolves to at least one live
element.
"""

from __future__ import annotations

import json
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from testarchitect.browser import Browser
from testarchitect.failures import FailureKind, SourceFileMissingError
from testarchitect.models.base import BaseLLM, LLMError
from testarchitect.state import UIElement
from testarchitect.tools.base import Tool, ToolError
from testarchitect.util.llm_json import LLMJsonError, extract_json_array
from testarchitect.util.logging import get_logger

logger = get_logger(__name__)

MAX_CANDIDATES = 3
MAX_PROMPT_ELEMENTS = 20
NO_VERIFIED_REPLACEMENT = "no verified replacement found"
NO_BROKEN_SELECTOR = "no broken selector found"

BASE_SCORES = {"test-attribute": 90, "id": 80, "text": 70}
EXACT, CONTAINS, OVERLAP = 0, 5, 10

_STOP_TOKENS = {
    "old", "new", "btn", "the", "and", "data", "test", "testid", "div", "span",
    "elem", "element", "has", "text",
}
_TOKEN_RE = re.compile(r"[A-Za-z][a-z]+|[A-Z]+(?![a-z])|\d+")
_SIMPLE_ID_RE = re.compile(r"^#[A-Za-z_][\w\-]*$")
_SIMPLE_CLASS_RE = re.compile(r"^\.[A-Za-z_][\w\-]*$")
_HAS_TEXT_RE = re.compile(r""":has-text\(\s*["']([^"']+)["']\s*\)""")
_TEXT_ENGINE_RE = re.compile(r"""^text\s*=\s*["']?([^"']+)["']?$""")
_SELECTOR_CALL_RE = re.compile(
    r"""(?:page\.locator|\.locator|querySelector(?:All)?)\(\s*(['"`])(.+?)\1\s*\)"""
)


class SelectorKind(str, Enum):
    ID = "id"
    CLASS = "class"
    TEST_ATTRIBUTE = "test-attribute"
    TEXT = "text-match"
    COMPLEX = "complex"


@dataclass(frozen=True)
class ClassifiedSelector:
    kind: SelectorKind
    value: str
    intent: str


class SelectorCandidate(BaseModel):
    selector: str
    confidence: float = Field(ge=0, le=100)
    reasoning: str
    element_info: dict[str, Any] = Field(default_factory=dict)


class HealingResult(BaseModel):
    success: bool
    original_selector: str
    new_selector: str | None = None
    confidence: float = 0
    reasoning: str
    backup_path: str | None = None
    verified_matches: int = 0
    noop: bool = False
    candidates: list[SelectorCandidate] = Field(default_factory=list)


@dataclass(frozen=True)
class SelectorReference:
    selector: str
    source_file: str
    line_number: int
    context: str


def classify_selector(selector: str, test_id_attribute: str = "data-testid") -> ClassifiedSelector:
    stripped = selector.strip()
    if _SIMPLE_ID_RE.match(stripped):
        return ClassifiedSelector(SelectorKind.ID, stripped[1:], "unique element identification")
    if _SIMPLE_CLASS_RE.match(stripped):
        return ClassifiedSelector(SelectorKind.CLASS, stripped[1:], "styled element selection")
    attr_match = re.search(
        rf"""{re.escape(test_id_attribute)}\s*=\s*["']?([^"'\]]+)""", stripped
    )
    if attr_match:
        return ClassifiedSelector(
            SelectorKind.TEST_ATTRIBUTE, attr_match.group(1), "test-specific element targeting"
        )
    text_match = _HAS_TEXT_RE.search(stripped) or _TEXT_ENGINE_RE.match(stripped)
    if text_match:
        return ClassifiedSelector(SelectorKind.TEXT, text_match.group(1), "text-based element selection")
    return ClassifiedSelector(SelectorKind.COMPLEX, stripped, "complex element selection")


def intent_tokens(text: str) -> set[str]:
    tokens = {token.lower() for token in _TOKEN_RE.findall(text)}
    return {token for token in tokens if len(token) > 2 and token not in _STOP_TOKENS}


def _match_penalty(intent: str, value: str) -> int | None:
    wanted = intent.strip().lower()
    found = value.strip().lower()
    if not wanted or not found:
        return None
    if wanted == found:
        return EXACT
    if min(len(wanted), len(found)) >= 3 and (wanted in found or found in wanted):
        return CONTAINS
    if intent_tokens(intent) & intent_tokens(value):
        return OVERLAP
    return None


def _css_id(value: str) -> str:
    if re.fullmatch(r"[A-Za-z_][\w\-]*", value):
        return f"#{value}"
    return f'[id="{value}"]'


def _text_selector(element: UIElement) -> str | None:
    text = element.text.strip().splitlines()[0].strip() if element.text.strip() else ""
    if not text or len(text) > 50:
        return None
    escaped = text.replace('"', '\\"')
    return f'{element.tag}:has-text("{escaped}")'


def element_info(element: UIElement, test_id_attribute: str = "data-testid") -> dict[str, Any]:
    attributes = {
        name: value
        for name, value in (
            (test_id_attribute, element.test_id),
            ("id", element.id),
            ("class", element.class_name),
            ("role", element.role),
        )
        if value
    }
    return {"tag": element.tag, "text": element.text, "index": element.index, "attributes": attributes}


def heuristic_candidates(
    classified: ClassifiedSelector,
    elements: list[UIElement] | tuple[UIElement, ...],
    test_id_attribute: str = "data-testid",
    broken_selector: str | None = None,
    limit: int = MAX_CANDIDATES,
) -> list[SelectorCandidate]:
    """Deterministic ranking: test attribute, then id, then text; ties by DOM order."""
    scored: list[tuple[float, int, int, SelectorCandidate]] = []
    for element in elements:
        options: list[tuple[str, str | None, str, str]] = [
            (
                "test-attribute",
                f'[{test_id_attribute}="{element.test_id}"]' if element.test_id else None,
                element.test_id,
                f"Matched by {test_id_attribute} attribute",
            ),
            ("id", _css_id(element.id) if element.id else None, element.id, "Matched by id attribute"),
            ("text", _text_selector(element), element.text, "Matched by text content"),
        ]
        for rank, (kind, selector, value, reason) in enumerate(options):
            if selector is None:
                continue
            penalty = _match_penalty(classified.value, value)
            if penalty is None:
                continue
            confidence = BASE_SCORES[kind] - penalty
            qualifier = {EXACT: "exact", CONTAINS: "partial", OVERLAP: "token"}[penalty]
            scored.append(
                (
                    confidence,
                    element.index,
                    rank,
                    SelectorCandidate(
                        selector=selector,
                        confidence=confidence,
                        reasoning=f"{reason} ({qualifier} match on '{classified.value}')",
                        element_info=element_info(element, test_id_attribute),
                    ),
                )
            )
    scored.sort(key=lambda item: (-item[0], item[1], item[2]))
    return _dedupe([item[3] for item in scored], broken_selector, limit)


def _dedupe(
    candidates: list[SelectorCandidate], broken_selector: str | None, limit: int
) -> list[SelectorCandidate]:
    seen: set[str] = set()
    unique: list[SelectorCandidate] = []
    for candidate in candidates:
        if candidate.selector in seen or candidate.selector == broken_selector:
            continue
        seen.add(candidate.selector)
        unique.append(candidate)
        if len(unique) >= limit:
            break
    return unique


def _literal_pattern(selector: str) -> re.Pattern[str]:
    return re.compile(r"""(['"`])""" + re.escape(selector) + r"\1")


def substitute_selector(content: str, old: str, new: str) -> tuple[str, int]:
    """Replace every quoted occurrence of ``old`` with ``new``, keeping the quote style."""

    def _replace(match: re.Match[str]) -> str:
        quote_char = match.group(1)
        return quote_char + new.replace(quote_char, "\\" + quote_char) + quote_char

    return _literal_pattern(old).subn(_replace, content)


class _RankedSuggestion(BaseModel):
    selector: str = Field(min_length=1)
    confidence: float = 50
    reasoning: str = ""


_RANKING_PROMPT = """You are a test automation expert replacing a broken selector.

BROKEN SELECTOR:
- Selector: {selector}
- Type: {kind}
- Value: {value}
- Intent: {intent}

CONTEXT FROM TEST:
{context}

AVAILABLE ELEMENTS ON PAGE:
{elements}

Prefer, in order: {test_id_attribute}, id, then visible text. The selector must match a
single element and keep the original intent.

Return ONLY a JSON array of up to 3 suggestions:
[{{"selector": "...", "confidence": 85, "reasoning": "..."}}]
"""


class SelfHealer:
    """Finds, verifies and applies replacements for broken selectors."""

    def __init__(
        self,
        browser: Browser,
        llm: BaseLLM | None = None,
        test_id_attribute: str = "data-testid",
        verify_timeout_ms: int = 5_000,
        cascade: bool = False,
    ) -> None:
        self.browser = browser
        self.llm = llm
        self.test_id_attribute = test_id_attribute
        self.verify_timeout_ms = verify_timeout_ms
        self.cascade = cascade

    async def heal(
        self,
        target_url: str,
        broken_selector: str,
        source_file: str,
        context: str = "",
    ) -> HealingResult:
        path = Path(source_file)
        if not path.is_file():
            raise SourceFileMissingError(source_file)
        content = path.read_text(encoding="utf-8")
        if not _literal_pattern(broken_selector).search(content):
            logger.info("heal.noop selector=%s reason=absent file=%s", broken_selector, path)
            return HealingResult(
                success=False,
                noop=True,
                original_selector=broken_selector,
                reasoning=f"{NO_BROKEN_SELECTOR}: selector literal not present in {path.name}",
            )

        classified = classify_selector(broken_selector, self.test_id_attribute)
        logger.info(
            "heal.start selector=%s kind=%s value=%s", broken_selector, classified.kind.value, classified.value
        )
        chosen: SelectorCandidate | None = None
        matches = 0
        async with self.browser.open(target_url) as page:
            if await page.count_matches(broken_selector, self.verify_timeout_ms) > 0:
                logger.info("heal.noop selector=%s reason=resolves", broken_selector)
                return HealingResult(
                    success=False,
                    noop=True,
                    original_selector=broken_selector,
                    reasoning=f"{NO_BROKEN_SELECTOR}: selector still resolves on the page",
                )
            snapshot = await page.snapshot()
            candidates = await self.rank_candidates(
                classified, snapshot.elements, context, broken_selector
            )
            attempts = candidates if self.cascade else candidates[:1]
            for candidate in attempts:
                matches = await page.count_matches(candidate.selector, self.verify_timeout_ms)
                logger.info("heal.verify selector=%s matches=%d", candidate.selector, matches)
                if matches > 0:
                    chosen = candidate
                    break

        if chosen is None:
            return HealingResult(
                success=False,
                original_selector=broken_selector,
                reasoning=NO_VERIFIED_REPLACEMENT,
                candidates=candidates,
            )

        backup_path = create_backup(path)
        updated, replaced = substitute_selector(content, broken_selector, chosen.selector)
        path.write_text(updated, encoding="utf-8")
        logger.info(
            "heal.applied old=%s new=%s confidence=%.0f replaced=%d backup=%s",
            broken_selector,
            chosen.selector,
            chosen.confidence,
            replaced,
            backup_path,
        )
        return HealingResult(
            success=True,
            original_selector=broken_selector,
            new_selector=chosen.selector,
            confidence=chosen.confidence,
            reasoning=chosen.reasoning,
            backup_path=str(backup_path),
            verified_matches=matches,
            candidates=candidates,
        )

    async def rank_candidates(
        self,
        classified: ClassifiedSelector,
        elements: tuple[UIElement, ...] | list[UIElement],
        context: str = "",
        broken_selector: str | None = None,
    ) -> list[SelectorCandidate]:
        if self.llm is not None:
            ranked = await self._llm_candidates(classified, elements, context, broken_selector)
            if ranked:
                return ranked
        return heuristic_candidates(
            classified, elements, self.test_id_attribute, broken_selector
        )

    async def _llm_candidates(
        self,
        classified: ClassifiedSelector,
        elements: tuple[UIElement, ...] | list[UIElement],
        context: str,
        broken_selector: str | None,
    ) -> list[SelectorCandidate]:
        listing = [
            element.model_dump(exclude={"xpath"}) for element in list(elements)[:MAX_PROMPT_ELEMENTS]
        ]
        prompt = _RANKING_PROMPT.format(
            selector=broken_selector or classified.value,
            kind=classified.kind.value,
            value=classified.value,
            intent=classified.intent,
            context=context or "none",
            elements=json.dumps(listing, indent=2),
            test_id_attribute=self.test_id_attribute,
        )
        try:
            raw = extract_json_array(await self.llm.complete(prompt))
        except (LLMError, LLMJsonError) as exc:
            logger.warning("heal.ranking_fallback reason=%s", type(exc).__name__)
            return []
        suggestions: list[SelectorCandidate] = []
        for item in raw:
            try:
                suggestion = _RankedSuggestion.model_validate(item)
            except ValidationError:
                continue
            suggestions.append(
                SelectorCandidate(
                    selector=suggestion.selector.strip(),
                    confidence=max(0.0, min(100.0, suggestion.confidence)),
                    reasoning=suggestion.reasoning or "Suggested by model ranking",
                    element_info=self._info_for(suggestion.selector.strip(), elements),
                )
            )
        suggestions.sort(key=lambda candidate: -candidate.confidence)
        return _dedupe(suggestions, broken_selector, MAX_CANDIDATES)

    def _info_for(
        self, selector: str, elements: tuple[UIElement, ...] | list[UIElement]
    ) -> dict[str, Any]:
        for element in elements:
            generated = {
                f'[{self.test_id_attribute}="{element.test_id}"]' if element.test_id else None,
                _css_id(element.id) if element.id else None,
                _text_selector(element),
            }
            if selector in generated:
                return element_info(element, self.test_id_attribute)
        return {"tag": "unknown", "text": "", "attributes": {}}


def create_backup(path: Path) -> Path:
    timestamp = datetime.now(timezone.utc).isoformat().replace(":", "-").replace(".", "-")
    backup = path.with_name(f"{path.name}.backup-{timestamp}")
    shutil.copy2(path, backup)
    return backup


def scan_for_selectors(test_dir: str) -> list[SelectorReference]:
    """List locator literals in ``*.spec.ts`` / ``*.test.ts`` files under ``test_dir``."""
    root = Path(test_dir)
    references: list[SelectorReference] = []
    files = sorted(
        path for pattern in ("*.spec.ts", "*.test.ts") for path in root.rglob(pattern)
    )
    for path in files:
        lines = path.read_text(encoding="utf-8", errors="ignore").splitlines()
        for index, line in enumerate(lines):
            for match in _SELECTOR_CALL_RE.finditer(line):
                references.append(
                    SelectorReference(
                        selector=match.group(2),
                        source_file=str(path),
                        line_number=index + 1,
                        context="\n".join(lines[max(0, index - 2) : index + 3]),
                    )
                )
    return references


class HealingInput(BaseModel):
    target_url: str
    broken_selector: str = Field(min_length=1)
    source_file: str
    context_snippet: str = ""


class SelfHealingTool(Tool[HealingResult]):
    name = "self_healer"
    description = "Find, verify and apply a replacement for a selector that no longer resolves."
    input_schema = HealingInput

    def __init__(self, healer: SelfHealer, timeout_seconds: float = 180.0) -> None:
        self.healer = healer
        self.timeout_seconds = timeout_seconds

    async def run(self, data: BaseModel) -> HealingResult:
        payload = HealingInput.model_validate(data)
        result = await self.healer.heal(
            payload.target_url, payload.broken_selector, payload.source_file, payload.context_snippet
        )
        if not result.success and not result.noop:
            raise ToolError(FailureKind.VERIFICATION_FAILED, result.reasoning)
        return result
