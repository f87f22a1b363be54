"""Pattern repository: question answering over indexed reusable code."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

from testarchitect.models.base import BaseLLM, LLMError
from testarchitect.state import PatternAnswer, PatternSource
from testarchitect.tools.base import Tool, ToolResult
from testarchitect.util.logging import get_logger

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"[A-Za-z][A-Za-z0-9]+")
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATORS = ("\n\nclass ", "\n\nexport ", "\n\nfunction ", "\n\n", "\n")


class PatternRepository(Protocol):
    async def query(self, question: str) -> PatternAnswer: ...


def tokenize(text: str) -> set[str]:
    tokens: set[str] = set()
    for word in _TOKEN_RE.findall(text):
        for part in _CAMEL_RE.split(word):
            if len(part) > 2:
                tokens.add(part.lower())
    return tokens


def detect_code_type(content: str) -> str:
    if "class " in content:
        return "class"
    if "function " in content or ("const " in content and "=>" in content):
        return "function"
    if "interface " in content:
        return "interface"
    if "type " in content:
        return "type"
    if "export " in content:
        return "export"
    return "code"


def split_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> list[str]:
    """Split text into chunks of at most ``chunk_size`` characters.

    Cuts prefer declaration boundaries, then blank lines, then newlines;
    consecutive chunks share up to ``overlap`` characters.
    """
    chunks: list[str] = []
    start = 0
    length = len(text)
    while start < length:
        end = min(start + chunk_size, length)
        if end < length:
            window = text[start:end]
            for separator in _SEPARATORS:
                cut = window.rfind(separator)
                if cut > chunk_size // 2:
                    end = start + cut
                    break
        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end >= length:
            break
        start = max(end - overlap, start + 1)
    return chunks


@dataclass(frozen=True)
class _Chunk:
    source: str
    content: str
    code_type: str
    tokens: frozenset[str]


class KeywordPatternRepository:
    """In-memory repository ranking chunks by token overlap with the question.

    The LLM answers from the top ``k`` chunks; when it is unavailable the
    answer lists the matching sources instead.
    """

    def __init__(
        self,
        root_dir: str,
        llm: BaseLLM | None = None,
        pattern_glob: str = "**/*.ts",
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        k: int = 5,
    ) -> None:
        self.root_dir = Path(root_dir)
        self.llm = llm
        self.pattern_glob = pattern_glob
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.k = k
        self._chunks: list[_Chunk] = []
        self._indexed = False

    def index(self) -> int:
        """Read and chunk every matching file; returns the chunk count."""
        self._chunks = []
        if self.root_dir.is_dir():
            for path in sorted(self.root_dir.glob(self.pattern_glob)):
                if not path.is_file():
                    continue
                content = path.read_text(encoding="utf-8", errors="ignore")
                for piece in split_text(content, self.chunk_size, self.chunk_overlap):
                    self._chunks.append(
                        _Chunk(
                            source=str(path),
                            content=piece,
                            code_type=detect_code_type(piece),
                            tokens=frozenset(tokenize(piece)),
                        )
                    )
        self._indexed = True
        logger.info("patterns.indexed root=%s chunks=%d", self.root_dir, len(self._chunks))
        return len(self._chunks)

    def search(self, question: str) -> list[PatternSource]:
        if not self._indexed:
            self.index()
        wanted = tokenize(question)
        scored: list[tuple[float, int, _Chunk]] = []
        for position, chunk in enumerate(self._chunks):
            if not wanted:
                break
            overlap = len(wanted & chunk.tokens)
            if overlap:
                scored.append((overlap / len(wanted), position, chunk))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [
            PatternSource(
                source=chunk.source,
                content=chunk.content,
                code_type=chunk.code_type,
                score=round(score, 4),
            )
            for score, _, chunk in scored[: self.k]
        ]

    async def query(self, question: str) -> PatternAnswer:
        sources = self.search(question)
        if not sources:
            return PatternAnswer(
                question=question, answer="No reusable patterns are indexed for this question."
            )
        answer = await self._answer(question, sources)
        return PatternAnswer(question=question, answer=answer, sources=tuple(sources))

    async def _answer(self, question: str, sources: list[PatternSource]) -> str:
        listing = "\n".join(f"- {item.source} ({item.code_type})" for item in sources)
        if self.llm is None:
            return f"Relevant patterns:\n{listing}"
        context = "\n\n".join(f"File: {item.source}\n{item.content}" for item in sources)
        prompt = (
            "Use the following code excerpts to answer the question. "
            "Name the classes, helpers and conventions a new test should reuse.\n\n"
            f"{context}\n\nQuestion: {question}\nAnswer:"
        )
        try:
            answer = (await self.llm.complete(prompt)).strip()
        except LLMError as exc:
            logger.warning("patterns.answer_failed error=%s", exc)
            answer = ""
        return answer or f"Relevant patterns:\n{listing}"


class PatternQueryInput(BaseModel):
    question: str = Field(min_length=1)


class PatternRepositoryTool(Tool[PatternAnswer]):
    name = "pattern_repository"
    description = "Answer questions about reusable page objects, helpers and test conventions."
    input_schema = PatternQueryInput

    def __init__(self, repository: PatternRepository, timeout_seconds: float = 120.0) -> None:
        self.repository = repository
        self.timeout_seconds = timeout_seconds

    async def run(self, data: BaseModel) -> PatternAnswer:
        payload = PatternQueryInput.model_validate(data)
        answer = await self.repository.query(payload.question)
        logger.info("patterns.query sources=%d", len(answer.sources))
        return answer

    async def query(self, question: str) -> ToolResult[PatternAnswer]:
        return await self.invoke({"question": question})
