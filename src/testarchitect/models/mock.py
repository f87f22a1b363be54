"""Mock LLM for offline runs and tests."""

from __future__ import annotations

from testarchitect.models.base import BaseLLM


class MockLLM(BaseLLM):
    """Replays scripted replies; with no script left it answers with plain text.

    Plain text is never valid JSON, so every caller exercises its
    deterministic fallback path.
    """

    name = "mock"

    def __init__(self, scripted: list[str | Exception] | None = None) -> None:
        self._scripted = list(scripted or [])
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self._scripted:
            reply = self._scripted.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return "Mock response: no structured answer available."

