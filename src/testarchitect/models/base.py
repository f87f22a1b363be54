"""Base LLM interface."""

from __future__ import annotations

from abc import ABC, abstractmethod


class LLMError(RuntimeError):
    """Raised when an LLM backend cannot produce a completion."""


class BaseLLM(ABC):
    """Abstract text-completion backend."""

    name: str = "llm"

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """Return the model's completion for ``prompt``."""
        raise NotImplementedError
