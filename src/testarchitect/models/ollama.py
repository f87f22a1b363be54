"""Ollama /api/generate client."""

from __future__ import annotations

import httpx

from testarchitect.models.base import BaseLLM, LLMError


class OllamaLLM(BaseLLM):
    """Non-streaming client for a local Ollama server."""

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "deepseek-r1:14b",
        timeout_seconds: int = 120,
        temperature: float = 0.2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.transport = transport

    async def complete(self, prompt: str) -> str:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": self.temperature},
        }
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds), transport=self.transport
            ) as client:
                response = await client.post(f"{self.base_url}/api/generate", json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMError(f"Ollama request failed: {exc}") from exc
        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise LLMError("Ollama response missing 'response' text")
        return text
