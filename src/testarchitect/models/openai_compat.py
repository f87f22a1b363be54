"""OpenAI-compatible chat completions client."""

from __future__ import annotations

import asyncio
import json
from urllib.parse import urlparse, urlunparse

import httpx

from testarchitect.models.base import BaseLLM, LLMError
from testarchitect.util.logging import get_logger

logger = get_logger(__name__)


class OpenAICompatLLM(BaseLLM):
    """HTTP client for OpenAI-compatible /chat/completions endpoints."""

    name = "openai"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        timeout_seconds: int = 60,
        max_response_bytes: int = 2_000_000,
        extra_headers: dict[str, str] | None = None,
        temperature: float = 0.2,
        max_attempts: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        normalized = base_url.strip()
        if not normalized.startswith(("http://", "https://")):
            normalized = f"http://{normalized}"
        self.base_url = normalized.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_response_bytes = max_response_bytes
        self.extra_headers = extra_headers or {}
        self.temperature = temperature
        self.max_attempts = max(1, max_attempts)
        self.transport = transport

    def _build_url(self) -> str:
        parsed = urlparse(self.base_url)
        path = parsed.path or ""
        if path in {"", "/"}:
            base_path = "/v1"
        else:
            base_path = path.rstrip("/")
            segments = [segment for segment in base_path.split("/") if segment]
            if "v1" not in segments:
                base_path = f"{base_path}/v1"
        if not base_path.endswith("/chat/completions"):
            base_path = f"{base_path}/chat/completions"
        return urlunparse(parsed._replace(path=base_path, params="", query="", fragment=""))

    async def complete(self, prompt: str) -> str:
        url = self._build_url()
        headers = {"Authorization": f"Bearer {self.api_key}", **self.extra_headers}
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
        }
        timeout = httpx.Timeout(self.timeout_seconds)

        last_error: Exception | None = None
        for attempt in range(self.max_attempts):
            try:
                async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                    response = await client.post(url, headers=headers, json=payload)
                if response.status_code == 429 or response.status_code >= 500:
                    raise LLMError(
                        f"Retryable error {response.status_code}: {response.text[:200]}"
                    )
                response.raise_for_status()
                if len(response.content) > self.max_response_bytes:
                    raise LLMError("Response too large")
                try:
                    data = response.json()
                except json.JSONDecodeError as exc:
                    raise LLMError("Malformed JSON response") from exc
                if not isinstance(data, dict):
                    raise LLMError("Unexpected response body")
                choices = data.get("choices") or [{}]
                choice = choices[0] if isinstance(choices, list) else None
                message = choice.get("message") if isinstance(choice, dict) else None
                if not isinstance(message, dict):
                    raise LLMError("Unexpected response shape")
                content = message.get("content")
                return content if isinstance(content, str) else ""
            except (httpx.HTTPError, LLMError) as exc:
                last_error = exc
                logger.warning("llm.retry attempt=%d error=%s", attempt + 1, exc)
                if attempt == self.max_attempts - 1:
                    break
                await asyncio.sleep(2**attempt)
        raise LLMError(f"OpenAI-compatible request failed: {last_error}")
