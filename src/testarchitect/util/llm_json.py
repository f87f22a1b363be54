"""Tolerant extraction of JSON objects and arrays from model output."""

from __future__ import annotations

import ast
import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)


class LLMJsonError(ValueError):
    """Raised when no usable JSON value can be recovered from model output."""


def _strip_noise(text: str) -> str:
    # Reasoning models prefix their answer with a <think> block.
    text = _THINK_RE.sub("", text)
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _balanced_block(text: str, opener: str) -> str:
    closer = "}" if opener == "{" else "]"
    start = text.find(opener)
    if start < 0:
        raise LLMJsonError(f"No {opener!r} block found")
    depth = 0
    in_string = False
    escape = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    raise LLMJsonError("Unbalanced JSON block")


def loads_lenient(block: str) -> Any:
    """Decode a JSON or Python-literal block, tolerating trailing commas and single quotes."""
    cleaned = re.sub(r",\s*([}\]])", r"\1", block)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    # Unhashable keys such as {[1]: 2} surface as TypeError.
    try:
        return ast.literal_eval(cleaned)
    except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError) as exc:
        raise LLMJsonError(f"Could not decode JSON block: {exc}") from exc


def extract_json_object(text: str) -> dict[str, Any]:
    """Return the first JSON object found in ``text``."""
    value = loads_lenient(_balanced_block(_strip_noise(text), "{"))
    if not isinstance(value, dict):
        raise LLMJsonError("Expected a JSON object")
    return value


def extract_json_array(text: str) -> list[Any]:
    """Return the first JSON array found in ``text``."""
    value = loads_lenient(_balanced_block(_strip_noise(text), "["))
    if not isinstance(value, list):
        raise LLMJsonError("Expected a JSON array")
    return value
