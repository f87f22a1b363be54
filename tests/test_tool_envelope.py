from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel

from fakes import FakeBrowser, FakePage
from testarchitect.failures import FailureKind
from testarchitect.state import PageSnapshot
from testarchitect.tools.base import Tool, ToolError
from testarchitect.tools.page_inspector import PageInspectorTool


class EchoInput(BaseModel):
    text: str
    delay: float = 0.0
    fail: str | None = None


class EchoTool(Tool[str]):
    name = "echo"
    description = "Echo text back."
    input_schema = EchoInput
    timeout_seconds = 0.05

    async def run(self, data: BaseModel) -> str:
        payload = EchoInput.model_validate(data)
        if payload.delay:
            await asyncio.sleep(payload.delay)
        if payload.fail == "empty":
            raise ToolError(FailureKind.EMPTY_RESULT, "nothing to echo")
        if payload.fail == "crash":
            raise KeyError("boom")
        return payload.text


@pytest.mark.asyncio
async def test_success_payload():
    result = await EchoTool().invoke({"text": "hi"})
    assert result.ok
    assert result.output == "hi"
    assert result.failure is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload, kind",
    [
        ({}, FailureKind.PRECONDITION),
        ({"text": "x", "delay": 1.0}, FailureKind.TIMEOUT),
        ({"text": "x", "fail": "empty"}, FailureKind.EMPTY_RESULT),
        ({"text": "x", "fail": "crash"}, FailureKind.TOOL_ERROR),
    ],
)
async def test_failures_are_structured(payload, kind):
    result = await EchoTool().invoke(payload)
    assert not result.ok
    assert result.output is None
    assert result.failure.kind is kind


def test_describe():
    assert EchoTool().describe() == "echo - Echo text back."


@pytest.mark.asyncio
async def test_inspector_returns_snapshot_even_when_empty():
    empty = PageSnapshot(url="https://app.test/blank", title="Blank")
    browser = FakeBrowser(FakePage(empty))
    result = await PageInspectorTool(browser).inspect("https://app.test/blank")
    assert result.ok
    assert result.output.elements == ()
    assert browser.opened == ["https://app.test/blank"]


@pytest.mark.asyncio
async def test_inspector_navigation_error_is_tool_error():
    result = await PageInspectorTool(FakeBrowser(failures=1)).inspect("https://app.test/down")
    assert result.failure.kind is FailureKind.TOOL_ERROR
    assert "ERR_CONNECTION_REFUSED" in result.failure.message
