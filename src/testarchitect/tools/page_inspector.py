"""Page inspector tool: structural snapshot of a live page."""

from __future__ import annotations

from pydantic import BaseModel

from testarchitect.browser import Browser
from testarchitect.state import PageSnapshot
from testarchitect.tools.base import Tool, ToolResult
from testarchitect.util.logging import get_logger

logger = get_logger(__name__)


class PageInspectorInput(BaseModel):
    url: str


class PageInspectorTool(Tool[PageSnapshot]):
    name = "page_inspector"
    description = "Load a URL and extract interactive elements, landmarks and accessibility hints."
    input_schema = PageInspectorInput

    def __init__(self, browser: Browser, timeout_seconds: float = 120.0) -> None:
        self.browser = browser
        self.timeout_seconds = timeout_seconds

    async def run(self, data: BaseModel) -> PageSnapshot:
        payload = PageInspectorInput.model_validate(data)
        logger.info("inspect.start url=%s", payload.url)
        async with self.browser.open(payload.url) as page:
            snapshot = await page.snapshot()
        if not snapshot.elements:
            logger.warning("inspect.empty url=%s", payload.url)
        logger.info("inspect.done url=%s elements=%d", payload.url, len(snapshot.elements))
        return snapshot

    async def inspect(self, url: str) -> ToolResult[PageSnapshot]:
        return await self.invoke({"url": url})
