from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from PIL import Image

from testarchitect.state import PageSnapshot, PageStructure, UIElement


def element(tag: str, index: int, **fields: str) -> UIElement:
    return UIElement(tag=tag, index=index, **fields)


def login_snapshot(url: str = "https://app.test/login") -> PageSnapshot:
    return PageSnapshot(
        url=url,
        title="Login",
        elements=(
            element("input", 0, id="email", type="email", placeholder="Email"),
            element("input", 1, id="password", type="password"),
            element("button", 2, text="Submit", test_id="submit-button", type="submit"),
            element("a", 3, text="Forgot password?"),
        ),
        structure=PageStructure(has_form=True),
    )


class FakePage:
    """In-memory LivePage: a fixed snapshot and a table of resolvable selectors."""

    def __init__(
        self,
        snapshot: PageSnapshot | None = None,
        matches: dict[str, int] | None = None,
        images: list[Image.Image] | None = None,
    ) -> None:
        self._snapshot = snapshot or login_snapshot()
        self.matches = matches or {}
        self.images = list(images or [])
        self.queries: list[str] = []
        self.screenshots: list[tuple[str, str | None, bool]] = []

    async def snapshot(self) -> PageSnapshot:
        return self._snapshot

    async def count_matches(self, selector: str, timeout_ms: int) -> int:
        self.queries.append(selector)
        return self.matches.get(selector, 0)

    async def screenshot(
        self, path: str, selector: str | None = None, full_page: bool = False
    ) -> None:
        self.screenshots.append((path, selector, full_page))
        self.images.pop(0).save(path)


class FakeBrowser:
    def __init__(self, page: FakePage | None = None, failures: int = 0) -> None:
        self.page = page or FakePage()
        self.failures = failures
        self.opened: list[str] = []

    @asynccontextmanager
    async def open(self, url: str) -> AsyncIterator[FakePage]:
        self.opened.append(url)
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError(f"net::ERR_CONNECTION_REFUSED at {url}")
        yield self.page


def solid(size: tuple[int, int] = (1000, 1000), color: tuple[int, int, int] = (255, 255, 255)) -> Image.Image:
    return Image.new("RGB", size, color)


def with_block(
    base: Image.Image, box: tuple[int, int, int, int], color: tuple[int, int, int] = (255, 0, 0)
) -> Image.Image:
    image = base.copy()
    image.paste(color, box)
    return image
