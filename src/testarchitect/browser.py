"""Headless browser access behind a small protocol.

Tools talk to :class:`Browser` / :class:`LivePage` only, so the Playwright
implementation can be swapped for an in-memory fake in tests.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright

from testarchitect.state import AccessibilityFlags, PageSnapshot, PageStructure, UIElement
from testarchitect.util.logging import get_logger

logger = get_logger(__name__)

INTERACTIVE_SELECTORS = (
    "a",
    "button",
    "input",
    "select",
    "textarea",
    "[role=\"button\"]",
    "[role=\"link\"]",
    "[role=\"textbox\"]",
    "[role=\"combobox\"]",
    "[role=\"tab\"]",
    "[onclick]",
    "[onsubmit]",
    ".btn",
    ".button",
)

# Runs in the page; returns plain JSON matching PageSnapshot's field names.
_SNAPSHOT_SCRIPT = """
([selectors, testIdAttr]) => {
  function xpathOf(el) {
    if (el.id) return `//*[@id="${el.id}"]`;
    const tid = el.getAttribute(testIdAttr);
    if (tid) return `//*[@${testIdAttr}="${tid}"]`;
    const parts = [];
    let cur = el;
    while (cur && cur.nodeType === Node.ELEMENT_NODE) {
      let index = 1;
      let sib = cur.previousElementSibling;
      while (sib) {
        if (sib.nodeName === cur.nodeName) index++;
        sib = sib.previousElementSibling;
      }
      const tag = cur.nodeName.toLowerCase();
      parts.unshift(index > 1 ? `${tag}[${index}]` : tag);
      cur = cur.parentElement;
    }
    return '/' + parts.join('/');
  }
  const all = [...selectors, `[${testIdAttr}]`].join(', ');
  const seen = new Set();
  const elements = [];
  for (const el of document.querySelectorAll(all)) {
    if (seen.has(el)) continue;
    seen.add(el);
    elements.push({
      tag: el.tagName.toLowerCase(),
      text: ((el.innerText || el.value || '') + '').trim().slice(0, 100),
      id: el.id || '',
      class_name: typeof el.className === 'string' ? el.className : '',
      test_id: el.getAttribute(testIdAttr) || '',
      role: el.getAttribute('role') || '',
      type: el.getAttribute('type') || '',
      placeholder: el.getAttribute('placeholder') || '',
      xpath: xpathOf(el),
      index: elements.length,
    });
  }
  const q = (s) => !!document.querySelector(s);
  return {
    url: window.location.href,
    title: document.title,
    elements,
    structure: {
      has_navigation: q('nav, [role="navigation"]'),
      has_footer: q('footer, [role="contentinfo"]'),
      has_form: q('form'),
      has_modal: q('[role="dialog"], .modal, [aria-modal="true"]'),
    },
    accessibility: {
      has_aria_labels: q('[aria-label], [aria-labelledby]'),
      has_headings: q('h1, h2, h3, h4, h5, h6'),
      has_landmarks: q('[role="main"], [role="navigation"], [role="contentinfo"], [role="banner"], main, nav, footer, header'),
    },
  };
}
"""


class LivePage(Protocol):
    async def snapshot(self) -> PageSnapshot: ...

    async def count_matches(self, selector: str, timeout_ms: int) -> int: ...

    async def screenshot(
        self, path: str, selector: str | None = None, full_page: bool = False
    ) -> None: ...


class Browser(Protocol):
    def open(self, url: str) -> AbstractAsyncContextManager[LivePage]: ...


class PlaywrightPage:
    """:class:`LivePage` over a Playwright page."""

    def __init__(self, page: Page, test_id_attribute: str = "data-testid") -> None:
        self.page = page
        self.test_id_attribute = test_id_attribute

    async def snapshot(self) -> PageSnapshot:
        raw = await self.page.evaluate(
            _SNAPSHOT_SCRIPT, [list(INTERACTIVE_SELECTORS), self.test_id_attribute]
        )
        return PageSnapshot(
            url=raw.get("url", self.page.url),
            title=raw.get("title", ""),
            elements=tuple(UIElement.model_validate(item) for item in raw.get("elements", [])),
            structure=PageStructure.model_validate(raw.get("structure", {})),
            accessibility=AccessibilityFlags.model_validate(raw.get("accessibility", {})),
        )

    async def count_matches(self, selector: str, timeout_ms: int) -> int:
        locator = self.page.locator(selector)
        try:
            await locator.first.wait_for(state="attached", timeout=timeout_ms)
            return await locator.count()
        except PlaywrightTimeout:
            return 0
        except PlaywrightError as exc:
            # Invalid selector syntax resolves to nothing.
            logger.debug("selector.invalid selector=%s error=%s", selector, exc)
            return 0

    async def screenshot(
        self, path: str, selector: str | None = None, full_page: bool = False
    ) -> None:
        if selector:
            await self.page.locator(selector).first.screenshot(path=path)
        else:
            await self.page.screenshot(path=path, full_page=full_page)


class PlaywrightBrowser:
    """Launches a fresh chromium per :meth:`open` call and closes it afterwards."""

    def __init__(
        self,
        headless: bool = True,
        navigation_timeout_ms: int = 30_000,
        settle_timeout_ms: int = 1_000,
        test_id_attribute: str = "data-testid",
        viewport: tuple[int, int] = (1280, 720),
    ) -> None:
        self.headless = headless
        self.navigation_timeout_ms = navigation_timeout_ms
        self.settle_timeout_ms = settle_timeout_ms
        self.test_id_attribute = test_id_attribute
        self.viewport = viewport

    @asynccontextmanager
    async def open(self, url: str) -> AsyncIterator[LivePage]:
        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=self.headless)
            try:
                page = await browser.new_page(
                    viewport={"width": self.viewport[0], "height": self.viewport[1]}
                )
                try:
                    await page.goto(
                        url, wait_until="networkidle", timeout=self.navigation_timeout_ms
                    )
                except PlaywrightTimeout:
                    logger.warning("browser.networkidle_timeout url=%s", url)
                    await page.goto(
                        url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms
                    )
                if self.settle_timeout_ms:
                    await page.wait_for_timeout(self.settle_timeout_ms)
                yield PlaywrightPage(page, self.test_id_attribute)
            finally:
                await browser.close()
