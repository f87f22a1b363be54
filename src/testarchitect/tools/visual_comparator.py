"""Visual regression checks against stored baseline screenshots."""

from __future__ import annotations

import re
import shutil
from datetime import datetime, timezone
from pathlib import Path

from PIL import Image
from pixelmatch.contrib.PIL import pixelmatch
from pydantic import BaseModel, ConfigDict, Field

from testarchitect.browser import Browser
from testarchitect.failures import ImageSizeMismatchError
from testarchitect.tools.base import Tool
from testarchitect.util.logging import get_logger

logger = get_logger(__name__)

BASELINE_NAME = "baseline.png"


class VisualConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    threshold: float = Field(default=0.2, ge=0, le=1)
    include_aa: bool = False
    alpha: float = Field(default=0.1, ge=0, le=1)
    aa_color: tuple[int, int, int] = (255, 255, 0)
    diff_color: tuple[int, int, int] = (255, 0, 0)


class VisualCheckResult(BaseModel):
    has_differences: bool
    diff_pixel_count: int
    diff_percentage: float
    baseline_exists: bool
    screenshot_path: str
    baseline_path: str | None = None
    diff_path: str | None = None


class ImageComparison(BaseModel):
    has_differences: bool
    diff_pixel_count: int
    diff_percentage: float


def sanitize_check_name(name: str) -> str:
    cleaned = re.sub(r"[^a-z0-9\-_]", "-", name.lower())
    return re.sub(r"-+", "-", cleaned).strip("-")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace(":", "-").replace(".", "-")


def compare_images(
    baseline_path: str | Path,
    current_path: str | Path,
    diff_path: str | Path,
    config: VisualConfig | None = None,
) -> ImageComparison:
    """Count perceptually different pixels; the diff image is written only when any differ."""
    config = config or VisualConfig()
    with Image.open(baseline_path) as raw_baseline, Image.open(current_path) as raw_current:
        baseline = raw_baseline.convert("RGBA")
        current = raw_current.convert("RGBA")
    if baseline.size != current.size:
        raise ImageSizeMismatchError(baseline.size, current.size)

    diff = Image.new("RGBA", baseline.size)
    count = pixelmatch(
        baseline,
        current,
        diff,
        threshold=config.threshold,
        includeAA=config.include_aa,
        alpha=config.alpha,
        aa_color=config.aa_color,
        diff_color=config.diff_color,
    )
    width, height = baseline.size
    percentage = count / (width * height) * 100
    if count > 0:
        diff.save(diff_path)
    return ImageComparison(
        has_differences=count > 0, diff_pixel_count=count, diff_percentage=percentage
    )


class VisualComparator:
    """Captures a page or element and compares it with the check's baseline.

    The first capture for a check becomes its baseline; later baselines only
    change through :meth:`update_baseline`.
    """

    def __init__(
        self,
        browser: Browser,
        visual_dir: str = "visual-tests",
        config: VisualConfig | None = None,
    ) -> None:
        self.browser = browser
        self.visual_dir = Path(visual_dir)
        self.config = config or VisualConfig()

    def check_dir(self, check_name: str) -> Path:
        return self.visual_dir / sanitize_check_name(check_name)

    async def check(
        self,
        target_url: str,
        check_name: str,
        selector: str | None = None,
        full_page: bool = False,
        config: VisualConfig | None = None,
    ) -> VisualCheckResult:
        directory = self.check_dir(check_name)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = _timestamp()
        screenshot_path = directory / f"current-{stamp}.png"
        baseline_path = directory / BASELINE_NAME
        diff_path = directory / f"diff-{stamp}.png"

        async with self.browser.open(target_url) as page:
            await page.screenshot(str(screenshot_path), selector=selector, full_page=full_page)
        logger.info("visual.captured check=%s path=%s", check_name, screenshot_path)

        if not baseline_path.exists():
            shutil.copyfile(screenshot_path, baseline_path)
            logger.info("visual.baseline_created check=%s path=%s", check_name, baseline_path)
            return VisualCheckResult(
                has_differences=False,
                diff_pixel_count=0,
                diff_percentage=0.0,
                baseline_exists=False,
                screenshot_path=str(screenshot_path),
            )

        comparison = compare_images(baseline_path, screenshot_path, diff_path, config or self.config)
        logger.info(
            "visual.compared check=%s diff_pixels=%d diff_percentage=%.4f",
            check_name,
            comparison.diff_pixel_count,
            comparison.diff_percentage,
        )
        return VisualCheckResult(
            has_differences=comparison.has_differences,
            diff_pixel_count=comparison.diff_pixel_count,
            diff_percentage=comparison.diff_percentage,
            baseline_exists=True,
            screenshot_path=str(screenshot_path),
            baseline_path=str(baseline_path),
            diff_path=str(diff_path) if comparison.has_differences else None,
        )

    def update_baseline(self, check_name: str, screenshot_path: str) -> Path:
        directory = self.check_dir(check_name)
        directory.mkdir(parents=True, exist_ok=True)
        baseline_path = directory / BASELINE_NAME
        shutil.copyfile(screenshot_path, baseline_path)
        logger.info("visual.baseline_updated check=%s source=%s", check_name, screenshot_path)
        return baseline_path

    def cleanup_old_files(self, check_name: str, keep: int = 5) -> list[Path]:
        """Delete all but the ``keep`` newest captures and diffs; returns the removed paths."""
        directory = self.check_dir(check_name)
        if not directory.is_dir():
            return []
        removed: list[Path] = []
        for prefix in ("current-", "diff-"):
            files = sorted(directory.glob(f"{prefix}*.png"), key=lambda path: path.name, reverse=True)
            for path in files[keep:]:
                path.unlink()
                removed.append(path)
        logger.info("visual.cleanup check=%s removed=%d", check_name, len(removed))
        return removed


class VisualCheckInput(BaseModel):
    target_url: str
    check_name: str = Field(min_length=1)
    selector: str | None = None
    full_page: bool = False
    config: VisualConfig | None = None


class VisualComparatorTool(Tool[VisualCheckResult]):
    name = "visual_tester"
    description = "Capture a screenshot and compare it with the stored baseline for a named check."
    input_schema = VisualCheckInput

    def __init__(self, comparator: VisualComparator, timeout_seconds: float = 120.0) -> None:
        self.comparator = comparator
        self.timeout_seconds = timeout_seconds

    async def run(self, data: BaseModel) -> VisualCheckResult:
        payload = VisualCheckInput.model_validate(data)
        return await self.comparator.check(
            payload.target_url,
            payload.check_name,
            selector=payload.selector,
            full_page=payload.full_page,
            config=payload.config,
        )
