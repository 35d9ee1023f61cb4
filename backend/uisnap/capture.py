"""
Capture stage: navigate, wait for fonts, take the full-page screenshot.

The screenshot size cap is a hard limit; oversized captures fail instead of
being downscaled.
"""

import logging
import time
from dataclasses import dataclass

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from uisnap.deadline import Deadline
from uisnap.errors import (
    InternalError,
    PipelineError,
    StageTimeoutError,
    UnreachableError,
    resource_too_large,
)

logger = logging.getLogger(__name__)


FONTS_READY_SCRIPT = "() => document.fonts.ready.then(() => true)"

FIRST_PAINT_SCRIPT = '''() => {
    const paint = performance.getEntriesByType('paint')
        .find(entry => entry.name === 'first-contentful-paint');
    return paint ? Math.round(paint.startTime) : 0;
}'''


@dataclass(frozen=True)
class CaptureOptions:
    full_page: bool = True
    timeout_ms: int = 30000
    wait_until: str = "networkidle"
    max_size_bytes: int = 10 * 1024 * 1024


@dataclass
class CaptureResult:
    screenshot: bytes
    load_time_ms: int
    render_time_ms: int
    screenshot_bytes: int


async def capture_page(page, url: str, options: CaptureOptions, deadline: Deadline) -> CaptureResult:
    logger.info("Starting capture url=%s full_page=%s", url, options.full_page)
    started = time.monotonic()

    stage = "navigation"
    try:
        nav_start = time.monotonic()
        status = await deadline.run(
            stage,
            page.goto(url, timeout_ms=options.timeout_ms, wait_until=options.wait_until),
            stage_timeout_s=options.timeout_ms / 1000,
        )
        if status is None:
            raise UnreachableError(url, "No response received")
        if status >= 400:
            raise UnreachableError(url, f"HTTP {status} error")
        load_time_ms = int((time.monotonic() - nav_start) * 1000)
        logger.debug("Page loaded url=%s status=%s load_time_ms=%d", url, status, load_time_ms)

        stage = "fonts"
        await deadline.run(stage, page.evaluate(FONTS_READY_SCRIPT))
        stage = "first-paint"
        render_time_ms = int(await deadline.run(stage, page.evaluate(FIRST_PAINT_SCRIPT)) or 0)

        stage = "screenshot"
        screenshot = await deadline.run(stage, page.screenshot(full_page=options.full_page))
    except PipelineError:
        raise
    except PlaywrightTimeoutError:
        budget = options.timeout_ms / 1000 if stage == "navigation" else round(deadline.remaining(), 3)
        raise StageTimeoutError(stage, budget)
    except PlaywrightError as e:
        if "net::ERR_" in str(e) or "NS_ERROR_" in str(e):
            raise UnreachableError(url, str(e).splitlines()[0])
        logger.error("Capture failed url=%s: %s", url, e)
        raise InternalError("Screenshot capture failed", details={"url": url})

    size = len(screenshot)
    if size > options.max_size_bytes:
        raise resource_too_large(url, size, options.max_size_bytes, what="Screenshot bytes")

    logger.info(
        "Capture complete url=%s load_time_ms=%d render_time_ms=%d size=%d total_ms=%d",
        url, load_time_ms, render_time_ms, size, int((time.monotonic() - started) * 1000),
    )
    return CaptureResult(
        screenshot=screenshot,
        load_time_ms=load_time_ms,
        render_time_ms=render_time_ms,
        screenshot_bytes=size,
    )
