"""In-memory stand-ins for the browser and the generation backend."""

import asyncio

from uisnap.admission import AdmissionGate, ConcurrencyLimiter, RateLimiter
from uisnap.browser import BrowserPool
from uisnap.cache import CacheStore
from uisnap.capture import FIRST_PAINT_SCRIPT, FONTS_READY_SCRIPT
from uisnap.extractor import (
    COLOR_SCRIPT,
    LAYOUT_SCRIPT,
    METRICS_SCRIPT,
    SEMANTIC_SCRIPT,
    STRUCTURE_SCRIPT,
    TYPOGRAPHY_SCRIPT,
    DesignExtractor,
)
from uisnap.generation import build_artifact
from uisnap.models import GeneratedArtifact
from uisnap.pipeline import AnalysisPipeline


SCREENSHOT = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def page_responses(dom_elements: int = 10, resource_bytes: int = 2048) -> dict:
    return {
        FONTS_READY_SCRIPT: True,
        FIRST_PAINT_SCRIPT: 120,
        METRICS_SCRIPT: {
            "domElements": dom_elements,
            "resourceBytes": resource_bytes,
            "viewportWidth": 1920,
            "viewportHeight": 1080,
        },
        STRUCTURE_SCRIPT: {
            "tag": "body",
            "attributes": {},
            "text": None,
            "styles": {"color": "rgb(17, 17, 17)", "display": "block"},
            "children": [
                {"tag": "header", "attributes": {"class": "top"}, "text": None, "styles": {}, "children": [
                    {"tag": "h1", "attributes": {}, "text": "Hello", "styles": {}, "children": []},
                ]},
                {"tag": "main", "attributes": {}, "text": "Body copy", "styles": {}, "children": []},
            ],
        },
        COLOR_SCRIPT: [
            ["color", "rgb(17, 17, 17)"],
            ["backgroundColor", "rgb(255, 255, 255)"],
            ["color", "rgb(17, 17, 17)"],
            ["borderColor", "rgb(0, 112, 243)"],
        ],
        TYPOGRAPHY_SCRIPT: [
            ["h1", "Inter, sans-serif", "32px", "700", "40px", "normal"],
            ["p", "Inter, sans-serif", "16px", "400", "24px", "normal"],
            ["span", "Inter, sans-serif", "16px", "400", "24px", "normal"],
        ],
        LAYOUT_SCRIPT: [
            {
                "selector": "main.container",
                "display": "flex",
                "position": "static",
                "margin": "0px",
                "padding": "16px",
                "width": "1920px",
                "height": "800px",
                "flex": {"direction": "row", "justify": "center", "align": "center", "wrap": "nowrap", "gap": "8px"},
            },
        ],
        SEMANTIC_SCRIPT: [
            {"type": "header", "selector": "header:nth-of-type(1)", "index": 0,
             "role": None, "ariaLabel": None, "children": ["h1"]},
            {"type": "main", "selector": "main:nth-of-type(1)", "index": 0,
             "role": "main", "ariaLabel": "Content", "children": []},
        ],
    }


def deep_chain(depth: int) -> dict:
    """A body holding `depth` nested divs, shaped like the structure script's output."""
    root = {"tag": "body", "attributes": {}, "text": None, "styles": {}, "children": []}
    node = root
    for i in range(depth):
        child = {"tag": "div", "attributes": {"data-i": str(i)}, "text": None, "styles": {"display": "block"}, "children": []}
        node["children"].append(child)
        node = child
    node["text"] = "leaf"
    return root


class FakePage:
    def __init__(self, dom_elements=10, resource_bytes=2048, status=200, screenshot=SCREENSHOT,
                 goto_error=None, failures=None, gate=None, screenshot_error=None):
        self.responses = page_responses(dom_elements, resource_bytes)
        self.status = status
        self.screenshot_bytes = screenshot
        self.goto_error = goto_error
        self.screenshot_error = screenshot_error
        self.failures = failures or {}
        self.gate = gate
        self.visited = []
        self.evaluated = []
        self.js_toggles = []
        self.reloads = 0
        self.closed = False

    async def goto(self, url, timeout_ms, wait_until="networkidle"):
        self.visited.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.goto_error is not None:
            raise self.goto_error
        return self.status

    async def reload(self, timeout_ms, wait_until="domcontentloaded"):
        self.reloads += 1

    async def screenshot(self, full_page=True):
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return self.screenshot_bytes

    async def evaluate(self, script, arg=None):
        self.evaluated.append(script)
        await asyncio.sleep(0)
        if script in self.failures:
            raise self.failures[script]
        return self.responses[script]

    async def set_javascript_enabled(self, enabled):
        self.js_toggles.append(enabled)

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, page_factory):
        self.page_factory = page_factory
        self.pages = []
        self.connected = True
        self.closed = False
        self._on_disconnect = None

    def is_connected(self):
        return self.connected and not self.closed

    def on_disconnect(self, callback):
        self._on_disconnect = callback

    async def new_page(self, settings):
        page = self.page_factory()
        self.pages.append(page)
        return page

    async def close(self):
        self.closed = True

    def crash(self):
        self.connected = False
        if self._on_disconnect:
            self._on_disconnect()


class FakeLauncher:
    """Async callable handing out FakeBrowsers; counts launches."""

    def __init__(self, page_factory=FakePage, error=None):
        self.page_factory = page_factory
        self.error = error
        self.browsers = []

    @property
    def launches(self):
        return len(self.browsers)

    async def __call__(self):
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        browser = FakeBrowser(self.page_factory)
        self.browsers.append(browser)
        return browser


class FakeGenerator:
    def __init__(self, code="import React from 'react';\n\nexport default function WebpageComponent() {\n  return <div />;\n}\n",
                 error=None):
        self.code = code
        self.error = error
        self.calls = 0

    async def generate(self, snapshot, screenshot, config, deadline) -> GeneratedArtifact:
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return build_artifact(self.code, config)


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_pipeline(launcher=None, generator=None, cache=None, max_active=3, max_queue=10,
                  rate_limit=100, max_dom_elements=500, request_timeout_s=30.0):
    """Pipeline wired with fakes; returns (pipeline, launcher, generator)."""
    launcher = launcher or FakeLauncher()
    generator = generator or FakeGenerator()
    pipeline = AnalysisPipeline(
        gate=AdmissionGate(RateLimiter(limit=rate_limit), ConcurrencyLimiter(max_active, max_queue)),
        browser_pool=BrowserPool(launcher=launcher),
        extractor=DesignExtractor(max_dom_elements=max_dom_elements, step_timeout_s=5.0),
        cache=cache if cache is not None else CacheStore(),
        generator=generator,
        request_timeout_s=request_timeout_s,
    )
    return pipeline, launcher, generator
