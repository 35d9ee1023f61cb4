"""
Design snapshot extractor.

Runs on the page the capture stage already loaded:
  1. static re-render (scripts off → reload → scripts back on for the extraction scripts)
  2. size guards: DOM element count first, then transferred resource bytes
  3. five independent sub-extractions in parallel
       structure / colors / typography / layout / semantics
  4. snapshot payload size guard

The in-page scripts only collect raw samples in document order; ranking,
bucketing and de-duplication happen here in Python.
"""

import asyncio
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from uisnap.capture import CaptureResult
from uisnap.deadline import Deadline
from uisnap.errors import (
    InternalError,
    PipelineError,
    StageTimeoutError,
    dom_too_large,
    resource_too_large,
    snapshot_too_large,
)
from uisnap.models import (
    MAX_PALETTE_SIZE,
    ColorEntry,
    DesignSnapshot,
    DomNode,
    LayoutPattern,
    PageMetrics,
    SemanticSection,
    TypographyEntry,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# In-page scripts
# ---------------------------------------------------------------------------

METRICS_SCRIPT = '''() => {
    const resources = performance.getEntriesByType('resource');
    return {
        domElements: document.querySelectorAll('*').length,
        resourceBytes: Math.round(resources.reduce((sum, e) => sum + (e.transferSize || 0), 0)),
        viewportWidth: window.innerWidth,
        viewportHeight: window.innerHeight,
    };
}'''

STRUCTURE_SCRIPT = '''() => {
    const STYLE_KEYS = ['color', 'backgroundColor', 'fontSize', 'fontFamily', 'fontWeight',
        'lineHeight', 'margin', 'padding', 'display', 'position', 'width', 'height'];

    function extractNode(el) {
        const cs = getComputedStyle(el);
        const styles = {};
        for (const key of STYLE_KEYS) styles[key] = cs[key];

        const attributes = {};
        for (const attr of Array.from(el.attributes)) attributes[attr.name] = attr.value;

        const text = Array.from(el.childNodes)
            .filter(n => n.nodeType === Node.TEXT_NODE)
            .map(n => (n.textContent || '').trim())
            .filter(Boolean)
            .join(' ');

        return {
            tag: el.tagName.toLowerCase(),
            attributes,
            text: text || null,
            styles,
            children: Array.from(el.children).map(extractNode),
        };
    }
    return extractNode(document.body);
}'''

COLOR_SCRIPT = '''() => {
    const samples = [];
    for (const el of document.querySelectorAll('*')) {
        const cs = getComputedStyle(el);
        for (const prop of ['color', 'backgroundColor', 'borderColor']) {
            const value = cs[prop];
            if (value && value !== 'rgba(0, 0, 0, 0)' && value !== 'transparent') {
                samples.push([prop, value]);
            }
        }
    }
    return samples;
}'''

TYPOGRAPHY_SCRIPT = '''() => {
    const samples = [];
    for (const el of document.querySelectorAll('*')) {
        const cs = getComputedStyle(el);
        samples.push([el.tagName.toLowerCase(), cs.fontFamily, cs.fontSize,
            cs.fontWeight, cs.lineHeight, cs.letterSpacing]);
    }
    return samples;
}'''

LAYOUT_SCRIPT = '''() => {
    const layouts = [];
    for (const el of document.querySelectorAll('*')) {
        const cs = getComputedStyle(el);
        if (cs.display !== 'flex' && cs.display !== 'grid') continue;

        const classes = Array.from(el.classList);
        const selector = el.tagName.toLowerCase() +
            (el.id ? '#' + el.id : '') +
            (classes.length ? '.' + classes.join('.') : '');

        const layout = {
            selector,
            display: cs.display,
            position: cs.position,
            margin: cs.margin,
            padding: cs.padding,
            width: cs.width,
            height: cs.height,
        };
        if (cs.display === 'flex') {
            layout.flex = {
                direction: cs.flexDirection,
                justify: cs.justifyContent,
                align: cs.alignItems,
                wrap: cs.flexWrap,
                gap: cs.gap,
            };
        } else {
            layout.grid = {
                templateColumns: cs.gridTemplateColumns,
                templateRows: cs.gridTemplateRows,
                gap: cs.gap,
                autoFlow: cs.gridAutoFlow,
            };
        }
        layouts.push(layout);
    }
    return layouts;
}'''

SEMANTIC_SCRIPT = '''() => {
    const TAGS = ['header', 'nav', 'main', 'section', 'article', 'aside', 'footer'];
    const sections = [];
    for (const tag of TAGS) {
        document.querySelectorAll(tag).forEach((el, index) => {
            sections.push({
                type: tag,
                selector: `${tag}:nth-of-type(${index + 1})`,
                index,
                role: el.getAttribute('role'),
                ariaLabel: el.getAttribute('aria-label'),
                children: Array.from(el.children).map(c => c.tagName.toLowerCase()),
            });
        });
    }
    return sections;
}'''


# ---------------------------------------------------------------------------
# Pure post-processing
# ---------------------------------------------------------------------------

_RGB_RE = re.compile(r"rgba?\(\s*(\d+)[,\s]+(\d+)[,\s]+(\d+)")
_HEX_RE = re.compile(r"^#([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def normalize_color(value: str) -> Optional[tuple[str, tuple[int, int, int]]]:
    """CSS color string → ('#rrggbb', (r, g, b)); None if not an rgb/hex color."""
    value = (value or "").strip()
    match = _RGB_RE.match(value)
    if match:
        rgb = tuple(min(255, int(part)) for part in match.groups())
    else:
        match = _HEX_RE.match(value)
        if not match:
            return None
        digits = match.group(1)
        if len(digits) == 3:
            digits = "".join(ch * 2 for ch in digits)
        rgb = tuple(int(digits[i:i + 2], 16) for i in (0, 2, 4))
    return "#" + "".join(f"{part:02x}" for part in rgb), rgb


def usage_for_property(prop: str) -> str:
    if prop == "color":
        return "text"
    if prop == "backgroundColor":
        return "background"
    if "border" in prop.lower():
        return "accent"
    return "secondary"


def rank_colors(samples: Iterable[tuple[str, str]], limit: int = MAX_PALETTE_SIZE) -> list[ColorEntry]:
    """Count colors, rank by frequency descending; ties keep first-seen order.

    The usage class comes from the property a color was first seen on.
    """
    counts: dict[str, list] = {}
    for prop, value in samples:
        parsed = normalize_color(value)
        if parsed is None:
            continue
        hex_value, rgb = parsed
        bucket = counts.get(hex_value)
        if bucket is None:
            counts[hex_value] = [rgb, usage_for_property(prop), 1]
        else:
            bucket[2] += 1

    # sorted() is stable and dicts keep insertion order.
    ranked = sorted(counts.items(), key=lambda item: -item[1][2])
    return [
        ColorEntry(hex=hex_value, rgb=rgb, usage=usage, frequency=count)
        for hex_value, (rgb, usage, count) in ranked[:limit]
    ]


def _font_weight(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return {"bold": 700, "bolder": 700, "lighter": 300}.get(str(value).strip().lower(), 400)


def dedupe_typography(samples: Iterable[list]) -> list[TypographyEntry]:
    """One entry per (family, size, weight); the first occurrence wins."""
    seen: dict[tuple, TypographyEntry] = {}
    for tag, family, size, weight, line_height, letter_spacing in samples:
        if not family or not size or size == "0px":
            continue
        weight = _font_weight(weight)
        key = (family, size, weight)
        if key in seen:
            continue
        seen[key] = TypographyEntry(
            font_family=family,
            font_size=size,
            font_weight=weight,
            line_height=line_height or "normal",
            letter_spacing=letter_spacing if letter_spacing and letter_spacing != "normal" else None,
            selector=tag,
        )
    return list(seen.values())


def _dom_node(raw: dict) -> DomNode:
    return DomNode(
        tag=raw["tag"],
        attributes={str(k): str(v) for k, v in (raw.get("attributes") or {}).items()},
        text=raw.get("text") or None,
        styles={str(k): str(v) for k, v in (raw.get("styles") or {}).items() if v is not None},
    )


def build_dom_tree(raw: dict) -> DomNode:
    """Build the tree top-down with an explicit stack; pages nest deeper than
    the interpreter's recursion limit allows."""
    root = _dom_node(raw)
    stack = [(root, raw)]
    while stack:
        node, source = stack.pop()
        for child_raw in source.get("children") or []:
            child = _dom_node(child_raw)
            node.children.append(child)
            stack.append((child, child_raw))
    return root


def build_layouts(raw: list) -> list[LayoutPattern]:
    return [LayoutPattern(**item) for item in raw]


def build_semantics(raw: list) -> list[SemanticSection]:
    return [
        SemanticSection(
            type=item["type"],
            selector=item["selector"],
            index=item["index"],
            role=item.get("role") or None,
            aria_label=item.get("ariaLabel") or None,
            children=list(item.get("children") or []),
        )
        for item in raw
    ]


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class DesignExtractor:
    def __init__(
        self,
        max_dom_elements: int = 500,
        max_resource_bytes: int = 10 * 1024 * 1024,
        max_snapshot_bytes: int = 5 * 1024 * 1024,
        step_timeout_s: float = 10.0,
        reload_timeout_ms: int = 30000,
    ):
        self.max_dom_elements = max_dom_elements
        self.max_resource_bytes = max_resource_bytes
        self.max_snapshot_bytes = max_snapshot_bytes
        self.step_timeout_s = step_timeout_s
        self.reload_timeout_ms = reload_timeout_ms

    async def extract(self, page, url: str, capture: CaptureResult, deadline: Deadline) -> DesignSnapshot:
        logger.info("Starting DOM extraction url=%s max_elements=%d", url, self.max_dom_elements)
        started = time.monotonic()

        await self._step("static-render", self._static_render(page), deadline)

        raw_metrics = await self._step("metrics", page.evaluate(METRICS_SCRIPT), deadline)
        element_count = int(raw_metrics["domElements"])
        if element_count > self.max_dom_elements:
            raise dom_too_large(url, element_count, self.max_dom_elements)
        resource_bytes = int(raw_metrics.get("resourceBytes") or 0)
        if resource_bytes > self.max_resource_bytes:
            raise resource_too_large(url, resource_bytes, self.max_resource_bytes)

        steps = [
            ("structure", self._structure(page)),
            ("colors", self._colors(page)),
            ("typography", self._typography(page)),
            ("layout", self._layout(page)),
            ("semantics", self._semantics(page)),
        ]
        tasks = [asyncio.ensure_future(self._step(name, aw, deadline)) for name, aw in steps]
        try:
            dom_tree, palette, typography, layouts, semantics = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        snapshot = DesignSnapshot(
            url=url,
            analyzed_at=datetime.now(timezone.utc),
            dom_tree=dom_tree,
            color_palette=palette,
            typography=typography,
            layout_patterns=layouts,
            semantic_sections=semantics,
            page_metrics=PageMetrics(
                dom_elements=element_count,
                resource_bytes=resource_bytes,
                load_time_ms=capture.load_time_ms,
                render_time_ms=capture.render_time_ms,
                viewport_width=int(raw_metrics.get("viewportWidth") or 0),
                viewport_height=int(raw_metrics.get("viewportHeight") or 0),
            ),
        )

        payload = snapshot.payload_size()
        if payload > self.max_snapshot_bytes:
            raise snapshot_too_large(url, payload, self.max_snapshot_bytes)

        logger.info(
            "DOM extraction complete url=%s elements=%d colors=%d fonts=%d took_ms=%d",
            url, element_count, len(palette), len(typography), int((time.monotonic() - started) * 1000),
        )
        return snapshot

    async def _step(self, name: str, aw, deadline: Deadline):
        try:
            return await deadline.run(f"extract:{name}", aw, stage_timeout_s=self.step_timeout_s)
        except PipelineError:
            raise
        except asyncio.CancelledError:
            raise
        except PlaywrightTimeoutError:
            raise StageTimeoutError(f"extract:{name}", self.step_timeout_s)
        except Exception as e:
            logger.error("Extraction step '%s' failed: %r", name, e)
            raise InternalError(
                f"DOM extraction failed during {name}",
                details={"step": name},
            )

    async def _static_render(self, page):
        await page.set_javascript_enabled(False)
        try:
            await page.reload(timeout_ms=self.reload_timeout_ms, wait_until="domcontentloaded")
        finally:
            await page.set_javascript_enabled(True)

    async def _structure(self, page) -> DomNode:
        return build_dom_tree(await page.evaluate(STRUCTURE_SCRIPT))

    async def _colors(self, page) -> list[ColorEntry]:
        return rank_colors(await page.evaluate(COLOR_SCRIPT))

    async def _typography(self, page) -> list[TypographyEntry]:
        return dedupe_typography(await page.evaluate(TYPOGRAPHY_SCRIPT))

    async def _layout(self, page) -> list[LayoutPattern]:
        return build_layouts(await page.evaluate(LAYOUT_SCRIPT))

    async def _semantics(self, page) -> list[SemanticSection]:
        return build_semantics(await page.evaluate(SEMANTIC_SCRIPT))
