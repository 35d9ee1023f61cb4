"""
Data model shared by every pipeline stage.

Inputs are immutable; the design snapshot and the generated artifact are
plain pydantic models. The cache sizes them by their JSON encoding, measured
by `json_size` rather than by serializing.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


FRAMEWORKS = ("react", "angular", "vue", "svelte")
STYLINGS = ("tailwind", "css", "scss", "styled-components")
MAX_PALETTE_SIZE = 20

Framework = Literal["react", "angular", "vue", "svelte"]
Styling = Literal["tailwind", "css", "scss", "styled-components"]
ColorUsage = Literal["primary", "secondary", "accent", "background", "text"]


# ---------------------------------------------------------------------------
# Request side
# ---------------------------------------------------------------------------

class AnalysisRequest(BaseModel):
    """Raw caller input. Checked by `validation.validate_request`."""

    model_config = ConfigDict(frozen=True)

    url: Any = None
    framework: Any = None
    styling: Any = None
    options: Any = None


class ComponentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    framework: Framework
    styling: Styling
    typescript: bool = True
    responsive: bool = True
    accessibility: bool = True

    def canonical(self) -> str:
        """Stable JSON form: sorted keys, no whitespace."""
        return json.dumps(self.model_dump(), sort_keys=True, separators=(",", ":"))


# ---------------------------------------------------------------------------
# Design snapshot
# ---------------------------------------------------------------------------

class DomNode(BaseModel):
    tag: str
    attributes: dict[str, str] = Field(default_factory=dict)
    text: Optional[str] = None
    styles: dict[str, str] = Field(default_factory=dict)
    children: list["DomNode"] = Field(default_factory=list)

    def count(self) -> int:
        total, stack = 0, [self]
        while stack:
            node = stack.pop()
            total += 1
            stack.extend(node.children)
        return total


DomNode.model_rebuild()


def json_size(value: Any) -> int:
    """Byte length of the compact UTF-8 JSON encoding of `value`.

    Walks with an explicit stack, so a DOM chain of any depth can be sized;
    pydantic's serializer gives up on deeply nested `DomNode`s. Accepts
    JSON-mode data plus `DomNode` instances.
    """
    total = 0
    stack = [value]
    while stack:
        item = stack.pop()
        if isinstance(item, DomNode):
            item = {
                "tag": item.tag,
                "attributes": item.attributes,
                "text": item.text,
                "styles": item.styles,
                "children": item.children,
            }
        if isinstance(item, dict):
            # braces, commas, one colon per key
            total += 2 + max(len(item) - 1, 0) + len(item)
            for key, child in item.items():
                total += _scalar_size(str(key))
                stack.append(child)
        elif isinstance(item, (list, tuple)):
            total += 2 + max(len(item) - 1, 0)
            stack.extend(item)
        else:
            total += _scalar_size(item)
    return total


def _scalar_size(value: Any) -> int:
    return len(json.dumps(value, ensure_ascii=False).encode("utf-8"))


class ColorEntry(BaseModel):
    hex: str
    rgb: tuple[int, int, int]
    usage: ColorUsage
    frequency: int


class TypographyEntry(BaseModel):
    font_family: str
    font_size: str
    font_weight: int
    line_height: str
    letter_spacing: Optional[str] = None
    selector: str


class LayoutPattern(BaseModel):
    selector: str
    display: Literal["flex", "grid"]
    position: str
    margin: str
    padding: str
    width: Optional[str] = None
    height: Optional[str] = None
    flex: Optional[dict[str, str]] = None
    grid: Optional[dict[str, str]] = None


class SemanticSection(BaseModel):
    type: Literal["header", "nav", "main", "section", "article", "aside", "footer"]
    selector: str
    index: int
    role: Optional[str] = None
    aria_label: Optional[str] = None
    children: list[str] = Field(default_factory=list)


class PageMetrics(BaseModel):
    dom_elements: int
    resource_bytes: int
    load_time_ms: int
    render_time_ms: int
    viewport_width: int
    viewport_height: int


class DesignSnapshot(BaseModel):
    url: str
    analyzed_at: datetime
    dom_tree: DomNode
    color_palette: list[ColorEntry]
    typography: list[TypographyEntry]
    layout_patterns: list[LayoutPattern]
    semantic_sections: list[SemanticSection]
    page_metrics: PageMetrics

    @field_validator("color_palette")
    @classmethod
    def _palette_bounded(cls, value: list[ColorEntry]) -> list[ColorEntry]:
        if len(value) > MAX_PALETTE_SIZE:
            raise ValueError(f"color palette holds {len(value)} entries (max {MAX_PALETTE_SIZE})")
        return value

    def jsonable(self) -> dict:
        """JSON-mode dump with `dom_tree` left as the node itself; see `json_size`."""
        data = self.model_dump(mode="json", exclude={"dom_tree"})
        data["dom_tree"] = self.dom_tree
        return data

    def payload_size(self) -> int:
        return json_size(self.jsonable())


# ---------------------------------------------------------------------------
# Output side
# ---------------------------------------------------------------------------

class GeneratedArtifact(BaseModel):
    code: str
    imports: list[str] = Field(default_factory=list)
    dependencies: dict[str, str] = Field(default_factory=dict)
    filename: str
    instructions: Optional[str] = None


class CacheEntry(BaseModel):
    snapshot: DesignSnapshot
    artifact: GeneratedArtifact
    cached_at: float = 0.0
    size_bytes: int = 0

    def encoded_size(self) -> int:
        return json_size({
            "snapshot": self.snapshot.jsonable(),
            "artifact": self.artifact.model_dump(mode="json"),
        })
