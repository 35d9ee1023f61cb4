"""
Component generation: from design snapshot to UI code.

Two model calls:
  [A] vision pass over the screenshot → free-text layout description
  [B] code pass over snapshot summary + description → component source
Then the source is wrapped into an artifact (imports, dependency baseline,
filename, usage instructions).
"""

import asyncio
import json
import logging
import re
from typing import Protocol

from uisnap.deadline import Deadline
from uisnap.errors import InferenceError, StageTimeoutError
from uisnap.image_utils import screenshot_to_b64
from uisnap.inference import OllamaClient
from uisnap.models import ComponentConfig, DesignSnapshot, GeneratedArtifact

logger = logging.getLogger(__name__)


class ComponentGenerator(Protocol):
    async def generate(
        self,
        snapshot: DesignSnapshot,
        screenshot: bytes,
        config: ComponentConfig,
        deadline: Deadline,
    ) -> GeneratedArtifact:
        ...


# ---------------------------------------------------------------------------
# Artifact assembly
# ---------------------------------------------------------------------------

BASE_DEPENDENCIES = {
    "react": {"react": "^18.2.0", "react-dom": "^18.2.0"},
    "angular": {"@angular/core": "^17.0.0", "@angular/common": "^17.0.0"},
    "vue": {"vue": "^3.4.0"},
    "svelte": {"svelte": "^4.2.0"},
}

STYLING_DEPENDENCIES = {
    "tailwind": {"tailwindcss": "^3.4.0"},
    "scss": {"sass": "^1.70.0"},
    "styled-components": {"styled-components": "^6.1.0"},
    "css": {},
}

_IMPORT_RE = re.compile(r"^\s*import\s.+?;?\s*$", re.MULTILINE)
_FENCE_RE = re.compile(r"```[\w+-]*\n(.*?)```", re.DOTALL)


def file_extension(framework: str, typescript: bool) -> str:
    if framework == "react":
        return ".tsx" if typescript else ".jsx"
    if framework == "angular":
        return ".component.ts"
    if framework == "vue":
        return ".vue"
    if framework == "svelte":
        return ".svelte"
    return ".ts"


def extract_code(text: str) -> str:
    """First fenced block if there is one, else the whole reply."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def usage_instructions(config: ComponentConfig, filename: str) -> str:
    ext = file_extension(config.framework, config.typescript)
    if config.framework == "react":
        return (
            f"1. Save this component as {filename}\n"
            "2. Install dependencies: npm install\n"
            f"3. Import: import WebpageComponent from './{filename[:-len(ext)]}'\n"
            "4. Use: <WebpageComponent />"
        )
    if config.framework == "angular":
        return (
            "1. Save this component in your Angular project\n"
            "2. Add to module declarations\n"
            "3. Use the selector: <app-webpage></app-webpage>"
        )
    return (
        f"1. Save this component as {filename}\n"
        f"2. Import: import WebpageComponent from './{filename}'\n"
        "3. Use: <WebpageComponent />"
    )


def build_artifact(code: str, config: ComponentConfig) -> GeneratedArtifact:
    if config.framework == "angular":
        filename = "webpage" + file_extension("angular", config.typescript)
    else:
        filename = "WebpageComponent" + file_extension(config.framework, config.typescript)
    return GeneratedArtifact(
        code=code,
        imports=[line.strip() for line in _IMPORT_RE.findall(code)],
        dependencies={
            **BASE_DEPENDENCIES[config.framework],
            **STYLING_DEPENDENCIES[config.styling],
        },
        filename=filename,
        instructions=usage_instructions(config, filename),
    )


# ---------------------------------------------------------------------------
# Ollama-backed generator
# ---------------------------------------------------------------------------

VISION_PROMPT = (
    "Describe the layout of this webpage screenshot: the main regions from top "
    "to bottom, the components in each region, and the overall visual style. "
    "Be concise and factual."
)


def summarize_snapshot(snapshot: DesignSnapshot) -> dict:
    return {
        "colors": [{"hex": c.hex, "usage": c.usage} for c in snapshot.color_palette[:10]],
        "fonts": [
            {"family": t.font_family, "size": t.font_size, "weight": t.font_weight, "selector": t.selector}
            for t in snapshot.typography[:10]
        ],
        "layouts": [
            {"selector": l.selector, "display": l.display, **(l.flex or l.grid or {})}
            for l in snapshot.layout_patterns[:15]
        ],
        "sections": [
            {"type": s.type, "children": s.children[:8]} for s in snapshot.semantic_sections[:15]
        ],
    }


def code_prompt(snapshot: DesignSnapshot, description: str, config: ComponentConfig) -> str:
    language = "TypeScript" if config.typescript else "JavaScript"
    extras = []
    if config.responsive:
        extras.append("responsive across mobile, tablet and desktop")
    if config.accessibility:
        extras.append("accessible (semantic tags, aria labels, alt text)")
    return (
        f"Write a single {config.framework} component in {language} styled with "
        f"{config.styling} that recreates this webpage"
        + (f", {' and '.join(extras)}" if extras else "")
        + ".\n\nVisual description:\n"
        + description.strip()
        + "\n\nDesign data:\n"
        + json.dumps(summarize_snapshot(snapshot), indent=2)[:12000]
        + "\n\nReturn only the component source in one fenced code block."
    )


class OllamaComponentGenerator:
    def __init__(
        self,
        client: OllamaClient,
        vision_model: str = "llava:7b",
        code_model: str = "codellama:13b",
        timeout_s: float = 120.0,
    ):
        self.client = client
        self.vision_model = vision_model
        self.code_model = code_model
        self.timeout_s = timeout_s

    async def _call(self, stage: str, model: str, prompt: str, deadline: Deadline, **kwargs):
        budget = deadline.stage_budget(self.timeout_s)
        try:
            return await deadline.run(
                stage,
                self.client.generate(model, prompt, timeout_s=budget, **kwargs),
                stage_timeout_s=self.timeout_s,
            )
        except StageTimeoutError:
            raise InferenceError(model, "Request timeout - model may be loading or overloaded")

    async def generate(self, snapshot, screenshot, config, deadline):
        # [A] vision pass
        image_b64 = await asyncio.to_thread(screenshot_to_b64, screenshot)
        vision = await self._call(
            "inference:vision",
            self.vision_model,
            VISION_PROMPT,
            deadline,
            images=[image_b64],
            options={"temperature": 0.3, "num_predict": 2000},
        )

        # [B] code pass
        result = await self._call(
            "inference:code",
            self.code_model,
            code_prompt(snapshot, vision.text, config),
            deadline,
            options={"temperature": 0.2, "num_predict": 4000},
        )

        code = extract_code(result.text)
        if not code:
            raise InferenceError(self.code_model, "Empty response")
        logger.info("Generated %s component chars=%d", config.framework, len(code))
        return build_artifact(code, config)
