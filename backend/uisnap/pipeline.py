"""
Analysis pipeline orchestrator.

States:
  IDLE → VALIDATING → CACHE_LOOKUP ─hit→ DONE
                                   └miss→ ACQUIRING → CAPTURING → EXTRACTING
         → AWAITING_INFERENCE → POST_PROCESSING → CACHE_STORE → DONE
  any state → FAILED

ACQUIRING/CAPTURING/EXTRACTING run inside the concurrency slot with a
browser lease and one page; all three are given back exactly once when that
region is left, whether it finished or raised. Nothing is cached unless the
whole run succeeds.
"""

import logging
import time
from enum import Enum
from typing import Optional

from uisnap.admission import AdmissionGate, ConcurrencyLimiter, RateLimiter
from uisnap.browser import BrowserPool, PageSettings
from uisnap.cache import CacheStore
from uisnap.capture import CaptureOptions, capture_page
from uisnap.deadline import Deadline
from uisnap.errors import to_structured_error
from uisnap.extractor import DesignExtractor
from uisnap.generation import ComponentGenerator, OllamaComponentGenerator
from uisnap.inference import OllamaClient
from uisnap.logging_utils import bind_request_id, new_request_id
from uisnap.models import AnalysisRequest, CacheEntry
from uisnap.validation import validate_request

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CACHE_LOOKUP = "cache_lookup"
    ACQUIRING = "acquiring"
    CAPTURING = "capturing"
    EXTRACTING = "extracting"
    AWAITING_INFERENCE = "awaiting_inference"
    POST_PROCESSING = "post_processing"
    CACHE_STORE = "cache_store"
    DONE = "done"
    FAILED = "failed"


class PipelineRun:
    """State tracker for one request."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.state = PipelineState.IDLE
        self.history = [PipelineState.IDLE]

    def transition(self, state: PipelineState):
        logger.debug("State %s → %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)


def format_success(entry: CacheEntry, processing_ms: int) -> dict:
    snapshot, artifact = entry.snapshot, entry.artifact
    component = {
        "code": artifact.code,
        "imports": list(artifact.imports),
        "dependencies": dict(artifact.dependencies),
        "filename": artifact.filename,
    }
    if artifact.instructions:
        component["instructions"] = artifact.instructions
    return {
        "success": True,
        "component": component,
        "analysis": {
            "url": snapshot.url,
            "timestamp": snapshot.analyzed_at.isoformat(),
            "domElements": snapshot.page_metrics.dom_elements,
            "colors": [c.hex for c in snapshot.color_palette],
            "fonts": list(dict.fromkeys(t.font_family for t in snapshot.typography)),
            "processingTime": processing_ms,
        },
    }


def format_failure(error) -> dict:
    return {"success": False, "error": error.to_dict()}


class AnalysisPipeline:
    def __init__(
        self,
        gate: AdmissionGate,
        browser_pool: BrowserPool,
        extractor: DesignExtractor,
        cache: CacheStore,
        generator: ComponentGenerator,
        capture_options: Optional[CaptureOptions] = None,
        request_timeout_s: float = 30.0,
    ):
        self.gate = gate
        self.browser_pool = browser_pool
        self.extractor = extractor
        self.cache = cache
        self.generator = generator
        self.capture_options = capture_options or CaptureOptions()
        self.request_timeout_s = request_timeout_s

    @classmethod
    def from_settings(cls, settings, generator: Optional[ComponentGenerator] = None,
                      browser_pool: Optional[BrowserPool] = None) -> "AnalysisPipeline":
        gate = AdmissionGate(
            RateLimiter(settings.rate_limit_requests, settings.rate_limit_window_s),
            ConcurrencyLimiter(settings.max_concurrent_analyses, settings.max_queue_depth),
        )
        if browser_pool is None:
            browser_pool = BrowserPool(
                page_settings=PageSettings(
                    width=settings.viewport_width,
                    height=settings.viewport_height,
                    user_agent=settings.user_agent,
                ),
                headless=settings.headless,
            )
        if generator is None:
            generator = OllamaComponentGenerator(
                OllamaClient(settings.ollama_host),
                vision_model=settings.vision_model,
                code_model=settings.code_model,
                timeout_s=settings.inference_timeout_s,
            )
        return cls(
            gate=gate,
            browser_pool=browser_pool,
            extractor=DesignExtractor(
                max_dom_elements=settings.max_dom_elements,
                max_resource_bytes=settings.max_resource_bytes,
                max_snapshot_bytes=settings.max_snapshot_bytes,
                step_timeout_s=settings.extraction_step_timeout_s,
                reload_timeout_ms=settings.navigation_timeout_ms,
            ),
            cache=CacheStore(settings.cache_max_bytes, settings.cache_ttl_s),
            generator=generator,
            capture_options=CaptureOptions(
                timeout_ms=settings.navigation_timeout_ms,
                max_size_bytes=settings.max_resource_bytes,
            ),
            request_timeout_s=settings.request_timeout_s,
        )

    # -- entry point ---------------------------------------------------------

    async def analyze(self, request: AnalysisRequest, client_id: str = "unknown") -> dict:
        """Run one request end to end. Never raises for pipeline failures;
        the failure is returned as a structured error instead."""
        request_id = new_request_id()
        with bind_request_id(request_id):
            started = time.monotonic()
            run = PipelineRun(request_id)
            logger.info(
                "analyze invoked url=%s framework=%s styling=%s client=%s",
                request.url, request.framework, request.styling, client_id,
            )
            try:
                response = await self._run(request, client_id, run, started)
            except Exception as exc:
                run.transition(PipelineState.FAILED)
                error = to_structured_error(exc, request_id)
                logger.warning(
                    "analyze failed code=%s took_ms=%d: %s",
                    error.code, int((time.monotonic() - started) * 1000), error.message,
                )
                return format_failure(error)

            run.transition(PipelineState.DONE)
            logger.info("analyze complete took_ms=%d", response["analysis"]["processingTime"])
            return response

    async def _run(self, request: AnalysisRequest, client_id: str, run: PipelineRun, started: float) -> dict:
        run.transition(PipelineState.VALIDATING)
        url, config = validate_request(request)

        self.gate.admit(client_id)

        run.transition(PipelineState.CACHE_LOOKUP)
        cached = self.cache.get(url, config)
        if cached is not None:
            logger.info("Cache hit url=%s", url)
            return format_success(cached, int((time.monotonic() - started) * 1000))

        deadline = Deadline(self.request_timeout_s)

        # -- slot + browser region ----------------------------------------
        run.transition(PipelineState.ACQUIRING)
        await deadline.run("queue", self.gate.limiter.acquire())
        try:
            lease = await deadline.run("browser", self.browser_pool.acquire())
            try:
                page = await deadline.run("page", lease.new_page())
                try:
                    run.transition(PipelineState.CAPTURING)
                    capture = await capture_page(page, url, self.capture_options, deadline)

                    run.transition(PipelineState.EXTRACTING)
                    snapshot = await self.extractor.extract(page, url, capture, deadline)
                finally:
                    await page.close()
            finally:
                await lease.release()
        finally:
            self.gate.limiter.release()

        # -- inference + store --------------------------------------------
        run.transition(PipelineState.AWAITING_INFERENCE)
        artifact = await self.generator.generate(snapshot, capture.screenshot, config, deadline)

        run.transition(PipelineState.POST_PROCESSING)
        entry = CacheEntry(snapshot=snapshot, artifact=artifact)

        run.transition(PipelineState.CACHE_STORE)
        stored = self.cache.set(url, config, entry) or entry

        return format_success(stored, int((time.monotonic() - started) * 1000))

    # -- management ----------------------------------------------------------

    def cache_stats(self) -> dict:
        return self.cache.get_stats()

    def clear_cache(self) -> int:
        return self.cache.clear()

    async def shutdown(self):
        await self.browser_pool.shutdown()
