from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional
import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from uisnap.config import get_settings
from uisnap.errors import InferenceError, InvalidInputError
from uisnap.inference import OllamaClient
from uisnap.logging_utils import configure_logging, new_request_id
from uisnap.models import AnalysisRequest
from uisnap.pipeline import AnalysisPipeline, format_failure

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class AnalyzeBody(BaseModel):
    # Untyped so bad values reach validate_request and come back as
    # structured errors instead of FastAPI's 422.
    url: Any = None
    framework: Any = None
    styling: Any = None
    options: Any = None


# Code → HTTP status. Anything not listed is a 500.
STATUS_BY_CODE = {
    "INVALID_URL": 400,
    "UNSUPPORTED_FRAMEWORK": 400,
    "UNSUPPORTED_STYLING": 400,
    "VALIDATION_ERROR": 400,
    "UNREACHABLE_URL": 502,
    "AI_MODEL_ERROR": 503,
    "TIMEOUT": 504,
    "DOM_TOO_LARGE": 413,
    "RESOURCE_TOO_LARGE": 413,
    "SNAPSHOT_TOO_LARGE": 413,
    "RATE_LIMITED": 429,
    "SERVICE_UNAVAILABLE": 503,
}


def status_for(code: str) -> int:
    return STATUS_BY_CODE.get(code, 500)


def find_model(models: list, name: str) -> Optional[dict]:
    """Entry from `/api/tags` for `name`; an untagged name matches `:latest`."""
    wanted = {name} if ":" in name else {name, f"{name}:latest"}
    for model in models:
        if isinstance(model, dict) and model.get("name") in wanted:
            return model
    return None


def create_app(pipeline: Optional[AnalysisPipeline] = None,
               ollama: Optional[OllamaClient] = None) -> FastAPI:
    """Build the app. Tests pass a pipeline wired with fakes; otherwise one is
    built from settings when the app starts."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()
        configure_logging(level=settings.log_level, json_logs=settings.log_json)

        app.state.pipeline = pipeline or AnalysisPipeline.from_settings(settings)
        app.state.ollama = ollama or OllamaClient(settings.ollama_host)

        tasks = [
            asyncio.create_task(
                app.state.pipeline.gate.rate_limiter.run_sweeper(settings.rate_limit_sweep_s)
            ),
            asyncio.create_task(
                app.state.pipeline.cache.run_maintenance(settings.cache_maintenance_s)
            ),
        ]
        logger.info("Service started")
        try:
            yield
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await app.state.pipeline.shutdown()
            logger.info("Service stopped")

    app = FastAPI(title="uisnap", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
            for err in exc.errors()
        ]
        error = InvalidInputError(
            "Request body must be a JSON object",
            details={"errors": errors},
            suggestion="Check the input parameters and try again.",
            request_id=new_request_id(),
        )
        logger.warning("Rejected request body: %s", "; ".join(errors))
        return JSONResponse(format_failure(error), status_code=400)

    @app.post("/analyze")
    async def analyze(body: AnalyzeBody, request: Request):
        """Analyze a webpage and return a generated component."""
        client_id = request.client.host if request.client else "unknown"
        result = await request.app.state.pipeline.analyze(
            AnalysisRequest(
                url=body.url,
                framework=body.framework,
                styling=body.styling,
                options=body.options,
            ),
            client_id=client_id,
        )
        if result["success"]:
            return result

        error = result["error"]
        headers = {}
        retry_after = (error.get("details") or {}).get("retryAfterSeconds")
        if retry_after is not None:
            headers["Retry-After"] = str(max(1, int(round(retry_after))))
        return JSONResponse(result, status_code=status_for(error["code"]), headers=headers)

    @app.get("/cache/stats")
    async def cache_stats(request: Request):
        stats = request.app.state.pipeline.cache_stats()
        for field in ("oldestEntry", "newestEntry"):
            if stats[field] is not None:
                stats[field] = stats[field].isoformat()
        return stats

    @app.post("/cache/clear")
    async def cache_clear(request: Request):
        cleared = request.app.state.pipeline.clear_cache()
        return {"cleared": cleared}

    @app.get("/health")
    async def health(request: Request):
        pipeline = request.app.state.pipeline
        return {
            "status": "ok",
            "browser": pipeline.browser_pool.status(),
            "cacheEntries": len(pipeline.cache),
        }

    @app.get("/health/ollama")
    async def health_ollama(request: Request):
        return await request.app.state.ollama.health_check()

    @app.get("/health/models")
    async def health_models(request: Request):
        settings = get_settings()
        try:
            available = await request.app.state.ollama.list_models()
        except InferenceError as e:
            logger.error("Models health check failed: %s", e.message)
            available = []

        models = {}
        for role, name in (("vision", settings.vision_model), ("code", settings.code_model)):
            found = find_model(available, name)
            entry = {"name": name, "loaded": found is not None}
            if found is not None:
                entry["size"] = found.get("size")
                entry["version"] = found.get("name")
                entry["modifiedAt"] = found.get("modified_at")
            models[role] = entry

        body = {"models": models, "timestamp": datetime.now(timezone.utc).isoformat()}
        if all(entry["loaded"] for entry in models.values()):
            return body
        return JSONResponse(body, status_code=503)

    @app.get("/health/admission")
    async def health_admission(request: Request):
        return request.app.state.pipeline.gate.stats()

    return app


app = create_app()
