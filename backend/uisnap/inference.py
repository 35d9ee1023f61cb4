"""
Ollama HTTP client.

The backend is a black box: a prompt (plus optional base64 images) goes in,
unstructured text and timing counters come out. Connection refusal and
timeouts are the failure modes callers care about; both surface as
InferenceError.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from uisnap.errors import InferenceError

logger = logging.getLogger(__name__)


@dataclass
class InferenceResult:
    model: str
    text: str
    total_duration_ns: int = 0
    eval_count: int = 0


class OllamaClient:
    def __init__(self, host: str = "http://localhost:11434", transport: Optional[httpx.AsyncBaseTransport] = None):
        self.host = host.rstrip("/")
        self._transport = transport

    def _client(self, timeout_s: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.host, timeout=timeout_s, transport=self._transport)

    async def generate(
        self,
        model: str,
        prompt: str,
        images: Optional[list[str]] = None,
        timeout_s: float = 120.0,
        options: Optional[dict] = None,
    ) -> InferenceResult:
        logger.info("Ollama generate model=%s images=%d", model, len(images or []))
        body = {"model": model, "prompt": prompt, "stream": False}
        if images:
            body["images"] = images
        if options:
            body["options"] = options

        try:
            async with self._client(timeout_s) as client:
                response = await client.post("/api/generate", json=body)
        except httpx.ConnectError:
            raise InferenceError(model, "Cannot connect to Ollama service - ensure it is running")
        except httpx.TimeoutException:
            raise InferenceError(model, "Request timeout - model may be loading or overloaded")
        except httpx.HTTPError as e:
            raise InferenceError(model, f"Transport error: {type(e).__name__}")

        if response.status_code >= 400:
            logger.error("Ollama returned HTTP %d: %s", response.status_code, response.text[:500])
            raise InferenceError(model, f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            raise InferenceError(model, "Malformed response body")
        if not isinstance(data, dict):
            raise InferenceError(model, "Malformed response body")

        text = data.get("response") or ""
        logger.info(
            "Ollama response model=%s length=%d total_duration_ns=%s",
            model, len(text), data.get("total_duration"),
        )
        return InferenceResult(
            model=model,
            text=text,
            total_duration_ns=int(data.get("total_duration") or 0),
            eval_count=int(data.get("eval_count") or 0),
        )

    async def list_models(self) -> list[dict]:
        try:
            async with self._client(10.0) as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
        except httpx.ConnectError:
            raise InferenceError("ollama", "Cannot connect to Ollama service")
        except httpx.HTTPError as e:
            raise InferenceError("ollama", f"Transport error: {type(e).__name__}")
        try:
            data = response.json()
        except ValueError:
            raise InferenceError("ollama", "Malformed response body")
        if not isinstance(data, dict) or not isinstance(data.get("models", []), list):
            raise InferenceError("ollama", "Malformed response body")
        return data.get("models", [])

    async def health_check(self) -> dict:
        started = time.monotonic()
        try:
            async with self._client(5.0) as client:
                response = await client.get("/api/tags")
        except httpx.HTTPError as e:
            elapsed = int((time.monotonic() - started) * 1000)
            logger.warning("Ollama health check failed after %dms: %s", elapsed, e)
            return {"available": False, "responseTimeMs": elapsed, "error": type(e).__name__}

        elapsed = int((time.monotonic() - started) * 1000)
        if response.status_code == 200:
            return {"available": True, "responseTimeMs": elapsed}
        return {"available": False, "responseTimeMs": elapsed, "error": f"HTTP {response.status_code}"}
