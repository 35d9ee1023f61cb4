"""
Structured error taxonomy.

Every failure that leaves the pipeline is one of these, carrying a
machine-readable code, a human message, optional details and, when the
caller can plausibly recover, a suggestion.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Base class for all errors that cross the service boundary."""

    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        suggestion: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        if code:
            self.code = code
        self.message = message
        self.details = details
        self.suggestion = suggestion
        self.request_id = request_id
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        if self.request_id:
            payload["requestId"] = self.request_id
        return payload


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------

class InvalidInputError(PipelineError):
    code = "VALIDATION_ERROR"


def invalid_url(url: str, reason: str) -> InvalidInputError:
    return InvalidInputError(
        f"Invalid URL: {reason}",
        code="INVALID_URL",
        details={"url": url, "reason": reason},
        suggestion="Provide a valid HTTP or HTTPS URL. Avoid localhost, private IPs, and file:// protocols.",
    )


def unsupported_framework(framework: Any) -> InvalidInputError:
    return InvalidInputError(
        f"Unsupported framework: {framework}",
        code="UNSUPPORTED_FRAMEWORK",
        details={"framework": framework},
        suggestion="Use one of: react, angular, vue, svelte",
    )


def unsupported_styling(styling: Any, framework: Any = None) -> InvalidInputError:
    if styling == "styled-components" and framework != "react":
        suggestion = "styled-components is only compatible with React framework"
    else:
        suggestion = "Use one of: tailwind, css, scss, styled-components (styled-components only for React)"
    return InvalidInputError(
        f"Unsupported styling: {styling}",
        code="UNSUPPORTED_STYLING",
        details={"styling": styling, "framework": framework},
        suggestion=suggestion,
    )


# ---------------------------------------------------------------------------
# Page / resources
# ---------------------------------------------------------------------------

class UnreachableError(PipelineError):
    code = "UNREACHABLE_URL"

    def __init__(self, url: str, reason: str, **kwargs):
        super().__init__(
            f"Cannot reach URL: {reason}",
            details={"url": url, "reason": reason},
            suggestion="Check network connectivity and ensure the URL is accessible from your network.",
            **kwargs,
        )


class StageTimeoutError(PipelineError):
    code = "TIMEOUT"

    def __init__(self, stage: str, budget_s: float, **kwargs):
        self.stage = stage
        super().__init__(
            f"Stage '{stage}' timed out after {budget_s:g}s",
            details={"stage": stage, "budgetSeconds": budget_s},
            suggestion="The page took too long to analyze. Try a simpler page or increase the timeout limit.",
            **kwargs,
        )


class OversizeResourceError(PipelineError):
    code = "RESOURCE_TOO_LARGE"


def dom_too_large(url: str, element_count: int, max_elements: int) -> OversizeResourceError:
    return OversizeResourceError(
        f"Page has {element_count} DOM elements (max: {max_elements})",
        code="DOM_TOO_LARGE",
        details={"url": url, "elementCount": element_count, "maxElements": max_elements},
        suggestion="The page is too complex. Try analyzing a specific section or a simpler page.",
    )


def resource_too_large(url: str, size_bytes: int, max_bytes: int, what: str = "Page resources") -> OversizeResourceError:
    return OversizeResourceError(
        f"{what} are {size_bytes} bytes (max: {max_bytes})",
        code="RESOURCE_TOO_LARGE",
        details={"url": url, "sizeBytes": size_bytes, "maxBytes": max_bytes},
        suggestion="The page has too many large resources. Try a page with fewer images and assets.",
    )


def snapshot_too_large(url: str, size_bytes: int, max_bytes: int) -> OversizeResourceError:
    return OversizeResourceError(
        f"Design snapshot is {size_bytes} bytes (max: {max_bytes})",
        code="SNAPSHOT_TOO_LARGE",
        details={"url": url, "sizeBytes": size_bytes, "maxBytes": max_bytes},
        suggestion="The page is too complex. Try a simpler page.",
    )


# ---------------------------------------------------------------------------
# Inference / capacity / internal
# ---------------------------------------------------------------------------

class InferenceError(PipelineError):
    code = "AI_MODEL_ERROR"

    def __init__(self, model: str, reason: str, **kwargs):
        self.model = model
        super().__init__(
            f"AI model error ({model}): {reason}",
            details={"model": model, "reason": reason},
            suggestion="Ensure Ollama is running and the vision and code models are pulled.",
            **kwargs,
        )


class CapacityExceededError(PipelineError):
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str, retry_after_s: float, *, code: Optional[str] = None,
                 details: Optional[dict[str, Any]] = None, **kwargs):
        self.retry_after_s = retry_after_s
        merged = {"retryAfterSeconds": retry_after_s, **(details or {})}
        super().__init__(
            message,
            code=code,
            details=merged,
            suggestion=f"Wait {retry_after_s:g} seconds before retrying",
            **kwargs,
        )


class InternalError(PipelineError):
    code = "INTERNAL_ERROR"

    def __init__(self, reason: str, **kwargs):
        kwargs.setdefault(
            "suggestion",
            "This is an internal error. Please try again or report the issue if it persists.",
        )
        super().__init__(f"Internal server error: {reason}", **kwargs)


def to_structured_error(exc: BaseException, request_id: Optional[str] = None) -> PipelineError:
    """Normalize any exception into the taxonomy.

    Raw exception text of unknown errors is logged, never returned.
    """
    if isinstance(exc, PipelineError):
        if request_id and not exc.request_id:
            exc.request_id = request_id
        return exc

    logger.error("Unhandled pipeline exception: %r", exc, exc_info=exc)
    return InternalError("unexpected failure", request_id=request_id)
