"""Input validation and URL normalization."""

from __future__ import annotations

import ipaddress
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from uisnap.errors import (
    InvalidInputError,
    invalid_url,
    unsupported_framework,
    unsupported_styling,
)
from uisnap.models import FRAMEWORKS, STYLINGS, AnalysisRequest, ComponentConfig


MAX_URL_LENGTH = 2048

LOCALHOST_NAMES = {"localhost", "0.0.0.0"}

TRACKING_PARAMS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "fbclid",
    "gclid",
    "ref",
    "_ga",
}

DEFAULT_PORTS = {"http": 80, "https": 443}

OPTION_FLAGS = ("typescript", "responsive", "accessibility")


def _is_private_host(hostname: str) -> bool:
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_unspecified


def validate_url(url: Any) -> str:
    """Return the stripped URL or raise InvalidInputError."""
    if url is not None and not isinstance(url, str):
        raise invalid_url(str(url), "URL must be a string")
    if not url or not url.strip():
        raise invalid_url("", "URL is required")
    url = url.strip()

    if len(url) > MAX_URL_LENGTH:
        raise invalid_url(url, f"URL exceeds maximum length of {MAX_URL_LENGTH} characters")

    lowered = url.lower()
    if lowered.startswith("data:"):
        raise invalid_url(url, "Data URLs are not allowed")
    if lowered.startswith("file:"):
        raise invalid_url(url, "File URLs are not allowed")

    try:
        parts = urlsplit(url)
        hostname = (parts.hostname or "").lower()
        parts.port  # raises on a malformed port
    except ValueError:
        raise invalid_url(url, "Malformed URL format")

    if parts.scheme not in ("http", "https"):
        raise invalid_url(url, f"Protocol {parts.scheme or '(none)'}: not allowed. Use http:// or https://")
    if not hostname:
        raise invalid_url(url, "Malformed URL format")
    if hostname in LOCALHOST_NAMES or hostname.endswith(".localhost"):
        raise invalid_url(url, "Localhost URLs are not allowed")
    if _is_private_host(hostname):
        raise invalid_url(url, "Private IP addresses are not allowed")

    return url


def validate_config(framework: Any, styling: Any, options: Any = None) -> ComponentConfig:
    if framework not in FRAMEWORKS:
        raise unsupported_framework(framework)
    if styling not in STYLINGS:
        raise unsupported_styling(styling, framework)
    if styling == "styled-components" and framework != "react":
        raise unsupported_styling(styling, framework)

    if options is None:
        options = {}
    if not isinstance(options, dict):
        raise InvalidInputError(
            "Validation failed for options: must be an object",
            details={"field": "options"},
            suggestion="Check the input parameters and try again.",
        )

    flags = {}
    errors = []
    for name in OPTION_FLAGS:
        value = options.get(name)
        if value is None:
            continue
        if not isinstance(value, bool):
            errors.append(f"{name} must be a boolean")
            continue
        flags[name] = value

    if errors:
        raise InvalidInputError(
            "; ".join(errors),
            details={"errors": errors},
            suggestion="Check the input parameters and try again.",
        )

    return ComponentConfig(framework=framework, styling=styling, **flags)


def validate_request(request: AnalysisRequest) -> tuple[str, ComponentConfig]:
    url = validate_url(request.url)
    config = validate_config(request.framework, request.styling, request.options)
    return url, config


def normalize_url(url: str) -> str:
    """Strip tracking params, the fragment and a default port; sort the query by key."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return url

    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()
    if port is not None and DEFAULT_PORTS.get(scheme) == port:
        netloc = netloc.rsplit(":", 1)[0]

    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in TRACKING_PARAMS
    ]
    query.sort(key=lambda kv: kv[0])

    path = parts.path or "/"
    return urlunsplit((scheme, netloc, path, urlencode(query), ""))
