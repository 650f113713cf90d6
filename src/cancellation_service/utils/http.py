"""Shared HTTP utilities."""

from __future__ import annotations

from urllib.parse import urlparse

from starlette.requests import Request

_BASE_URL_ALLOWED_SCHEMES = frozenset({"http", "https"})


def normalize_base_url(value: str) -> str:
    """Normalize and validate the base URL the quality checker calls."""
    candidate = value.strip()
    if not candidate:
        raise ValueError("api_base_url must not be empty")

    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in _BASE_URL_ALLOWED_SCHEMES:
        raise ValueError("api_base_url must use http or https")
    if not parsed.netloc:
        raise ValueError("api_base_url must include host")
    if parsed.query or parsed.fragment:
        raise ValueError("api_base_url must not include query or fragment")

    normalized_path = parsed.path.rstrip("/")
    return f"{parsed.scheme.lower()}://{parsed.netloc}{normalized_path}"


def first_forwarded_value(value: str | None) -> str | None:
    """Extract the first value from a comma-separated forwarded header."""
    if not value:
        return None
    first = value.split(",", 1)[0].strip()
    return first or None


def _sanitize_header_value(value: str) -> str:
    """Strip control characters from a client-supplied value."""
    return "".join(c for c in value if 0x20 <= ord(c) < 0x7F)


def get_client_ip(request: Request, trust_forwarded_headers: bool = False) -> str | None:
    """Get client IP with optional trusted proxy header support."""
    if trust_forwarded_headers:
        forwarded_for = first_forwarded_value(request.headers.get("x-forwarded-for"))
        if forwarded_for:
            return _sanitize_header_value(forwarded_for)

        real_ip = request.headers.get("x-real-ip")
        if real_ip and real_ip.strip():
            return _sanitize_header_value(real_ip.strip())

    if request.client:
        return request.client.host

    return None


def get_user_agent(request: Request) -> str | None:
    user_agent = request.headers.get("user-agent")
    if not user_agent:
        return None
    return _sanitize_header_value(user_agent)
