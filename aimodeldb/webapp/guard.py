"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Inbound guard for proxied endpoints: origin allowlist, then per-client
quota from the shared rate governor.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from flask import Flask, g, jsonify, request

from aimodeldb.net.rate_governor import RateGovernor, profile_for_path

_LOGGER = logging.getLogger(__name__)

FORBIDDEN_MESSAGE = "Request origin not allowed"


def client_identifier() -> str:
    """First ``X-Forwarded-For`` hop, then ``X-Real-IP``, then the peer."""

    forwarded = request.headers.get("X-Forwarded-For", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    return request.remote_addr or "unknown"


def origin_allowed(value: Optional[str], allowed: Sequence[str]) -> bool:
    """Requests without Origin or Referer come from non-browser clients."""

    if not value:
        return True
    candidate = value.strip().rstrip("/")
    for origin in allowed:
        origin = origin.rstrip("/")
        if candidate == origin or candidate.startswith(origin + "/"):
            return True
    return False


def install_proxy_guard(
    app: Flask, governor: RateGovernor, allowed_origins: Sequence[str]
) -> None:
    """Register request hooks that protect every rate-limited prefix."""

    allowed = tuple(allowed_origins)

    @app.before_request
    def _guard_request():
        match = profile_for_path(request.path)
        if match is None:
            return None
        prefix, profile = match

        origin = request.headers.get("Origin") or request.headers.get(
            "Referer"
        )
        if not origin_allowed(origin, allowed):
            _LOGGER.warning(
                "Rejected %s %s from origin %s",
                request.method,
                request.path,
                origin,
            )
            return (
                jsonify(
                    {"error": "forbidden", "message": FORBIDDEN_MESSAGE}
                ),
                403,
            )

        client = client_identifier()
        result = governor.check(
            f"{client}:{prefix}", profile.max_attempts, profile.window_ms
        )
        g.rate_limit = (profile, result)
        if result.allowed:
            return None

        _LOGGER.info(
            "Rate limit exceeded for %s on %s; retry in %ss",
            client,
            prefix,
            result.retry_after,
        )
        response = jsonify(
            {
                "error": "rate_limit_exceeded",
                "message": (
                    "Too many requests. Please try again in "
                    f"{result.retry_after} seconds."
                ),
                "retryAfter": result.retry_after,
            }
        )
        response.status_code = 429
        response.headers["Retry-After"] = str(result.retry_after)
        return response

    @app.after_request
    def _rate_limit_headers(response):
        state = g.pop("rate_limit", None)
        if state is None:
            return response
        profile, result = state
        response.headers["X-RateLimit-Limit"] = str(profile.max_attempts)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = str(result.reset_at)
        return response
