"""Shared helpers for logging proxied HTTP requests."""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional


def log_request(
    logger,
    *,
    method: str,
    path: str,
    client: str,
    query: Optional[Mapping[str, Any]] = None,
    body: Any = None,
    status: Optional[int] = None,
) -> None:
    """
    Emit a structured audit line for one proxied request.

    ``status`` is the upstream (or guard) status when already known.
    """
    logger.info(
        "HTTP request method=%s path=%s client=%s query=%s status=%s "
        "body=%s",
        method or "<unknown>",
        path,
        client or "<unknown>",
        dict(query or {}),
        status if status is not None else "-",
        body_preview(body),
    )


def body_preview(body: Any) -> str:
    if body is None:
        return "<null>"
    if isinstance(body, (bytes, bytearray)):
        if not body:
            return "<empty>"
        try:
            decoded = bytes(body).decode("utf-8")
        except UnicodeDecodeError:
            return "<binary>"
        return _truncate(_redact(decoded))
    if isinstance(body, str):
        return _truncate(_redact(body)) if body else "<empty>"
    try:
        serialized = json.dumps(body)
    except (TypeError, ValueError):
        serialized = str(body)
    return _truncate(_redact(serialized))


_SECRET_KEYS = ("api_key", "apiKey", "authorization", "x-api-key")


def _redact(text: str) -> str:
    lowered = text.lower()
    if any(key.lower() in lowered for key in _SECRET_KEYS):
        return "<redacted>"
    return text


def _truncate(value: str, *, limit: int = 2048) -> str:
    if len(value) <= limit:
        return value
    return f"{value[:limit]}...<truncated>"
