"""Forward guarded prefixes to their upstream catalog and LLM hosts."""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Tuple

import requests  # type: ignore[import]
from flask import Blueprint, Response, current_app, jsonify, request

from aimodeldb.utils.request_logging import log_request

from .guard import client_identifier

_LOGGER = logging.getLogger(__name__)

PROXY_TIMEOUT_SECONDS = 30

_HOP_BY_HOP = {
    "connection",
    "content-encoding",
    "content-length",
    "host",
    "keep-alive",
    "origin",
    "referer",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

proxy_bp = Blueprint("proxy", __name__)


def resolve_target(
    path: str, targets: Mapping[str, str]
) -> Optional[Tuple[str, str]]:
    """Return ``(prefix, upstream url)`` for ``path`` or ``None``."""

    for prefix in sorted(targets, key=len, reverse=True):
        if path == prefix or path.startswith(prefix + "/"):
            remainder = path[len(prefix):]
            return prefix, targets[prefix].rstrip("/") + remainder
    return None


def _forward_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {
        name: value
        for name, value in headers.items()
        if name.lower() not in _HOP_BY_HOP
    }


@proxy_bp.route(
    "/<path:path>",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
)
def forward(path: str):
    match = resolve_target(
        "/" + path, current_app.config.get("PROXY_TARGETS") or {}
    )
    if match is None:
        return jsonify({"error": "not_found"}), 404
    _, url = match

    session = current_app.config.get("PROXY_SESSION") or requests
    body = request.get_data()
    try:
        upstream = session.request(
            request.method,
            url,
            params=request.args.to_dict(flat=False),
            data=body or None,
            headers=_forward_headers(request.headers),
            timeout=PROXY_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        _LOGGER.warning("Upstream %s failed: %s", url, exc)
        log_request(
            _LOGGER,
            method=request.method,
            path=request.path,
            client=client_identifier(),
            query=request.args,
            body=body,
            status=502,
        )
        return (
            jsonify({"error": "bad_gateway", "message": str(exc)}),
            502,
        )

    log_request(
        _LOGGER,
        method=request.method,
        path=request.path,
        client=client_identifier(),
        query=request.args,
        body=body,
        status=upstream.status_code,
    )
    return Response(
        upstream.content,
        status=upstream.status_code,
        headers=_forward_headers(upstream.headers),
    )
