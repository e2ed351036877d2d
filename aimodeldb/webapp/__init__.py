"""Flask application factory for the local proxy and JSON API."""

from __future__ import annotations

from typing import Any, Dict

from flask import Flask, current_app

from aimodeldb.config import ALLOWED_ORIGINS, PROXY_TARGETS
from aimodeldb.net.rate_governor import RateGovernor
from aimodeldb.storage import CatalogRepository


def create_app(config: Dict[str, Any] | None = None) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(__name__)
    app.config.setdefault("JSON_SORT_KEYS", False)
    app.config.setdefault("ALLOWED_ORIGINS", ALLOWED_ORIGINS)
    app.config.setdefault("PROXY_TARGETS", dict(PROXY_TARGETS))
    app.config.setdefault("PROXY_SESSION", None)
    app.config.setdefault("SCHEDULER", None)
    app.config.setdefault("SYNC_PIPELINE", None)

    if config:
        app.config.update(config)
    if app.config.get("GOVERNOR") is None:
        app.config["GOVERNOR"] = RateGovernor()
    if app.config.get("REPOSITORY") is None:
        app.config["REPOSITORY"] = CatalogRepository()

    from .api import api_bp
    from .guard import install_proxy_guard
    from .proxy import proxy_bp

    install_proxy_guard(
        app, app.config["GOVERNOR"], app.config["ALLOWED_ORIGINS"]
    )
    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(proxy_bp)
    return app


def get_repository(app: Flask | None = None) -> CatalogRepository:
    """Retrieve the shared catalog. Accepts an optional app override."""
    ctx_app = app or current_app
    repository = ctx_app.config.get("REPOSITORY")
    if not isinstance(repository, CatalogRepository):
        raise RuntimeError(
            "REPOSITORY config must be a CatalogRepository instance"
        )
    return repository
