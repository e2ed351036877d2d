"""REST API blueprint exposing the catalog, sync and validation queue."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from aimodeldb.models import ValidationSource
from aimodeldb.storage import ModelNotFound

from . import get_repository

api_bp = Blueprint("api", __name__)


def _json_error(message: str, status: int = 400):
    return jsonify({"error": message}), status


def _as_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "t", "yes", "on"}


def _scheduler():
    return current_app.config.get("SCHEDULER")


@api_bp.get("/health")
def healthcheck():
    """Simple readiness check used by tests or deployment."""
    return jsonify({"status": "ok"}), 200


@api_bp.get("/models")
def list_models():
    """List catalog models, optionally hiding NSFW-flagged ones."""
    repository = get_repository()
    include_nsfw = _as_bool(request.args.get("includeNsfw"))
    favorites_only = _as_bool(request.args.get("favorites"))
    incomplete_only = _as_bool(request.args.get("incomplete"))

    models = (
        repository.incomplete_models()
        if incomplete_only
        else repository.list()
    )
    if not include_nsfw:
        models = [model for model in models if not model.is_nsfw_flagged]
    if favorites_only:
        models = [model for model in models if model.is_favorite]
    return jsonify([model.to_dict() for model in models]), 200


@api_bp.get("/models/<model_id>")
def get_model(model_id: str):
    try:
        model = get_repository().get(model_id)
    except ModelNotFound as exc:
        return _json_error(str(exc), 404)
    return jsonify(model.to_dict()), 200


@api_bp.post("/models/<model_id>/favorite")
def toggle_favorite(model_id: str):
    try:
        model = get_repository().toggle_favorite(model_id)
    except ModelNotFound as exc:
        return _json_error(str(exc), 404)
    return jsonify(model.to_dict()), 200


@api_bp.post("/models/<model_id>/nsfw")
def set_nsfw(model_id: str):
    payload = request.get_json(silent=True) or {}
    flagged = payload.get("flagged")
    if not isinstance(flagged, bool):
        return _json_error("flagged must be a boolean.", 400)
    try:
        model = get_repository().set_nsfw_flag(model_id, flagged)
    except ModelNotFound as exc:
        return _json_error(str(exc), 404)
    return jsonify(model.to_dict()), 200


@api_bp.post("/safety/rescan")
def rescan_safety():
    return jsonify(get_repository().rescan_safety()), 200


@api_bp.post("/sync")
def run_sync():
    pipeline = current_app.config.get("SYNC_PIPELINE")
    if pipeline is None:
        return _json_error("Sync is not configured.", 503)
    config = request.get_json(silent=True)
    if config is not None and not isinstance(config, dict):
        return _json_error("Sync options must be an object.", 400)
    summary = pipeline.run(config or None)
    return jsonify(summary.to_dict()), 200


@api_bp.get("/rate-limits")
def rate_limits():
    governor = current_app.config["GOVERNOR"]
    return jsonify(governor.stats()), 200


@api_bp.get("/validation/jobs")
def list_jobs():
    scheduler = _scheduler()
    if scheduler is None:
        return _json_error("Validation is not configured.", 503)
    return (
        jsonify(
            {
                "jobs": [job.to_dict() for job in scheduler.jobs()],
                "counts": scheduler.counts(),
                "paused": scheduler.paused,
            }
        ),
        200,
    )


@api_bp.post("/validation/jobs")
def submit_jobs():
    """Queue validation for the given model ids (or every incomplete one)."""
    scheduler = _scheduler()
    if scheduler is None:
        return _json_error("Validation is not configured.", 503)
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return _json_error("Request body must be an object.", 400)

    try:
        sources = [
            ValidationSource(item)
            for item in payload.get("sources") or ["api"]
        ]
    except ValueError:
        return _json_error(
            "sources must be any of api, websearch, scraping.", 400
        )

    repository = get_repository()
    model_ids = payload.get("modelIds")
    if model_ids is None:
        models = repository.incomplete_models()
    elif isinstance(model_ids, list):
        try:
            models = [repository.get(str(item)) for item in model_ids]
        except ModelNotFound as exc:
            return _json_error(str(exc), 404)
    else:
        return _json_error("modelIds must be an array.", 400)

    try:
        ids = scheduler.submit(models, sources)
    except RuntimeError as exc:
        return _json_error(str(exc), 409)
    return jsonify({"jobIds": ids}), 202


@api_bp.post("/validation/pause")
def pause_validation():
    scheduler = _scheduler()
    if scheduler is None:
        return _json_error("Validation is not configured.", 503)
    scheduler.pause()
    return jsonify({"paused": True}), 200


@api_bp.post("/validation/resume")
def resume_validation():
    scheduler = _scheduler()
    if scheduler is None:
        return _json_error("Validation is not configured.", 503)
    scheduler.resume()
    return jsonify({"paused": False}), 200


@api_bp.post("/validation/cancel")
def cancel_validation():
    scheduler = _scheduler()
    if scheduler is None:
        return _json_error("Validation is not configured.", 503)
    return jsonify({"cancelled": scheduler.cancel_all()}), 200


@api_bp.post("/validation/clear")
def clear_validation():
    scheduler = _scheduler()
    if scheduler is None:
        return _json_error("Validation is not configured.", 503)
    return jsonify({"cleared": scheduler.clear_finished()}), 200
