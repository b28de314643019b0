"""Flask application exposing the team escape-room endpoints."""

from __future__ import annotations

import logging
from typing import Any

from flask import Flask, current_app, jsonify, request

from escape_core.contribution import is_contribution_gate_satisfied
from escape_hub.catalog import RoomCatalog, load_catalog
from escape_hub.errors import EscapeHubError
from escape_hub.escape_service import EscapeRoomService, TeamContext
from escape_hub.progress_store import ProgressStore
from escape_hub.settings import HubSettings, load_settings

LOGGER = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"
SERVICE_EXTENSION = "escape_service"


def create_app(
    settings: HubSettings | None = None,
    *,
    catalog: RoomCatalog | None = None,
    store: ProgressStore | None = None,
) -> Flask:
    """Build the Flask app, loading whatever collaborators were not supplied."""
    settings = settings or load_settings()
    catalog = catalog if catalog is not None else load_catalog(settings.catalog_path)
    store = store or ProgressStore(
        settings.database_url,
        max_write_retries=settings.max_write_retries,
    )

    app = Flask(__name__)
    app.extensions[SERVICE_EXTENSION] = EscapeRoomService(catalog, store, settings)

    @app.errorhandler(EscapeHubError)
    def handle_hub_error(exc: EscapeHubError):
        if exc.status_code >= 500:
            LOGGER.error("Request failed: %s", exc.message)
        return jsonify(exc.to_payload()), exc.status_code

    @app.get("/healthz")
    def healthz():
        return jsonify({"ok": True})

    @app.post("/api/escape-rooms/<room_id>/start")
    def start_run(room_id: str):
        ctx = _context(room_id, _json_body().get("teamId"))
        record = _service().start_run(ctx)
        return jsonify({"ok": True, "progress": record.to_payload()})

    @app.get("/api/escape-rooms/<room_id>/progress")
    def get_progress(room_id: str):
        ctx = _context(room_id, request.args.get("teamId"))
        record = _service().get_progress(ctx)
        return jsonify({"progress": record.to_payload(), "totalRooms": ctx.room.total_rooms})

    @app.post("/api/escape-rooms/<room_id>/submit")
    def submit_answer(room_id: str):
        body = _json_body()
        ctx = _context(room_id, body.get("teamId"))
        result = _service().submit_answer(ctx, body.get("stageIndex"), body.get("answer"))
        return jsonify(result)

    @app.post("/api/escape-rooms/<room_id>/action")
    def record_action(room_id: str):
        body = _json_body()
        ctx = _context(room_id, body.get("teamId"))
        summary = _service().record_action(
            ctx,
            stage_index=body.get("stageIndex"),
            increment_by=body.get("incrementBy", 1),
        )
        return jsonify(
            {
                "ok": True,
                "contribution": summary.to_payload(),
                "gateSatisfied": is_contribution_gate_satisfied(summary),
            }
        )

    @app.get("/api/escape-rooms/<room_id>/stages/<int:stage_index>/contributions")
    def stage_contributions(room_id: str, stage_index: int):
        ctx = _context(room_id, request.args.get("teamId"))
        summary = _service().stage_contributions(ctx, stage_index)
        return jsonify(
            {
                "contribution": summary.to_payload(),
                "gateSatisfied": is_contribution_gate_satisfied(summary),
            }
        )

    @app.post("/api/escape-rooms/<room_id>/fail")
    def fail_run(room_id: str):
        ctx = _context(room_id, _json_body().get("teamId"))
        record = _service().fail_run(ctx)
        return jsonify({"ok": True, "progress": record.to_payload()})

    return app


def _service() -> EscapeRoomService:
    return current_app.extensions[SERVICE_EXTENSION]


def _context(room_id: str, team_id: Any) -> TeamContext:
    return _service().resolve_context(room_id, team_id, request.headers.get(USER_HEADER))


def _json_body() -> dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


__all__ = ["USER_HEADER", "create_app"]
