"""
blueprints/api/routes.py — REST API endpoints for the ShadowGuard auditor.

Routes:
    POST   /api/v1/audit                  (?stream=1 for NDJSON progress)
    GET    /api/v1/audit/<id>
    GET    /api/v1/history
    GET    /api/v1/session/<session_id>
    POST   /api/v1/session/<session_id>/cancel
    DELETE /api/v1/session/<session_id>
    GET    /api/v1/health
"""
import json
import logging

from flask import (
    Response, current_app, request, jsonify, stream_with_context
)
from werkzeug.utils import secure_filename

from blueprints.api import api_bp
from extensions import db, limiter
from models.audit import Audit
from models.session import (
    clear_session, load_history, load_signature, record_audit, save_signature,
)
from analyzer import (
    AuditContext, ScreenAuditor, compute_sha256, empty_signature, generate_audit_id,
)
from analyzer.runner import AuditRunner
from analyzer.tiling import ImageTileSource

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".gif", ".bmp"}
DEFAULT_SESSION = "default"


# ── Helpers ─────────────────────────────────────────────────────────────────────

def _open_upload(file_storage) -> tuple[str, bytes, ImageTileSource]:
    """
    Validate an uploaded screenshot.
    Returns (safe_filename, raw_bytes, tile_source).
    Raises ValueError on invalid input.
    """
    safe_name = secure_filename(file_storage.filename or "screenshot.png")
    ext = "." + safe_name.rsplit(".", 1)[-1].lower() if "." in safe_name else ""
    if ext not in ALLOWED_EXTENSIONS:
        raise ValueError(f"Unsupported image type '{ext or safe_name}'")

    data = file_storage.read()
    source = ImageTileSource.from_bytes(
        data,
        max_width=current_app.config.get("MAX_IMAGE_WIDTH", 2048),
        jpeg_quality=current_app.config.get("JPEG_QUALITY", 90),
    )
    return safe_name, data, source


def _session_id() -> str:
    session_id = (request.form.get("session_id") or DEFAULT_SESSION).strip()
    return session_id[:64] or DEFAULT_SESSION


def _persist(session_id: str, audit_id: str, safe_name: str, data: bytes,
             source: ImageTileSource, context: AuditContext, snapshot: dict) -> None:
    """Store the run and carry its signature forward; partial runs keep the tiles they merged."""
    save_signature(session_id, context.signature, context.history,
                   limit=current_app.config.get("HISTORY_LIMIT", 100))
    record_audit(audit_id, session_id, compute_sha256(data), safe_name,
                 source.width, source.height, snapshot)


def _settle_previous_run(session_id: str) -> None:
    runs = current_app.extensions["audit_runs"]
    if not runs.stop(session_id, timeout=current_app.config.get("RUN_HANDOFF_TIMEOUT", 30)):
        logger.warning("Previous audit for session=%s did not settle in time", session_id)


# ── Routes ──────────────────────────────────────────────────────────────────────

@api_bp.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "version": current_app.config.get("VERSION", "1.0.0")}), 200


@api_bp.route("/audit", methods=["POST"])
@limiter.limit(lambda: current_app.config.get("RATE_LIMIT", "10 per minute"))
def audit():
    """POST /api/v1/audit — audit an uploaded screenshot tile by tile."""
    if "image" not in request.files:
        return jsonify({"error": "No image provided. Include 'image' in multipart form."}), 400

    session_id = _session_id()
    try:
        safe_name, data, source = _open_upload(request.files["image"])
    except ValueError as e:
        return jsonify({"error": str(e)}), 415

    _settle_previous_run(session_id)
    context = AuditContext(
        signature=load_signature(session_id) or empty_signature(),
        history=load_history(session_id),
    )
    auditor = ScreenAuditor.from_config(current_app.extensions["audit_backend"], current_app.config)
    runs = current_app.extensions["audit_runs"]
    audit_id = generate_audit_id()
    app = current_app._get_current_object()

    def on_finish(snapshot):
        # Runs on the worker thread once the run reaches a terminal state.
        with app.app_context():
            _persist(session_id, audit_id, safe_name, data, source, context, snapshot)
        runs.finish(session_id, runner)

    runner = AuditRunner(auditor, source, context, on_finish=on_finish)
    runs.start(session_id, runner)
    logger.info("Audit %s started for session=%s file=%s (%dx%d)",
                audit_id, session_id, safe_name, source.width, source.height)

    if request.args.get("stream") in ("1", "true"):
        def generate():
            try:
                for snapshot in runner.snapshots():
                    yield json.dumps(dict(snapshot, audit_id=audit_id), default=str) + "\n"
            finally:
                # Client went away mid-stream: stop issuing backend calls.
                runner.cancel()

        return Response(stream_with_context(generate()), mimetype="application/x-ndjson")

    try:
        final = None
        for snapshot in runner.snapshots():
            final = snapshot
        if final is None:
            return jsonify({"error": "Audit produced no result"}), 500
        return jsonify(dict(final, audit_id=audit_id)), 200
    except Exception as e:
        logger.error("Audit error: %s", e, exc_info=True)
        return jsonify({"error": "Internal audit error", "detail": str(e)}), 500


@api_bp.route("/audit/<audit_id>", methods=["GET"])
def get_audit(audit_id: str):
    """GET /api/v1/audit/<id> — retrieve a stored audit with findings."""
    record = db.session.get(Audit, audit_id)
    if not record:
        return jsonify({"error": "Audit not found"}), 404
    return jsonify(record.to_dict()), 200


@api_bp.route("/history", methods=["GET"])
def history():
    """GET /api/v1/history — paginated audit list, newest first."""
    page = max(request.args.get("page", 1, type=int), 1)
    limit = min(max(request.args.get("limit", 50, type=int), 1), 200)

    query = Audit.query
    session_id = request.args.get("session_id")
    if session_id:
        query = query.filter_by(session_id=session_id)

    pagination = query.order_by(
        Audit.audited_at.desc()
    ).paginate(page=page, per_page=limit, error_out=False)

    return jsonify({
        "items": [a.to_summary() for a in pagination.items],
        "total": pagination.total,
        "page": page,
        "pages": pagination.pages,
        "limit": limit,
    }), 200


@api_bp.route("/session/<session_id>", methods=["GET"])
def get_session(session_id: str):
    """GET /api/v1/session/<id> — carried catalog, brief and history."""
    runner = current_app.extensions["audit_runs"].get(session_id)
    return jsonify({
        "session_id": session_id,
        "signature": load_signature(session_id) or empty_signature(),
        "history": load_history(session_id),
        "running": bool(runner and runner.running),
    }), 200


@api_bp.route("/session/<session_id>/cancel", methods=["POST"])
def cancel_session(session_id: str):
    """POST /api/v1/session/<id>/cancel — stop the in-flight audit, if any."""
    cancelled = current_app.extensions["audit_runs"].cancel(session_id)
    return jsonify({"session_id": session_id, "cancelled": cancelled}), 200


@api_bp.route("/session/<session_id>", methods=["DELETE"])
def delete_session(session_id: str):
    """DELETE /api/v1/session/<id> — cancel any run and forget the session."""
    _settle_previous_run(session_id)
    clear_session(session_id)
    return "", 204
