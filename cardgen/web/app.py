from __future__ import annotations

import io
import logging
from typing import Any

from flask import Flask, Response, jsonify, request, send_file
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from cardgen.errors import (
    ArchiveError,
    AssetExistsError,
    AssetNotFoundError,
    BadRequestError,
    CardGenError,
    CompositionError,
    DuplicateSessionError,
    InvalidFormatError,
    InvalidSessionError,
    JobFailedError,
    JobNotFoundError,
    MalformedContentError,
    NoArtifactsAvailableError,
    NotReadyError,
    RenderError,
    StalledJobError,
    TooLargeError,
    UploadNotFoundError,
)
from cardgen.excel.reader import read_spreadsheet, validate_spreadsheet_upload
from cardgen.models.config_models import AppConfig
from cardgen.services.journal import compose_for_job
from cardgen.services.runtime import Runtime, build_runtime
from .context import EXTENSION_KEY, get_runtime
from .logos import register_logo_routes

"""Flask boundary.

Routes:
  POST   /api/upload                   spreadsheet upload -> {"filePath": ref}
  POST   /api/generate                 {"filePath","sessionId"} -> 202 {"jobId",...}
  GET    /api/progress/<session_id>    Server-Sent Events (progress | error | done)
  GET    /api/jobs/<job_id>            status (poll fallback)
  GET    /api/download/<job_id>        result archive
  POST   /api/journal                  {"jobId"?} -> PDF
  logo routes: see ``logos.py``
  GET    /healthz

Errors are JSON ``{"error": CODE, "message": generic text}``; details stay in the
server log.
"""

__all__ = [
    "create_app",
    "error_response",
    "get_runtime",
]

logger = logging.getLogger(__name__)

# multipart framing on top of the largest accepted file
_MULTIPART_OVERHEAD = 64 * 1024

STATUS_BY_ERROR: dict[type[CardGenError], int] = {
    BadRequestError: 400,
    InvalidSessionError: 400,
    InvalidFormatError: 415,
    TooLargeError: 413,
    MalformedContentError: 422,
    JobNotFoundError: 404,
    UploadNotFoundError: 404,
    AssetNotFoundError: 404,
    NoArtifactsAvailableError: 404,
    DuplicateSessionError: 409,
    AssetExistsError: 409,
    NotReadyError: 409,
    JobFailedError: 409,
    CompositionError: 500,
    RenderError: 500,
    StalledJobError: 500,
    ArchiveError: 500,
}


def error_response(exc: CardGenError) -> tuple[Response, int]:
    status = STATUS_BY_ERROR.get(type(exc), 500)
    body: dict[str, Any] = {"error": exc.code, "message": exc.public_message}
    if isinstance(exc, JobFailedError):
        body["message"] = exc.reason
    if isinstance(exc, MalformedContentError) and exc.row_number is not None:
        body["row"] = exc.row_number
    return jsonify(body), status


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        data = request.form.to_dict()
    if not isinstance(data, dict):
        raise BadRequestError("request body must be a JSON object")
    return data


def _uploaded_file(field: str) -> tuple[str, bytes, str | None]:
    storage = request.files.get(field)
    if storage is None or not storage.filename:
        raise BadRequestError(f"missing file field '{field}'")
    return storage.filename, storage.read(), storage.mimetype


def register_job_routes(app: Flask) -> None:
    """Spreadsheet upload, generation, progress stream, status and download."""

    @app.route("/api/upload", methods=["POST"])
    def upload_spreadsheet():
        rt = get_runtime()
        name, data, content_type = _uploaded_file("file")
        validate_spreadsheet_upload(name, data, content_type, rt.config.limits.max_spreadsheet_bytes)
        ref = rt.uploads.store(data)
        return jsonify({"filePath": ref, "name": name, "size": len(data)}), 201

    @app.route("/api/generate", methods=["POST"])
    def generate_cards():
        rt = get_runtime()
        ref = None
        if "file" in request.files:
            name, data, content_type = _uploaded_file("file")
            body = request.form.to_dict()
        else:
            body = _json_body()
            ref = body.get("filePath")
            if not ref:
                raise BadRequestError("missing 'filePath'")
            name, data, content_type = ref, rt.uploads.load(ref), None
        try:
            session_id = body.get("sessionId")
            if not session_id:
                raise BadRequestError("missing 'sessionId'")

            # Re-validate on every path, stored uploads included
            validate_spreadsheet_upload(name, data, content_type, rt.config.limits.max_spreadsheet_bytes)
            rows = read_spreadsheet(data, rt.config.spreadsheet)
        finally:
            # stored uploads are single use, parsed or rejected
            if ref is not None:
                rt.uploads.discard(ref)
        handle = rt.coordinator.start_job(rows, session_id)
        return jsonify({
            "jobId": handle.job_id,
            "sessionId": handle.session_id,
            "total": handle.total,
            "statusUrl": f"/api/jobs/{handle.job_id}",
            "progressUrl": f"/api/progress/{handle.session_id}",
        }), 202

    @app.route("/api/progress/<session_id>", methods=["GET"])
    def progress_stream(session_id: str):
        rt = get_runtime()
        # Subscribe now, not inside the generator, so nothing published after this request is lost
        sub = rt.channel.subscribe(session_id)
        keepalive = rt.config.server.sse_keepalive_seconds

        def stream():
            try:
                yield ": connected\n\n"
                while True:
                    event = sub.get(timeout=keepalive)
                    if event is None:
                        yield ": keep-alive\n\n"
                        continue
                    yield event.to_sse()
                    if event.is_terminal:
                        break
            finally:
                sub.close()

        return Response(
            stream(),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.route("/api/jobs/<job_id>", methods=["GET"])
    def job_status(job_id: str):
        return jsonify(get_runtime().coordinator.snapshot(job_id))

    @app.route("/api/download/<job_id>", methods=["GET"])
    def download_archive(job_id: str):
        archive = get_runtime().coordinator.get_result(job_id)
        return send_file(
            archive,
            mimetype="application/zip",
            as_attachment=True,
            download_name=f"cards-{job_id}.zip",
        )

    @app.route("/api/journal", methods=["POST"])
    def compose_journal():
        rt = get_runtime()
        body = request.get_json(silent=True) or {}
        if not isinstance(body, dict):
            raise BadRequestError("request body must be a JSON object")
        pdf = compose_for_job(rt.coordinator, rt.composer, body.get("jobId"))
        return send_file(
            io.BytesIO(pdf),
            mimetype="application/pdf",
            as_attachment=True,
            download_name="jornal.pdf",
        )


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(CardGenError)
    def handle_domain_error(exc: CardGenError):
        status = STATUS_BY_ERROR.get(type(exc), 500)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, exc, exc_info=exc)
        else:
            logger.info("%s %s rejected (%s): %s", request.method, request.path, exc.code, exc)
        return error_response(exc)

    @app.errorhandler(RequestEntityTooLarge)
    def handle_body_too_large(exc: RequestEntityTooLarge):
        return error_response(TooLargeError(str(exc)))

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"error": (exc.name or "HTTP_ERROR").upper().replace(" ", "_"), "message": exc.description}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        logger.exception("Unexpected error on %s %s", request.method, request.path)
        return jsonify({"error": CardGenError.code, "message": CardGenError.public_message}), 500


def create_app(config: AppConfig, runtime: Runtime | None = None) -> Flask:
    """Application factory.

    ``runtime`` lets callers (tests, the CLI) share or pre-build the services.
    """
    app = Flask(__name__)
    limits = config.limits
    app.config["MAX_CONTENT_LENGTH"] = max(limits.max_spreadsheet_bytes, limits.max_logo_bytes) + _MULTIPART_OVERHEAD
    app.json.ensure_ascii = False

    app.extensions[EXTENSION_KEY] = runtime or build_runtime(config)

    register_job_routes(app)
    register_logo_routes(app)
    register_error_handlers(app)

    @app.route("/healthz", methods=["GET"])
    def healthz():
        return jsonify({"status": "ok"})

    return app
