from __future__ import annotations

import io

from flask import Flask, jsonify, request, send_file

from cardgen.errors import BadRequestError
from .context import get_runtime

"""Logo asset routes.

  POST   /api/upload-logo            multipart ``logo`` (+ ``replace``) -> 201
  GET    /api/logos                  {"logos": [{"name","path"}]}
  GET    /api/logos/<name>           image bytes
  GET    /api/logos/<name>/exists    {"exists": bool}
  DELETE /api/logos/<name>
"""

_TRUTHY = {"1", "true", "yes", "on"}


def register_logo_routes(app: Flask) -> None:

    @app.route("/api/upload-logo", methods=["POST"])
    def upload_logo():
        storage = request.files.get("logo")
        if storage is None or not storage.filename:
            raise BadRequestError("missing file field 'logo'")
        replace = request.form.get("replace", "").strip().lower() in _TRUTHY
        store = get_runtime().logo_store
        asset = store.save(storage.filename, storage.read(), storage.mimetype, replace=replace)
        return jsonify({"name": asset.name, "path": f"{store.url_prefix}/{asset.name}", "replaced": replace}), 201

    @app.route("/api/logos", methods=["GET"])
    def list_logos():
        return jsonify({"logos": get_runtime().logo_store.list()})

    @app.route("/api/logos/<name>", methods=["GET"])
    def fetch_logo(name: str):
        asset = get_runtime().logo_store.get(name)
        return send_file(io.BytesIO(asset.data), mimetype=asset.media_type, download_name=asset.name)

    @app.route("/api/logos/<name>/exists", methods=["GET"])
    def logo_exists(name: str):
        return jsonify({"name": name, "exists": get_runtime().logo_store.exists(name)})

    @app.route("/api/logos/<name>", methods=["DELETE"])
    def delete_logo(name: str):
        get_runtime().logo_store.delete(name)
        return jsonify({"deleted": name})
