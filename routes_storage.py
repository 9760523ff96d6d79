#!/usr/bin/env python3
"""
routes_storage.py

Portrait uploads (authenticated) and public serving from local disk.
"""

import logging
import os

from flask import jsonify, request, send_file
from flask_jwt_extended import get_jwt_identity, jwt_required

from constants import PORTRAIT_MAX_BYTES
from permissions import not_found
from storage import UploadRejected, resolve_object, save_portrait


def upload_root(settings: dict) -> str:
    return os.path.abspath(settings.get("upload_root") or "uploads")


def public_url(settings: dict, bucket: str, name: str) -> str:
    base = (settings.get("public_base_url") or request.host_url or "").rstrip("/")
    return f"{base}/storage/{bucket}/{name}"


def register_storage_routes(app, settings, limiter=None):
    def _limit(rule, **kwargs):
        """Apply Flask-Limiter rule if available."""
        if limiter is None:
            return lambda f: f
        return limiter.limit(rule, **kwargs)

    max_bytes = int(settings.get("max_upload_bytes") or PORTRAIT_MAX_BYTES)

    @app.route("/api/storage/<bucket>", methods=["POST"])
    @_limit(settings.get("rate_limit_upload") or "10 per minute")
    @jwt_required()
    def storage_upload(bucket):
        user_id = str(get_jwt_identity())
        try:
            name = save_portrait(upload_root(settings), bucket, user_id, request.files.get("file"), max_bytes)
        except UploadRejected as e:
            return jsonify({"error": str(e)}), e.status
        logging.info("upload %s/%s by %s", bucket, name, user_id)
        return jsonify({"path": f"{bucket}/{name}", "public_url": public_url(settings, bucket, name)}), 201

    @app.route("/storage/<bucket>/<name>", methods=["GET"])
    def storage_serve(bucket, name):
        path = resolve_object(upload_root(settings), bucket, name)
        if not path:
            return not_found()
        return send_file(path, max_age=86400)
