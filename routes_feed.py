#!/usr/bin/env python3
"""
routes_feed.py

"Looking for roleplay" announcements and their feed filters.
"""

from flask import jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from announcements import (
    create_announcement,
    delete_announcement,
    get_announcement,
    list_announcements,
    validate_announcement_payload,
)
from characters import get_character, owns_character
from database import jsonable
from feed_filters import ERP_FILTERS, filter_announcements
from permissions import current_user_id, not_found, parse_uuid
from writers import list_online_writers, list_top_writers


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in ("1", "true", "yes", "on")


def register_feed_routes(app, settings, limiter=None):
    def _limit(rule, **kwargs):
        """Apply Flask-Limiter rule if available."""
        if limiter is None:
            return lambda f: f
        return limiter.limit(rule, **kwargs)

    @app.route("/api/announcements", methods=["GET"])
    def announcements_feed():
        erp = (request.args.get("erp") or "all").strip().lower()
        if erp not in ERP_FILTERS:
            return jsonify({"error": "erp must be one of: " + ", ".join(ERP_FILTERS)}), 400

        online_ids = {str(w["user_id"]) for w in list_online_writers()} if _flag("online") else None
        top_ids = {str(w["user_id"]) for w in list_top_writers()} if _flag("top") else None

        rows = filter_announcements(
            list_announcements(),
            q=request.args.get("q", ""),
            erp=erp,
            online_user_ids=online_ids,
            top_user_ids=top_ids,
            exclude_user_id=current_user_id(),
        )
        return jsonify(jsonable(rows))

    @app.route("/api/announcements/<uuid:announcement_id>", methods=["GET"])
    def announcements_get(announcement_id):
        row = get_announcement(str(announcement_id))
        if not row:
            return not_found()
        character = get_character(str(row["character_id"])) if row.get("character_id") else None
        if not character:
            return jsonify({"error": "Character not found"}), 404
        return jsonify(jsonable({
            "announcement": row,
            "character": character,
            "writer": {
                "user_id": row["user_id"],
                "name": row.get("writer_name"),
                "portrait_url": row.get("writer_portrait_url"),
            },
        }))

    @app.route("/api/announcements", methods=["POST"])
    @_limit(settings.get("rate_limit_announcement") or "5 per minute")
    @jwt_required()
    def announcements_create():
        user_id = str(get_jwt_identity())
        fields, err = validate_announcement_payload(request.get_json(silent=True) or {})
        if err:
            return jsonify({"error": err}), 400
        fields["character_id"] = parse_uuid(fields["character_id"])
        if not fields["character_id"] or not owns_character(fields["character_id"], user_id):
            return jsonify({"error": "Pick a character"}), 400
        return jsonify(jsonable(create_announcement(user_id, fields))), 201

    @app.route("/api/announcements/<uuid:announcement_id>", methods=["DELETE"])
    @jwt_required()
    def announcements_delete(announcement_id):
        if not delete_announcement(str(announcement_id), str(get_jwt_identity())):
            return not_found()
        return jsonify({"ok": True})
