#!/usr/bin/env python3
"""
routes_characters.py

Character cards: browse/search (public), get, create/update/delete own,
list mine, list by user.
"""

from flask import g, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from characters import (
    create_character,
    delete_character,
    get_character,
    list_characters,
    list_user_characters,
    update_character,
    validate_character_payload,
)
from constants import CHARACTER_SEXES
from database import jsonable
from feed_filters import filter_characters
from permissions import not_found, require_writer

DASHBOARD_CHARACTER_LIMIT = 20


def register_character_routes(app, settings, limiter=None):
    def _limit(rule, **kwargs):
        """Apply Flask-Limiter rule if available."""
        if limiter is None:
            return lambda f: f
        return limiter.limit(rule, **kwargs)

    @app.route("/api/characters", methods=["GET"])
    def characters_browse():
        sex = (request.args.get("sex") or "all").strip().lower()
        if sex != "all" and sex not in CHARACTER_SEXES:
            return jsonify({"error": "sex must be 'all' or one of: " + ", ".join(CHARACTER_SEXES)}), 400
        rows = filter_characters(
            list_characters(),
            name=request.args.get("name", ""),
            sex=sex,
            tags=request.args.get("tags"),
        )
        limit = request.args.get("limit", type=int)
        if limit:
            rows = rows[: max(1, min(limit, DASHBOARD_CHARACTER_LIMIT))]
        return jsonify(jsonable(rows))

    @app.route("/api/characters/mine", methods=["GET"])
    @jwt_required()
    def characters_mine():
        return jsonify(jsonable(list_user_characters(str(get_jwt_identity()))))

    @app.route("/api/users/<uuid:user_id>/characters", methods=["GET"])
    def characters_by_user(user_id):
        return jsonify(jsonable(list_user_characters(str(user_id))))

    @app.route("/api/characters/<uuid:character_id>", methods=["GET"])
    def characters_get(character_id):
        row = get_character(str(character_id))
        if not row:
            return jsonify({"error": "Character not found"}), 404
        return jsonify(jsonable(row))

    @app.route("/api/characters", methods=["POST"])
    @_limit(settings.get("rate_limit_character") or "20 per minute")
    @require_writer
    def characters_create():
        fields, err = validate_character_payload(request.get_json(silent=True) or {})
        if err:
            return jsonify({"error": err}), 400
        return jsonify(jsonable(create_character(str(g.writer["user_id"]), fields))), 201

    @app.route("/api/characters/<uuid:character_id>", methods=["PATCH"])
    @jwt_required()
    def characters_update(character_id):
        fields, err = validate_character_payload(request.get_json(silent=True) or {}, partial=True)
        if err:
            return jsonify({"error": err}), 400
        row = update_character(str(character_id), str(get_jwt_identity()), fields)
        if row is None:
            return not_found()
        return jsonify(jsonable(row))

    @app.route("/api/characters/<uuid:character_id>", methods=["DELETE"])
    @jwt_required()
    def characters_delete(character_id):
        if not delete_character(str(character_id), str(get_jwt_identity())):
            return not_found()
        return jsonify({"ok": True})
