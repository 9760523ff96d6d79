#!/usr/bin/env python3
"""routes_chat.py

General chat lobby HTTP endpoints.

Notes:
  - Messages are pushed to the `general_chat` Socket.IO room after insert.
  - A writer profile is not required to post; senders without one are shown
    with the fallback name.
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from database import jsonable
from general_chat import GENERAL_CHAT_BODY_MAX, list_recent_messages, post_message
from realtime.notify import emit_to_room
from realtime.state import GENERAL_CHAT_ROOM
from security import write_rate_ok

chat_bp = Blueprint("chat", __name__)


@chat_bp.route("/api/general-chat", methods=["GET"])
def general_chat_history():
    return jsonify(jsonable(list_recent_messages()))


@chat_bp.route("/api/general-chat", methods=["POST"])
@jwt_required()
def general_chat_post():
    user_id = str(get_jwt_identity())
    settings = current_app.config.get("QUILLMATE_SETTINGS") or {}
    ok, retry = write_rate_ok(settings, "general_chat", user_id)
    if not ok:
        return jsonify({"error": "Slow down", "retry_after": round(retry, 1)}), 429

    body = str((request.get_json(silent=True) or {}).get("body") or "").strip()
    if not body:
        return jsonify({"error": "Message cannot be empty"}), 400
    if len(body) > GENERAL_CHAT_BODY_MAX:
        return jsonify({"error": f"Message too long (max {GENERAL_CHAT_BODY_MAX})"}), 400

    msg = post_message(user_id, body)
    emit_to_room(GENERAL_CHAT_ROOM, "general_chat", msg)
    return jsonify(jsonable(msg)), 201
