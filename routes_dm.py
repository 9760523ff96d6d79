#!/usr/bin/env python3
"""
routes_dm.py

Direct message threads: open, inbox, read, send, edit, unread counts.
Non-participants get 404 for every thread-scoped route.
"""

from flask import jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from database import get_user_by_id, jsonable
from direct_messages import (
    DM_BODY_MAX,
    count_unread,
    edit_dm,
    get_or_create_thread,
    get_thread,
    is_thread_participant,
    list_inbox,
    list_thread_messages,
    mark_thread_read,
    other_participant,
    send_dm,
)
from permissions import not_found, parse_uuid
from realtime.notify import emit_to_room, emit_to_user
from realtime.state import dm_room
from security import write_rate_ok
from writers import get_writer_cards


def _message_body() -> tuple[str | None, str | None]:
    body = str((request.get_json(silent=True) or {}).get("body") or "").strip()
    if not body:
        return None, "Message cannot be empty"
    if len(body) > DM_BODY_MAX:
        return None, f"Message too long (max {DM_BODY_MAX})"
    return body, None


def register_dm_routes(app, settings, limiter=None):
    def _limit(rule, **kwargs):
        """Apply Flask-Limiter rule if available."""
        if limiter is None:
            return lambda f: f
        return limiter.limit(rule, **kwargs)

    def _participant_thread(thread_id: str, user_id: str):
        thread = get_thread(thread_id)
        return thread if is_thread_participant(thread, user_id) else None

    @app.route("/api/dm/threads", methods=["POST"])
    @_limit(settings.get("rate_limit_dm_open") or "20 per minute")
    @jwt_required()
    def dm_open_thread():
        me = str(get_jwt_identity())
        other_id = parse_uuid((request.get_json(silent=True) or {}).get("user_id"))
        if not other_id:
            return jsonify({"error": "A valid user_id is required"}), 400
        if other_id == me:
            return jsonify({"error": "You cannot message yourself"}), 400
        if not get_user_by_id(other_id):
            return not_found()
        thread = get_or_create_thread(me, other_id)
        thread["other_user"] = get_writer_cards([other_id]).get(other_id)
        return jsonify(jsonable(thread))

    @app.route("/api/dm/threads", methods=["GET"])
    @jwt_required()
    def dm_inbox():
        return jsonify(jsonable(list_inbox(str(get_jwt_identity()))))

    @app.route("/api/dm/unread", methods=["GET"])
    @jwt_required()
    def dm_unread_total():
        threads = list_inbox(str(get_jwt_identity()))
        return jsonify({
            "total": sum(int(t.get("unread_count") or 0) for t in threads),
            "threads": {str(t["id"]): int(t.get("unread_count") or 0) for t in threads},
        })

    @app.route("/api/dm/threads/<uuid:thread_id>/messages", methods=["GET"])
    @jwt_required()
    def dm_thread_messages(thread_id):
        me = str(get_jwt_identity())
        thread = _participant_thread(str(thread_id), me)
        if not thread:
            return not_found()
        messages = list_thread_messages(str(thread_id))
        mark_thread_read(str(thread_id), me, messages[-1]["id"] if messages else None)
        other = other_participant(thread, me)
        return jsonify(jsonable({
            "thread": thread,
            "other_user": get_writer_cards([other]).get(other),
            "messages": messages,
        }))

    @app.route("/api/dm/threads/<uuid:thread_id>/unread", methods=["GET"])
    @jwt_required()
    def dm_thread_unread(thread_id):
        me = str(get_jwt_identity())
        if not _participant_thread(str(thread_id), me):
            return not_found()
        return jsonify({"unread_count": count_unread(str(thread_id), me)})

    @app.route("/api/dm/threads/<uuid:thread_id>/read", methods=["POST"])
    @jwt_required()
    def dm_thread_mark_read(thread_id):
        me = str(get_jwt_identity())
        if not _participant_thread(str(thread_id), me):
            return not_found()
        mark_thread_read(str(thread_id), me)
        return jsonify({"ok": True})

    @app.route("/api/dm/threads/<uuid:thread_id>/messages", methods=["POST"])
    @jwt_required()
    def dm_send(thread_id):
        me = str(get_jwt_identity())
        thread = _participant_thread(str(thread_id), me)
        if not thread:
            return not_found()
        ok, retry = write_rate_ok(settings, "dm", me)
        if not ok:
            return jsonify({"error": "Slow down", "retry_after": round(retry, 1)}), 429
        body, err = _message_body()
        if err:
            return jsonify({"error": err}), 400

        msg = send_dm(str(thread_id), me, body)
        emit_to_room(dm_room(thread_id), "dm_message", msg)
        # Inbox badge for the partner even when the thread is not open.
        emit_to_user(other_participant(thread, me), "dm_unread", {"thread_id": str(thread_id)})
        return jsonify(jsonable(msg)), 201

    @app.route("/api/dm/messages/<uuid:message_id>", methods=["PATCH"])
    @jwt_required()
    def dm_edit(message_id):
        body, err = _message_body()
        if err:
            return jsonify({"error": err}), 400
        msg = edit_dm(str(message_id), str(get_jwt_identity()), body)
        if msg is None:
            return not_found()
        emit_to_room(dm_room(msg["thread_id"]), "dm_message_edited", msg)
        return jsonify(jsonable(msg))
