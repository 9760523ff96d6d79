#!/usr/bin/env python3
"""
routes_sessions.py

Two-party roleplay sessions: start from a DM thread, invitations, character
selection, pause/resume, messages, close (+ optional feedback), public
spectating with viewer heartbeats, response-time stats.

Sessions the caller may not see answer 404.
"""

import logging

import psycopg2
from flask import jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from characters import owns_character
from constants import CHARACTER_STYLES
from database import get_db, jsonable
from direct_messages import get_thread, is_thread_participant, other_participant
from feedback import FEEDBACK_TEXT_MAX, submit_feedback
from feedback_tags import validate_tags
from permissions import (
    current_user_id,
    load_participant_session,
    load_visible_session,
    not_found,
    parse_uuid,
    require_writer,
)
from realtime.notify import emit_to_room, emit_to_user
from realtime.state import session_room, viewers_room
from roleplay_sessions import (
    MESSAGE_BODY_MAX,
    SESSION_NAME_MAX,
    SessionMessageRejected,
    attach_character,
    close_session,
    create_session,
    edit_session_message,
    get_session,
    is_participant,
    list_invitations,
    list_my_sessions,
    list_session_characters,
    list_session_messages,
    list_watch_sessions,
    mark_session_read,
    response_time_stats,
    selectable_characters,
    send_session_message,
    update_session,
)
from security import log_audit_event, write_rate_ok
from session_rules import session_state
from viewers import remove_viewer, touch_viewer, viewers_snapshot
from writers import get_writer_cards


def _truthy(val) -> bool:
    if isinstance(val, str):
        return val.strip().lower() in ("1", "true", "yes", "on")
    return bool(val)


def _validate_style(raw) -> tuple[str | None, str | None]:
    style = str(raw or "").strip().lower() or None
    if style is not None and style not in CHARACTER_STYLES:
        return None, "style must be one of: " + ", ".join(CHARACTER_STYLES)
    return style, None


def _validate_name(raw) -> tuple[str | None, str | None]:
    name = str(raw or "").strip()
    if not name:
        return None, "Session name is required"
    if len(name) > SESSION_NAME_MAX:
        return None, f"Session name too long (max {SESSION_NAME_MAX})"
    return name, None


def _message_body(data: dict) -> tuple[str | None, str | None]:
    body = str(data.get("body") or "").strip()
    if not body:
        return None, "Message cannot be empty"
    if len(body) > MESSAGE_BODY_MAX:
        return None, f"Message too long (max {MESSAGE_BODY_MAX})"
    return body, None


def _session_view(session: dict, user_id: str | None) -> dict:
    cards = get_writer_cards([session["user_a"], session["user_b"]])
    participant = is_participant(session, user_id)
    out = dict(session)
    out["state"] = session_state(session)
    out["participants"] = [cards.get(str(session["user_a"])), cards.get(str(session["user_b"]))]
    out["is_participant"] = participant
    out["characters"] = list_session_characters(str(session["id"]))
    out["my_characters"] = selectable_characters(str(session["id"]), user_id) if participant else []
    return out


def register_session_routes(app, settings, limiter=None):
    def _limit(rule, **kwargs):
        """Apply Flask-Limiter rule if available."""
        if limiter is None:
            return lambda f: f
        return limiter.limit(rule, **kwargs)

    def _push_session_updated(session: dict) -> None:
        emit_to_room(session_room(session["id"]), "session_updated", session)

    # ── Lifecycle ────────────────────────────────────────────────────────
    @app.route("/api/sessions", methods=["POST"])
    @_limit(settings.get("rate_limit_session_start") or "10 per minute")
    @require_writer
    def sessions_start():
        me = str(get_jwt_identity())
        data = request.get_json(silent=True) or {}

        thread_id = parse_uuid(data.get("thread_id"))
        thread = get_thread(thread_id) if thread_id else None
        if not is_thread_participant(thread, me):
            return not_found()
        partner_id = other_participant(thread, me)

        name, err = _validate_name(data.get("name"))
        if err:
            return jsonify({"error": err}), 400
        style, err = _validate_style(data.get("style"))
        if err:
            return jsonify({"error": err}), 400
        character_id = parse_uuid(data.get("character_id"))
        if not character_id or not owns_character(character_id, me):
            return jsonify({"error": "Pick one of your characters"}), 400

        session = create_session(
            user_id=me,
            partner_id=partner_id,
            name=name,
            character_id=character_id,
            style=style,
            is_public=_truthy(data.get("is_public", False)),
        )
        invitation = dict(session, other_user=get_writer_cards([me]).get(me))
        emit_to_user(partner_id, "session_invitation", invitation)
        logging.info("session %s started by %s with %s", session["id"], me, partner_id)
        return jsonify(jsonable(session)), 201

    @app.route("/api/sessions/invitations", methods=["GET"])
    @jwt_required()
    def sessions_invitations():
        return jsonify(jsonable(list_invitations(str(get_jwt_identity()))))

    @app.route("/api/sessions/<uuid:session_id>/characters", methods=["POST"])
    @jwt_required()
    def sessions_join_with_character(session_id):
        me = str(get_jwt_identity())
        session = load_participant_session(str(session_id), me)
        if not session:
            return not_found()
        if session["status"] == "closed":
            return jsonify({"error": "Your session is closed"}), 409
        character_id = parse_uuid((request.get_json(silent=True) or {}).get("character_id"))
        if not character_id or not attach_character(session, me, character_id):
            return jsonify({"error": "Pick one of your characters"}), 400
        updated = get_session(str(session_id))
        _push_session_updated(updated)
        return jsonify(jsonable(_session_view(updated, me)))

    @app.route("/api/sessions/<uuid:session_id>", methods=["GET"])
    def sessions_get(session_id):
        me = current_user_id()
        session = load_visible_session(str(session_id), me)
        if not session:
            return not_found()
        return jsonify(jsonable(_session_view(session, me)))

    @app.route("/api/sessions/mine", methods=["GET"])
    @jwt_required()
    def sessions_mine():
        include_closed = _truthy(request.args.get("include_closed", "1"))
        return jsonify(jsonable(list_my_sessions(str(get_jwt_identity()), include_closed=include_closed)))

    @app.route("/api/sessions/watch", methods=["GET"])
    def sessions_watch():
        return jsonify(jsonable(list_watch_sessions(current_user_id())))

    @app.route("/api/sessions/<uuid:session_id>", methods=["PATCH"])
    @jwt_required()
    def sessions_update(session_id):
        me = str(get_jwt_identity())
        session = load_participant_session(str(session_id), me)
        if not session:
            return not_found()
        data = request.get_json(silent=True) or {}
        changes = {}

        if "is_active" in data:
            resume = _truthy(data.get("is_active"))
            if resume and session["status"] == "closed":
                return jsonify({"error": "Closed sessions cannot be resumed"}), 409
            changes["is_active"] = resume
        if "is_public" in data:
            changes["is_public"] = _truthy(data.get("is_public"))
        if "name" in data:
            name, err = _validate_name(data.get("name"))
            if err:
                return jsonify({"error": err}), 400
            changes["name"] = name
        if "style" in data:
            style, err = _validate_style(data.get("style"))
            if err:
                return jsonify({"error": err}), 400
            changes["style"] = style

        updated = update_session(str(session_id), changes)
        if updated is None:
            return not_found()
        if changes:
            _push_session_updated(updated)
        return jsonify(jsonable(updated))

    @app.route("/api/sessions/<uuid:session_id>/close", methods=["POST"])
    @jwt_required()
    def sessions_close(session_id):
        me = str(get_jwt_identity())
        session = load_participant_session(str(session_id), me)
        if not session:
            return not_found()
        if session["status"] == "closed":
            return jsonify({"error": "Your session is closed"}), 409

        closed = close_session(str(session_id), me)
        log_audit_event(me, "close_session", target=str(session_id))
        _push_session_updated(closed)

        # Feedback is optional and must never undo the close.
        data = request.get_json(silent=True) or {}
        feedback_result = None
        feedback_error = None
        text = str(data.get("feedback") or "").strip()[:FEEDBACK_TEXT_MAX]
        tags, bad = validate_tags(data.get("tags"))
        if bad:
            feedback_error = "Unknown feedback tags: " + ", ".join(bad)
        elif text or tags:
            try:
                feedback_result = submit_feedback(str(session_id), me, text, tags)
                if feedback_result is None:
                    feedback_error = "Feedback already submitted"
            except psycopg2.Error:
                get_db().rollback()
                logging.exception("saving close feedback failed for session %s", session_id)
                feedback_error = "Feedback could not be saved"

        return jsonify(jsonable({
            "session": closed,
            "feedback": feedback_result,
            "feedback_error": feedback_error,
        }))

    # ── Messages ─────────────────────────────────────────────────────────
    @app.route("/api/sessions/<uuid:session_id>/messages", methods=["GET"])
    def sessions_messages(session_id):
        me = current_user_id()
        session = load_visible_session(str(session_id), me)
        if not session:
            return not_found()
        messages = list_session_messages(str(session_id))
        if is_participant(session, me):
            mark_session_read(str(session_id), me, messages[-1]["id"] if messages else None)
        return jsonify(jsonable(messages))

    @app.route("/api/sessions/<uuid:session_id>/read", methods=["POST"])
    @jwt_required()
    def sessions_mark_read(session_id):
        me = str(get_jwt_identity())
        if not load_participant_session(str(session_id), me):
            return not_found()
        mark_session_read(str(session_id), me)
        return jsonify({"ok": True})

    @app.route("/api/sessions/<uuid:session_id>/messages", methods=["POST"])
    @jwt_required()
    def sessions_send(session_id):
        me = str(get_jwt_identity())
        if not load_participant_session(str(session_id), me):
            return not_found()
        ok, retry = write_rate_ok(settings, "session_message", me)
        if not ok:
            return jsonify({"error": "Slow down", "retry_after": round(retry, 1)}), 429

        data = request.get_json(silent=True) or {}
        body, err = _message_body(data)
        if err:
            return jsonify({"error": err}), 400
        message_type = str(data.get("message_type") or "").strip().lower()
        character_id = None
        if data.get("character_id"):
            character_id = parse_uuid(data.get("character_id"))
            if not character_id:
                return jsonify({"error": "Pick one of your characters"}), 400

        try:
            msg = send_session_message(str(session_id), me, message_type, body, character_id)
        except SessionMessageRejected as e:
            return jsonify({"error": str(e)}), e.status

        emit_to_room(session_room(session_id), "session_message", msg)
        return jsonify(jsonable(msg)), 201

    @app.route("/api/sessions/messages/<uuid:message_id>", methods=["PATCH"])
    @jwt_required()
    def sessions_edit_message(message_id):
        body, err = _message_body(request.get_json(silent=True) or {})
        if err:
            return jsonify({"error": err}), 400
        msg = edit_session_message(str(message_id), str(get_jwt_identity()), body)
        if msg is None:
            return not_found()
        emit_to_room(session_room(msg["session_id"]), "session_message_edited", msg)
        return jsonify(jsonable(msg))

    # ── Viewers ──────────────────────────────────────────────────────────
    def _viewable_public(session_id: str, user_id: str):
        session = load_visible_session(session_id, user_id)
        if not session or not session.get("is_public"):
            return None
        return session

    def _push_viewers(session_id: str) -> dict:
        snapshot = viewers_snapshot(get_session(session_id))
        emit_to_room(viewers_room(session_id), "viewers_changed", snapshot)
        return snapshot

    @app.route("/api/sessions/<uuid:session_id>/viewers", methods=["POST"])
    @_limit(settings.get("rate_limit_viewer") or "30 per minute")
    @jwt_required()
    def sessions_viewer_join(session_id):
        me = str(get_jwt_identity())
        session = _viewable_public(str(session_id), me)
        if not session:
            return not_found()
        if is_participant(session, me):
            return jsonify({"tracked": False, "max_viewers": session.get("max_viewers") or 0})
        touch_viewer(str(session_id), me)
        return jsonify(jsonable(dict(_push_viewers(str(session_id)), tracked=True)))

    @app.route("/api/sessions/<uuid:session_id>/viewers/heartbeat", methods=["POST"])
    @_limit(settings.get("rate_limit_viewer") or "30 per minute")
    @jwt_required()
    def sessions_viewer_heartbeat(session_id):
        me = str(get_jwt_identity())
        session = _viewable_public(str(session_id), me)
        if not session:
            return not_found()
        if is_participant(session, me):
            return jsonify({"tracked": False, "max_viewers": session.get("max_viewers") or 0})
        before = session.get("max_viewers") or 0
        peak = touch_viewer(str(session_id), me)
        if peak != before:
            _push_viewers(str(session_id))
        return jsonify({"tracked": True, "max_viewers": peak})

    @app.route("/api/sessions/<uuid:session_id>/viewers", methods=["DELETE"])
    @jwt_required()
    def sessions_viewer_leave(session_id):
        me = str(get_jwt_identity())
        session = load_visible_session(str(session_id), me)
        if not session:
            return not_found()
        if remove_viewer(str(session_id), me):
            _push_viewers(str(session_id))
        return jsonify({"ok": True})

    @app.route("/api/sessions/<uuid:session_id>/viewers", methods=["GET"])
    def sessions_viewers(session_id):
        session = load_visible_session(str(session_id), current_user_id())
        if not session:
            return not_found()
        return jsonify(jsonable(viewers_snapshot(session)))

    # ── Stats ────────────────────────────────────────────────────────────
    @app.route("/api/users/<uuid:user_id>/response-stats", methods=["GET"])
    def sessions_response_stats(user_id):
        return jsonify(response_time_stats(str(user_id)))
