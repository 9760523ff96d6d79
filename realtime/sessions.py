"""Socket.IO handlers: roleplay session rooms and live viewers.

join_session subscribes the socket to session:<id> (messages, edits, status)
and session_viewers:<id>. Authenticated non-participants of a public session
are also recorded as viewers and must send viewer_heartbeat every ~30s.
"""

from flask import request
from flask_socketio import join_room, leave_room

from realtime.state import CONNECTED_USERS, CONNECTED_USERS_LOCK, session_room, viewers_room
from roleplay_sessions import can_view, get_session, is_participant
from viewers import touch_viewer


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""

    def _tracks_viewer(session: dict, user_id: str | None) -> bool:
        return bool(user_id) and bool(session.get("is_public")) and not is_participant(session, user_id)

    @socketio.on("join_session")
    def handle_join_session(data=None):
        session_id = ctx._payload_id(data, "session_id")
        if not session_id:
            return ctx._reply_error("Invalid session id")
        user_id = ctx._sid_user()
        try:
            session = get_session(session_id)
            if not can_view(session, user_id):
                return ctx._reply_error("Not found", 404)

            join_room(session_room(session_id))
            join_room(viewers_room(session_id))

            viewer = _tracks_viewer(session, user_id)
            if viewer:
                with CONNECTED_USERS_LOCK:
                    sess = CONNECTED_USERS.get(request.sid)
                    if sess is not None:
                        sess.setdefault("viewing", set()).add(session_id)
                touch_viewer(session_id, user_id)
                ctx._emit_viewers_changed(session_id)
            return {"success": True, "session_id": session_id, "viewer": viewer}
        except Exception:
            ctx._log_handler_error("join_session")
            return ctx._reply_error("Internal error", 500)

    @socketio.on("viewer_heartbeat")
    def handle_viewer_heartbeat(data=None):
        session_id = ctx._payload_id(data, "session_id")
        user_id = ctx._sid_user()
        if not session_id or not user_id:
            return ctx._reply_error("Invalid session id")
        with CONNECTED_USERS_LOCK:
            sess = CONNECTED_USERS.get(request.sid) or {}
            watching = session_id in sess.get("viewing", set())
        if not watching:
            return ctx._reply_error("Join the session first", 409)
        try:
            session = get_session(session_id)
            if not session or not _tracks_viewer(session, user_id):
                return ctx._reply_error("Not found", 404)
            before = session.get("max_viewers") or 0
            peak = touch_viewer(session_id, user_id)
            if peak != before:
                ctx._emit_viewers_changed(session_id)
            return {"success": True, "max_viewers": peak}
        except Exception:
            ctx._log_handler_error("viewer_heartbeat")
            return ctx._reply_error("Internal error", 500)

    @socketio.on("leave_session")
    def handle_leave_session(data=None):
        session_id = ctx._payload_id(data, "session_id")
        if not session_id:
            return ctx._reply_error("Invalid session id")
        leave_room(session_room(session_id))
        leave_room(viewers_room(session_id))
        user_id = ctx._sid_user()
        if user_id:
            try:
                ctx._drop_viewer(request.sid, user_id, session_id)
            except Exception:
                ctx._log_handler_error("leave_session")
                return ctx._reply_error("Internal error", 500)
        return {"success": True}
