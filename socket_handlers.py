#!/usr/bin/env python3
"""
socket_handlers.py

Socket.IO event handlers for Quillmate.

Shared helpers live here; the events themselves are split across
realtime/*.py and registered at the bottom of register_socketio_handlers().
Connections may be anonymous (public spectators), so identity is resolved
once on connect and looked up by sid afterwards.
"""

import logging
import uuid

from flask import request
from flask_socketio import emit

from database import jsonable
from realtime.state import CONNECTED_USERS, CONNECTED_USERS_LOCK, viewers_room
from roleplay_sessions import get_session
from viewers import remove_viewer, viewers_snapshot


def register_socketio_handlers(socketio, settings):
    """
    Registers all Socket.IO event handlers.
    """

    def _valid_id(val) -> bool:
        try:
            uuid.UUID(str(val))
        except (TypeError, ValueError):
            return False
        return True

    def _payload_id(data, key: str) -> str | None:
        val = (data or {}).get(key) if isinstance(data, dict) else None
        return str(val) if _valid_id(val) else None

    def _sid_user(sid: str | None = None) -> str | None:
        """User id bound to this socket on connect (None for anonymous)."""
        sid = sid or request.sid
        with CONNECTED_USERS_LOCK:
            sess = CONNECTED_USERS.get(sid)
            return sess.get("user_id") if sess else None

    def _still_viewing_elsewhere(user_id: str, session_id: str, except_sid: str) -> bool:
        """True if another socket of the same user is still watching the session."""
        with CONNECTED_USERS_LOCK:
            for sid, sess in CONNECTED_USERS.items():
                if sid == except_sid or sess.get("user_id") != user_id:
                    continue
                if session_id in sess.get("viewing", set()):
                    return True
        return False

    def _emit_viewers_changed(session_id: str) -> None:
        session = get_session(session_id)
        if not session:
            return
        socketio.emit("viewers_changed", jsonable(viewers_snapshot(session)), to=viewers_room(session_id))

    def _drop_viewer(sid: str, user_id: str, session_id: str) -> None:
        """Forget that `sid` watches the session; delete the row when no other tab watches it."""
        with CONNECTED_USERS_LOCK:
            sess = CONNECTED_USERS.get(sid)
            if sess:
                sess.get("viewing", set()).discard(session_id)
        if _still_viewing_elsewhere(user_id, session_id, sid):
            return
        if remove_viewer(session_id, user_id):
            _emit_viewers_changed(session_id)

    def _reply_error(message: str, code: int = 400) -> dict:
        return {"success": False, "error": message, "code": code}

    def _log_handler_error(event: str) -> None:
        logging.exception("Socket.IO handler '%s' failed (sid=%s)", event, getattr(request, "sid", None))
        try:
            emit("error", {"event": event, "error": "Internal error"})
        except Exception:
            logging.debug("could not report handler error to client", exc_info=True)

    # ───────────────────────────────────────────────────────────────────
    # Register split handler modules (see realtime/*.py)
    # ───────────────────────────────────────────────────────────────────
    from types import SimpleNamespace
    ctx = SimpleNamespace(**{k: v for k, v in locals().items() if k.startswith("_") and callable(v)})
    from realtime import chat, dm, presence, sessions
    presence.register(socketio, settings, ctx)
    sessions.register(socketio, settings, ctx)
    dm.register(socketio, settings, ctx)
    chat.register(socketio, settings, ctx)
