"""Socket.IO handlers: connect / disconnect.

A valid access cookie binds the socket to a user and joins user:<id> so HTTP
routes can push invitations and friend requests. Without one the socket is
an anonymous spectator.
"""

import logging

from flask import request
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_socketio import join_room
from jwt.exceptions import PyJWTError

from realtime.state import CONNECTED_USERS, CONNECTED_USERS_LOCK, user_room
from writers import touch_writer_presence


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""

    @socketio.on("connect")
    def handle_connect(auth=None):
        sid = request.sid
        user_id = None
        try:
            verify_jwt_in_request(optional=True)
            ident = get_jwt_identity()
            user_id = str(ident) if ident else None
        except (JWTExtendedException, PyJWTError) as e:
            # Expired/revoked cookie: continue as a spectator.
            logging.info("Socket connect with unusable token (sid=%s): %s", sid, e)

        with CONNECTED_USERS_LOCK:
            CONNECTED_USERS[sid] = {"user_id": user_id, "viewing": set()}

        if user_id:
            join_room(user_room(user_id))
            touch_writer_presence(user_id)
        return True

    @socketio.on("disconnect")
    def handle_disconnect(*args, **kwargs):
        sid = request.sid
        with CONNECTED_USERS_LOCK:
            session = CONNECTED_USERS.pop(sid, None)

        if not session:
            logging.debug("Disconnect from unknown SID: %s", sid)
            return

        user_id = session.get("user_id")
        if not user_id:
            return
        for session_id in list(session.get("viewing") or ()):
            try:
                ctx._drop_viewer(sid, user_id, session_id)
            except Exception:
                ctx._log_handler_error("disconnect")
