"""Push helpers used by HTTP routes and the janitor.

Socket.IO replaces a database change feed: every write that other clients
care about is followed by an emit into the matching room.
"""

import logging

from flask import current_app, has_app_context

from database import jsonable
from realtime.state import user_room


def _socketio(socketio=None):
    if socketio is not None:
        return socketio
    if has_app_context():
        return current_app.config.get("QUILLMATE_SOCKETIO")
    return None


def emit_to_room(room: str, event: str, payload, socketio=None) -> bool:
    """Best-effort emit. Returns True if a Socket.IO server was available."""
    sio = _socketio(socketio)
    if sio is None:
        return False
    try:
        sio.emit(event, jsonable(payload), to=room)
    except Exception:
        # A failed push must not fail the write that already committed.
        logging.exception("Socket.IO emit failed (event=%s room=%s)", event, room)
        return False
    return True


def emit_to_user(user_id, event: str, payload, socketio=None) -> bool:
    """Emit to every socket the user has open (they all join user:<id> on connect)."""
    return emit_to_room(user_room(user_id), event, payload, socketio=socketio)
