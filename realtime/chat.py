"""Socket.IO handlers: general chat lobby."""

from flask_socketio import join_room, leave_room

from realtime.state import GENERAL_CHAT_ROOM


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""

    @socketio.on("join_general_chat")
    def handle_join_general_chat(data=None):
        join_room(GENERAL_CHAT_ROOM)
        return {"success": True}

    @socketio.on("leave_general_chat")
    def handle_leave_general_chat(data=None):
        leave_room(GENERAL_CHAT_ROOM)
        return {"success": True}
