"""Socket.IO handlers: direct message threads.

Only the two participants may subscribe to dm:<thread>. Messages and edits
are written over HTTP and pushed into the room by routes_dm.py.
"""

from flask_socketio import join_room, leave_room

from direct_messages import get_thread, is_thread_participant
from realtime.state import dm_room


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""

    @socketio.on("join_dm")
    def handle_join_dm(data=None):
        thread_id = ctx._payload_id(data, "thread_id")
        user_id = ctx._sid_user()
        if not user_id:
            return ctx._reply_error("Login required", 401)
        if not thread_id:
            return ctx._reply_error("Invalid thread id")
        try:
            thread = get_thread(thread_id)
        except Exception:
            ctx._log_handler_error("join_dm")
            return ctx._reply_error("Internal error", 500)
        if not is_thread_participant(thread, user_id):
            return ctx._reply_error("Not found", 404)
        join_room(dm_room(thread_id))
        return {"success": True, "thread_id": thread_id}

    @socketio.on("leave_dm")
    def handle_leave_dm(data=None):
        thread_id = ctx._payload_id(data, "thread_id")
        if not thread_id:
            return ctx._reply_error("Invalid thread id")
        leave_room(dm_room(thread_id))
        return {"success": True}
