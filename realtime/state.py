"""Shared in-memory state for Quillmate Socket.IO handlers.

This module centralizes mutable runtime state and room naming so handler
modules and HTTP routes can share them without circular imports.
"""

import threading

# sid -> {"user_id": str | None, "viewing": set[str]}
CONNECTED_USERS: dict[str, dict] = {}
CONNECTED_USERS_LOCK = threading.Lock()

GENERAL_CHAT_ROOM = "general_chat"


def session_room(session_id) -> str:
    return f"session:{session_id}"


def viewers_room(session_id) -> str:
    return f"session_viewers:{session_id}"


def dm_room(thread_id) -> str:
    return f"dm:{thread_id}"


def user_room(user_id) -> str:
    return f"user:{user_id}"
