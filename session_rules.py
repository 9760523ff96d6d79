"""session_rules.py

Pure bookkeeping rules for roleplay sessions, DM inboxes and viewers.

Nothing in here touches the database or Flask, so the rules can be unit
tested directly and shared by the HTTP routes, Socket.IO handlers and the
janitor.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from constants import (
    MESSAGE_TYPES,
    ONLINE_WINDOW_MINUTES,
    REMINDER_COOLDOWN_MINUTES,
    REMINDER_IDLE_MINUTES,
    VIEWER_DISPLAY_LIMIT,
)

# Dashboard ordering: running sessions first, then paused, then closed.
STATUS_RANK = {"active": 0, "paused": 1, "closed": 2}


def display_name(name: Optional[str], user_id: Any) -> str:
    """Writer name, or "User <first 8 chars of id>" for users without a profile."""
    name = (name or "").strip()
    if name:
        return name
    return f"User {str(user_id or '')[:8]}"


def is_online(last_seen: Optional[datetime], now: datetime, window_minutes: int = ONLINE_WINDOW_MINUTES) -> bool:
    if last_seen is None:
        return False
    return last_seen >= now - timedelta(minutes=window_minutes)


def session_state(session: dict) -> str:
    """Collapse (status, is_active) into active | paused | closed."""
    if session.get("status") == "closed":
        return "closed"
    if not session.get("is_active", True):
        return "paused"
    return "active"


def check_can_send(session: dict, message_type: str) -> Optional[str]:
    """Return an error message if this message may not be posted, else None."""
    if message_type not in MESSAGE_TYPES:
        return "message_type must be 'ooc' or 'narration'"
    state = session_state(session)
    if state == "closed":
        return "Your session is closed"
    if state == "paused" and message_type == "narration":
        return "Session is paused. Resume it to post narration."
    return None


def response_time_seconds(previous_at: Optional[datetime], current_at: datetime) -> Optional[int]:
    """Whole seconds between the partner's last message and this reply."""
    if previous_at is None:
        return None
    return max(0, int((current_at - previous_at).total_seconds()))


def should_send_reminder(
    now: datetime,
    status: str,
    is_active: bool,
    last_message_at: Optional[datetime],
    reminder_sent_at: Optional[datetime],
    idle_minutes: int = REMINDER_IDLE_MINUTES,
    cooldown_minutes: int = REMINDER_COOLDOWN_MINUTES,
) -> bool:
    if status != "active" or not is_active or last_message_at is None:
        return False
    if last_message_at > now - timedelta(minutes=idle_minutes):
        return False
    if reminder_sent_at is None:
        return True
    return reminder_sent_at < now - timedelta(minutes=cooldown_minutes)


def next_max_viewers(current_max: Optional[int], viewer_rows: int) -> int:
    """max_viewers only ever grows."""
    return max(int(current_max or 0), int(viewer_rows or 0))


def visible_viewers(rows: Iterable[dict], participant_ids: Iterable[Any], limit: int = VIEWER_DISPLAY_LIMIT) -> list[dict]:
    """Drop the session's own participants and cap the list for display."""
    skip = {str(p) for p in participant_ids if p}
    out = [r for r in rows if str(r.get("user_id")) not in skip]
    return out[: max(0, int(limit))]


def session_activity_time(session: dict) -> Optional[datetime]:
    return (
        session.get("last_message_at")
        or (session.get("latest_message") or {}).get("created_at")
        or session.get("created_at")
    )


def _desc_key(ts: Optional[datetime]) -> tuple[int, float]:
    # Missing timestamps sort last.
    if ts is None:
        return (1, 0.0)
    return (0, -ts.timestamp())


def sort_dashboard_sessions(sessions: Iterable[dict]) -> list[dict]:
    return sorted(
        sessions,
        key=lambda s: (STATUS_RANK[session_state(s)], _desc_key(session_activity_time(s))),
    )


def sort_threads_by_latest(threads: Iterable[dict]) -> list[dict]:
    """Newest conversation first; threads that never got a message go last."""
    return sorted(threads, key=lambda t: _desc_key((t.get("latest_message") or {}).get("created_at")))


def sort_watch_sessions(sessions: Iterable[dict]) -> list[dict]:
    """Running sessions first, then most recent activity (no activity last)."""
    return sorted(
        sessions,
        key=lambda s: (0 if s.get("is_active") else 1, _desc_key(s.get("last_message_at"))),
    )
