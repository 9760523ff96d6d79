import threading
import time

from constants import REMINDER_COOLDOWN_MINUTES, REMINDER_IDLE_MINUTES
from database import background_connection, cleanup_stale_session_viewers, send_inactivity_reminders
from realtime.notify import emit_to_room
from realtime.state import session_room, viewers_room
from viewers import snapshots_for


def _setting_int(settings: dict, key: str, default: int, lo: int, hi: int) -> int:
    try:
        val = int(settings.get(key, default))
    except (TypeError, ValueError):
        val = default
    return max(lo, min(val, hi))


def run_janitor_once(settings: dict, socketio=None) -> dict:
    """One cleanup cycle: inactivity reminders, then stale viewer rows.

    Reminder messages are pushed to each session room as a regular
    `session_message`, and every session that lost viewers gets a fresh
    `viewers_changed`, when a Socket.IO server is given.
    """
    idle = _setting_int(settings, "reminder_idle_minutes", REMINDER_IDLE_MINUTES, 1, 24 * 60)
    cooldown = _setting_int(settings, "reminder_cooldown_minutes", REMINDER_COOLDOWN_MINUTES, 1, 24 * 60 * 7)
    stale = _setting_int(settings, "viewer_stale_minutes", 10, 3, 24 * 60)

    reminders = send_inactivity_reminders(idle, cooldown)
    for msg in reminders:
        emit_to_room(session_room(msg["session_id"]), "session_message", msg, socketio=socketio)
    if reminders:
        print(f"[JANITOR] posted {len(reminders)} inactivity reminders")

    pruned = cleanup_stale_session_viewers(stale)
    if pruned:
        print(f"[JANITOR] pruned stale viewers in {len(pruned)} sessions")
        if socketio is not None:
            with background_connection() as conn:
                for snap in snapshots_for(pruned, conn):
                    emit_to_room(viewers_room(snap["session_id"]), "viewers_changed", snap, socketio=socketio)

    return {"reminders": len(reminders), "viewer_sessions_pruned": len(pruned)}


def start_janitor(settings: dict, socketio=None):
    """Start the background janitor loop in a daemon thread.

    - Posts the OOC inactivity reminder into idle active sessions
    - Deletes viewer rows whose heartbeat stopped (max_viewers is untouched)
    """

    def _loop():
        while True:
            # Re-read settings each cycle so edits take effect live.
            interval = _setting_int(settings, "janitor_interval_seconds", 60, 10, 3600)
            try:
                run_janitor_once(settings, socketio=socketio)
            except Exception as e:
                # Keep the loop alive; the next cycle retries.
                print(f"[JANITOR] cycle error: {e}")
            time.sleep(interval)

    t = threading.Thread(target=_loop, name="quillmate_janitor", daemon=True)
    t.start()
    return t
