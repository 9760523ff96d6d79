"""viewers.py

Live spectator tracking for public sessions (PostgreSQL).

Viewers heartbeat every ~30s. max_viewers on rp_sessions is a high-water
mark: after every insert or last_seen refresh it becomes
max(max_viewers, rows for the session) and never goes down.
"""

from __future__ import annotations

from constants import VIEWER_ACTIVE_WINDOW_SECONDS, VIEWER_QUERY_LIMIT
from database import dict_cursor, get_db
from session_rules import display_name, next_max_viewers, visible_viewers


def touch_viewer(session_id: str, user_id: str) -> int:
    """Join or heartbeat. Returns the session's max_viewers after the update."""
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO rp_session_viewers (session_id, user_id, joined_at, last_seen)
            VALUES (%s, %s, NOW(), NOW())
            ON CONFLICT (session_id, user_id)
            DO UPDATE SET last_seen = EXCLUDED.last_seen;
            """,
            (session_id, user_id),
        )
        cur.execute("SELECT COUNT(*)::int FROM rp_session_viewers WHERE session_id = %s;", (session_id,))
        rows = cur.fetchone()[0]
        cur.execute("SELECT max_viewers FROM rp_sessions WHERE id = %s FOR UPDATE;", (session_id,))
        row = cur.fetchone()
        current = row[0] if row else 0
        peak = next_max_viewers(current, rows)
        if peak != current:
            cur.execute("UPDATE rp_sessions SET max_viewers = %s WHERE id = %s;", (peak, session_id))
    conn.commit()
    return peak


def remove_viewer(session_id: str, user_id: str) -> bool:
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute(
            "DELETE FROM rp_session_viewers WHERE session_id = %s AND user_id = %s;",
            (session_id, user_id),
        )
        n = cur.rowcount
    conn.commit()
    return n > 0


def list_active_viewers(session: dict, conn=None) -> list[dict]:
    """Recent viewers (newest join first) minus the participants, capped for display."""
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            SELECT v.user_id, v.joined_at, v.last_seen,
                   w.name, w.portrait_url
              FROM rp_session_viewers v
              LEFT JOIN writers w ON w.user_id = v.user_id
             WHERE v.session_id = %s
               AND v.last_seen >= NOW() - (%s || ' seconds')::interval
             ORDER BY v.joined_at DESC
             LIMIT %s;
            """,
            (session["id"], VIEWER_ACTIVE_WINDOW_SECONDS, VIEWER_QUERY_LIMIT),
        )
        rows = cur.fetchall() or []
    for r in rows:
        r["name"] = display_name(r.get("name"), r["user_id"])
    return visible_viewers(rows, (session["user_a"], session["user_b"]))


def viewers_snapshot(session: dict, conn=None) -> dict:
    """Payload of the viewers_changed event and GET .../viewers."""
    return {
        "session_id": str(session["id"]),
        "viewers": list_active_viewers(session, conn),
        "max_viewers": session.get("max_viewers") or 0,
    }


def snapshots_for(session_ids, conn) -> list[dict]:
    """viewers_changed payloads for sessions pruned outside a request."""
    ids = [str(s) for s in session_ids]
    if not ids:
        return []
    with dict_cursor(conn) as cur:
        cur.execute(
            "SELECT id, user_a, user_b, max_viewers FROM rp_sessions WHERE id = ANY(%s::uuid[]);",
            (ids,),
        )
        sessions = cur.fetchall() or []
    return [viewers_snapshot(s, conn) for s in sessions]
