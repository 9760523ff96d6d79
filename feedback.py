"""feedback.py

Post-session feedback (PostgreSQL).

Feedback is written by one participant about the other. The recipient
approves it (then it shows on their public profile) or deletes it.
"""

from __future__ import annotations

from database import dict_cursor, get_db
from session_rules import display_name

FEEDBACK_TEXT_MAX = 2000

_FEEDBACK_COLS = "f.id, f.session_id, f.user_id, f.feedback, f.tags, f.is_approved, f.approved_at, f.created_at"


def submit_feedback(session_id: str, user_id: str, text: str | None, tags: list[str]) -> dict | None:
    """One entry per (session, author). None if the author already left feedback."""
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            INSERT INTO rp_session_feedback (session_id, user_id, feedback, tags)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (session_id, user_id) DO NOTHING
            RETURNING id, session_id, user_id, feedback, tags, is_approved, approved_at, created_at;
            """,
            (session_id, user_id, text or None, tags),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def get_my_feedback(session_id: str, user_id: str) -> dict | None:
    with dict_cursor() as cur:
        cur.execute(
            f"SELECT {_FEEDBACK_COLS} FROM rp_session_feedback f WHERE f.session_id = %s AND f.user_id = %s;",
            (session_id, user_id),
        )
        return cur.fetchone()


def get_feedback(feedback_id: str) -> dict | None:
    """Feedback row plus the session's participants."""
    with dict_cursor() as cur:
        cur.execute(
            f"""
            SELECT {_FEEDBACK_COLS}, s.user_a, s.user_b
              FROM rp_session_feedback f
              JOIN rp_sessions s ON s.id = f.session_id
             WHERE f.id = %s;
            """,
            (feedback_id,),
        )
        return cur.fetchone()


def recipient_of(row: dict) -> str:
    """The participant the feedback is about (the one who did not write it)."""
    author = str(row["user_id"])
    return str(row["user_b"]) if str(row["user_a"]) == author else str(row["user_a"])


def list_received_feedback(user_id: str, include_pending: bool) -> list[dict]:
    sql = f"""
        SELECT {_FEEDBACK_COLS}, s.name AS session_name,
               w.name AS author_name, w.portrait_url AS author_portrait_url
          FROM rp_session_feedback f
          JOIN rp_sessions s ON s.id = f.session_id
          LEFT JOIN writers w ON w.user_id = f.user_id
         WHERE (s.user_a = %s OR s.user_b = %s)
           AND f.user_id <> %s
    """
    if not include_pending:
        sql += " AND f.is_approved = TRUE"
    with dict_cursor() as cur:
        cur.execute(sql + " ORDER BY f.created_at DESC;", (user_id, user_id, user_id))
        rows = cur.fetchall() or []
    for r in rows:
        r["author_name"] = display_name(r.get("author_name"), r["user_id"])
    return rows


def approve_feedback(feedback_id: str) -> dict | None:
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            UPDATE rp_session_feedback
               SET is_approved = TRUE, approved_at = NOW()
             WHERE id = %s
            RETURNING id, session_id, user_id, feedback, tags, is_approved, approved_at, created_at;
            """,
            (feedback_id,),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def delete_feedback(feedback_id: str) -> bool:
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute("DELETE FROM rp_session_feedback WHERE id = %s;", (feedback_id,))
        n = cur.rowcount
    conn.commit()
    return n > 0
