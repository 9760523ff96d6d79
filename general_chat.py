"""general_chat.py

The site-wide lobby chat (PostgreSQL).
"""

from __future__ import annotations

from constants import GENERAL_CHAT_HISTORY
from database import dict_cursor, get_db
from session_rules import display_name

GENERAL_CHAT_BODY_MAX = 2000


def list_recent_messages(limit: int = GENERAL_CHAT_HISTORY) -> list[dict]:
    """Last `limit` messages, oldest first."""
    with dict_cursor() as cur:
        cur.execute(
            """
            SELECT * FROM (
                SELECT m.id, m.user_id, m.body, m.created_at,
                       w.name AS sender_name, w.portrait_url AS sender_portrait_url
                  FROM general_chat_messages m
                  LEFT JOIN writers w ON w.user_id = m.user_id
                 ORDER BY m.created_at DESC
                 LIMIT %s
            ) recent
            ORDER BY created_at ASC;
            """,
            (int(limit),),
        )
        rows = cur.fetchall() or []
    for r in rows:
        r["sender_name"] = display_name(r.get("sender_name"), r["user_id"])
    return rows


def post_message(user_id: str, body: str) -> dict:
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            INSERT INTO general_chat_messages (user_id, body)
            VALUES (%s, %s)
            RETURNING id, user_id, body, created_at;
            """,
            (user_id, body),
        )
        row = cur.fetchone()
        cur.execute("SELECT name, portrait_url FROM writers WHERE user_id = %s;", (user_id,))
        w = cur.fetchone() or {}
    conn.commit()
    row["sender_name"] = display_name(w.get("name"), user_id)
    row["sender_portrait_url"] = w.get("portrait_url")
    return row
