"""direct_messages.py

One-to-one DM threads with per-user read watermarks (PostgreSQL).

Unread rule: with a dm_thread_reads row, count the other user's messages
newer than last_read_at; without one, count all of the other user's messages.
"""

from __future__ import annotations

from database import dict_cursor, get_db
from session_rules import sort_threads_by_latest
from writers import get_writer_cards

DM_BODY_MAX = 4000


def get_thread(thread_id: str) -> dict | None:
    with dict_cursor() as cur:
        cur.execute("SELECT id, user_a, user_b, created_at FROM dm_threads WHERE id = %s;", (thread_id,))
        return cur.fetchone()


def is_thread_participant(thread: dict | None, user_id: str | None) -> bool:
    if not thread or not user_id:
        return False
    return str(user_id) in (str(thread["user_a"]), str(thread["user_b"]))


def other_participant(thread: dict, user_id: str) -> str:
    return str(thread["user_b"]) if str(thread["user_a"]) == str(user_id) else str(thread["user_a"])


def get_or_create_thread(user_id: str, other_id: str) -> dict:
    """Reuse the newest thread between the pair (either direction), else create one."""
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            SELECT id, user_a, user_b, created_at
              FROM dm_threads
             WHERE (user_a = %s AND user_b = %s)
                OR (user_a = %s AND user_b = %s)
             ORDER BY created_at DESC
             LIMIT 1;
            """,
            (user_id, other_id, other_id, user_id),
        )
        row = cur.fetchone()
        if row:
            return row
        cur.execute(
            """
            INSERT INTO dm_threads (user_a, user_b)
            VALUES (%s, %s)
            RETURNING id, user_a, user_b, created_at;
            """,
            (user_id, other_id),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def list_thread_messages(thread_id: str) -> list[dict]:
    with dict_cursor() as cur:
        cur.execute(
            """
            SELECT id, thread_id, sender_id, body, created_at, edited_at
              FROM dm_messages
             WHERE thread_id = %s
             ORDER BY created_at ASC;
            """,
            (thread_id,),
        )
        return cur.fetchall() or []


def _upsert_read(cur, thread_id: str, user_id: str, message_id: str | None) -> None:
    cur.execute(
        """
        INSERT INTO dm_thread_reads (thread_id, user_id, last_read_at, last_read_message_id)
        VALUES (%s, %s, NOW(), %s)
        ON CONFLICT (thread_id, user_id)
        DO UPDATE SET last_read_at = EXCLUDED.last_read_at,
                      last_read_message_id = COALESCE(EXCLUDED.last_read_message_id,
                                                      dm_thread_reads.last_read_message_id);
        """,
        (thread_id, user_id, message_id),
    )


def mark_thread_read(thread_id: str, user_id: str, message_id: str | None = None) -> None:
    """Move the caller's watermark to now (newest message when message_id is omitted)."""
    conn = get_db()
    with conn.cursor() as cur:
        if message_id is None:
            cur.execute(
                "SELECT id FROM dm_messages WHERE thread_id = %s ORDER BY created_at DESC LIMIT 1;",
                (thread_id,),
            )
            row = cur.fetchone()
            message_id = row[0] if row else None
        _upsert_read(cur, thread_id, user_id, message_id)
    conn.commit()


def send_dm(thread_id: str, sender_id: str, body: str) -> dict:
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            INSERT INTO dm_messages (thread_id, sender_id, body)
            VALUES (%s, %s, %s)
            RETURNING id, thread_id, sender_id, body, created_at, edited_at;
            """,
            (thread_id, sender_id, body),
        )
        msg = cur.fetchone()
        _upsert_read(cur, thread_id, sender_id, msg["id"])
    conn.commit()
    return msg


def edit_dm(message_id: str, sender_id: str, body: str) -> dict | None:
    """Sender-only edit. None if missing or not theirs."""
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            UPDATE dm_messages
               SET body = %s, edited_at = NOW()
             WHERE id = %s AND sender_id = %s
            RETURNING id, thread_id, sender_id, body, created_at, edited_at;
            """,
            (body, message_id, sender_id),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def count_unread(thread_id: str, user_id: str) -> int:
    with get_db().cursor() as cur:
        cur.execute(
            """
            SELECT COUNT(m.id)::int
              FROM dm_messages m
              LEFT JOIN dm_thread_reads r
                     ON r.thread_id = m.thread_id AND r.user_id = %s
             WHERE m.thread_id = %s
               AND m.sender_id <> %s
               AND (r.last_read_at IS NULL OR m.created_at > r.last_read_at);
            """,
            (user_id, thread_id, user_id),
        )
        return int(cur.fetchone()[0] or 0)


def list_inbox(user_id: str) -> list[dict]:
    """Caller's threads with partner card, latest message and unread count."""
    with dict_cursor() as cur:
        cur.execute(
            """
            SELECT t.id, t.user_a, t.user_b, t.created_at,
                   lm.id AS latest_id, lm.sender_id AS latest_sender_id,
                   lm.body AS latest_body, lm.created_at AS latest_created_at,
                   (
                     SELECT COUNT(*)::int
                       FROM dm_messages m
                       LEFT JOIN dm_thread_reads r
                              ON r.thread_id = m.thread_id AND r.user_id = %s
                      WHERE m.thread_id = t.id
                        AND m.sender_id <> %s
                        AND (r.last_read_at IS NULL OR m.created_at > r.last_read_at)
                   ) AS unread_count
              FROM dm_threads t
              LEFT JOIN LATERAL (
                    SELECT id, sender_id, body, created_at
                      FROM dm_messages
                     WHERE thread_id = t.id
                     ORDER BY created_at DESC
                     LIMIT 1
              ) lm ON TRUE
             WHERE t.user_a = %s OR t.user_b = %s;
            """,
            (user_id, user_id, user_id, user_id),
        )
        rows = cur.fetchall() or []

    cards = get_writer_cards(other_participant(r, user_id) for r in rows)
    threads = []
    for r in rows:
        other = other_participant(r, user_id)
        latest = None
        if r.get("latest_id"):
            latest = {
                "id": r["latest_id"],
                "sender_id": r["latest_sender_id"],
                "body": r["latest_body"],
                "created_at": r["latest_created_at"],
            }
        threads.append(
            {
                "id": r["id"],
                "kind": "dm",
                "created_at": r["created_at"],
                "other_user": cards.get(other),
                "latest_message": latest,
                "unread_count": int(r.get("unread_count") or 0),
            }
        )
    return sort_threads_by_latest(threads)
