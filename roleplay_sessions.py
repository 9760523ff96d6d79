"""roleplay_sessions.py

Two-party roleplay sessions (PostgreSQL).

Bookkeeping that lives next to the message insert, in the same transaction:
  - response time of the replying participant (running sessions only,
    reminders are not a message to reply to)
  - rp_sessions.last_message_at
  - reminder_sent_at cleared by every regular message
  - sender's read watermark
"""

from __future__ import annotations

from typing import Any

from constants import REMINDER_TEXT
from database import dict_cursor, get_db
from session_rules import (
    check_can_send,
    display_name,
    response_time_seconds,
    sort_dashboard_sessions,
    sort_watch_sessions,
)
from writers import get_writer_cards

SESSION_NAME_MAX = 120
MESSAGE_BODY_MAX = 20000

_SESSION_COLS = (
    "s.id, s.user_a, s.user_b, s.status, s.is_active, s.closed_by, s.closed_at, "
    "s.last_message_at, s.reminder_sent_at, s.name, s.style, s.is_public, s.max_viewers, "
    "s.pending_character_selection_user_id, s.created_at, s.updated_at"
)
_MESSAGE_RETURNING = "id, session_id, sender_id, message_type, body, character_id, created_at, edited_at"


# ─────────────────────────────────────────────────────────────────────────────
# Access
# ─────────────────────────────────────────────────────────────────────────────

def get_session(session_id: str) -> dict | None:
    with dict_cursor() as cur:
        cur.execute(f"SELECT {_SESSION_COLS} FROM rp_sessions s WHERE s.id = %s;", (session_id,))
        return cur.fetchone()


def is_participant(session: dict | None, user_id: str | None) -> bool:
    if not session or not user_id:
        return False
    return str(user_id) in (str(session["user_a"]), str(session["user_b"]))


def partner_of(session: dict, user_id: str) -> str:
    return str(session["user_b"]) if str(session["user_a"]) == str(user_id) else str(session["user_a"])


def can_view(session: dict | None, user_id: str | None) -> bool:
    """Participants always; everyone (including anonymous) when the session is public."""
    if not session:
        return False
    return is_participant(session, user_id) or bool(session.get("is_public"))


# ─────────────────────────────────────────────────────────────────────────────
# Lifecycle
# ─────────────────────────────────────────────────────────────────────────────

def create_session(
    user_id: str,
    partner_id: str,
    name: str,
    character_id: str,
    style: str | None = None,
    is_public: bool = False,
) -> dict:
    """Start an active session, attach the creator's character, invite the partner."""
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            INSERT INTO rp_sessions (user_a, user_b, status, is_active, name, style, is_public,
                                     pending_character_selection_user_id)
            VALUES (%s, %s, 'active', TRUE, %s, %s, %s, %s)
            RETURNING id;
            """,
            (user_id, partner_id, name, style, bool(is_public), partner_id),
        )
        session_id = cur.fetchone()["id"]
        cur.execute(
            """
            INSERT INTO rp_session_characters (session_id, character_id)
            VALUES (%s, %s)
            ON CONFLICT (session_id, character_id) DO NOTHING;
            """,
            (session_id, character_id),
        )
        cur.execute(f"SELECT {_SESSION_COLS} FROM rp_sessions s WHERE s.id = %s;", (session_id,))
        row = cur.fetchone()
    conn.commit()
    return row


def list_invitations(user_id: str) -> list[dict]:
    """Active sessions waiting for this user to pick a character."""
    with dict_cursor() as cur:
        cur.execute(
            f"""
            SELECT {_SESSION_COLS}
              FROM rp_sessions s
             WHERE s.pending_character_selection_user_id = %s
               AND s.status = 'active'
             ORDER BY s.created_at DESC;
            """,
            (user_id,),
        )
        rows = cur.fetchall() or []
    cards = get_writer_cards(partner_of(r, user_id) for r in rows)
    for r in rows:
        r["other_user"] = cards.get(partner_of(r, user_id))
    return rows


def attach_character(session: dict, user_id: str, character_id: str) -> bool:
    """Add the caller's own character. Clears the pending invitation when it was theirs.

    Returns False if the character does not belong to the caller.
    """
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute("SELECT 1 FROM characters WHERE id = %s AND user_id = %s;", (character_id, user_id))
        if cur.fetchone() is None:
            return False
        cur.execute(
            """
            INSERT INTO rp_session_characters (session_id, character_id)
            VALUES (%s, %s)
            ON CONFLICT (session_id, character_id) DO NOTHING;
            """,
            (session["id"], character_id),
        )
        cur.execute(
            """
            UPDATE rp_sessions
               SET pending_character_selection_user_id = NULL,
                   updated_at = NOW()
             WHERE id = %s
               AND pending_character_selection_user_id = %s;
            """,
            (session["id"], user_id),
        )
    conn.commit()
    return True


def update_session(session_id: str, changes: dict) -> dict | None:
    allowed = {k: v for k, v in changes.items() if k in ("is_active", "is_public", "name", "style")}
    if not allowed:
        return get_session(session_id)
    sets = ", ".join(f"{k} = %s" for k in allowed)
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            UPDATE rp_sessions s
               SET {sets}, updated_at = NOW()
             WHERE s.id = %s
            RETURNING {_SESSION_COLS};
            """,
            (*allowed.values(), session_id),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def close_session(session_id: str, user_id: str) -> dict | None:
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            UPDATE rp_sessions s
               SET status = 'closed',
                   is_active = FALSE,
                   closed_by = %s,
                   closed_at = NOW(),
                   updated_at = NOW()
             WHERE s.id = %s
            RETURNING {_SESSION_COLS};
            """,
            (user_id, session_id),
        )
        row = cur.fetchone()
    conn.commit()
    return row


# ─────────────────────────────────────────────────────────────────────────────
# Characters in a session
# ─────────────────────────────────────────────────────────────────────────────

def list_session_characters(session_id: str, owner_id: str | None = None) -> list[dict]:
    sql = """
        SELECT c.id, c.user_id, c.name, c.portrait_url, c.summary, c.style
          FROM rp_session_characters sc
          JOIN characters c ON c.id = sc.character_id
         WHERE sc.session_id = %s
    """
    params: tuple = (session_id,)
    if owner_id:
        sql += " AND c.user_id = %s"
        params = (session_id, owner_id)
    with dict_cursor() as cur:
        cur.execute(sql + " ORDER BY sc.created_at ASC;", params)
        return cur.fetchall() or []


def selectable_characters(session_id: str, user_id: str) -> list[dict]:
    """Caller's characters in the session; all of their characters if none attached."""
    rows = list_session_characters(session_id, owner_id=user_id)
    if rows:
        return rows
    with dict_cursor() as cur:
        cur.execute(
            """
            SELECT id, user_id, name, portrait_url, summary, style
              FROM characters
             WHERE user_id = %s
             ORDER BY created_at DESC;
            """,
            (user_id,),
        )
        return cur.fetchall() or []


# ─────────────────────────────────────────────────────────────────────────────
# Messages
# ─────────────────────────────────────────────────────────────────────────────

def list_session_messages(session_id: str) -> list[dict]:
    with dict_cursor() as cur:
        cur.execute(
            """
            SELECT m.id, m.session_id, m.sender_id, m.message_type, m.body, m.character_id,
                   m.created_at, m.edited_at,
                   w.name AS sender_name, w.portrait_url AS sender_portrait_url,
                   c.name AS character_name, c.portrait_url AS character_portrait_url
              FROM rp_session_messages m
              LEFT JOIN writers w ON w.user_id = m.sender_id
              LEFT JOIN characters c ON c.id = m.character_id
             WHERE m.session_id = %s
             ORDER BY m.created_at ASC;
            """,
            (session_id,),
        )
        rows = cur.fetchall() or []
    for r in rows:
        r["sender_name"] = display_name(r.get("sender_name"), r["sender_id"])
    return rows


def _upsert_read(cur, session_id: str, user_id: str, message_id: str | None) -> None:
    cur.execute(
        """
        INSERT INTO rp_session_reads (session_id, user_id, last_read_at, last_read_message_id)
        VALUES (%s, %s, NOW(), %s)
        ON CONFLICT (session_id, user_id)
        DO UPDATE SET last_read_at = EXCLUDED.last_read_at,
                      last_read_message_id = COALESCE(EXCLUDED.last_read_message_id,
                                                      rp_session_reads.last_read_message_id);
        """,
        (session_id, user_id, message_id),
    )


def mark_session_read(session_id: str, user_id: str, message_id: str | None = None) -> None:
    conn = get_db()
    with conn.cursor() as cur:
        if message_id is None:
            cur.execute(
                "SELECT id FROM rp_session_messages WHERE session_id = %s ORDER BY created_at DESC LIMIT 1;",
                (session_id,),
            )
            row = cur.fetchone()
            message_id = row[0] if row else None
        _upsert_read(cur, session_id, user_id, message_id)
    conn.commit()


class SessionMessageRejected(Exception):
    """Raised when a message may not be posted (closed session, paused narration, bad character)."""

    def __init__(self, message: str, status: int = 409):
        super().__init__(message)
        self.status = status


def send_session_message(
    session_id: str,
    sender_id: str,
    message_type: str,
    body: str,
    character_id: str | None = None,
) -> dict:
    """Insert a message and do the per-message bookkeeping atomically.

    The session row is locked so concurrent sends see a consistent state.
    """
    conn = get_db()
    try:
        with dict_cursor(conn) as cur:
            cur.execute(
                "SELECT id, status, is_active FROM rp_sessions WHERE id = %s FOR UPDATE;",
                (session_id,),
            )
            session = cur.fetchone()
            if session is None:
                raise SessionMessageRejected("Not found", 404)
            err = check_can_send(session, message_type)
            if err:
                raise SessionMessageRejected(err, 400 if "message_type" in err else 409)

            if message_type == "narration":
                # Attached characters win; any own character only when none are attached.
                cur.execute(
                    """
                    SELECT c.id
                      FROM rp_session_characters sc
                      JOIN characters c ON c.id = sc.character_id
                     WHERE sc.session_id = %s AND c.user_id = %s
                     ORDER BY sc.created_at ASC;
                    """,
                    (session_id, sender_id),
                )
                attached = [str(r["id"]) for r in cur.fetchall() or []]
                if character_id:
                    if attached:
                        if str(character_id) not in attached:
                            raise SessionMessageRejected("Pick one of your characters", 400)
                    else:
                        cur.execute(
                            """
                            SELECT 1
                              FROM characters c
                             WHERE c.id = %s AND c.user_id = %s;
                            """,
                            (character_id, sender_id),
                        )
                        if cur.fetchone() is None:
                            raise SessionMessageRejected("Pick one of your characters", 400)
                elif attached:
                    character_id = attached[0]
                else:
                    cur.execute(
                        "SELECT id FROM characters WHERE user_id = %s ORDER BY created_at DESC LIMIT 1;",
                        (sender_id,),
                    )
                    row = cur.fetchone()
                    if row is None:
                        raise SessionMessageRejected("Create a character before narrating", 400)
                    character_id = row["id"]
            else:
                character_id = None

            cur.execute(
                f"""
                INSERT INTO rp_session_messages (session_id, sender_id, message_type, body, character_id)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {_MESSAGE_RETURNING};
                """,
                (session_id, sender_id, message_type, body, character_id),
            )
            msg = cur.fetchone()

            # Paused sessions keep status='active'; only running ones are timed.
            if session["is_active"] and session["status"] == "active":
                cur.execute(
                    """
                    SELECT created_at
                      FROM rp_session_messages
                     WHERE session_id = %s
                       AND sender_id <> %s
                       AND id <> %s
                       AND body <> %s
                     ORDER BY created_at DESC
                     LIMIT 1;
                    """,
                    (session_id, sender_id, msg["id"], REMINDER_TEXT),
                )
                prev = cur.fetchone()
                seconds = response_time_seconds(prev["created_at"] if prev else None, msg["created_at"])
                if seconds is not None:
                    cur.execute(
                        """
                        INSERT INTO rp_response_times (user_id, session_id, response_time_seconds)
                        VALUES (%s, %s, %s);
                        """,
                        (sender_id, session_id, seconds),
                    )

            cur.execute(
                """
                UPDATE rp_sessions
                   SET last_message_at = %s,
                       reminder_sent_at = NULL,
                       updated_at = NOW()
                 WHERE id = %s;
                """,
                (msg["created_at"], session_id),
            )
            _upsert_read(cur, session_id, sender_id, msg["id"])
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return msg


def edit_session_message(message_id: str, sender_id: str, body: str) -> dict | None:
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            UPDATE rp_session_messages
               SET body = %s, edited_at = NOW()
             WHERE id = %s AND sender_id = %s
            RETURNING {_MESSAGE_RETURNING};
            """,
            (body, message_id, sender_id),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def response_time_stats(user_id: str) -> dict:
    with get_db().cursor() as cur:
        cur.execute(
            """
            SELECT COUNT(*)::int, AVG(response_time_seconds)::float
              FROM rp_response_times
             WHERE user_id = %s;
            """,
            (user_id,),
        )
        count, avg = cur.fetchone()
    return {"count": int(count or 0), "average_seconds": round(avg, 1) if avg is not None else None}


# ─────────────────────────────────────────────────────────────────────────────
# Listings
# ─────────────────────────────────────────────────────────────────────────────

def _attach_latest_and_cards(rows: list[dict], user_id: str | None) -> list[dict]:
    card_ids: set[Any] = set()
    for r in rows:
        card_ids.update((r["user_a"], r["user_b"]))
    cards = get_writer_cards(card_ids)
    for r in rows:
        if r.get("latest_id"):
            r["latest_message"] = {
                "id": r.pop("latest_id"),
                "sender_id": r.pop("latest_sender_id"),
                "message_type": r.pop("latest_type"),
                "body": r.pop("latest_body"),
                "created_at": r.pop("latest_created_at"),
            }
        else:
            for k in ("latest_id", "latest_sender_id", "latest_type", "latest_body", "latest_created_at"):
                r.pop(k, None)
            r["latest_message"] = None
        r["participants"] = [cards.get(str(r["user_a"])), cards.get(str(r["user_b"]))]
        if user_id and is_participant(r, user_id):
            r["other_user"] = cards.get(partner_of(r, user_id))
    return rows


_LATEST_JOIN = """
    LEFT JOIN LATERAL (
          SELECT id, sender_id, message_type, body, created_at
            FROM rp_session_messages
           WHERE session_id = s.id
           ORDER BY created_at DESC
           LIMIT 1
    ) lm ON TRUE
"""
_LATEST_COLS = (
    "lm.id AS latest_id, lm.sender_id AS latest_sender_id, lm.message_type AS latest_type, "
    "lm.body AS latest_body, lm.created_at AS latest_created_at"
)


def list_my_sessions(user_id: str, include_closed: bool = True) -> list[dict]:
    """Caller's sessions with partner, latest message and unread count, dashboard order."""
    sql = f"""
        SELECT {_SESSION_COLS}, {_LATEST_COLS},
               (
                 SELECT COUNT(*)::int
                   FROM rp_session_messages m
                   LEFT JOIN rp_session_reads r
                          ON r.session_id = m.session_id AND r.user_id = %s
                  WHERE m.session_id = s.id
                    AND m.sender_id <> %s
                    AND (r.last_read_at IS NULL OR m.created_at > r.last_read_at)
               ) AS unread_count
          FROM rp_sessions s
          {_LATEST_JOIN}
         WHERE (s.user_a = %s OR s.user_b = %s)
    """
    if not include_closed:
        sql += " AND s.status <> 'closed'"
    with dict_cursor() as cur:
        cur.execute(sql + ";", (user_id, user_id, user_id, user_id))
        rows = cur.fetchall() or []
    for r in rows:
        r["kind"] = "session"
    return sort_dashboard_sessions(_attach_latest_and_cards(rows, user_id))


def list_watch_sessions(user_id: str | None) -> list[dict]:
    """Public sessions that are not closed and do not involve the caller."""
    sql = f"""
        SELECT {_SESSION_COLS}, {_LATEST_COLS}
          FROM rp_sessions s
          {_LATEST_JOIN}
         WHERE s.is_public = TRUE
           AND s.status <> 'closed'
    """
    params: tuple = ()
    if user_id:
        sql += " AND s.user_a <> %s AND s.user_b <> %s"
        params = (user_id, user_id)
    with dict_cursor() as cur:
        cur.execute(sql + ";", params)
        rows = cur.fetchall() or []
    return sort_watch_sessions(_attach_latest_and_cards(rows, user_id))
