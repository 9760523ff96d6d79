"""writers.py

Writer profiles, likes, profile comments and friend requests (PostgreSQL).

All helpers use the request connection from get_db() and commit their own
writes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from constants import ONLINE_WINDOW_MINUTES, ONLINE_WRITERS_LIMIT, TOP_WRITERS_POOL
from database import dict_cursor, get_db
from feed_filters import mark_online, top_writers
from session_rules import display_name

WRITER_NAME_MAX = 255

_WRITER_COLS = "w.id, w.user_id, w.name, w.portrait_url, w.description, w.last_seen, w.created_at, w.updated_at"


# ─────────────────────────────────────────────────────────────────────────────
# Profiles
# ─────────────────────────────────────────────────────────────────────────────

def get_writer_by_user(user_id: str) -> dict | None:
    with dict_cursor() as cur:
        cur.execute(f"SELECT {_WRITER_COLS} FROM writers w WHERE w.user_id = %s;", (user_id,))
        return cur.fetchone()


def get_writer(writer_id: str) -> dict | None:
    with dict_cursor() as cur:
        cur.execute(f"SELECT {_WRITER_COLS} FROM writers w WHERE w.id = %s;", (writer_id,))
        return cur.fetchone()


def get_writer_cards(user_ids: Iterable[Any]) -> dict[str, dict]:
    """user_id -> {name, portrait_url}; users without a profile get the fallback name."""
    ids = sorted({str(u) for u in user_ids if u})
    if not ids:
        return {}
    with dict_cursor() as cur:
        cur.execute(
            "SELECT user_id, name, portrait_url FROM writers WHERE user_id = ANY(%s::uuid[]);",
            (ids,),
        )
        rows = cur.fetchall() or []
    found = {str(r["user_id"]): r for r in rows}
    out = {}
    for uid in ids:
        r = found.get(uid) or {}
        out[uid] = {"user_id": uid, "name": display_name(r.get("name"), uid), "portrait_url": r.get("portrait_url")}
    return out


def create_writer(user_id: str, name: str, description: str | None, portrait_url: str | None) -> dict | None:
    """Insert the caller's profile. Returns None when one already exists."""
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            INSERT INTO writers (user_id, name, description, portrait_url, last_seen)
            VALUES (%s, %s, %s, %s, NOW())
            ON CONFLICT (user_id) DO NOTHING
            RETURNING id, user_id, name, portrait_url, description, last_seen, created_at, updated_at;
            """,
            (user_id, name, description, portrait_url),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def update_writer(user_id: str, changes: dict) -> dict | None:
    allowed = {k: v for k, v in changes.items() if k in ("name", "description", "portrait_url")}
    if not allowed:
        return get_writer_by_user(user_id)
    sets = ", ".join(f"{k} = %s" for k in allowed)
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            UPDATE writers
               SET {sets}, updated_at = NOW()
             WHERE user_id = %s
            RETURNING id, user_id, name, portrait_url, description, last_seen, created_at, updated_at;
            """,
            (*allowed.values(), user_id),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def delete_writer(user_id: str) -> bool:
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute("DELETE FROM writers WHERE user_id = %s;", (user_id,))
        n = cur.rowcount
    conn.commit()
    return n > 0


def touch_writer_presence(user_id: str) -> bool:
    """Heartbeat: last_seen = now. False if the user has no profile."""
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute("UPDATE writers SET last_seen = NOW() WHERE user_id = %s;", (user_id,))
        n = cur.rowcount
    conn.commit()
    return n > 0


# ─────────────────────────────────────────────────────────────────────────────
# Directory / online / top
# ─────────────────────────────────────────────────────────────────────────────

def _now() -> datetime:
    return datetime.now(timezone.utc)


def list_writers(limit: int | None = None) -> list[dict]:
    """All writers newest first, each with likes_count and is_online."""
    sql = f"""
        SELECT {_WRITER_COLS}, COUNT(l.id)::int AS likes_count
          FROM writers w
          LEFT JOIN writer_likes l ON l.writer_id = w.id
         GROUP BY w.id
         ORDER BY w.created_at DESC
    """
    params: tuple = ()
    if limit:
        sql += " LIMIT %s"
        params = (int(limit),)
    with dict_cursor() as cur:
        cur.execute(sql + ";", params)
        rows = cur.fetchall() or []
    return mark_online(rows, _now())


def list_online_writers(limit: int = ONLINE_WRITERS_LIMIT) -> list[dict]:
    with dict_cursor() as cur:
        cur.execute(
            f"""
            SELECT {_WRITER_COLS}
              FROM writers w
             WHERE w.last_seen >= NOW() - (%s || ' minutes')::interval
             ORDER BY w.last_seen DESC
             LIMIT %s;
            """,
            (ONLINE_WINDOW_MINUTES, int(limit)),
        )
        rows = cur.fetchall() or []
    return mark_online(rows, _now())


def list_top_writers() -> list[dict]:
    return top_writers(list_writers(limit=TOP_WRITERS_POOL))


# ─────────────────────────────────────────────────────────────────────────────
# Likes
# ─────────────────────────────────────────────────────────────────────────────

def get_like_state(writer_id: str, viewer_id: str | None) -> tuple[int, bool]:
    with get_db().cursor() as cur:
        cur.execute(
            """
            SELECT COUNT(*)::int,
                   COALESCE(BOOL_OR(liker_id = %s::uuid), FALSE)
              FROM writer_likes
             WHERE writer_id = %s;
            """,
            (viewer_id, writer_id),
        )
        count, liked = cur.fetchone()
    return int(count or 0), bool(liked)


def like_writer(writer_id: str, user_id: str) -> None:
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO writer_likes (writer_id, liker_id)
            VALUES (%s, %s)
            ON CONFLICT (writer_id, liker_id) DO NOTHING;
            """,
            (writer_id, user_id),
        )
    conn.commit()


def unlike_writer(writer_id: str, user_id: str) -> None:
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute("DELETE FROM writer_likes WHERE writer_id = %s AND liker_id = %s;", (writer_id, user_id))
    conn.commit()


# ─────────────────────────────────────────────────────────────────────────────
# Profile comments
# ─────────────────────────────────────────────────────────────────────────────

def list_comments(writer_id: str) -> list[dict]:
    with dict_cursor() as cur:
        cur.execute(
            """
            SELECT c.id, c.writer_id, c.commenter_id, c.body, c.created_at, c.updated_at,
                   w.name AS commenter_name, w.portrait_url AS commenter_portrait_url
              FROM writer_comments c
              LEFT JOIN writers w ON w.user_id = c.commenter_id
             WHERE c.writer_id = %s
             ORDER BY c.created_at DESC;
            """,
            (writer_id,),
        )
        rows = cur.fetchall() or []
    for r in rows:
        r["commenter_name"] = display_name(r.get("commenter_name"), r["commenter_id"])
    return rows


def add_comment(writer_id: str, user_id: str, body: str) -> dict:
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            INSERT INTO writer_comments (writer_id, commenter_id, body)
            VALUES (%s, %s, %s)
            RETURNING id, writer_id, commenter_id, body, created_at, updated_at;
            """,
            (writer_id, user_id, body),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def update_comment(comment_id: str, user_id: str, body: str) -> dict | None:
    """Only the author can edit; None means missing or not theirs."""
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            UPDATE writer_comments
               SET body = %s, updated_at = NOW()
             WHERE id = %s AND commenter_id = %s
            RETURNING id, writer_id, commenter_id, body, created_at, updated_at;
            """,
            (body, comment_id, user_id),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def delete_comment(comment_id: str, user_id: str) -> bool:
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute("DELETE FROM writer_comments WHERE id = %s AND commenter_id = %s;", (comment_id, user_id))
        n = cur.rowcount
    conn.commit()
    return n > 0


# ─────────────────────────────────────────────────────────────────────────────
# Friend requests
# ─────────────────────────────────────────────────────────────────────────────

def send_friend_request(requester_id: str, receiver_id: str) -> dict | None:
    """Create a pending request. None if one is already pending between the pair."""
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            SELECT 1
              FROM friend_requests
             WHERE status = 'pending'
               AND ((requester_id = %s AND receiver_id = %s)
                 OR (requester_id = %s AND receiver_id = %s));
            """,
            (requester_id, receiver_id, receiver_id, requester_id),
        )
        if cur.fetchone():
            return None
        cur.execute(
            """
            INSERT INTO friend_requests (requester_id, receiver_id)
            VALUES (%s, %s)
            RETURNING id, requester_id, receiver_id, status, created_at;
            """,
            (requester_id, receiver_id),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def list_incoming_requests(user_id: str) -> list[dict]:
    with dict_cursor() as cur:
        cur.execute(
            """
            SELECT f.id, f.requester_id, f.receiver_id, f.status, f.created_at,
                   w.name AS requester_name, w.portrait_url AS requester_portrait_url
              FROM friend_requests f
              LEFT JOIN writers w ON w.user_id = f.requester_id
             WHERE f.receiver_id = %s
               AND f.status = 'pending'
             ORDER BY f.created_at DESC;
            """,
            (user_id,),
        )
        rows = cur.fetchall() or []
    for r in rows:
        r["requester_name"] = display_name(r.get("requester_name"), r["requester_id"])
    return rows


def respond_friend_request(request_id: str, receiver_id: str, accept: bool) -> dict | None:
    """Receiver accepts/rejects a pending request. None if not theirs or not pending."""
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            UPDATE friend_requests
               SET status = %s, updated_at = NOW()
             WHERE id = %s
               AND receiver_id = %s
               AND status = 'pending'
            RETURNING id, requester_id, receiver_id, status, created_at, updated_at;
            """,
            ("accepted" if accept else "rejected", request_id, receiver_id),
        )
        row = cur.fetchone()
    conn.commit()
    return row
