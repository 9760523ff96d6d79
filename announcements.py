"""announcements.py

"Looking for roleplay" posts (PostgreSQL).
"""

from __future__ import annotations

from database import dict_cursor, get_db
from feed_filters import parse_list
from session_rules import display_name

TITLE_MAX = 200


def validate_announcement_payload(data: dict) -> tuple[dict, str | None]:
    title = str(data.get("title") or "").strip()
    description = str(data.get("description") or "").strip()
    character_id = str(data.get("character_id") or "").strip()
    if not character_id:
        return {}, "Pick a character"
    if not title or not description:
        return {}, "Title and description are required"
    if len(title) > TITLE_MAX:
        return {}, f"Title too long (max {TITLE_MAX})"
    writing_style = str(data.get("writing_style") or "").strip() or None
    return {
        "character_id": character_id,
        "title": title,
        "description": description,
        "genres": parse_list(data.get("genres")),
        "writing_style": writing_style,
        "erp_allowed": bool(data.get("erp_allowed", False)),
    }, None


def list_announcements() -> list[dict]:
    """All posts newest first, with writer + character name for the feed cards."""
    with dict_cursor() as cur:
        cur.execute(
            """
            SELECT a.id, a.user_id, a.character_id, a.title, a.description, a.genres,
                   a.writing_style, a.erp_allowed, a.created_at,
                   w.name AS writer_name, w.portrait_url AS writer_portrait_url,
                   c.name AS character_name, c.portrait_url AS character_portrait_url
              FROM roleplay_announcements a
              LEFT JOIN writers w ON w.user_id = a.user_id
              LEFT JOIN characters c ON c.id = a.character_id
             ORDER BY a.created_at DESC;
            """
        )
        rows = cur.fetchall() or []
    for r in rows:
        r["writer_name"] = display_name(r.get("writer_name"), r["user_id"])
    return rows


def get_announcement(announcement_id: str) -> dict | None:
    with dict_cursor() as cur:
        cur.execute(
            """
            SELECT a.id, a.user_id, a.character_id, a.title, a.description, a.genres,
                   a.writing_style, a.erp_allowed, a.created_at,
                   w.name AS writer_name, w.portrait_url AS writer_portrait_url
              FROM roleplay_announcements a
              LEFT JOIN writers w ON w.user_id = a.user_id
             WHERE a.id = %s;
            """,
            (announcement_id,),
        )
        row = cur.fetchone()
    if row:
        row["writer_name"] = display_name(row.get("writer_name"), row["user_id"])
    return row


def create_announcement(user_id: str, fields: dict) -> dict:
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            """
            INSERT INTO roleplay_announcements
                (user_id, character_id, title, description, genres, writing_style, erp_allowed)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING id, user_id, character_id, title, description, genres, writing_style, erp_allowed, created_at;
            """,
            (
                user_id,
                fields["character_id"],
                fields["title"],
                fields["description"],
                fields["genres"],
                fields["writing_style"],
                fields["erp_allowed"],
            ),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def delete_announcement(announcement_id: str, user_id: str) -> bool:
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute("DELETE FROM roleplay_announcements WHERE id = %s AND user_id = %s;", (announcement_id, user_id))
        n = cur.rowcount
    conn.commit()
    return n > 0
