"""characters.py

Character cards (PostgreSQL). Characters are public; only the owner may
edit or delete them.
"""

from __future__ import annotations

from typing import Any

from constants import CHARACTER_SEXES, CHARACTER_STYLES
from database import dict_cursor, get_db
from feed_filters import parse_list
from session_rules import display_name

CHARACTER_NAME_MAX = 120
_FIELDS = ("name", "summary", "description", "sex", "age", "role_tags", "portrait_url", "style")

_CHAR_COLS = (
    "c.id, c.user_id, c.name, c.summary, c.description, c.sex, c.age, c.role_tags, "
    "c.portrait_url, c.style, c.created_at"
)


def validate_character_payload(data: dict, partial: bool = False) -> tuple[dict, str | None]:
    """Normalise a create/update body. Returns (clean_fields, error_or_None)."""
    clean: dict[str, Any] = {}

    if "name" in data or not partial:
        name = str(data.get("name") or "").strip()
        if not name:
            return {}, "Character name is required"
        if len(name) > CHARACTER_NAME_MAX:
            return {}, f"Character name too long (max {CHARACTER_NAME_MAX})"
        clean["name"] = name

    for key in ("summary", "description", "portrait_url"):
        if key in data:
            val = data.get(key)
            clean[key] = str(val).strip() if val not in (None, "") else None

    if "sex" in data:
        sex = str(data.get("sex") or "").strip().lower() or None
        if sex is not None and sex not in CHARACTER_SEXES:
            return {}, "sex must be one of: " + ", ".join(CHARACTER_SEXES)
        clean["sex"] = sex

    if "age" in data:
        raw = data.get("age")
        if raw in (None, ""):
            clean["age"] = None
        else:
            try:
                age = int(raw)
            except (TypeError, ValueError):
                return {}, "age must be a whole number"
            if age < 0:
                return {}, "age cannot be negative"
            clean["age"] = age

    if "role_tags" in data:
        clean["role_tags"] = parse_list(data.get("role_tags"))

    if "style" in data:
        style = str(data.get("style") or "").strip().lower() or None
        if style is not None and style not in CHARACTER_STYLES:
            return {}, "style must be one of: " + ", ".join(CHARACTER_STYLES)
        clean["style"] = style

    return clean, None


def list_characters(limit: int | None = None) -> list[dict]:
    sql = f"SELECT {_CHAR_COLS} FROM characters c ORDER BY c.created_at DESC"
    params: tuple = ()
    if limit:
        sql += " LIMIT %s"
        params = (int(limit),)
    with dict_cursor() as cur:
        cur.execute(sql + ";", params)
        return cur.fetchall() or []


def list_user_characters(user_id: str) -> list[dict]:
    with dict_cursor() as cur:
        cur.execute(
            f"SELECT {_CHAR_COLS} FROM characters c WHERE c.user_id = %s ORDER BY c.created_at DESC;",
            (user_id,),
        )
        return cur.fetchall() or []


def get_character(character_id: str) -> dict | None:
    """Character with its owner's writer name/portrait."""
    with dict_cursor() as cur:
        cur.execute(
            f"""
            SELECT {_CHAR_COLS},
                   w.name AS writer_name, w.portrait_url AS writer_portrait_url
              FROM characters c
              LEFT JOIN writers w ON w.user_id = c.user_id
             WHERE c.id = %s;
            """,
            (character_id,),
        )
        row = cur.fetchone()
    if row:
        row["writer_name"] = display_name(row.get("writer_name"), row["user_id"])
    return row


def owns_character(character_id: str, user_id: str) -> bool:
    if not character_id or not user_id:
        return False
    with get_db().cursor() as cur:
        cur.execute("SELECT 1 FROM characters WHERE id = %s AND user_id = %s;", (character_id, user_id))
        return cur.fetchone() is not None


def create_character(user_id: str, fields: dict) -> dict:
    cols = [k for k in _FIELDS if k in fields]
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            INSERT INTO characters (user_id, {", ".join(cols)})
            VALUES (%s, {", ".join(["%s"] * len(cols))})
            RETURNING id, user_id, name, summary, description, sex, age, role_tags, portrait_url, style, created_at;
            """,
            (user_id, *[fields[k] for k in cols]),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def update_character(character_id: str, user_id: str, fields: dict) -> dict | None:
    """Owner-only update. None if missing or not owned."""
    cols = [k for k in _FIELDS if k in fields]
    if not cols:
        return get_character(character_id) if owns_character(character_id, user_id) else None
    conn = get_db()
    with dict_cursor(conn) as cur:
        cur.execute(
            f"""
            UPDATE characters
               SET {", ".join(f"{k} = %s" for k in cols)}
             WHERE id = %s AND user_id = %s
            RETURNING id, user_id, name, summary, description, sex, age, role_tags, portrait_url, style, created_at;
            """,
            (*[fields[k] for k in cols], character_id, user_id),
        )
        row = cur.fetchone()
    conn.commit()
    return row


def delete_character(character_id: str, user_id: str) -> bool:
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute("DELETE FROM characters WHERE id = %s AND user_id = %s;", (character_id, user_id))
        n = cur.rowcount
    conn.commit()
    return n > 0
