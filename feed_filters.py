"""feed_filters.py

Search / filter / sort helpers for the writers directory, character browser
and the looking-for-roleplay feed. Rows are plain dicts as returned by
RealDictCursor.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from constants import TOP_WRITERS_LIMIT
from session_rules import is_online

WRITER_SORTS = ("newest", "most_liked", "online")
ERP_FILTERS = ("all", "yes", "no")


def parse_list(value: Any) -> list[str]:
    """Accept a list or a comma separated string; blanks are dropped."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        return []
    return [str(x).strip() for x in items if str(x).strip()]


def _ts(value: Optional[datetime]) -> float:
    return value.timestamp() if value is not None else 0.0


# ── Writers ──────────────────────────────────────────────────────────────────

def filter_writers(writers: Iterable[dict], q: str = "") -> list[dict]:
    q = (q or "").strip().lower()
    if not q:
        return list(writers)
    return [
        w
        for w in writers
        if q in (w.get("name") or "").lower() or q in (w.get("description") or "").lower()
    ]


def sort_writers(writers: Iterable[dict], sort: str = "newest") -> list[dict]:
    rows = list(writers)
    if sort == "most_liked":
        return sorted(rows, key=lambda w: -int(w.get("likes_count") or 0))
    if sort == "online":
        return sorted(rows, key=lambda w: (0 if w.get("is_online") else 1, -int(w.get("likes_count") or 0)))
    return sorted(rows, key=lambda w: -_ts(w.get("created_at")))


def mark_online(writers: Iterable[dict], now: datetime) -> list[dict]:
    out = []
    for w in writers:
        w = dict(w)
        w["is_online"] = is_online(w.get("last_seen"), now)
        out.append(w)
    return out


def top_writers(writers: Iterable[dict], limit: int = TOP_WRITERS_LIMIT) -> list[dict]:
    """Rank by likes; ties keep their incoming (newest first) order."""
    ranked = sorted(writers, key=lambda w: -int(w.get("likes_count") or 0))
    return ranked[:limit]


# ── Characters ───────────────────────────────────────────────────────────────

def character_matches_tags(role_tags: Iterable[str] | None, search_tags: Iterable[str]) -> bool:
    """True when any search tag is a substring of any character tag (case-insensitive)."""
    wanted = [t.lower() for t in search_tags if t]
    if not wanted:
        return True
    have = [str(t).lower() for t in (role_tags or [])]
    return any(w in h for w in wanted for h in have)


def filter_characters(
    characters: Iterable[dict],
    name: str = "",
    sex: str = "all",
    tags: Any = None,
) -> list[dict]:
    name = (name or "").strip().lower()
    sex = (sex or "all").strip().lower()
    search_tags = parse_list(tags)
    out = []
    for c in characters:
        if name and name not in (c.get("name") or "").lower():
            continue
        if sex != "all" and (c.get("sex") or "") != sex:
            continue
        if not character_matches_tags(c.get("role_tags"), search_tags):
            continue
        out.append(c)
    return out


# ── Announcements ────────────────────────────────────────────────────────────

def announcement_matches_query(item: dict, q: str) -> bool:
    q = (q or "").strip().lower()
    if not q:
        return True
    if q in (item.get("title") or "").lower() or q in (item.get("description") or "").lower():
        return True
    return any(q in str(g).lower() for g in (item.get("genres") or []))


def filter_announcements(
    items: Iterable[dict],
    q: str = "",
    erp: str = "all",
    online_user_ids: Optional[set] = None,
    top_user_ids: Optional[set] = None,
    exclude_user_id: Any = None,
) -> list[dict]:
    """Apply the feed filters. online/top sets are only applied when given."""
    erp = (erp or "all").lower()
    exclude = str(exclude_user_id) if exclude_user_id else None
    out = []
    for a in items:
        uid = str(a.get("user_id"))
        if exclude and uid == exclude:
            continue
        if erp == "yes" and not a.get("erp_allowed"):
            continue
        if erp == "no" and a.get("erp_allowed"):
            continue
        if online_user_ids is not None and uid not in online_user_ids:
            continue
        if top_user_ids is not None and uid not in top_user_ids:
            continue
        if not announcement_matches_query(a, q):
            continue
        out.append(a)
    return sorted(out, key=lambda a: -_ts(a.get("created_at")))
