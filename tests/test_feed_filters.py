from __future__ import annotations

from datetime import datetime, timedelta, timezone

from feed_filters import (
    character_matches_tags,
    filter_announcements,
    filter_characters,
    filter_writers,
    mark_online,
    parse_list,
    sort_writers,
    top_writers,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _writer(name, likes=0, minutes_old=0, online=False, description=""):
    return {
        "name": name,
        "description": description,
        "likes_count": likes,
        "created_at": NOW - timedelta(minutes=minutes_old),
        "is_online": online,
    }


def test_parse_list_accepts_strings_and_lists() -> None:
    assert parse_list("a, b,,c ") == ["a", "b", "c"]
    assert parse_list(["x", " ", "y"]) == ["x", "y"]
    assert parse_list(None) == []
    assert parse_list(7) == []


def test_writer_search_matches_name_or_description_case_insensitive() -> None:
    rows = [_writer("Ink"), _writer("Quill", description="Loves INKWELLS"), _writer("Pen")]
    assert [w["name"] for w in filter_writers(rows, "ink")] == ["Ink", "Quill"]
    assert len(filter_writers(rows, "")) == 3


def test_writer_sorts() -> None:
    rows = [
        _writer("a", likes=1, minutes_old=10, online=True),
        _writer("b", likes=5, minutes_old=30),
        _writer("c", likes=3, minutes_old=1, online=True),
    ]
    assert [w["name"] for w in sort_writers(rows)] == ["c", "a", "b"]
    assert [w["name"] for w in sort_writers(rows, "most_liked")] == ["b", "c", "a"]
    assert [w["name"] for w in sort_writers(rows, "online")] == ["c", "a", "b"]


def test_mark_online_does_not_mutate_input() -> None:
    row = {"name": "a", "last_seen": NOW - timedelta(minutes=1)}
    out = mark_online([row], NOW)
    assert out[0]["is_online"] is True
    assert "is_online" not in row


def test_top_writers_keeps_newest_first_on_ties() -> None:
    rows = [_writer("new", likes=2), _writer("old", likes=2), _writer("best", likes=9)]
    assert [w["name"] for w in top_writers(rows, limit=2)] == ["best", "new"]


def test_character_tag_search_is_substring_any_match() -> None:
    assert character_matches_tags(["Dark Fantasy", "Romance"], ["fant"]) is True
    assert character_matches_tags(["Sci-Fi"], ["horror", "sci"]) is True
    assert character_matches_tags(["Sci-Fi"], ["horror"]) is False
    assert character_matches_tags(None, []) is True


def test_filter_characters_by_name_sex_and_tags() -> None:
    chars = [
        {"name": "Aria", "sex": "female", "role_tags": ["mage"]},
        {"name": "Bram", "sex": "male", "role_tags": ["knight"]},
        {"name": "Ariel", "sex": "non_binary", "role_tags": ["bard", "mage"]},
    ]
    assert [c["name"] for c in filter_characters(chars, name="ari")] == ["Aria", "Ariel"]
    assert [c["name"] for c in filter_characters(chars, sex="male")] == ["Bram"]
    assert [c["name"] for c in filter_characters(chars, tags="MAGE")] == ["Aria", "Ariel"]


def test_announcement_filters_and_ordering() -> None:
    items = [
        {"user_id": "me", "title": "Mine", "erp_allowed": False, "created_at": NOW},
        {"user_id": "u1", "title": "Space opera", "erp_allowed": True, "created_at": NOW - timedelta(hours=2)},
        {"user_id": "u2", "title": "Court intrigue", "genres": ["Historical"], "erp_allowed": False,
         "created_at": NOW - timedelta(hours=1)},
    ]
    out = filter_announcements(items, exclude_user_id="me")
    assert [a["user_id"] for a in out] == ["u2", "u1"]
    assert [a["user_id"] for a in filter_announcements(items, erp="yes")] == ["u1"]
    assert [a["user_id"] for a in filter_announcements(items, erp="no", exclude_user_id="me")] == ["u2"]
    assert [a["user_id"] for a in filter_announcements(items, q="histor")] == ["u2"]
    assert [a["user_id"] for a in filter_announcements(items, online_user_ids={"u1"})] == ["u1"]
    assert filter_announcements(items, top_user_ids=set()) == []
