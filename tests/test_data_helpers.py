from __future__ import annotations

from datetime import datetime, timedelta, timezone

import database
import direct_messages
import feedback
import viewers
from constants import REMINDER_TEXT

NOW = datetime(2026, 5, 2, 20, 0, tzinfo=timezone.utc)


# ── viewers ──────────────────────────────────────────────────────────────────

def test_touch_viewer_raises_max_viewers(fake_db) -> None:
    fake_db.on("SELECT COUNT(*)::int FROM rp_session_viewers", [(7,)])
    fake_db.on("SELECT max_viewers FROM rp_sessions", [(5,)])
    assert viewers.touch_viewer("s1", "v1") == 7
    assert fake_db.statements("UPDATE rp_sessions SET max_viewers")[0][1] == (7, "s1")
    assert fake_db.commits == 1


def test_touch_viewer_never_lowers_max_viewers(fake_db) -> None:
    fake_db.on("SELECT COUNT(*)::int FROM rp_session_viewers", [(2,)])
    fake_db.on("SELECT max_viewers FROM rp_sessions", [(5,)])
    assert viewers.touch_viewer("s1", "v1") == 5
    assert fake_db.statements("UPDATE rp_sessions SET max_viewers") == []


def test_snapshots_for_hides_participants(fake_db) -> None:
    fake_db.on("FROM rp_sessions WHERE id = ANY", [{"id": "s1", "user_a": "a", "user_b": "b", "max_viewers": 4}])
    fake_db.on("FROM rp_session_viewers v", [
        {"user_id": "v1", "name": "Moth", "portrait_url": None, "joined_at": NOW, "last_seen": NOW},
        {"user_id": "a", "name": "Ash", "portrait_url": None, "joined_at": NOW, "last_seen": NOW},
        {"user_id": "v2", "name": None, "portrait_url": None, "joined_at": NOW, "last_seen": NOW},
    ])
    snap, = viewers.snapshots_for(["s1"], fake_db)
    assert snap["session_id"] == "s1"
    assert snap["max_viewers"] == 4
    assert [v["user_id"] for v in snap["viewers"]] == ["v1", "v2"]
    assert snap["viewers"][1]["name"]


def test_snapshots_for_nothing_skips_query(fake_db) -> None:
    assert viewers.snapshots_for([], fake_db) == []
    assert fake_db.executed == []


# ── direct messages ──────────────────────────────────────────────────────────

def _unread_counter(messages, last_read_at):
    """Evaluate the unread rule the query encodes against in-memory rows."""

    def _count(params):
        read_user, thread_id, me = params
        assert read_user == me
        count = sum(
            1 for m in messages
            if m["thread_id"] == thread_id
            and m["sender_id"] != me
            and (last_read_at is None or m["created_at"] > last_read_at)
        )
        return [(count,)]

    return _count


MESSAGES = [
    {"thread_id": "t1", "sender_id": "b", "created_at": NOW - timedelta(minutes=30)},
    {"thread_id": "t1", "sender_id": "a", "created_at": NOW - timedelta(minutes=20)},
    {"thread_id": "t1", "sender_id": "b", "created_at": NOW - timedelta(minutes=5)},
]


def test_count_unread_without_read_record_counts_all_from_partner(fake_db) -> None:
    fake_db.on("FROM dm_messages m LEFT JOIN dm_thread_reads r", _unread_counter(MESSAGES, None))
    assert direct_messages.count_unread("t1", "a") == 2
    sql, params = fake_db.executed[0]
    assert "r.last_read_at IS NULL OR m.created_at > r.last_read_at" in sql
    assert params == ("a", "t1", "a")


def test_count_unread_after_watermark(fake_db) -> None:
    fake_db.on("FROM dm_messages m LEFT JOIN dm_thread_reads r", _unread_counter(MESSAGES, NOW - timedelta(minutes=10)))
    assert direct_messages.count_unread("t1", "a") == 1


def test_list_inbox_orders_by_latest_and_fills_partner(fake_db, monkeypatch) -> None:
    monkeypatch.setattr(direct_messages, "get_writer_cards", lambda ids: {u: {"name": u.upper()} for u in ids})
    fake_db.on("FROM dm_threads t", [
        {"id": "t-old", "user_a": "a", "user_b": "b", "created_at": NOW - timedelta(days=2),
         "latest_id": "m1", "latest_sender_id": "b", "latest_body": "hi",
         "latest_created_at": NOW - timedelta(days=1), "unread_count": 3},
        {"id": "t-empty", "user_a": "c", "user_b": "a", "created_at": NOW,
         "latest_id": None, "latest_sender_id": None, "latest_body": None,
         "latest_created_at": None, "unread_count": None},
        {"id": "t-new", "user_a": "a", "user_b": "d", "created_at": NOW - timedelta(days=3),
         "latest_id": "m9", "latest_sender_id": "a", "latest_body": "yo",
         "latest_created_at": NOW, "unread_count": 0},
    ])
    threads = direct_messages.list_inbox("a")
    assert [t["id"] for t in threads] == ["t-new", "t-old", "t-empty"]
    assert [t["other_user"]["name"] for t in threads] == ["D", "B", "C"]
    assert [t["unread_count"] for t in threads] == [0, 3, 0]
    assert threads[2]["latest_message"] is None
    assert fake_db.executed[0][1] == ("a", "a", "a", "a")


# ── feedback ─────────────────────────────────────────────────────────────────

def test_received_feedback_public_view_is_approved_only(fake_db) -> None:
    fake_db.on("FROM rp_session_feedback f", [{"id": "f1", "user_id": "b", "author_name": None, "is_approved": True}])
    rows = feedback.list_received_feedback("a", include_pending=False)
    sql, params = fake_db.executed[0]
    assert "f.is_approved = TRUE" in sql
    assert "f.user_id <> %s" in sql
    assert params == ("a", "a", "a")
    assert rows[0]["author_name"]


def test_received_feedback_owner_view_includes_pending(fake_db) -> None:
    fake_db.on("FROM rp_session_feedback f", [
        {"id": "f1", "user_id": "b", "author_name": "Bee", "is_approved": False},
    ])
    rows = feedback.list_received_feedback("a", include_pending=True)
    assert "is_approved = TRUE" not in fake_db.executed[0][0]
    assert rows[0]["is_approved"] is False


# ── janitor jobs ─────────────────────────────────────────────────────────────

def _idle_session(session_id: str, reminder_sent_at=None) -> dict:
    return {
        "id": session_id,
        "status": "active",
        "is_active": True,
        "last_message_at": NOW - timedelta(minutes=12),
        "reminder_sent_at": reminder_sent_at,
        "now": NOW,
    }


def _reminder_row(params) -> list[dict]:
    session_id, sender_id, body = params
    return [{"id": "r1", "session_id": session_id, "sender_id": sender_id, "message_type": "ooc",
             "body": body, "character_id": None, "created_at": NOW, "edited_at": None}]


def test_reminder_is_attributed_to_last_poster(fake_db) -> None:
    fake_db.on("FOR UPDATE SKIP LOCKED", [
        _idle_session("s1"),
        _idle_session("s2", reminder_sent_at=NOW - timedelta(minutes=20)),
    ])
    fake_db.on("SELECT sender_id FROM rp_session_messages", [{"sender_id": "b"}])
    fake_db.on("INSERT INTO rp_session_messages", _reminder_row)

    sent = database.send_inactivity_reminders(5, 60)

    assert [(m["session_id"], m["sender_id"], m["body"]) for m in sent] == [("s1", "b", REMINDER_TEXT)]
    assert [p for _, p in fake_db.statements("SET reminder_sent_at = NOW()")] == [("s1",)]
    assert fake_db.statements("last_message_at =") == []
    assert fake_db.statements("rp_response_times") == []
    assert fake_db.commits == 1


def test_reminder_skips_session_without_messages(fake_db) -> None:
    fake_db.on("FOR UPDATE SKIP LOCKED", [_idle_session("s1")])
    fake_db.on("SELECT sender_id FROM rp_session_messages", [])
    assert database.send_inactivity_reminders(5, 60) == []
    assert fake_db.statements("INSERT INTO rp_session_messages") == []


def test_stale_viewer_cleanup_returns_affected_sessions(fake_db) -> None:
    fake_db.on("DELETE FROM rp_session_viewers", [("s2",), ("s1",), ("s2",)])
    assert database.cleanup_stale_session_viewers(1) == ["s1", "s2"]
    sql, params = fake_db.executed[0]
    assert "RETURNING session_id" in sql
    assert params == (3,)
