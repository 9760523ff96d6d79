from __future__ import annotations

import contextlib
import uuid
from datetime import datetime, timezone

import janitor
from realtime import notify
from realtime.state import dm_room, session_room, user_room, viewers_room


class FakeSocketIO:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.emitted: list[tuple] = []

    def emit(self, event, payload, to=None):
        if self.fail:
            raise RuntimeError("queue down")
        self.emitted.append((event, payload, to))


def test_room_names() -> None:
    assert session_room("s1") == "session:s1"
    assert viewers_room("s1") == "session_viewers:s1"
    assert dm_room("t1") == "dm:t1"
    assert user_room("u1") == "user:u1"


def test_emit_serialises_payload() -> None:
    sio = FakeSocketIO()
    sid = uuid.uuid4()
    at = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert notify.emit_to_room("room", "evt", {"id": sid, "at": at}, socketio=sio) is True
    event, payload, to = sio.emitted[0]
    assert (event, to) == ("evt", "room")
    assert payload["id"] == str(sid)
    assert isinstance(payload["at"], str) and payload["at"].startswith("2026-03-01T12:00")


def test_emit_without_server_is_a_no_op() -> None:
    assert notify.emit_to_room("room", "evt", {}) is False


def test_emit_failure_does_not_raise() -> None:
    assert notify.emit_to_room("room", "evt", {}, socketio=FakeSocketIO(fail=True)) is False


def test_emit_to_user_targets_personal_room() -> None:
    sio = FakeSocketIO()
    notify.emit_to_user("u9", "friend_request", {"x": 1}, socketio=sio)
    assert sio.emitted == [("friend_request", {"x": 1}, "user:u9")]


def test_janitor_cycle_pushes_reminders_and_prunes(monkeypatch) -> None:
    calls = {}

    def _remind(idle, cooldown):
        calls["remind"] = (idle, cooldown)
        return [{"id": "m1", "session_id": "s1", "body": "reminder"}]

    def _cleanup(stale):
        calls["cleanup"] = stale
        return ["s1", "s2"]

    def _snapshots(session_ids, conn):
        calls["snapshots"] = (list(session_ids), conn)
        return [{"session_id": sid, "viewers": [], "max_viewers": 3} for sid in session_ids]

    monkeypatch.setattr(janitor, "send_inactivity_reminders", _remind)
    monkeypatch.setattr(janitor, "cleanup_stale_session_viewers", _cleanup)
    monkeypatch.setattr(janitor, "background_connection", lambda: contextlib.nullcontext("conn"))
    monkeypatch.setattr(janitor, "snapshots_for", _snapshots)
    sio = FakeSocketIO()
    out = janitor.run_janitor_once({"reminder_idle_minutes": "7", "viewer_stale_minutes": 1}, socketio=sio)
    assert out == {"reminders": 1, "viewer_sessions_pruned": 2}
    assert calls == {"remind": (7, 60), "cleanup": 3, "snapshots": (["s1", "s2"], "conn")}
    assert sio.emitted == [
        ("session_message", {"id": "m1", "session_id": "s1", "body": "reminder"}, "session:s1"),
        ("viewers_changed", {"session_id": "s1", "viewers": [], "max_viewers": 3}, "session_viewers:s1"),
        ("viewers_changed", {"session_id": "s2", "viewers": [], "max_viewers": 3}, "session_viewers:s2"),
    ]


def test_janitor_without_socketio_skips_viewer_snapshots(monkeypatch) -> None:
    monkeypatch.setattr(janitor, "send_inactivity_reminders", lambda idle, cooldown: [])
    monkeypatch.setattr(janitor, "cleanup_stale_session_viewers", lambda stale: ["s1"])

    def _no_snapshots(*args):
        raise AssertionError("snapshots need a Socket.IO server to go anywhere")

    monkeypatch.setattr(janitor, "snapshots_for", _no_snapshots)
    assert janitor.run_janitor_once({}) == {"reminders": 0, "viewer_sessions_pruned": 1}
