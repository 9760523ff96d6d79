from __future__ import annotations

import uuid

import routes_dashboard
from routes_dashboard import merge_chats


def test_merge_keeps_sessions_before_threads() -> None:
    sessions = [{"id": "s2"}, {"id": "s1"}]
    threads = [{"id": "t1", "kind": "dm"}]
    assert [c["id"] for c in merge_chats(sessions, threads)] == ["s2", "s1", "t1"]


def test_chats_hide_closed_sessions(client, auth_headers, monkeypatch) -> None:
    me = str(uuid.uuid4())
    seen = {}

    def _sessions(user_id, include_closed=True):
        seen["sessions"] = (user_id, include_closed)
        return [{"id": "s1", "status": "active"}]

    monkeypatch.setattr(routes_dashboard, "list_my_sessions", _sessions)
    monkeypatch.setattr(routes_dashboard, "list_inbox", lambda user_id: [{"id": "t1", "kind": "dm"}])
    r = client.get("/api/dashboard/chats", headers=auth_headers(me))
    assert r.status_code == 200
    assert seen["sessions"] == (me, False)
    body = r.get_json()
    assert [c["id"] for c in body["chats"]] == ["s1", "t1"]
    assert body["dms"] == [{"id": "t1", "kind": "dm"}]


def test_chats_require_login(client) -> None:
    assert client.get("/api/dashboard/chats").status_code == 401


def test_summary_collects_landing_lists(client, auth_headers, monkeypatch) -> None:
    me = str(uuid.uuid4())
    monkeypatch.setattr(routes_dashboard, "list_incoming_requests", lambda uid: [{"id": "fr1"}])
    monkeypatch.setattr(routes_dashboard, "list_invitations", lambda uid: [{"id": "s9"}])
    monkeypatch.setattr(routes_dashboard, "list_online_writers", lambda: [])
    monkeypatch.setattr(routes_dashboard, "list_top_writers", lambda: [{"user_id": "u1"}])
    monkeypatch.setattr(routes_dashboard, "list_watch_sessions", lambda uid: [])
    r = client.get("/api/dashboard/summary", headers=auth_headers(me))
    assert r.status_code == 200
    assert r.get_json() == {
        "friend_requests": [{"id": "fr1"}],
        "invitations": [{"id": "s9"}],
        "online_writers": [],
        "top_writers": [{"user_id": "u1"}],
        "watch_sessions": [],
    }
