from __future__ import annotations

import uuid

import routes_writers

PENDING = "FROM friend_requests WHERE status = 'pending'"


def _writer(user_id: str, name: str = "Quill") -> dict:
    return {"id": str(uuid.uuid4()), "user_id": user_id, "name": name, "portrait_url": None}


def test_create_profile(client, auth_headers, fake_db) -> None:
    me = str(uuid.uuid4())
    fake_db.on("INSERT INTO writers", [_writer(me, "Ink")])
    r = client.post("/api/writers", json={"name": "  Ink ", "description": ""}, headers=auth_headers(me))
    assert r.status_code == 201
    assert r.get_json()["name"] == "Ink"
    assert fake_db.executed[0][1] == (me, "Ink", None, None)


def test_second_profile_is_409(client, auth_headers, fake_db) -> None:
    fake_db.on("INSERT INTO writers", [])
    r = client.post("/api/writers", json={"name": "Ink"}, headers=auth_headers(str(uuid.uuid4())))
    assert r.status_code == 409
    assert "ON CONFLICT (user_id) DO NOTHING" in fake_db.executed[0][0]


def test_profile_requires_name(client, auth_headers, fake_db) -> None:
    r = client.post("/api/writers", json={"name": "   "}, headers=auth_headers(str(uuid.uuid4())))
    assert r.status_code == 400
    assert fake_db.executed == []


def test_friend_request_to_self_is_400(client, auth_headers, fake_db) -> None:
    me = str(uuid.uuid4())
    r = client.post("/api/friend-requests", json={"receiver_id": me}, headers=auth_headers(me))
    assert r.status_code == 400
    assert fake_db.executed == []


def test_friend_request_needs_valid_receiver(client, auth_headers) -> None:
    r = client.post("/api/friend-requests", json={"receiver_id": "someone"}, headers=auth_headers(str(uuid.uuid4())))
    assert r.status_code == 400


def test_duplicate_friend_request_is_409(client, auth_headers, fake_db, monkeypatch) -> None:
    me, other = str(uuid.uuid4()), str(uuid.uuid4())
    monkeypatch.setattr(routes_writers, "get_writer_by_user", lambda uid: _writer(uid))
    fake_db.on(PENDING, [{"?column?": 1}])
    r = client.post("/api/friend-requests", json={"receiver_id": other}, headers=auth_headers(me))
    assert r.status_code == 409
    # Pending in either direction blocks a new request.
    assert fake_db.statements(PENDING)[0][1] == (me, other, other, me)
    assert fake_db.statements("INSERT INTO friend_requests") == []


def test_friend_request_is_pushed_to_receiver(client, auth_headers, fake_db, monkeypatch) -> None:
    me, other = str(uuid.uuid4()), str(uuid.uuid4())
    pushed = []
    monkeypatch.setattr(routes_writers, "get_writer_by_user", lambda uid: _writer(uid, "Sender" if uid == me else "Other"))
    monkeypatch.setattr(routes_writers, "emit_to_user", lambda uid, event, payload: pushed.append((uid, event, payload)))
    fake_db.on(PENDING, [])
    fake_db.on("INSERT INTO friend_requests", [
        {"id": "fr1", "requester_id": me, "receiver_id": other, "status": "pending", "created_at": None},
    ])
    r = client.post("/api/friend-requests", json={"receiver_id": other.upper()}, headers=auth_headers(me))
    assert r.status_code == 201
    assert r.get_json()["status"] == "pending"
    (uid, event, payload), = pushed
    assert (uid, event) == (other, "friend_request")
    assert payload["requester_name"] == "Sender"


def test_friend_request_to_missing_writer_is_404(client, auth_headers, monkeypatch) -> None:
    monkeypatch.setattr(routes_writers, "get_writer_by_user", lambda uid: None)
    r = client.post("/api/friend-requests", json={"receiver_id": str(uuid.uuid4())},
                    headers=auth_headers(str(uuid.uuid4())))
    assert r.status_code == 404


def _profile_stubs(monkeypatch) -> list:
    seen = []
    monkeypatch.setattr(routes_writers, "get_writer_by_user", lambda uid: _writer(uid))
    monkeypatch.setattr(routes_writers, "get_like_state", lambda wid, viewer: (2, False))
    monkeypatch.setattr(routes_writers, "list_user_characters", lambda uid: [])

    def _received(user_id, include_pending):
        seen.append(include_pending)
        return [
            {"id": "f1", "is_approved": True, "tags": ["quick_responses"]},
            {"id": "f2", "is_approved": False, "tags": ["slow_responses"]},
        ]

    monkeypatch.setattr(routes_writers, "list_received_feedback", _received)
    return seen


def test_profile_shows_pending_feedback_only_to_owner(client, auth_headers, monkeypatch) -> None:
    owner = str(uuid.uuid4())
    seen = _profile_stubs(monkeypatch)
    client.get(f"/api/writers/{owner}", headers=auth_headers(owner))
    client.get(f"/api/writers/{owner}", headers=auth_headers(str(uuid.uuid4())))
    r = client.get(f"/api/writers/{owner}")
    assert seen == [True, False, False]
    assert r.get_json()["tag_counts"] == {"quick_responses": 1}
    assert r.get_json()["likes_count"] == 2


def test_directory_rejects_unknown_sort(client) -> None:
    r = client.get("/api/writers?sort=loudest")
    assert r.status_code == 400
