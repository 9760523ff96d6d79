from __future__ import annotations

import uuid

import routes_sessions
from roleplay_sessions import SessionMessageRejected


def _session(a: str, b: str, **over) -> dict:
    row = {
        "id": str(uuid.uuid4()),
        "user_a": a,
        "user_b": b,
        "status": "active",
        "is_active": True,
        "is_public": True,
        "max_viewers": 0,
    }
    row.update(over)
    return row


def _capture_emits(monkeypatch) -> list:
    sent = []
    monkeypatch.setattr(routes_sessions, "emit_to_room", lambda room, event, payload: sent.append((room, event, payload)))
    monkeypatch.setattr(routes_sessions, "emit_to_user", lambda user, event, payload: sent.append((user, event, payload)))
    return sent


def test_malformed_session_id_is_json_404(client, auth_headers) -> None:
    r = client.post("/api/sessions/not-a-uuid/messages", json={"body": "hi"}, headers=auth_headers("u"))
    assert r.status_code == 404
    assert "error" in r.get_json()


def test_non_participant_cannot_post(client, auth_headers, monkeypatch) -> None:
    monkeypatch.setattr(routes_sessions, "load_participant_session", lambda sid, uid: None)
    r = client.post(f"/api/sessions/{uuid.uuid4()}/messages", json={"body": "hi", "message_type": "ooc"},
                    headers=auth_headers(str(uuid.uuid4())))
    assert r.status_code == 404


def test_post_message_emits_to_session_room(client, auth_headers, monkeypatch) -> None:
    me, partner = str(uuid.uuid4()), str(uuid.uuid4())
    session = _session(me, partner)
    sent = _capture_emits(monkeypatch)
    monkeypatch.setattr(routes_sessions, "load_participant_session", lambda sid, uid: session)

    def _send(session_id, sender_id, message_type, body, character_id):
        assert (sender_id, message_type, body, character_id) == (me, "narration", "She lit the lamp.", None)
        return {"id": "m1", "session_id": session_id, "sender_id": sender_id, "body": body}

    monkeypatch.setattr(routes_sessions, "send_session_message", _send)
    r = client.post(f"/api/sessions/{session['id']}/messages",
                    json={"body": "  She lit the lamp. ", "message_type": "Narration"},
                    headers=auth_headers(me))
    assert r.status_code == 201
    assert r.get_json()["id"] == "m1"
    assert sent == [(f"session:{session['id']}", "session_message", r.get_json())]


def test_rejected_message_keeps_status(client, auth_headers, monkeypatch) -> None:
    me = str(uuid.uuid4())
    monkeypatch.setattr(routes_sessions, "load_participant_session", lambda sid, uid: _session(me, "p"))

    def _send(*args):
        raise SessionMessageRejected("Session is paused. Resume it to post narration.", 409)

    monkeypatch.setattr(routes_sessions, "send_session_message", _send)
    r = client.post(f"/api/sessions/{uuid.uuid4()}/messages", json={"body": "x", "message_type": "narration"},
                    headers=auth_headers(me))
    assert r.status_code == 409
    assert "paused" in r.get_json()["error"]


def test_empty_message_is_400(client, auth_headers, monkeypatch) -> None:
    me = str(uuid.uuid4())
    monkeypatch.setattr(routes_sessions, "load_participant_session", lambda sid, uid: _session(me, "p"))
    r = client.post(f"/api/sessions/{uuid.uuid4()}/messages", json={"body": "   "}, headers=auth_headers(me))
    assert r.status_code == 400


def test_closed_session_cannot_be_resumed(client, auth_headers, monkeypatch) -> None:
    me = str(uuid.uuid4())
    monkeypatch.setattr(routes_sessions, "load_participant_session",
                        lambda sid, uid: _session(me, "p", status="closed", is_active=False))
    r = client.patch(f"/api/sessions/{uuid.uuid4()}", json={"is_active": True}, headers=auth_headers(me))
    assert r.status_code == 409


def test_close_with_bad_feedback_tags_still_closes(client, auth_headers, monkeypatch) -> None:
    me = str(uuid.uuid4())
    session = _session(me, "p")
    closed = dict(session, status="closed", is_active=False, closed_by=me)
    sent = _capture_emits(monkeypatch)
    monkeypatch.setattr(routes_sessions, "load_participant_session", lambda sid, uid: session)
    monkeypatch.setattr(routes_sessions, "close_session", lambda sid, uid: closed)
    monkeypatch.setattr(routes_sessions, "log_audit_event", lambda *a, **k: None)
    r = client.post(f"/api/sessions/{session['id']}/close", json={"tags": ["bogus"]}, headers=auth_headers(me))
    assert r.status_code == 200
    body = r.get_json()
    assert body["session"]["status"] == "closed"
    assert body["feedback"] is None
    assert "bogus" in body["feedback_error"]
    assert sent[0][1] == "session_updated"


def test_closing_twice_is_conflict(client, auth_headers, monkeypatch) -> None:
    me = str(uuid.uuid4())
    monkeypatch.setattr(routes_sessions, "load_participant_session",
                        lambda sid, uid: _session(me, "p", status="closed", is_active=False))
    r = client.post(f"/api/sessions/{uuid.uuid4()}/close", headers=auth_headers(me))
    assert r.status_code == 409


def test_participants_are_not_tracked_as_viewers(client, auth_headers, monkeypatch) -> None:
    me = str(uuid.uuid4())
    session = _session(me, "p", max_viewers=3)
    monkeypatch.setattr(routes_sessions, "load_visible_session", lambda sid, uid: session)

    def _touch(sid, uid):
        raise AssertionError("participant must not be tracked")

    monkeypatch.setattr(routes_sessions, "touch_viewer", _touch)
    r = client.post(f"/api/sessions/{session['id']}/viewers", headers=auth_headers(me))
    assert r.get_json() == {"tracked": False, "max_viewers": 3}


def test_spectator_join_pushes_viewer_snapshot(client, auth_headers, monkeypatch) -> None:
    viewer = str(uuid.uuid4())
    session = _session("a", "b")
    snapshot = {"session_id": session["id"], "viewers": [{"user_id": viewer}], "max_viewers": 1}
    sent = _capture_emits(monkeypatch)
    monkeypatch.setattr(routes_sessions, "load_visible_session", lambda sid, uid: session)
    monkeypatch.setattr(routes_sessions, "touch_viewer", lambda sid, uid: 1)
    monkeypatch.setattr(routes_sessions, "get_session", lambda sid: session)
    monkeypatch.setattr(routes_sessions, "viewers_snapshot", lambda s: snapshot)
    r = client.post(f"/api/sessions/{session['id']}/viewers", headers=auth_headers(viewer))
    assert r.status_code == 200
    assert r.get_json() == dict(snapshot, tracked=True)
    assert sent == [(f"session_viewers:{session['id']}", "viewers_changed", snapshot)]


def test_private_session_cannot_be_spectated(client, auth_headers, monkeypatch) -> None:
    monkeypatch.setattr(routes_sessions, "load_visible_session", lambda sid, uid: None)
    r = client.post(f"/api/sessions/{uuid.uuid4()}/viewers", headers=auth_headers(str(uuid.uuid4())))
    assert r.status_code == 404
