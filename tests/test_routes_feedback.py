from __future__ import annotations

import uuid

import routes_feedback

AUTHOR, RECIPIENT, OUTSIDER = (str(uuid.uuid4()) for _ in range(3))
FEEDBACK_ID = str(uuid.uuid4())


def _stub(monkeypatch) -> list:
    calls = []
    monkeypatch.setattr(routes_feedback, "get_feedback", lambda fid: {
        "id": fid, "user_id": AUTHOR, "user_a": AUTHOR, "user_b": RECIPIENT, "is_approved": False,
    })
    monkeypatch.setattr(routes_feedback, "approve_feedback",
                        lambda fid: calls.append(("approve", fid)) or {"id": fid, "is_approved": True})
    monkeypatch.setattr(routes_feedback, "delete_feedback", lambda fid: calls.append(("delete", fid)) or True)
    monkeypatch.setattr(routes_feedback, "log_audit_event", lambda *a, **k: calls.append(("audit", a[1])))
    return calls


def test_recipient_can_approve(client, auth_headers, monkeypatch) -> None:
    calls = _stub(monkeypatch)
    r = client.post(f"/api/feedback/{FEEDBACK_ID}/approve", headers=auth_headers(RECIPIENT))
    assert r.status_code == 200
    assert r.get_json()["is_approved"] is True
    assert calls == [("approve", FEEDBACK_ID), ("audit", "approve_feedback")]


def test_author_and_outsider_cannot_approve(client, auth_headers, monkeypatch) -> None:
    calls = _stub(monkeypatch)
    for user in (AUTHOR, OUTSIDER):
        r = client.post(f"/api/feedback/{FEEDBACK_ID}/approve", headers=auth_headers(user))
        assert r.status_code == 404
    assert calls == []


def test_only_recipient_can_delete(client, auth_headers, monkeypatch) -> None:
    calls = _stub(monkeypatch)
    assert client.delete(f"/api/feedback/{FEEDBACK_ID}", headers=auth_headers(AUTHOR)).status_code == 404
    assert client.delete(f"/api/feedback/{FEEDBACK_ID}", headers=auth_headers(OUTSIDER)).status_code == 404
    assert calls == []
    r = client.delete(f"/api/feedback/{FEEDBACK_ID}", headers=auth_headers(RECIPIENT))
    assert r.status_code == 200
    assert calls == [("delete", FEEDBACK_ID), ("audit", "delete_feedback")]


def test_missing_feedback_is_404(client, auth_headers, monkeypatch) -> None:
    monkeypatch.setattr(routes_feedback, "get_feedback", lambda fid: None)
    r = client.post(f"/api/feedback/{FEEDBACK_ID}/approve", headers=auth_headers(RECIPIENT))
    assert r.status_code == 404


def test_received_feedback_pending_only_for_owner(client, auth_headers, fake_db) -> None:
    fake_db.on("FROM rp_session_feedback f", [
        {"id": "f1", "user_id": AUTHOR, "author_name": "Ash", "is_approved": True, "tags": ["creative_writing"]},
    ])
    client.get(f"/api/users/{RECIPIENT}/feedback", headers=auth_headers(RECIPIENT))
    client.get(f"/api/users/{RECIPIENT}/feedback", headers=auth_headers(OUTSIDER))
    r = client.get(f"/api/users/{RECIPIENT}/feedback")
    owner_sql, outsider_sql, anon_sql = (sql for sql, _ in fake_db.executed)
    assert "is_approved = TRUE" not in owner_sql
    assert "is_approved = TRUE" in outsider_sql
    assert "is_approved = TRUE" in anon_sql
    assert r.get_json()["tag_counts"] == {"creative_writing": 1}


def test_submit_rejects_unknown_tags(client, auth_headers, monkeypatch) -> None:
    monkeypatch.setattr(routes_feedback, "load_participant_session", lambda sid, uid: {"id": sid})
    r = client.post(f"/api/sessions/{uuid.uuid4()}/feedback", json={"tags": ["rude"]}, headers=auth_headers(AUTHOR))
    assert r.status_code == 400
    assert "rude" in r.get_json()["error"]


def test_submit_twice_is_409(client, auth_headers, monkeypatch) -> None:
    monkeypatch.setattr(routes_feedback, "load_participant_session", lambda sid, uid: {"id": sid})
    monkeypatch.setattr(routes_feedback, "submit_feedback", lambda sid, uid, text, tags: None)
    r = client.post(f"/api/sessions/{uuid.uuid4()}/feedback", json={"feedback": "Lovely pacing"},
                    headers=auth_headers(AUTHOR))
    assert r.status_code == 409
