from __future__ import annotations

import uuid

import permissions
import routes_characters


def _character(cid: str, user_id: str, name: str = "Wren") -> dict:
    return {"id": cid, "user_id": user_id, "name": name, "sex": "female", "role_tags": ["rogue"]}


def test_create_requires_writer_profile(client, auth_headers, monkeypatch) -> None:
    monkeypatch.setattr(permissions, "get_writer_by_user", lambda uid: None)
    r = client.post("/api/characters", json={"name": "Wren"}, headers=auth_headers(str(uuid.uuid4())))
    assert r.status_code == 403


def test_create_is_owned_by_caller(client, auth_headers, fake_db, monkeypatch) -> None:
    me = str(uuid.uuid4())
    monkeypatch.setattr(permissions, "get_writer_by_user", lambda uid: {"id": "w1", "user_id": uid})
    fake_db.on("INSERT INTO characters", [_character("c1", me)])
    r = client.post("/api/characters", json={"name": " Wren ", "sex": "Female"}, headers=auth_headers(me))
    assert r.status_code == 201
    _, params = fake_db.statements("INSERT INTO characters")[0]
    assert params[0] == me
    assert "Wren" in params and "female" in params


def test_create_rejects_unknown_sex(client, auth_headers, fake_db, monkeypatch) -> None:
    monkeypatch.setattr(permissions, "get_writer_by_user", lambda uid: {"id": "w1", "user_id": uid})
    r = client.post("/api/characters", json={"name": "Wren", "sex": "dragon"}, headers=auth_headers(str(uuid.uuid4())))
    assert r.status_code == 400
    assert fake_db.executed == []


def test_update_by_non_owner_is_404(client, auth_headers, fake_db) -> None:
    me, cid = str(uuid.uuid4()), str(uuid.uuid4())
    fake_db.on("UPDATE characters", [])
    r = client.patch(f"/api/characters/{cid}", json={"name": "Stolen"}, headers=auth_headers(me))
    assert r.status_code == 404
    sql, params = fake_db.executed[0]
    assert "WHERE id = %s AND user_id = %s" in sql
    assert params[-2:] == (cid, me)


def test_delete_by_non_owner_is_404(client, auth_headers, fake_db) -> None:
    fake_db.on("DELETE FROM characters", [])
    r = client.delete(f"/api/characters/{uuid.uuid4()}", headers=auth_headers(str(uuid.uuid4())))
    assert r.status_code == 404


def test_delete_own_character(client, auth_headers, fake_db) -> None:
    fake_db.on("DELETE FROM characters", [("deleted",)])
    r = client.delete(f"/api/characters/{uuid.uuid4()}", headers=auth_headers(str(uuid.uuid4())))
    assert r.status_code == 200


def test_browse_filters_by_sex_and_limit(client, monkeypatch) -> None:
    monkeypatch.setattr(routes_characters, "list_characters", lambda: [
        _character("c1", "u1", "Wren"),
        dict(_character("c2", "u2", "Bram"), sex="male"),
        _character("c3", "u3", "Ivy"),
    ])
    r = client.get("/api/characters?sex=female&limit=1")
    assert r.status_code == 200
    assert len(r.get_json()) == 1
    assert r.get_json()[0]["sex"] == "female"
    assert client.get("/api/characters?sex=dragon").status_code == 400


def test_missing_character_is_404(client, monkeypatch) -> None:
    monkeypatch.setattr(routes_characters, "get_character", lambda cid: None)
    r = client.get(f"/api/characters/{uuid.uuid4()}")
    assert r.status_code == 404
