from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import routes_feed

NOW = datetime(2026, 5, 2, 20, 0, tzinfo=timezone.utc)
ME, ONLINE, TOP, QUIET = (str(uuid.uuid4()) for _ in range(4))


def _post(pid: str, user_id: str, erp: bool, minutes_ago: int, title: str = "Looking for a rival") -> dict:
    return {
        "id": pid,
        "user_id": user_id,
        "title": title,
        "description": "",
        "genres": ["fantasy"],
        "erp_allowed": erp,
        "created_at": NOW - timedelta(minutes=minutes_ago),
    }


def _stub_feed(monkeypatch) -> None:
    monkeypatch.setattr(routes_feed, "list_announcements", lambda: [
        _post("mine", ME, False, 1),
        _post("online", ONLINE, True, 5),
        _post("top", TOP, False, 10, title="Heist crew"),
        _post("quiet", QUIET, True, 20),
    ])
    monkeypatch.setattr(routes_feed, "list_online_writers", lambda: [{"user_id": ONLINE}, {"user_id": ME}])
    monkeypatch.setattr(routes_feed, "list_top_writers", lambda: [{"user_id": TOP}])


def _ids(r) -> list[str]:
    assert r.status_code == 200
    return [a["id"] for a in r.get_json()]


def test_feed_excludes_callers_own_posts(client, auth_headers, monkeypatch) -> None:
    _stub_feed(monkeypatch)
    assert _ids(client.get("/api/announcements", headers=auth_headers(ME))) == ["online", "top", "quiet"]
    assert _ids(client.get("/api/announcements")) == ["mine", "online", "top", "quiet"]


def test_feed_erp_filter(client, auth_headers, monkeypatch) -> None:
    _stub_feed(monkeypatch)
    headers = auth_headers(ME)
    assert _ids(client.get("/api/announcements?erp=yes", headers=headers)) == ["online", "quiet"]
    assert _ids(client.get("/api/announcements?erp=no", headers=headers)) == ["top"]


def test_feed_rejects_unknown_erp_value(client, monkeypatch) -> None:
    _stub_feed(monkeypatch)
    r = client.get("/api/announcements?erp=maybe")
    assert r.status_code == 400


def test_feed_online_and_top_filters(client, auth_headers, monkeypatch) -> None:
    _stub_feed(monkeypatch)
    headers = auth_headers(ME)
    assert _ids(client.get("/api/announcements?online=1", headers=headers)) == ["online"]
    assert _ids(client.get("/api/announcements?top=true", headers=headers)) == ["top"]
    assert _ids(client.get("/api/announcements?online=1&top=1", headers=headers)) == []


def test_feed_query_matches_title(client, monkeypatch) -> None:
    _stub_feed(monkeypatch)
    assert _ids(client.get("/api/announcements?q=heist")) == ["top"]


def test_announcement_needs_own_character(client, auth_headers, monkeypatch) -> None:
    monkeypatch.setattr(routes_feed, "validate_announcement_payload",
                        lambda data: ({"character_id": data.get("character_id")}, None))
    monkeypatch.setattr(routes_feed, "owns_character", lambda cid, uid: False)
    r = client.post("/api/announcements", json={"character_id": str(uuid.uuid4())}, headers=auth_headers(ME))
    assert r.status_code == 400
