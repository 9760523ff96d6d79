from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = str(Path(__file__).resolve().parents[1])
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# No eventlet monkey-patching inside the test process.
os.environ["QUILLMATE_SOCKETIO_ASYNC"] = "threading"
os.environ["QUILLMATE_PERSIST_SECRETS"] = "0"
for _key in ("QUILLMATE_SOCKETIO_MESSAGE_QUEUE", "SOCKETIO_MESSAGE_QUEUE", "REDIS_URL"):
    os.environ.pop(_key, None)


@pytest.fixture
def app_settings(tmp_path: Path) -> dict:
    return {
        "secret_key": "test-secret-key-" + "x" * 48,
        "jwt_secret": "test-jwt-secret-" + "y" * 48,
        "jwt_token_location": ["headers"],
        "upload_root": str(tmp_path / "uploads"),
        "public_base_url": "https://quill.test",
        "log_file_path": str(tmp_path / "logs" / "server.log"),
    }


@pytest.fixture
def app(app_settings, monkeypatch):
    import server_init

    monkeypatch.setattr(server_init, "is_auth_token_revoked", lambda jti: False)
    monkeypatch.setattr(server_init, "is_refresh_token_active", lambda user_id, jti: True)
    flask_app, _socketio = server_init.create_app(app_settings, init_db=False)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    from flask_jwt_extended import create_access_token

    def _make(user_id: str) -> dict:
        with app.app_context():
            token = create_access_token(identity=user_id)
        return {"Authorization": f"Bearer {token}"}

    return _make


class FakeCursor:
    def __init__(self, conn: "FakeConnection", dict_rows: bool) -> None:
        self.conn = conn
        self.dict_rows = dict_rows
        self.rowcount = 0
        self._rows: list = []

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None

    def execute(self, sql: str, params=None) -> None:
        sql = " ".join(sql.split())
        self.conn.executed.append((sql, params))
        self._rows = list(self.conn.answer(sql, params))
        self.rowcount = len(self._rows)

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def close(self) -> None:
        pass


class FakeConnection:
    """psycopg2 stand-in: records SQL and answers from scripted rows.

    `on(fragment, rows, ...)` answers the first statement containing
    `fragment`. Several row lists are handed out one per matching statement,
    the last one repeating. A callable gets the params and returns rows.
    """

    def __init__(self) -> None:
        self.executed: list[tuple[str, object]] = []
        self.commits = 0
        self.rollbacks = 0
        self._rules: list[tuple[str, list]] = []

    def on(self, fragment: str, *answers) -> "FakeConnection":
        self._rules.append((" ".join(fragment.split()), list(answers)))
        return self

    def answer(self, sql: str, params):
        for fragment, answers in self._rules:
            if fragment in sql:
                rows = answers.pop(0) if len(answers) > 1 else answers[0]
                return rows(params) if callable(rows) else rows
        return []

    def statements(self, fragment: str) -> list[tuple[str, object]]:
        return [(sql, params) for sql, params in self.executed if fragment in sql]

    def cursor(self, cursor_factory=None) -> FakeCursor:
        return FakeCursor(self, dict_rows=cursor_factory is not None)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        pass


@pytest.fixture
def fake_db(monkeypatch) -> FakeConnection:
    """Route every data helper's connection to one FakeConnection."""
    import announcements
    import characters
    import database
    import direct_messages
    import feedback
    import roleplay_sessions
    import security
    import viewers
    import writers

    conn = FakeConnection()
    monkeypatch.setattr(database, "_acquire_conn", lambda: (conn, True))
    monkeypatch.setattr(database, "_release_conn", lambda c, from_pool: None)
    for mod in (database, announcements, characters, direct_messages, feedback, roleplay_sessions, security,
                viewers, writers):
        if hasattr(mod, "get_db"):
            monkeypatch.setattr(mod, "get_db", lambda: conn)
    return conn
