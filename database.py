#!/usr/bin/env python3
"""
Quillmate – database helpers (PostgreSQL version)

• PostgreSQL via Flask g (one connection per request)
• Optional ThreadedConnectionPool shared with background jobs
• Full table set for writers, characters, announcements, DMs and roleplay sessions
• Column patches for databases created by older releases
• Auth token store (refresh rotation + revocation)
• Janitor jobs: inactivity reminders, stale viewer cleanup
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool
from flask import g

from constants import (
    APP_VERSION,
    REMINDER_COOLDOWN_MINUTES,
    REMINDER_IDLE_MINUTES,
    REMINDER_TEXT,
    get_db_connection_string,
    redact_postgres_dsn,
    sanitize_postgres_dsn,
)
from session_rules import should_send_reminder


# ----------------------------------------------------------------------
# Connection helpers
# ----------------------------------------------------------------------

# Optional global connection pool. Enabled by calling init_db_pool().
_POOL: ThreadedConnectionPool | None = None
_DSN: str | None = None


def init_db_pool(minconn: int = 1, maxconn: int = 10, dsn: str | None = None) -> None:
    """Initialise a global ThreadedConnectionPool.

    Safe to call multiple times (no-op after first init).
    """
    global _POOL, _DSN
    if _POOL is not None:
        return

    _DSN = str(sanitize_postgres_dsn(dsn or get_db_connection_string()))

    try:
        _POOL = ThreadedConnectionPool(minconn=int(minconn), maxconn=int(maxconn), dsn=_DSN)
        logging.info("✅  Postgres connection pool ready (min=%s max=%s)", minconn, maxconn)
    except psycopg2.Error as e:
        _POOL = None
        logging.warning("⚠️  Could not initialise Postgres pool; falling back to direct connects: %s", e)


def _acquire_conn():
    """Acquire a connection either from the pool or by direct connect.

    Returns (conn, from_pool: bool)
    """
    if _POOL is not None:
        return _POOL.getconn(), True
    return psycopg2.connect(_DSN or get_db_connection_string()), False


def _release_conn(conn, from_pool: bool) -> None:
    if conn is None:
        return
    if _POOL is not None and from_pool:
        try:
            # Ensure a clean connection is returned to the pool.
            conn.rollback()
        except psycopg2.Error:
            pass
        _POOL.putconn(conn)
    else:
        conn.close()


def get_db() -> psycopg2.extensions.connection:
    """
    Return one psycopg2 connection per Flask request context (stored in g.db).
    """
    if not hasattr(g, "db"):
        conn, from_pool = _acquire_conn()
        g.db = conn
        g.db_from_pool = from_pool
    return g.db


def close_db(error=None):
    """
    Teardown: release the connection stored in g.db (if any).
    Called automatically via app.teardown_appcontext.
    """
    db_conn = g.pop("db", None)
    from_pool = bool(g.pop("db_from_pool", False))
    if db_conn is not None:
        try:
            _release_conn(db_conn, from_pool)
        except psycopg2.Error as e:
            logging.error("Error releasing DB connection: %s", e)
    if error:
        logging.error("DB teardown error: %s", error)


def dict_cursor(conn=None):
    """Cursor yielding dict rows (column name -> value)."""
    return (conn or get_db()).cursor(cursor_factory=RealDictCursor)


def jsonable(value):
    """Rows -> JSON-friendly values (timestamps as ISO 8601, UUIDs as str)."""
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


# ----------------------------------------------------------------------
# Column / table patch helpers
# ----------------------------------------------------------------------
def _column_exists(cur, table: str, column: str) -> bool:
    cur.execute(
        """
        SELECT 1
          FROM information_schema.columns
         WHERE table_schema = 'public'
           AND table_name = %s
           AND column_name = %s;
        """,
        (table, column),
    )
    return cur.fetchone() is not None


def _add_missing_columns(table: str, columns: list[tuple[str, str]]) -> None:
    conn = get_db()
    changed = False
    with conn.cursor() as cur:
        for name, ddl in columns:
            if _column_exists(cur, table, name):
                continue
            logging.warning("Adding %s.%s column", table, name)
            cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {ddl};")
            changed = True
    if changed:
        conn.commit()


def ensure_writer_presence_column():
    """Add writers.last_seen (heartbeat-driven online flag) if it does not exist."""
    _add_missing_columns("writers", [("last_seen", "TIMESTAMP WITH TIME ZONE")])


def ensure_character_style_column():
    """Characters created before themed styles existed have no style column."""
    _add_missing_columns("characters", [("style", "TEXT")])


def ensure_message_editing_columns():
    """edited_at on DM and session messages."""
    _add_missing_columns("dm_messages", [("edited_at", "TIMESTAMP WITH TIME ZONE")])
    _add_missing_columns("rp_session_messages", [("edited_at", "TIMESTAMP WITH TIME ZONE")])


def ensure_session_metadata_columns():
    """
    Session naming, visibility, viewer peak and invitation tracking.
    """
    _add_missing_columns(
        "rp_sessions",
        [
            ("name", "TEXT"),
            ("style", "TEXT"),
            ("is_public", "BOOLEAN NOT NULL DEFAULT FALSE"),
            ("max_viewers", "INTEGER NOT NULL DEFAULT 0"),
            ("pending_character_selection_user_id", "UUID REFERENCES users(id) ON DELETE SET NULL"),
            ("reminder_sent_at", "TIMESTAMP WITH TIME ZONE"),
        ],
    )


def ensure_schema_meta() -> None:
    """Record the running app version in quillmate_schema_meta (idempotent)."""
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS quillmate_schema_meta (
                version     TEXT PRIMARY KEY,
                applied_at  TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        cur.execute(
            "INSERT INTO quillmate_schema_meta (version) VALUES (%s) ON CONFLICT (version) DO NOTHING;",
            (APP_VERSION,),
        )
    conn.commit()


# ----------------------------------------------------------------------
# Full schema creation
# ----------------------------------------------------------------------
def _create_full_schema():
    """
    Create all tables. UUID primary keys come from gen_random_uuid() (PostgreSQL 13+).
    """
    conn, from_pool = _acquire_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                /* ── Accounts ─────────────────────────────────────────────── */
                CREATE TABLE IF NOT EXISTS users (
                    id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    email       TEXT UNIQUE NOT NULL,
                    password    TEXT NOT NULL,
                    created_at  TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS auth_tokens (
                    jti           TEXT PRIMARY KEY,
                    user_id       UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    token_type    TEXT NOT NULL,
                    expires_at    TIMESTAMP WITH TIME ZONE,
                    revoked_at    TIMESTAMP WITH TIME ZONE,
                    replaced_by   TEXT,
                    last_used_at  TIMESTAMP WITH TIME ZONE,
                    user_agent    TEXT,
                    ip_address    TEXT,
                    created_at    TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                );
                CREATE INDEX IF NOT EXISTS idx_auth_tokens_user ON auth_tokens(user_id);

                CREATE TABLE IF NOT EXISTS audit_log (
                    id         SERIAL PRIMARY KEY,
                    actor      TEXT,
                    action     TEXT NOT NULL,
                    target     TEXT,
                    details    TEXT,
                    timestamp  TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                );

                /* ── Writers ──────────────────────────────────────────────── */
                CREATE TABLE IF NOT EXISTS writers (
                    id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_id       UUID NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
                    name          VARCHAR(255) NOT NULL,
                    portrait_url  TEXT,
                    description   TEXT,
                    last_seen     TIMESTAMP WITH TIME ZONE,
                    created_at    TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                    updated_at    TIMESTAMP WITH TIME ZONE DEFAULT NOW()
                );

                CREATE TABLE IF NOT EXISTS writer_likes (
                    id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    writer_id   UUID NOT NULL REFERENCES writers(id) ON DELETE CASCADE,
                    liker_id    UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    created_at  TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                    UNIQUE (writer_id, liker_id)
                );

                CREATE TABLE IF NOT EXISTS writer_comments (
                    id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    writer_id     UUID NOT NULL REFERENCES writers(id) ON DELETE CASCADE,
                    commenter_id  UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    body          TEXT NOT NULL,
                    created_at    TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                    updated_at    TIMESTAMP WITH TIME ZONE DEFAULT NOW()
                );

                CREATE TABLE IF NOT EXISTS friend_requests (
                    id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    requester_id  UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    receiver_id   UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    status        TEXT NOT NULL DEFAULT 'pending'
                                  CHECK (status IN ('pending', 'accepted', 'rejected')),
                    created_at    TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                    updated_at    TIMESTAMP WITH TIME ZONE DEFAULT NOW()
                );

                /* ── Characters & announcements ───────────────────────────── */
                CREATE TABLE IF NOT EXISTS characters (
                    id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_id       UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    name          TEXT NOT NULL,
                    summary       TEXT,
                    description   TEXT,
                    sex           TEXT CHECK (sex IN ('male', 'female', 'non_binary')),
                    age           INTEGER CHECK (age IS NULL OR age >= 0),
                    role_tags     TEXT[] DEFAULT '{}',
                    portrait_url  TEXT,
                    style         TEXT,
                    created_at    TIMESTAMP WITH TIME ZONE DEFAULT NOW()
                );

                CREATE TABLE IF NOT EXISTS roleplay_announcements (
                    id             UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_id        UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    character_id   UUID NOT NULL REFERENCES characters(id) ON DELETE CASCADE,
                    title          TEXT NOT NULL,
                    description    TEXT NOT NULL,
                    genres         TEXT[] DEFAULT '{}',
                    writing_style  TEXT,
                    erp_allowed    BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at     TIMESTAMP WITH TIME ZONE DEFAULT NOW()
                );

                /* ── Direct messages ──────────────────────────────────────── */
                CREATE TABLE IF NOT EXISTS dm_threads (
                    id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_a      UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    user_b      UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    created_at  TIMESTAMP WITH TIME ZONE DEFAULT NOW()
                );

                CREATE TABLE IF NOT EXISTS dm_messages (
                    id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    thread_id   UUID NOT NULL REFERENCES dm_threads(id) ON DELETE CASCADE,
                    sender_id   UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    body        TEXT NOT NULL,
                    created_at  TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                    edited_at   TIMESTAMP WITH TIME ZONE
                );

                CREATE TABLE IF NOT EXISTS dm_thread_reads (
                    thread_id             UUID NOT NULL REFERENCES dm_threads(id) ON DELETE CASCADE,
                    user_id               UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    last_read_at          TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    last_read_message_id  UUID,
                    PRIMARY KEY (thread_id, user_id)
                );

                /* ── Roleplay sessions ────────────────────────────────────── */
                CREATE TABLE IF NOT EXISTS rp_sessions (
                    id                 UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_a             UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    user_b             UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    status             TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'closed')),
                    is_active          BOOLEAN NOT NULL DEFAULT TRUE,
                    closed_by          UUID REFERENCES users(id),
                    closed_at          TIMESTAMP WITH TIME ZONE,
                    last_message_at    TIMESTAMP WITH TIME ZONE,
                    reminder_sent_at   TIMESTAMP WITH TIME ZONE,
                    name               TEXT,
                    style              TEXT,
                    is_public          BOOLEAN NOT NULL DEFAULT FALSE,
                    max_viewers        INTEGER NOT NULL DEFAULT 0,
                    pending_character_selection_user_id UUID REFERENCES users(id) ON DELETE SET NULL,
                    created_at         TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at         TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
                CREATE INDEX IF NOT EXISTS rp_sessions_user_a_idx ON rp_sessions (user_a);
                CREATE INDEX IF NOT EXISTS rp_sessions_user_b_idx ON rp_sessions (user_b);
                CREATE INDEX IF NOT EXISTS rp_sessions_last_message_at_idx ON rp_sessions (last_message_at);

                CREATE TABLE IF NOT EXISTS rp_session_characters (
                    id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    session_id    UUID NOT NULL REFERENCES rp_sessions(id) ON DELETE CASCADE,
                    character_id  UUID NOT NULL REFERENCES characters(id) ON DELETE CASCADE,
                    created_at    TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    UNIQUE (session_id, character_id)
                );

                CREATE TABLE IF NOT EXISTS rp_session_messages (
                    id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    session_id    UUID NOT NULL REFERENCES rp_sessions(id) ON DELETE CASCADE,
                    sender_id     UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    message_type  TEXT NOT NULL CHECK (message_type IN ('ooc', 'narration')),
                    body          TEXT NOT NULL,
                    character_id  UUID REFERENCES characters(id) ON DELETE SET NULL,
                    created_at    TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    edited_at     TIMESTAMP WITH TIME ZONE
                );
                CREATE INDEX IF NOT EXISTS rp_session_messages_session_idx
                    ON rp_session_messages (session_id, created_at);

                CREATE TABLE IF NOT EXISTS rp_response_times (
                    id                     UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_id                UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    session_id             UUID NOT NULL REFERENCES rp_sessions(id) ON DELETE CASCADE,
                    response_time_seconds  INTEGER NOT NULL,
                    created_at             TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );

                CREATE TABLE IF NOT EXISTS rp_session_feedback (
                    id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    session_id   UUID NOT NULL REFERENCES rp_sessions(id) ON DELETE CASCADE,
                    user_id      UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    feedback     TEXT,
                    tags         TEXT[] DEFAULT '{}',
                    is_approved  BOOLEAN NOT NULL DEFAULT FALSE,
                    approved_at  TIMESTAMP WITH TIME ZONE,
                    created_at   TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    UNIQUE (session_id, user_id)
                );

                CREATE TABLE IF NOT EXISTS rp_session_reads (
                    session_id            UUID NOT NULL REFERENCES rp_sessions(id) ON DELETE CASCADE,
                    user_id               UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    last_read_at          TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    last_read_message_id  UUID,
                    PRIMARY KEY (session_id, user_id)
                );

                CREATE TABLE IF NOT EXISTS rp_session_viewers (
                    id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    session_id  UUID NOT NULL REFERENCES rp_sessions(id) ON DELETE CASCADE,
                    user_id     UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    joined_at   TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    last_seen   TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    UNIQUE (session_id, user_id)
                );
                CREATE INDEX IF NOT EXISTS rp_session_viewers_last_seen_idx
                    ON rp_session_viewers (session_id, last_seen);

                /* ── General chat ─────────────────────────────────────────── */
                CREATE TABLE IF NOT EXISTS general_chat_messages (
                    id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_id     UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    body        TEXT NOT NULL,
                    created_at  TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
                """
            )
        conn.commit()
    finally:
        _release_conn(conn, from_pool)


# ----------------------------------------------------------------------
# Database initialization sequence
# ----------------------------------------------------------------------
def init_database():
    """
    Create or patch the entire schema.
    Called once at application startup (inside an app context).
    """
    logging.info("🔧  Initialising DB…")
    _create_full_schema()

    ensure_writer_presence_column()
    ensure_character_style_column()
    ensure_message_editing_columns()
    ensure_session_metadata_columns()
    ensure_schema_meta()

    logging.info("✅  DB ready at %s", redact_postgres_dsn(get_db_connection_string()))


def get_db_identity() -> dict:
    """Return runtime identity information for the current DB connection.

    Helps detect 'wrong database / wrong role' mistakes quickly.
    """
    conn = get_db()
    out = {
        "current_user": None,
        "current_database": None,
        "server_addr": None,
        "server_port": None,
        "server_version": None,
    }
    try:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT current_user, current_database(), inet_server_addr(), inet_server_port(), version();"
            )
            row = cur.fetchone()
        if row:
            out["current_user"] = row[0]
            out["current_database"] = row[1]
            out["server_addr"] = str(row[2]) if row[2] is not None else None
            out["server_port"] = int(row[3]) if row[3] is not None else None
            out["server_version"] = str(row[4]) if row[4] is not None else None
    except psycopg2.Error as exc:
        conn.rollback()
        out["error"] = str(exc)
    return out


def get_schema_version() -> str:
    """Latest version recorded in quillmate_schema_meta, else a table-count fingerprint."""
    conn = get_db()
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT to_regclass('public.quillmate_schema_meta');")
            row = cur.fetchone()
            if row and row[0]:
                cur.execute("SELECT version FROM quillmate_schema_meta ORDER BY applied_at DESC LIMIT 1;")
                r2 = cur.fetchone()
                if r2 and r2[0]:
                    return str(r2[0])
            cur.execute("SELECT count(*) FROM pg_tables WHERE schemaname='public';")
            n_tables = cur.fetchone()[0]
        return f"unversioned (public tables={n_tables})"
    except psycopg2.Error as exc:
        conn.rollback()
        return f"unknown ({exc})"


# ----------------------------------------------------------------------
# Accounts
# ----------------------------------------------------------------------

def create_user(email: str, password_hash: str) -> str | None:
    """Insert a user row. Returns the new id, or None if the email is taken."""
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO users (email, password)
            VALUES (%s, %s)
            ON CONFLICT (email) DO NOTHING
            RETURNING id;
            """,
            (email, password_hash),
        )
        row = cur.fetchone()
    conn.commit()
    return str(row[0]) if row else None


def get_user_by_email(email: str) -> dict | None:
    with dict_cursor() as cur:
        cur.execute("SELECT id, email, password FROM users WHERE email = %s;", (email,))
        return cur.fetchone()


def get_user_by_id(user_id: str) -> dict | None:
    with dict_cursor() as cur:
        cur.execute("SELECT id, email, created_at FROM users WHERE id = %s;", (user_id,))
        return cur.fetchone()


def update_user_password(user_id: str, password_hash: str) -> None:
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute("UPDATE users SET password = %s WHERE id = %s;", (password_hash, user_id))
    conn.commit()


# ----------------------------------------------------------------------
# Auth token store helpers (refresh rotation + revocation)
# ----------------------------------------------------------------------

def store_auth_token(
    jti: str,
    user_id: str,
    token_type: str,
    expires_at: datetime | None,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> None:
    """Persist an issued JWT's JTI.

    Access tokens are stored too so logout can revoke them immediately.
    """
    if not jti or not user_id or not token_type:
        return

    conn = get_db()
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO auth_tokens (jti, user_id, token_type, expires_at, user_agent, ip_address)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (jti) DO NOTHING;
            """,
            (jti, user_id, token_type, expires_at, user_agent, ip_address),
        )
    conn.commit()


def revoke_auth_token(jti: str) -> None:
    """Revoke a specific token by JTI."""
    if not jti:
        return
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE auth_tokens
               SET revoked_at = COALESCE(revoked_at, CURRENT_TIMESTAMP)
             WHERE jti = %s;
            """,
            (jti,),
        )
    conn.commit()


def revoke_all_tokens_for_user(user_id: str) -> int:
    """Revoke every live token of a user. Returns the number revoked."""
    if not user_id:
        return 0
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE auth_tokens
               SET revoked_at = CURRENT_TIMESTAMP
             WHERE user_id = %s
               AND revoked_at IS NULL;
            """,
            (user_id,),
        )
        n = cur.rowcount
    conn.commit()
    return n


def is_auth_token_revoked(jti: str) -> bool:
    """Return True if an issued token should be treated as revoked.

    Unknown JTIs and server-side expired tokens are treated as revoked.
    """
    if not jti:
        return True

    conn = get_db()
    with conn.cursor() as cur:
        cur.execute("SELECT revoked_at, expires_at FROM auth_tokens WHERE jti = %s;", (jti,))
        row = cur.fetchone()

    if not row:
        return True
    revoked_at, expires_at = row
    if revoked_at is not None:
        return True
    if expires_at is not None and expires_at <= datetime.now(timezone.utc):
        return True
    return False


def is_refresh_token_active(user_id: str, jti: str) -> bool:
    """A refresh token is ACTIVE only if it exists, is unexpired and was not revoked/replaced."""
    if not user_id or not jti:
        return False
    conn = get_db()
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT revoked_at, replaced_by, expires_at
              FROM auth_tokens
             WHERE jti = %s
               AND user_id = %s
               AND token_type = 'refresh';
            """,
            (jti, user_id),
        )
        row = cur.fetchone()
    if not row:
        return False
    revoked_at, replaced_by, expires_at = row
    if revoked_at is not None or replaced_by is not None:
        return False
    if expires_at is not None and expires_at <= datetime.now(timezone.utc):
        return False
    return True


def rotate_refresh_token(
    user_id: str,
    old_jti: str,
    new_jti: str,
    new_expires_at: datetime | None,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> bool:
    """Single-use refresh rotation.

    Returns True if rotation succeeded, False if the old token was not ACTIVE.
    """
    if not user_id or not old_jti or not new_jti:
        return False

    conn = get_db()
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE auth_tokens
               SET replaced_by = %s,
                   last_used_at = CURRENT_TIMESTAMP
             WHERE jti = %s
               AND user_id = %s
               AND token_type = 'refresh'
               AND revoked_at IS NULL
               AND replaced_by IS NULL;
            """,
            (new_jti, old_jti, user_id),
        )
        if cur.rowcount != 1:
            conn.rollback()
            return False

        cur.execute(
            """
            INSERT INTO auth_tokens (jti, user_id, token_type, expires_at, user_agent, ip_address)
            VALUES (%s, %s, 'refresh', %s, %s, %s)
            ON CONFLICT (jti) DO NOTHING;
            """,
            (new_jti, user_id, new_expires_at, user_agent, ip_address),
        )
    conn.commit()
    return True


# ----------------------------------------------------------------------
# Janitor jobs (callable outside Flask request/app context)
# ----------------------------------------------------------------------

def send_inactivity_reminders(
    idle_minutes: int = REMINDER_IDLE_MINUTES,
    cooldown_minutes: int = REMINDER_COOLDOWN_MINUTES,
) -> list[dict]:
    """Post the inactivity OOC reminder into every idle active session.

    The reminder is attributed to the participant who posted last. It does not
    touch last_message_at and does not record a response time.

    Returns the inserted reminder messages (with session_id) so the caller can
    broadcast them.
    """
    conn, from_pool = _acquire_conn()
    sent: list[dict] = []
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id, status, is_active, last_message_at, reminder_sent_at, NOW() AS now
                  FROM rp_sessions
                 WHERE status = 'active'
                   AND is_active = TRUE
                   AND last_message_at IS NOT NULL
                   AND last_message_at <= NOW() - (%s || ' minutes')::interval
                 FOR UPDATE SKIP LOCKED;
                """,
                (int(idle_minutes),),
            )
            candidates = cur.fetchall() or []

            for s in candidates:
                if not should_send_reminder(
                    now=s["now"],
                    status=s["status"],
                    is_active=s["is_active"],
                    last_message_at=s["last_message_at"],
                    reminder_sent_at=s["reminder_sent_at"],
                    idle_minutes=idle_minutes,
                    cooldown_minutes=cooldown_minutes,
                ):
                    continue

                cur.execute(
                    """
                    SELECT sender_id
                      FROM rp_session_messages
                     WHERE session_id = %s
                     ORDER BY created_at DESC
                     LIMIT 1;
                    """,
                    (s["id"],),
                )
                last = cur.fetchone()
                if not last:
                    continue

                cur.execute(
                    """
                    INSERT INTO rp_session_messages (session_id, sender_id, message_type, body)
                    VALUES (%s, %s, 'ooc', %s)
                    RETURNING id, session_id, sender_id, message_type, body, character_id, created_at, edited_at;
                    """,
                    (s["id"], last["sender_id"], REMINDER_TEXT),
                )
                msg = cur.fetchone()
                cur.execute(
                    "UPDATE rp_sessions SET reminder_sent_at = NOW() WHERE id = %s;",
                    (s["id"],),
                )
                sent.append(dict(msg))
        conn.commit()
        return sent
    except psycopg2.Error:
        try:
            conn.rollback()
        except psycopg2.Error:
            pass
        logging.exception("send_inactivity_reminders failed")
        return []
    finally:
        _release_conn(conn, from_pool)


def cleanup_stale_session_viewers(stale_minutes: int = 10) -> list[str]:
    """Delete viewer rows whose heartbeat stopped.

    Returns the ids of the sessions that lost viewers so the caller can push
    a fresh viewer list. max_viewers is a high-water mark and is never lowered
    here.
    """
    try:
        stale_minutes = int(stale_minutes or 10)
    except (TypeError, ValueError):
        stale_minutes = 10
    stale_minutes = max(3, min(stale_minutes, 24 * 60))

    conn, from_pool = _acquire_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                DELETE FROM rp_session_viewers
                 WHERE last_seen < NOW() - (%s || ' minutes')::interval
                RETURNING session_id;
                """,
                (stale_minutes,),
            )
            rows = cur.fetchall() or []
        conn.commit()
        return sorted({str(r[0]) for r in rows})
    except psycopg2.Error:
        try:
            conn.rollback()
        except psycopg2.Error:
            pass
        logging.exception("cleanup_stale_session_viewers failed")
        return []
    finally:
        _release_conn(conn, from_pool)


@contextmanager
def background_connection():
    """Pooled connection for work outside a Flask request (janitor threads)."""
    conn, from_pool = _acquire_conn()
    try:
        yield conn
    finally:
        _release_conn(conn, from_pool)
