#!/usr/bin/env python3
"""interactive_setup.py

Quillmate setup wizard.

Quick setup asks for the handful of values a server actually needs (bind
address, PostgreSQL DSN, cookie security, upload root). Advanced mode adds
token lifetimes, pool sizing, CORS origins, janitor timing and logging.

The saved file is compacted to known Quillmate keys.
"""

from __future__ import annotations

import os
import secrets
from typing import Any, Dict

import psycopg2

from constants import (
    DEFAULT_DB_CONNECTION_STRING,
    PORTRAIT_MAX_BYTES,
    REMINDER_COOLDOWN_MINUTES,
    REMINDER_IDLE_MINUTES,
    sanitize_postgres_dsn,
)


# ──────────────────────────────────────────────────────────────────────────────
# Defaults (compact)
# ──────────────────────────────────────────────────────────────────────────────


def get_default_settings() -> Dict[str, Any]:
    """Return the default settings dict.

    server_init.py generates and persists secret_key + jwt_secret if missing.
    """

    dsn = sanitize_postgres_dsn(
        os.getenv("DATABASE_URL")
        or os.getenv("DB_CONNECTION_STRING")
        or DEFAULT_DB_CONNECTION_STRING
    )

    return {
        # ── Core server ──────────────────────────────────────────────────
        "server_name": "Quillmate",
        "host": "0.0.0.0",
        "port": 5000,
        "debug": False,
        "https": False,
        "ssl_cert_file": "",
        "ssl_key_file": "",
        "public_base_url": "",

        # Secrets (server_init.py will generate/persist if missing)
        "secret_key": "",
        "jwt_secret": "",

        # ── Database ─────────────────────────────────────────────────────
        "database_url": dsn,
        "db_pool_min": 1,
        "db_pool_max": 10,

        # ── Auth / cookies ───────────────────────────────────────────────
        "cookie_secure": False,
        "cookie_samesite": "Lax",
        "access_token_minutes": 30,
        "refresh_token_days": 7,

        # ── Uploads (portraits) ──────────────────────────────────────────
        "upload_root": "uploads",
        "max_upload_bytes": PORTRAIT_MAX_BYTES,

        # ── CORS / rate limiting ─────────────────────────────────────────
        # Empty disables CORS. "*" is refused because auth uses cookies.
        "cors_allowed_origins": "",
        "rate_limit_storage_uri": "memory://",
        "rate_limit_login": "10 per minute",
        "rate_limit_register": "5 per minute",
        # In-process write throttles: an int (per minute) or "N@seconds".
        "rate_limit_session_message_write": "30@60",
        "rate_limit_dm_write": "30@60",
        "rate_limit_general_chat_write": "10@30",
        "rate_limit_comment_write": "10@60",

        # Multi-worker Socket.IO (redis://...). Blank = single process.
        "socketio_message_queue": "",

        # ── Background janitor ───────────────────────────────────────────
        "janitor_interval_seconds": 60,
        "reminder_idle_minutes": REMINDER_IDLE_MINUTES,
        "reminder_cooldown_minutes": REMINDER_COOLDOWN_MINUTES,
        "viewer_stale_minutes": 10,

        # ── Logging ──────────────────────────────────────────────────────
        "log_level": "INFO",
        "log_format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        "log_file_path": "logs/server.log",
    }


def _compact_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Drop unknown keys so server_config.json stays small."""
    template = get_default_settings()
    compact: Dict[str, Any] = {}
    for k in template.keys():
        compact[k] = settings.get(k, template[k])
    # rate_limit_* overrides are open-ended; keep any the operator added.
    for k, v in settings.items():
        if k.startswith("rate_limit_") and k not in compact:
            compact[k] = v
    return compact


# ──────────────────────────────────────────────────────────────────────────────
# Prompt helpers
# ──────────────────────────────────────────────────────────────────────────────


def _yn(prompt: str, default: bool = True) -> bool:
    suffix = "[Y/n]" if default else "[y/N]"
    while True:
        raw = (input(f"{prompt} {suffix}: ") or "").strip().lower()
        if not raw:
            return default
        if raw in ("y", "yes"):
            return True
        if raw in ("n", "no"):
            return False
        print("❌ Please answer yes or no.")


def _prompt_str(prompt: str, default: str) -> str:
    raw = input(f"{prompt} [{default}]: ")
    return raw.strip() if raw.strip() else default


def _prompt_int(prompt: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    while True:
        raw = input(f"{prompt} [{default}]: ").strip()
        if not raw:
            val = default
        else:
            try:
                val = int(raw)
            except ValueError:
                print("❌ Please enter a valid integer.")
                continue

        if min_val is not None and val < min_val:
            print(f"❌ Must be ≥ {min_val}.")
            continue
        if max_val is not None and val > max_val:
            print(f"❌ Must be ≤ {max_val}.")
            continue
        return val


def _prompt_choice(prompt: str, default: str, choices: list[str]) -> str:
    ch = {c.lower(): c for c in choices}
    choices_str = "/".join(choices)
    while True:
        raw = (input(f"{prompt} ({choices_str}) [{default}]: ") or "").strip()
        val = (raw or default).strip().lower()
        if val in ch:
            return ch[val]
        print(f"❌ Please choose one of: {choices_str}")


def _check_dsn(dsn: str) -> str | None:
    """Try a connection. Returns an error string, or None when it works."""
    try:
        conn = psycopg2.connect(dsn, connect_timeout=5)
    except psycopg2.Error as e:
        return str(e).strip()
    conn.close()
    return None


# ──────────────────────────────────────────────────────────────────────────────
# Main wizard
# ──────────────────────────────────────────────────────────────────────────────


def interactive_setup(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Run the Quillmate setup wizard and return an updated (compacted) settings dict."""

    base = get_default_settings()
    merged = {**base, **(settings or {})}

    advanced = _yn("Advanced mode? (more prompts)", default=False)

    # ── Core server ───────────────────────────────────────────────────────────
    merged["server_name"] = _prompt_str("Server name", str(merged.get("server_name") or base["server_name"]))
    merged["host"] = _prompt_str("Bind host", str(merged.get("host") or base["host"]))
    merged["port"] = _prompt_int("Bind port", int(merged.get("port") or base["port"]), 1, 65535)

    # ── Database ──────────────────────────────────────────────────────────────
    while True:
        raw_dsn = _prompt_str(
            "PostgreSQL DSN",
            str(merged.get("database_url") or base["database_url"]),
        )
        merged["database_url"] = str(sanitize_postgres_dsn(raw_dsn))
        if merged["database_url"] != raw_dsn:
            print("⚠️  DSN sanitised (removed placeholder angle brackets / quotes).")
        err = _check_dsn(merged["database_url"])
        if err is None:
            print("✅ PostgreSQL connection OK")
            break
        print(f"❌ PostgreSQL connection failed: {err}")
        if not _yn("Try again?", default=True):
            raise SystemExit(1)

    # ── Cookies / HTTPS ───────────────────────────────────────────────────────
    merged["cookie_secure"] = _yn(
        "Are you serving the site over HTTPS (or behind an HTTPS reverse proxy)?",
        default=bool(merged.get("cookie_secure", False)),
    )
    merged["cookie_samesite"] = _prompt_choice(
        "Cookie SameSite",
        str(merged.get("cookie_samesite") or "Lax"),
        ["Lax", "Strict", "None"],
    )
    merged["public_base_url"] = _prompt_str(
        "Public base URL for portrait links (blank = request host)",
        str(merged.get("public_base_url") or ""),
    )

    # ── Uploads ───────────────────────────────────────────────────────────────
    merged["upload_root"] = _prompt_str("Portrait upload directory", str(merged.get("upload_root") or base["upload_root"]))

    # ── CORS ──────────────────────────────────────────────────────────────────
    if advanced:
        cors_default = merged.get("cors_allowed_origins") or ""
        if isinstance(cors_default, (list, tuple)):
            cors_default = ",".join(cors_default)
        raw = input(f"CORS allowed origins (comma-separated, blank = off) [{cors_default}]: ").strip()
        if raw:
            merged["cors_allowed_origins"] = [s.strip() for s in raw.split(",") if s.strip() and s.strip() != "*"]

    # ── Tokens / pool / janitor / logging ─────────────────────────────────────
    if advanced:
        merged["access_token_minutes"] = _prompt_int(
            "Access token minutes",
            int(merged.get("access_token_minutes") or base["access_token_minutes"]),
            1,
            24 * 60,
        )
        merged["refresh_token_days"] = _prompt_int(
            "Refresh token days",
            int(merged.get("refresh_token_days") or base["refresh_token_days"]),
            1,
            365,
        )
        merged["db_pool_min"] = _prompt_int("DB pool min", int(merged.get("db_pool_min") or base["db_pool_min"]), 1, 100)
        merged["db_pool_max"] = _prompt_int("DB pool max", int(merged.get("db_pool_max") or base["db_pool_max"]), 1, 500)
        merged["janitor_interval_seconds"] = _prompt_int(
            "Janitor interval seconds",
            int(merged.get("janitor_interval_seconds") or base["janitor_interval_seconds"]),
            10,
            3600,
        )
        merged["log_level"] = _prompt_choice(
            "Log level",
            str(merged.get("log_level") or base["log_level"]).upper(),
            ["DEBUG", "INFO", "WARNING", "ERROR"],
        )
        merged["log_file_path"] = _prompt_str("Log file path", str(merged.get("log_file_path") or base["log_file_path"]))

    # ── JWT secret (stable) ───────────────────────────────────────────────────
    if not merged.get("jwt_secret"):
        if _yn("Generate & save a stable jwt_secret now?", default=True):
            merged["jwt_secret"] = secrets.token_hex(32)
            print("✅ jwt_secret generated")

    print("\n✅ Setup complete.\n")
    return _compact_settings(merged)
