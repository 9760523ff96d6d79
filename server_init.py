#!/usr/bin/env python3
"""
server_init.py
Initialises and runs the Quillmate Flask + Socket.IO application.
Ensures init_database() is called within an application context
and registers teardown properly without causing context errors.
"""

from __future__ import annotations

import json
import os
import logging

# Optional WebSocket support
# - Default: auto (use eventlet if available, otherwise fall back to threading/polling)
# - Override with: QUILLMATE_SOCKETIO_ASYNC=threading|eventlet
QUILLMATE_SOCKETIO_ASYNC = os.environ.get("QUILLMATE_SOCKETIO_ASYNC", "auto").strip().lower()
_EVENTLET_AVAILABLE = False
if QUILLMATE_SOCKETIO_ASYNC in {"auto", "eventlet"}:
    try:
        import eventlet  # type: ignore

        eventlet.monkey_patch()
        _EVENTLET_AVAILABLE = True
    except ImportError:
        _EVENTLET_AVAILABLE = False
import secrets
import sys
from datetime import timedelta, datetime
from pathlib import Path
from typing import Any, Dict, Optional

import psycopg2
import yaml
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_socketio import SocketIO, emit, disconnect
from werkzeug.exceptions import HTTPException

# Socket.IO auth error hardening
from jwt import ExpiredSignatureError
from flask_jwt_extended.exceptions import CSRFError, JWTExtendedException, NoAuthorizationError
from flask_wtf import CSRFProtect

from constants import APP_VERSION, PORTRAIT_MAX_BYTES, sanitize_postgres_dsn, get_db_connection_string, redact_postgres_dsn, postgres_dsn_parts
from secrets_policy import persist_secrets_enabled

from database import (
    init_database,
    close_db,
    get_db,
    init_db_pool,
    is_auth_token_revoked,
    is_refresh_token_active,
    get_db_identity,
    get_schema_version,
)

# Background jobs
from janitor import start_janitor
from routes_auth import register_auth_routes
from routes_characters import register_character_routes
from routes_chat import chat_bp
from routes_dashboard import register_dashboard_routes
from routes_dm import register_dm_routes
from routes_feed import register_feed_routes
from routes_feedback import register_feedback_routes
from routes_sessions import register_session_routes
from routes_storage import register_storage_routes
from routes_writers import register_writer_routes


def _get_socketio_message_queue(settings: Dict[str, Any]) -> Optional[str]:
    """Resolve the Socket.IO message queue URL.

    Priority:
      1) QUILLMATE_SOCKETIO_MESSAGE_QUEUE
      2) SOCKETIO_MESSAGE_QUEUE
      3) server_config.json -> socketio_message_queue
      4) REDIS_URL (common convention)
    """
    for key in ("QUILLMATE_SOCKETIO_MESSAGE_QUEUE", "SOCKETIO_MESSAGE_QUEUE"):
        v = (os.environ.get(key) or "").strip()
        if v:
            return v

    v = (settings.get("socketio_message_queue") or "").strip()
    if v:
        return v

    v = (os.environ.get("REDIS_URL") or "").strip()
    return v or None


def _require_redis_connectivity(redis_url: str) -> None:
    """Fail fast if a Redis message queue is configured but not reachable."""
    if not redis_url:
        return

    if not (redis_url.startswith("redis://") or redis_url.startswith("rediss://")):
        # Only validate redis:// style URLs here.
        return

    import redis

    try:
        client = redis.Redis.from_url(
            redis_url,
            socket_connect_timeout=1,
            socket_timeout=1,
            health_check_interval=10,
        )
        client.ping()
        logging.info("[socketio] Redis message queue reachable")
    except redis.RedisError as exc:
        logging.critical(
            "[socketio] Redis message queue configured (%s) but Redis is not reachable: %s",
            redis_url,
            exc,
        )
        raise SystemExit(2)


def _log_startup_banner(settings: Dict[str, Any], settings_file: Optional[Path] | None) -> None:
    """Log a boot banner that makes 'wrong DB / wrong config' obvious."""
    cfg_path = Path(settings_file) if settings_file else None
    cfg_exists = bool(cfg_path and cfg_path.exists())
    cfg_mtime = None
    if cfg_exists:
        try:
            cfg_mtime = datetime.fromtimestamp(cfg_path.stat().st_mtime).isoformat(timespec="seconds")
        except OSError:
            cfg_mtime = None

    dsn = get_db_connection_string(settings)
    parts = postgres_dsn_parts(dsn)

    logging.info("==================== Quillmate Boot ====================")
    logging.info("Quillmate version: %s", APP_VERSION)
    logging.info("Settings file: %s (exists=%s%s)", str(cfg_path) if cfg_path else "<none>", cfg_exists,
                 f", mtime={cfg_mtime}" if cfg_mtime else "")
    logging.info(
        "Configured DB: host=%s port=%s db=%s user=%s",
        parts.get("host"), parts.get("port"), parts.get("db"), parts.get("user"),
    )
    logging.info("Configured DSN: %s", redact_postgres_dsn(dsn))
    logging.info("Upload root: %s", os.path.abspath(settings.get("upload_root") or "uploads"))
    logging.info("=========================================================")


def _normalize_cors_origins(val):
    if val is None:
        return None
    if isinstance(val, str):
        raw = val.strip()
        if not raw:
            return None
        # Support comma-separated strings
        if "," in raw:
            items = [x.strip() for x in raw.split(",") if x.strip()]
            return items or None
        return raw
    if isinstance(val, (list, tuple, set)):
        items = [str(x).strip() for x in val if str(x).strip()]
        return items or None
    return None


def resolve_cors_origins(settings: Dict[str, Any]):
    """Configured CORS origins, or None. Wildcards are refused (credentialed cookies)."""
    cors_cfg = settings.get("cors_allowed_origins")
    if cors_cfg is None:
        cors_cfg = settings.get("allowed_origins")
    candidate = _normalize_cors_origins(cors_cfg)
    if candidate is None:
        return None
    if candidate == "*" or (isinstance(candidate, (list, tuple)) and "*" in candidate):
        logging.warning("CORS origins includes '*'. Disabling CORS because Quillmate uses credentialed cookies.")
        return None
    return candidate


def create_app(
    settings: Dict[str, Any],
    limiter: Optional[Limiter] | None = None,
    settings_file: Optional[Path] | None = None,
    init_db: bool = True,
) -> tuple[Flask, SocketIO]:
    """Create and configure the Flask + Socket.IO application.

    This function does **not** start a server. It is safe to import from a
    Gunicorn `wsgi.py` module. init_db=False skips the pool/schema step
    (used by the test-suite).
    """

    settings_file = Path(settings_file) if isinstance(settings_file, str) else settings_file

    # ───── Flask App Core ─────
    app = Flask(__name__)
    # Expose the live settings file path and dict to blueprints that need them.
    app.config["QUILLMATE_SETTINGS_FILE"] = str(settings_file) if settings_file else None
    app.config["QUILLMATE_SETTINGS"] = settings

    app.secret_key = _ensure_secret_key(settings, settings_file)

    # Cookie security: keep dev-friendly defaults, allow hardened prod settings.
    cookie_secure = bool(settings.get("cookie_secure", False) or settings.get("https", False))
    cookie_samesite = settings.get("cookie_samesite") or "Lax"
    max_upload = int(settings.get("max_upload_bytes") or PORTRAIT_MAX_BYTES)

    app.config.update(
        SECRET_KEY=app.secret_key,
        JWT_SECRET_KEY=_ensure_jwt_secret(settings, settings_file),
        JWT_TOKEN_LOCATION=settings.get("jwt_token_location") or ["cookies"],
        JWT_ACCESS_COOKIE_NAME="quillmate_access",
        JWT_REFRESH_COOKIE_NAME="quillmate_refresh",
        JWT_ACCESS_COOKIE_PATH="/",
        JWT_REFRESH_COOKIE_PATH="/api/auth/refresh",
        JWT_ACCESS_CSRF_COOKIE_PATH="/",
        JWT_REFRESH_CSRF_COOKIE_PATH="/",
        JWT_COOKIE_SECURE=cookie_secure,
        JWT_COOKIE_SAMESITE=cookie_samesite,
        JWT_COOKIE_CSRF_PROTECT=bool(settings.get("jwt_cookie_csrf_protect", True)),
        JWT_ACCESS_TOKEN_EXPIRES=timedelta(minutes=int(settings.get("access_token_minutes", 30))),
        JWT_REFRESH_TOKEN_EXPIRES=timedelta(days=int(settings.get("refresh_token_days", 7))),

        # Flask-WTF's global CSRF protection conflicts with the JSON API;
        # JWT's double-submit tokens (csrf_access_token) protect it instead.
        WTF_CSRF_CHECK_DEFAULT=False,
        WTF_CSRF_HEADERS=["X-CSRF-TOKEN", "X-CSRFToken"],

        # Multipart overhead on top of the largest accepted portrait.
        MAX_CONTENT_LENGTH=max_upload + 64 * 1024,
    )

    CSRFProtect(app)
    jwt = JWTManager(app)

    # ------------------------------------------------------------------
    # Baseline security headers
    # ------------------------------------------------------------------
    @app.after_request
    def _add_security_headers(resp):
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault(
            "Referrer-Policy",
            str(settings.get("referrer_policy") or "strict-origin-when-cross-origin"),
        )
        resp.headers.setdefault("X-Frame-Options", str(settings.get("x_frame_options") or "DENY"))
        resp.headers.setdefault(
            "Content-Security-Policy",
            str(settings.get("content_security_policy") or "default-src 'none'; img-src 'self'; frame-ancestors 'none'"),
        )

        # Only send HSTS when HTTPS is in use.
        if cookie_secure:
            max_age = int(settings.get("hsts_max_age") or 31536000)
            hsts = f"max-age={max_age}"
            if bool(settings.get("hsts_include_subdomains", True)):
                hsts += "; includeSubDomains"
            resp.headers.setdefault("Strict-Transport-Security", hsts)
        return resp

    # ------------------------------------------------------------------
    # JWT revocation / refresh rotation enforcement
    # ------------------------------------------------------------------
    @jwt.token_in_blocklist_loader
    def _token_in_blocklist(jwt_header, jwt_payload):
        """Return True if the token should be rejected.

        - Access tokens: unknown, revoked or server-side expired JTIs.
        - Refresh tokens: missing from DB, revoked, replaced, or expired.
        """
        jti = jwt_payload.get("jti")
        token_type = jwt_payload.get("type")
        user_id = jwt_payload.get("sub")
        try:
            if token_type == "access":
                return is_auth_token_revoked(jti)
            if token_type == "refresh":
                return not is_refresh_token_active(user_id, jti)
        except psycopg2.Error:
            get_db().rollback()
            logging.exception("token blocklist lookup failed")
        # Unknown token types (and lookups that failed) are rejected.
        return True

    # JSON bodies for auth failures, matching the {"error": ...} shape of the API
    @jwt.unauthorized_loader
    def _jwt_missing(reason):
        return jsonify({"error": "Login required", "detail": reason}), 401

    @jwt.invalid_token_loader
    def _jwt_invalid(reason):
        return jsonify({"error": "Invalid token", "detail": reason}), 401

    @jwt.expired_token_loader
    def _jwt_expired(jwt_header, jwt_payload):
        return jsonify({"error": "Token expired"}), 401

    @jwt.revoked_token_loader
    def _jwt_revoked(jwt_header, jwt_payload):
        return jsonify({"error": "Token revoked"}), 401

    # ------------------------------------------------------------------
    # Error handlers
    # ------------------------------------------------------------------
    @app.errorhandler(psycopg2.Error)
    def _db_error(exc):
        try:
            get_db().rollback()
        except psycopg2.Error:
            logging.error("rollback after DB error failed", exc_info=True)
        logging.exception("Database error on %s %s", request.method, request.path)
        return jsonify({"error": "Database error"}), 500

    @app.errorhandler(HTTPException)
    def _http_error(exc):
        if exc.code == 413:
            return jsonify({"error": f"File too large (max {max_upload // (1024 * 1024)}MB)"}), 413
        if exc.code == 429:
            return jsonify({"error": "Too many requests", "detail": exc.description}), 429
        return jsonify({"error": exc.name}), exc.code

    # ------------------------------------------------------------------
    # CORS (hardened defaults: OFF unless explicitly configured)
    # ------------------------------------------------------------------
    cors_origins = resolve_cors_origins(settings)
    if cors_origins is not None:
        CORS(app, supports_credentials=True, origins=cors_origins)

    storage_uri = settings.get("rate_limit_storage_uri") or "memory://"
    if limiter is None:
        limiter = Limiter(
            key_func=get_remote_address,
            storage_uri=storage_uri,
        )
    limiter.init_app(app)
    app.teardown_appcontext(close_db)

    # Boot banner (helps catch wrong config / wrong DB early)
    _log_startup_banner(settings, settings_file)

    # ───── Initialize DB ─────
    if init_db:
        with app.app_context():
            if settings.get("database_url"):
                settings["database_url"] = str(sanitize_postgres_dsn(str(settings["database_url"])))
            init_db_pool(
                minconn=int(settings.get("db_pool_min", 1)),
                maxconn=int(settings.get("db_pool_max", 10)),
                dsn=get_db_connection_string(settings),
            )
            init_database()

            ident = get_db_identity()
            logging.info(
                "Connected DB: user=%s db=%s server=%s:%s",
                ident.get("current_user"),
                ident.get("current_database"),
                ident.get("server_addr"),
                ident.get("server_port"),
            )
            logging.info("Schema version: %s", get_schema_version())

    # ───── SocketIO Setup ─────
    # Do not reuse JWT cookie names for the Engine.IO session cookie, or the
    # access token cookie gets overwritten with a non-JWT sid.
    async_mode = "threading"
    if QUILLMATE_SOCKETIO_ASYNC == "eventlet" and not _EVENTLET_AVAILABLE:
        logging.warning("[socketio] QUILLMATE_SOCKETIO_ASYNC=eventlet but eventlet is not installed; falling back to threading")
    if (QUILLMATE_SOCKETIO_ASYNC in {"auto", "eventlet"}) and _EVENTLET_AVAILABLE:
        async_mode = "eventlet"

    app.config["QUILLMATE_SOCKETIO_ASYNC_MODE"] = async_mode

    # Multi-worker broadcast: configure a Redis message queue.
    message_queue = _get_socketio_message_queue(settings)
    if message_queue:
        _require_redis_connectivity(message_queue)

    socketio = SocketIO(
        app,
        async_mode=async_mode,
        cors_allowed_origins=cors_origins,
        cookie="quillmate_io",
        logger=False,
        engineio_logger=False,
        ping_interval=20,
        ping_timeout=15,
        message_queue=message_queue,
    )

    # HTTP routes emit realtime events through this instance (realtime/notify.py).
    app.config["QUILLMATE_SOCKETIO"] = socketio

    # ───── Global Socket.IO Error Handler ─────
    # Auth errors become a client-visible signal followed by a disconnect so
    # the browser can refresh/re-auth.
    @socketio.on_error_default
    def _socketio_default_error_handler(e):
        sid = getattr(request, "sid", None)

        if isinstance(e, ExpiredSignatureError):
            reason = "access_token_expired"
        elif isinstance(e, (NoAuthorizationError, CSRFError, JWTExtendedException)):
            reason = "auth_failed"
        else:
            app.logger.exception("Socket.IO handler error: %s", e)
            return

        if sid:
            emit("auth_error", {"reason": reason}, to=sid)
            disconnect(sid=sid)

    # ───── Routes ─────
    register_auth_routes(app, settings, limiter=limiter)
    register_writer_routes(app, settings, limiter=limiter)
    register_character_routes(app, settings, limiter=limiter)
    register_feed_routes(app, settings, limiter=limiter)
    register_dm_routes(app, settings, limiter=limiter)
    register_session_routes(app, settings, limiter=limiter)
    register_feedback_routes(app, settings, limiter=limiter)
    register_dashboard_routes(app, settings, limiter=limiter)
    register_storage_routes(app, settings, limiter=limiter)
    app.register_blueprint(chat_bp)

    @app.route("/api/health", methods=["GET"])
    def health():
        return jsonify({"ok": True, "version": APP_VERSION})

    from socket_handlers import register_socketio_handlers
    register_socketio_handlers(socketio, settings)

    return app, socketio


class _SocketIOAccessFilter(logging.Filter):
    """Drop Werkzeug access lines for /socket.io/ polling."""

    def filter(self, record: logging.LogRecord) -> bool:
        return "/socket.io/" not in record.getMessage()


def run_web_server(
    settings: Dict[str, Any],
    limiter: Optional[Limiter] | None = None,
    settings_file: Optional[Path] | None = None,
) -> None:
    """Bootstrap the Flask-SocketIO app, attach routes & handlers, then run it."""

    app, socketio = create_app(settings, limiter=limiter, settings_file=settings_file)

    # ───── Run Server (dev / single-process) ─────
    host = settings.get("host") or "0.0.0.0"
    port = int(settings.get("port") or 5000)
    debug = bool(settings.get("debug") or False)

    https_enabled = bool(settings.get("https", False))
    ssl_cert = settings.get("ssl_cert_file")
    ssl_key = settings.get("ssl_key_file")
    ssl_context = None

    if https_enabled:
        if ssl_cert and ssl_key and os.path.exists(str(ssl_cert)) and os.path.exists(str(ssl_key)):
            ssl_context = (str(ssl_cert), str(ssl_key))
        else:
            logging.warning("https=true but ssl_cert_file/ssl_key_file missing or not found. Falling back to HTTP.")
            https_enabled = False

    scheme = "https" if https_enabled else "http"
    logging.info("🚀  Starting Quillmate on %s://%s:%s (debug=%s)", scheme, host, port, debug)

    # Background janitor: inactivity reminders + stale viewer cleanup.
    # Under Gunicorn with multiple workers run janitor_runner.py instead.
    start_janitor(settings, socketio=socketio)

    logging.getLogger("werkzeug").addFilter(_SocketIOAccessFilter())

    use_reloader = bool(debug and app.config.get("QUILLMATE_SOCKETIO_ASYNC_MODE") == "threading")
    socketio.run(
        app,
        host=host,
        port=port,
        debug=debug,
        ssl_context=ssl_context,
        use_reloader=use_reloader,
        log_output=False,
    )


# ───── Helpers ─────
def _ensure_secret_key(
    settings: Dict[str, Any],
    settings_file: Optional[Path],
) -> str:
    key = settings.get("secret_key") or os.getenv("SECRET_KEY")
    if key:
        return key

    key = secrets.token_urlsafe(64)
    settings["secret_key"] = key
    if _persist_generated_key(settings, settings_file):
        logging.info("✅ secret_key generated and saved to settings.")
    else:
        logging.warning("⚠️  Generated a one-off secret_key (NOT saved). Sessions may break on restart.")
    return key


def _ensure_jwt_secret(
    settings: Dict[str, Any],
    settings_file: Optional[Path],
) -> str:
    # Prefer explicit config, then env var. Only persist if we *generated* it
    # and secret persistence is enabled.
    key = settings.get("jwt_secret")
    if key:
        return str(key)

    env_key = os.getenv("JWT_SECRET_KEY")
    if env_key and str(env_key).strip():
        return str(env_key).strip()

    key = secrets.token_hex(32)
    settings["jwt_secret"] = key
    if _persist_generated_key(settings, settings_file):
        logging.info("✅ jwt_secret generated and saved to settings.")
    else:
        logging.warning("⚠️  Generated a one-off jwt_secret (NOT saved). Logins may break on restart.")
    return key


def _persist_generated_key(settings: Dict[str, Any], settings_file: Optional[Path]) -> bool:
    # If persistence is disabled, never write secrets into the settings file.
    if not persist_secrets_enabled():
        return False
    if not settings_file:
        logging.warning("settings_file path not supplied; cannot persist generated secret.")
        return False

    try:
        if settings_file.suffix.lower() == ".json":
            # Only merge into a valid JSON file; an unreadable one is backed up first.
            existing: dict | None = None
            if settings_file.exists():
                try:
                    with settings_file.open("r", encoding="utf-8") as fp:
                        existing = json.load(fp)
                except (OSError, ValueError):
                    existing = None

            if existing is None and settings_file.exists():
                ts = datetime.now().strftime("%Y%m%d-%H%M%S")
                bad_path = settings_file.with_suffix(settings_file.suffix + f".bad-{ts}")
                settings_file.rename(bad_path)
                logging.warning("⚠️  Backed up invalid settings file to: %s", bad_path)
                existing = {}

            merged = dict(existing or {})
            merged.update(settings)

            with settings_file.open("w", encoding="utf-8") as fp:
                json.dump(merged, fp, indent=2)
        elif settings_file.suffix.lower() in {".yml", ".yaml"}:
            with settings_file.open("w", encoding="utf-8") as fp:
                yaml.safe_dump(settings, fp, sort_keys=False)
        else:
            logging.warning("Unsupported settings file format: %s", settings_file)
            return False
    except OSError as exc:
        print(f"⚠️  Could not persist generated secret to {settings_file}: {exc}", file=sys.stderr)
        return False

    return True
