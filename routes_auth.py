#!/usr/bin/env python3
"""
routes_auth.py

Account routes: register, login, logout, refresh, me.

Tokens live in cookies (Flask-JWT-Extended, CSRF double-submit). Every
issued JTI is stored in auth_tokens so logout and refresh rotation can
revoke it server-side.
"""

import logging
from datetime import datetime, timezone

import psycopg2
from flask import jsonify, request
from flask_jwt_extended import (
    create_access_token,
    create_refresh_token,
    get_jwt,
    get_jwt_identity,
    jwt_required,
    set_access_cookies,
    set_refresh_cookies,
    unset_jwt_cookies,
)
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_jwt_extended.utils import decode_token
from jwt.exceptions import PyJWTError

from database import (
    create_user,
    get_db,
    get_user_by_email,
    get_user_by_id,
    jsonable,
    revoke_auth_token,
    rotate_refresh_token,
    store_auth_token,
    update_user_password,
)
from security import hash_password, log_audit_event, verify_password_and_upgrade
from writers import get_writer_by_user

PASSWORD_MIN_LENGTH = 8


def _client_meta() -> tuple[str | None, str | None]:
    ua = request.headers.get("User-Agent")
    ip = (request.headers.get("X-Forwarded-For") or request.remote_addr or "").split(",")[0].strip() or None
    return ua, ip


def _token_meta(token: str) -> tuple[str | None, datetime | None]:
    """(jti, expires_at) of a freshly minted token."""
    decoded = decode_token(token, allow_expired=False)
    exp = decoded.get("exp")
    expires_at = datetime.fromtimestamp(exp, tz=timezone.utc) if isinstance(exp, (int, float)) else None
    return decoded.get("jti"), expires_at


def _issue_tokens(user_id: str) -> tuple[str, str]:
    """Mint + store an access/refresh pair for user_id."""
    ua, ip = _client_meta()
    access_token = create_access_token(identity=user_id)
    refresh_token = create_refresh_token(identity=user_id)
    for token, token_type in ((access_token, "access"), (refresh_token, "refresh")):
        jti, expires_at = _token_meta(token)
        store_auth_token(
            jti=jti,
            user_id=user_id,
            token_type=token_type,
            expires_at=expires_at,
            user_agent=ua,
            ip_address=ip,
        )
    return access_token, refresh_token


def register_auth_routes(app, settings, limiter=None):
    def _limit(rule, **kwargs):
        """Apply Flask-Limiter rule if available."""
        if limiter is None:
            return lambda f: f
        return limiter.limit(rule, **kwargs)

    @app.route("/api/auth/register", methods=["POST"])
    @_limit(settings.get("rate_limit_register") or "5 per minute")
    def auth_register():
        data = request.get_json(silent=True) or {}
        email = str(data.get("email") or "").strip().lower()
        password = str(data.get("password") or "")

        if not email or "@" not in email:
            return jsonify({"error": "A valid email is required"}), 400
        if len(password) < PASSWORD_MIN_LENGTH:
            return jsonify({"error": f"Password must be at least {PASSWORD_MIN_LENGTH} characters"}), 400

        try:
            user_id = create_user(email, hash_password(password))
        except psycopg2.Error:
            get_db().rollback()
            logging.exception("register failed for %s", email)
            return jsonify({"error": "Could not create account"}), 500
        if not user_id:
            return jsonify({"error": "Email already registered"}), 409

        log_audit_event(user_id, "register")
        return jsonify({"ok": True, "user_id": user_id}), 201

    @app.route("/api/auth/login", methods=["POST"])
    @_limit(settings.get("rate_limit_login") or "10 per minute")
    def auth_login():
        data = request.get_json(silent=True) or {}
        email = str(data.get("email") or "").strip().lower()
        password = str(data.get("password") or "")
        if not email or not password:
            return jsonify({"error": "Email and password required"}), 400

        user = get_user_by_email(email)
        ok, upgraded_hash = (False, None)
        if user:
            ok, upgraded_hash = verify_password_and_upgrade(password, user["password"])
        if not ok:
            return jsonify({"error": "Invalid email or password"}), 401

        user_id = str(user["id"])
        # Rehash-on-login when Argon2 parameters changed
        if upgraded_hash:
            try:
                update_user_password(user_id, upgraded_hash)
            except psycopg2.Error as e:
                get_db().rollback()
                logging.warning("Could not upgrade password hash for %s: %s", user_id, e)

        access_token, refresh_token = _issue_tokens(user_id)
        resp = jsonify({
            "ok": True,
            "user_id": user_id,
            "has_profile": get_writer_by_user(user_id) is not None,
        })
        set_access_cookies(resp, access_token)
        set_refresh_cookies(resp, refresh_token)
        return resp

    @app.route("/api/auth/logout", methods=["POST"])
    def auth_logout():
        """Revoke the current access/refresh tokens (if present) and clear cookies."""
        for cookie_name in (app.config.get("JWT_ACCESS_COOKIE_NAME"), app.config.get("JWT_REFRESH_COOKIE_NAME")):
            token = request.cookies.get(cookie_name) if cookie_name else None
            if not token:
                continue
            try:
                decoded = decode_token(token, allow_expired=True)
            except (JWTExtendedException, PyJWTError):
                continue
            revoke_auth_token(decoded.get("jti"))
            if decoded.get("type") == "access":
                log_audit_event(str(decoded.get("sub")), "logout")

        resp = jsonify({"ok": True})
        unset_jwt_cookies(resp)
        return resp

    @app.route("/api/auth/refresh", methods=["POST"])
    @_limit(settings.get("rate_limit_refresh") or "30 per minute")
    @jwt_required(refresh=True)
    def auth_refresh():
        """Rotate the refresh token (single use) and mint a new access token."""
        user_id = str(get_jwt_identity())
        old_jti = get_jwt().get("jti")
        ua, ip = _client_meta()

        new_access = create_access_token(identity=user_id)
        new_refresh = create_refresh_token(identity=user_id)
        access_jti, access_expires_at = _token_meta(new_access)
        refresh_jti, refresh_expires_at = _token_meta(new_refresh)

        if not rotate_refresh_token(
            user_id=user_id,
            old_jti=old_jti,
            new_jti=refresh_jti,
            new_expires_at=refresh_expires_at,
            user_agent=ua,
            ip_address=ip,
        ):
            # Another refresh already rotated this token.
            resp = jsonify({"ok": False, "error": "stale_refresh"})
            unset_jwt_cookies(resp)
            return resp, 401

        store_auth_token(
            jti=access_jti,
            user_id=user_id,
            token_type="access",
            expires_at=access_expires_at,
            user_agent=ua,
            ip_address=ip,
        )
        resp = jsonify({"ok": True})
        set_access_cookies(resp, new_access)
        set_refresh_cookies(resp, new_refresh)
        return resp

    @app.route("/api/auth/me", methods=["GET"])
    @jwt_required()
    def auth_me():
        user_id = str(get_jwt_identity())
        user = get_user_by_id(user_id)
        if not user:
            return jsonify({"error": "Not found"}), 404
        return jsonify(jsonable({
            "user_id": user_id,
            "email": user["email"],
            "writer": get_writer_by_user(user_id),
        }))
