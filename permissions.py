#!/usr/bin/env python3
"""permissions.py

Access guards for Quillmate (PostgreSQL).

This module provides:
  - current_user_id: JWT identity (user UUID) or None
  - require_writer: decorator requiring a logged-in user with a writer profile
  - parse_uuid: validate ids that arrive in JSON bodies
  - load_visible_session / load_participant_session: session lookups that
    answer 404 instead of leaking the existence of private sessions
"""

from __future__ import annotations

import functools
import uuid
from typing import Callable

from flask import g, jsonify
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from roleplay_sessions import can_view, get_session, is_participant
from writers import get_writer_by_user


def current_user_id(optional: bool = True) -> str | None:
    """Return the JWT identity if present/valid, else None.

    With optional=False a missing/expired token raises so the caller gets
    a 401 from Flask-JWT-Extended.
    """
    if optional:
        try:
            verify_jwt_in_request(optional=True)
        except (JWTExtendedException, PyJWTError):
            return None
    else:
        verify_jwt_in_request()
    ident = get_jwt_identity()
    return str(ident) if ident else None


def require_writer(func: Callable) -> Callable:
    """Decorator: require an access JWT and a writer profile (stored in g.writer)."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        user_id = current_user_id(optional=False)
        writer = get_writer_by_user(user_id)
        if not writer:
            return jsonify({"error": "Create a writer profile first"}), 403
        g.writer = writer
        return func(*args, **kwargs)

    return wrapper


def not_found():
    # Avoid existence leaks (session/thread ID enumeration)
    return jsonify({"error": "Not found"}), 404


def load_visible_session(session_id: str, user_id: str | None) -> dict | None:
    """Session if the caller may read it (participant, or public), else None."""
    session = get_session(session_id)
    if not can_view(session, user_id):
        return None
    return session


def load_participant_session(session_id: str, user_id: str | None) -> dict | None:
    session = get_session(session_id)
    if not is_participant(session, user_id):
        return None
    return session


def parse_uuid(value) -> str | None:
    """Canonical string form of a UUID taken from a request body, or None."""
    if value is None or value == "":
        return None
    try:
        return str(uuid.UUID(str(value).strip()))
    except ValueError:
        return None
