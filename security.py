#!/usr/bin/env python3
"""security.py

Utility functions for password hashing, audit logging and a small
in-process rate limiter.

Passwords are hashed with Argon2id (argon2-cffi). verify_password_and_upgrade()
hands back a fresh hash when the stored one was made with older parameters.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections import deque
from typing import Optional, Tuple

import psycopg2
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from database import get_db

# ────────────────────────────────────────────────────────────
# Audit logging
# ────────────────────────────────────────────────────────────

def log_audit_event(actor: str, action: str, target: str | None = None, details: str | None = None) -> None:
    """Insert an audit log entry into the audit_log table."""
    conn = get_db()
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO audit_log (actor, action, target, details)
                VALUES (%s, %s, %s, %s);
                """,
                (actor, action, target, details),
            )
        conn.commit()
    except psycopg2.Error as e:
        conn.rollback()
        logging.error("Failed to write audit log (%s, %s, %s, %s): %s", actor, action, target, details, e)


# ────────────────────────────────────────────────────────────
# Password hashing utilities
# ────────────────────────────────────────────────────────────

_PWH = PasswordHasher(
    time_cost=3,
    memory_cost=65536,  # KiB (64 MiB)
    parallelism=1,
    hash_len=32,
    salt_len=16,
)


def hash_password(password: str) -> str:
    """Hash plaintext password using Argon2id."""
    return _PWH.hash(password)


def verify_password(password: str, stored_hash: str) -> bool:
    ok, _ = verify_password_and_upgrade(password, stored_hash)
    return ok


def verify_password_and_upgrade(password: str, stored_hash: str) -> Tuple[bool, Optional[str]]:
    """Verify password; return a new hash when the stored one needs rehashing.

    Returns: (ok, upgraded_hash_or_None)
    """
    if not stored_hash or not stored_hash.startswith("$argon2"):
        return False, None
    try:
        _PWH.verify(stored_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHash):
        return False, None
    if _PWH.check_needs_rehash(stored_hash):
        return True, _PWH.hash(password)
    return True, None


# ────────────────────────────────────────────────────────────
# Small in-process rate limiter (dev-safe; use Flask-Limiter with a shared store in prod)
# ────────────────────────────────────────────────────────────

_SRL_BUCKETS: dict[str, deque] = {}
_SRL_LOCK = threading.Lock()


def simple_rate_limit(key: str, limit: int, window_sec: int) -> tuple[bool, float]:
    """Sliding-window limiter.

    Returns (ok, retry_after_seconds).
    """
    try:
        limit = int(limit)
        window_sec = int(window_sec)
    except (TypeError, ValueError):
        return True, 0.0

    if limit <= 0 or window_sec <= 0:
        return True, 0.0

    now = time.time()
    with _SRL_LOCK:
        dq = _SRL_BUCKETS.get(key)
        if dq is None:
            dq = deque()
            _SRL_BUCKETS[key] = dq
        cutoff = now - window_sec
        while dq and dq[0] < cutoff:
            dq.popleft()
        if len(dq) >= limit:
            retry = (dq[0] + window_sec) - now
            return False, max(0.0, float(retry))
        dq.append(now)
        return True, 0.0


def parse_limit_value(val, default_limit: int, default_window: int) -> tuple[int, int]:
    """Parse either an int (per-minute) or a human string ('10 per minute', '20@10').

    Returns (limit, window_seconds).
    """
    if val is None:
        return int(default_limit), int(default_window)
    if isinstance(val, (int, float)):
        lim = int(val)
        return (lim if lim > 0 else int(default_limit)), 60
    if isinstance(val, str):
        s = val.strip().lower()
        m = re.match(r"^(\d+)\s*@\s*(\d+)$", s)
        if m:
            return int(m.group(1)), int(m.group(2))
        m = re.match(r"^(\d+)\s*(?:per|/)\s*(second|sec|minute|min|hour|day)s?$", s)
        if m:
            unit = m.group(2)
            win = 1 if unit in ("second", "sec") else 60 if unit in ("minute", "min") else 3600 if unit == "hour" else 86400
            return int(m.group(1)), win
    return int(default_limit), int(default_window)


def write_rate_ok(settings: dict, action: str, user_id: str) -> tuple[bool, float]:
    """In-process limiter for hot write paths (messages, comments).

    Configured per action via settings["rate_limit_<action>_write"].
    """
    limit, window = parse_limit_value(settings.get(f"rate_limit_{action}_write"), 30, 60)
    return simple_rate_limit(f"{action}:{user_id}", limit, window)
