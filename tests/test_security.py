from __future__ import annotations

import uuid

from argon2 import PasswordHasher

from security import (
    hash_password,
    parse_limit_value,
    simple_rate_limit,
    verify_password,
    verify_password_and_upgrade,
    write_rate_ok,
)


def test_password_hash_verify_roundtrip() -> None:
    stored = hash_password("correct horse")
    assert stored.startswith("$argon2id$")
    assert verify_password("correct horse", stored) is True
    assert verify_password("wrong horse", stored) is False


def test_non_argon_hashes_never_verify() -> None:
    assert verify_password_and_upgrade("pw", "") == (False, None)
    assert verify_password_and_upgrade("pw", "salt:deadbeef") == (False, None)


def test_weak_parameters_get_upgraded_on_login() -> None:
    weak = PasswordHasher(time_cost=1, memory_cost=8192, parallelism=1).hash("pw123456")
    ok, upgraded = verify_password_and_upgrade("pw123456", weak)
    assert ok is True
    assert upgraded is not None and upgraded != weak
    assert verify_password_and_upgrade("pw123456", upgraded) == (True, None)


def test_parse_limit_value_formats() -> None:
    assert parse_limit_value(None, 30, 60) == (30, 60)
    assert parse_limit_value(12, 30, 60) == (12, 60)
    assert parse_limit_value(0, 30, 60) == (30, 60)
    assert parse_limit_value("20@10", 30, 60) == (20, 10)
    assert parse_limit_value("5 per hour", 30, 60) == (5, 3600)
    assert parse_limit_value("3/second", 30, 60) == (3, 1)
    assert parse_limit_value("lots", 30, 60) == (30, 60)


def test_simple_rate_limit_blocks_after_limit() -> None:
    key = f"test:{uuid.uuid4()}"
    assert simple_rate_limit(key, 2, 60) == (True, 0.0)
    assert simple_rate_limit(key, 2, 60) == (True, 0.0)
    ok, retry = simple_rate_limit(key, 2, 60)
    assert ok is False
    assert 0 < retry <= 60


def test_write_rate_ok_is_per_action_and_user() -> None:
    user = str(uuid.uuid4())
    settings = {"rate_limit_dm_write": "1@60"}
    assert write_rate_ok(settings, "dm", user)[0] is True
    assert write_rate_ok(settings, "dm", user)[0] is False
    assert write_rate_ok(settings, "comment", user)[0] is True
    assert write_rate_ok(settings, "dm", str(uuid.uuid4()))[0] is True
