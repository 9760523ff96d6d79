#!/usr/bin/env python3
"""main.py

Quillmate server entrypoint.

Settings live in ``server_config.json`` (plain JSON; ``.yml``/``.yaml`` files
are read with PyYAML). Secrets can be kept out of the file with environment
variables (``DATABASE_URL``, ``DB_CONNECTION_STRING``, ``SECRET_KEY``,
``JWT_SECRET_KEY``) and ``QUILLMATE_PERSIST_SECRETS=0``.
"""

from __future__ import annotations

import argparse
from datetime import datetime
import json
import logging
import os
import sys
from pathlib import Path

import yaml

from constants import CONFIG_FILE, sanitize_postgres_dsn
from interactive_setup import get_default_settings, interactive_setup
from secrets_policy import scrub_secrets_for_persist


def configure_logging(settings: dict) -> None:
    """Configure file + stdout logging."""
    log_level_str = str(settings.get("log_level", "INFO")).upper()
    log_format = settings.get(
        "log_format",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    log_file_path = settings.get("log_file_path", "logs/server.log")

    log_dir = os.path.dirname(log_file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    log_level = getattr(logging, log_level_str, logging.INFO)
    logging.basicConfig(level=log_level, format=log_format, filename=log_file_path, filemode="a")
    logging.getLogger().addHandler(logging.StreamHandler(sys.stdout))
    logging.info("Logging configured (level=%s)", log_level_str)


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in {".yml", ".yaml"}


def load_settings(path: Path) -> dict:
    """Load settings from JSON or YAML. Returns defaults if missing or unreadable."""
    if not path.exists():
        return get_default_settings()

    try:
        with path.open("r", encoding="utf-8") as fp:
            data = yaml.safe_load(fp) if _is_yaml(path) else json.load(fp)
        if not isinstance(data, dict):
            raise ValueError("top-level value must be a mapping")
        defaults = get_default_settings()
        defaults.update(data)
        return defaults
    except (ValueError, yaml.YAMLError) as exc:
        print(f"⚠️  Could not parse {path}: {exc}")
        # Move the broken file aside so generated secrets can be persisted
        # into a fresh one.
        ts = datetime.now().strftime("%Y%m%d-%H%M%S")
        bad_path = path.with_suffix(path.suffix + f".bad-{ts}")
        try:
            path.rename(bad_path)
            print(f"⚠️  Backed up invalid settings file to: {bad_path}")
        except OSError as e2:
            print(f"⚠️  Could not back up invalid settings file: {e2}")
        print("⚠️  Falling back to defaults (run with --setup to rewrite config).")
        return get_default_settings()


def save_settings(path: Path, settings: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # With QUILLMATE_PERSIST_SECRETS=0 the DSN and keys stay in env/.env only.
    to_save = scrub_secrets_for_persist(settings)
    with path.open("w", encoding="utf-8") as fp:
        if _is_yaml(path):
            yaml.safe_dump(to_save, fp, sort_keys=False)
        else:
            json.dump(to_save, fp, indent=2)


def apply_env_overrides(settings: dict) -> None:
    """Apply env overrides for secrets and runtime deployment."""

    def _bool_env(*names: str) -> bool | None:
        for n in names:
            v = os.getenv(n)
            if v is None:
                continue
            v = v.strip().lower()
            if v in ("1", "true", "yes", "y", "on"):
                return True
            if v in ("0", "false", "no", "n", "off"):
                return False
        return None

    def _str_env(*names: str) -> str | None:
        for n in names:
            v = os.getenv(n)
            if v is not None and v.strip() != "":
                return v.strip()
        return None

    def _int_env(*names: str) -> int | None:
        v = _str_env(*names)
        if v is None:
            return None
        try:
            return int(v)
        except ValueError:
            return None

    # Prefer DB env vars for safety.
    db = _str_env("DB_CONNECTION_STRING", "DATABASE_URL")
    if db:
        settings["database_url"] = str(sanitize_postgres_dsn(db))

    secret = _str_env("SECRET_KEY")
    if secret:
        settings["secret_key"] = secret

    jwt_secret = _str_env("JWT_SECRET_KEY", "QUILLMATE_JWT_SECRET")
    if jwt_secret:
        settings["jwt_secret"] = jwt_secret

    upload_root = _str_env("QUILLMATE_UPLOAD_ROOT")
    if upload_root:
        settings["upload_root"] = upload_root

    base_url = _str_env("QUILLMATE_PUBLIC_BASE_URL")
    if base_url:
        settings["public_base_url"] = base_url

    cookie_secure = _bool_env("QUILLMATE_COOKIE_SECURE")
    if cookie_secure is not None:
        settings["cookie_secure"] = cookie_secure

    port = _int_env("QUILLMATE_PORT", "PORT")
    if port:
        settings["port"] = port


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Quillmate server")
    p.add_argument("--setup", action="store_true", help="run the interactive setup wizard")
    p.add_argument("--config", default=CONFIG_FILE, help="path to server config (JSON or YAML)")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    settings_path = Path(args.config)

    settings = load_settings(settings_path)
    apply_env_overrides(settings)

    if args.setup or not settings_path.exists():
        print("\n=== Quillmate Setup Wizard ===\n")
        settings = interactive_setup(settings)
        save_settings(settings_path, settings)
        print(f"✅ Saved settings to {settings_path}\n")

    configure_logging(settings)

    os.makedirs(os.path.abspath(settings.get("upload_root") or "uploads"), exist_ok=True)

    # Imported late so eventlet monkey-patching in server_init happens after
    # the wizard's blocking input() calls.
    from server_init import run_web_server

    run_web_server(settings, limiter=None, settings_file=settings_path)


if __name__ == "__main__":
    main()
