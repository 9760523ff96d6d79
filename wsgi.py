"""wsgi.py

Gunicorn entrypoint for Quillmate.

Run (example):
  QUILLMATE_SOCKETIO_ASYNC=eventlet \
  QUILLMATE_SOCKETIO_MESSAGE_QUEUE=redis://127.0.0.1:6379/0 \
  gunicorn -c gunicorn_conf.py wsgi:app

Notes:
- For multi-worker Socket.IO, a Redis message queue is required.
- Do NOT start the janitor loop inside Gunicorn workers; run janitor_runner.py
  as a separate service.
"""

from __future__ import annotations

import os

# server_init monkey-patches eventlet at import time, before anything else
# opens sockets.
from server_init import create_app

from pathlib import Path

from constants import CONFIG_FILE
from main import load_settings, apply_env_overrides, configure_logging


def _resolve_config_path() -> Path:
    # Prefer explicit env path when running under systemd.
    p = (
        os.environ.get("QUILLMATE_CONFIG")
        or os.environ.get("QUILLMATE_CONFIG_FILE")
        or CONFIG_FILE
    )
    return Path(p)


_settings_path = _resolve_config_path()
_settings = load_settings(_settings_path)
apply_env_overrides(_settings)
configure_logging(_settings)

# Create the Flask app + Socket.IO integration.
app, socketio = create_app(_settings, limiter=None, settings_file=_settings_path)

app.config["QUILLMATE_GUNICORN"] = True
