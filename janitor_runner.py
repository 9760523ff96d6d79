#!/usr/bin/env python3
"""janitor_runner.py

Run the Quillmate background janitor as a dedicated process.

Under Gunicorn with N workers, starting the janitor thread inside each worker
would post N copies of every inactivity reminder. Run this once instead.
Reminder pushes reach browsers through the Socket.IO message queue when one is
configured (a write-only SocketIO client bound to the same Redis URL).

Usage:
  python janitor_runner.py --config server_config.json

Or via env:
  QUILLMATE_CONFIG=/path/to/server_config.json python janitor_runner.py
"""

from __future__ import annotations

import argparse
import logging
import os
import time
from pathlib import Path

from flask_socketio import SocketIO

from constants import CONFIG_FILE, get_db_connection_string
from database import init_db_pool
from main import load_settings, apply_env_overrides, configure_logging
from janitor import start_janitor
from server_init import _get_socketio_message_queue


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Quillmate janitor runner")
    p.add_argument(
        "--config",
        default=os.environ.get("QUILLMATE_CONFIG") or CONFIG_FILE,
        help="path to server config (JSON or YAML)",
    )
    return p.parse_args()


def main() -> None:
    args = parse_args()
    settings_path = Path(args.config)

    settings = load_settings(settings_path)
    apply_env_overrides(settings)

    # Use the same logging configuration as the server.
    configure_logging(settings)

    init_db_pool(
        minconn=1,
        maxconn=2,
        dsn=get_db_connection_string(settings),
    )

    socketio = None
    queue = _get_socketio_message_queue(settings)
    if queue:
        socketio = SocketIO(message_queue=queue)
    else:
        logging.warning("[janitor] no Socket.IO message queue configured; reminders are stored but not pushed live")

    start_janitor(settings, socketio=socketio)
    # Keep the process alive forever.
    while True:
        time.sleep(3600)


if __name__ == "__main__":
    main()
