"""gunicorn_conf.py

Default Gunicorn config for Quillmate + Flask-SocketIO using Eventlet.

Environment variables:
  QUILLMATE_BIND=0.0.0.0:5000
  QUILLMATE_WORKERS=1
  QUILLMATE_GUNICORN_LOGLEVEL=info
  QUILLMATE_GUNICORN_TIMEOUT=60

More than one worker needs QUILLMATE_SOCKETIO_MESSAGE_QUEUE (or REDIS_URL)
and sticky sessions at the proxy.
"""

from __future__ import annotations

import os

bind = os.environ.get("QUILLMATE_BIND", "0.0.0.0:5000")
workers = int(os.environ.get("QUILLMATE_WORKERS", "1"))
worker_class = "eventlet"

# WebSockets keep connections open; avoid overly low timeouts.
timeout = int(os.environ.get("QUILLMATE_GUNICORN_TIMEOUT", "60"))
keepalive = int(os.environ.get("QUILLMATE_GUNICORN_KEEPALIVE", "5"))

loglevel = os.environ.get("QUILLMATE_GUNICORN_LOGLEVEL", "info")
accesslog = os.environ.get("QUILLMATE_GUNICORN_ACCESSLOG", "-")
errorlog = os.environ.get("QUILLMATE_GUNICORN_ERRORLOG", "-")

forwarded_allow_ips = os.environ.get("QUILLMATE_FORWARDED_ALLOW_IPS", "127.0.0.1")
