"""storage.py

Portrait uploads on local disk.

Objects live under <upload_root>/<bucket>/<user_id>-<epoch_ms>.<ext> and are
served publicly by routes_storage.py.
"""

from __future__ import annotations

import os
import time

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from constants import PORTRAIT_BUCKETS, PORTRAIT_EXTENSIONS, PORTRAIT_MAX_BYTES


class UploadRejected(Exception):
    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status


def file_extension(filename: str) -> str:
    safe = secure_filename(filename or "")
    if "." not in safe:
        return ""
    return safe.rsplit(".", 1)[1].lower()


def object_name(user_id: str, ext: str, now_ms: int | None = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{user_id}-{now_ms}.{ext}"


def bucket_dir(upload_root: str, bucket: str) -> str:
    if bucket not in PORTRAIT_BUCKETS:
        raise UploadRejected("Unknown bucket", 404)
    path = os.path.join(upload_root, bucket)
    os.makedirs(path, exist_ok=True)
    return path


def save_portrait(upload_root: str, bucket: str, user_id: str, file: FileStorage,
                  max_bytes: int = PORTRAIT_MAX_BYTES) -> str:
    """Validate and write the upload. Returns the object name."""
    if not file or not file.filename:
        raise UploadRejected("No file provided")
    ext = file_extension(file.filename)
    if ext not in PORTRAIT_EXTENSIONS:
        raise UploadRejected("Only image files are allowed (" + ", ".join(sorted(PORTRAIT_EXTENSIONS)) + ")")

    target_dir = bucket_dir(upload_root, bucket)
    name = object_name(user_id, ext)
    disk_path = os.path.join(target_dir, name)
    file.save(disk_path)

    if os.path.getsize(disk_path) > max_bytes:
        os.remove(disk_path)
        raise UploadRejected(f"File too large (max {max_bytes // (1024 * 1024)}MB)", 413)
    return name


def resolve_object(upload_root: str, bucket: str, name: str) -> str | None:
    """Disk path of a stored object, or None if it does not exist."""
    if bucket not in PORTRAIT_BUCKETS:
        return None
    safe = secure_filename(name or "")
    if not safe or safe != name:
        return None
    path = os.path.join(upload_root, bucket, safe)
    return path if os.path.isfile(path) else None
