# pjn_sync/services/session_store.py
"""
Per-user PJN session persistence.

One JSON blob per user at ``{user_id}/{SESSION_FILE_NAME}``. ``load`` never
raises: a missing or unreadable blob is reported as "no session", which the
callers turn into AUTH_REQUIRED. ``save`` and ``delete`` report failure with
``False`` so the reauth endpoint can answer "Failed to save session".
"""
from __future__ import annotations

import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from botocore.exceptions import ClientError
from pydantic import ValidationError

from pjn_sync.core.config import settings
from pjn_sync.core.logger import logger
from pjn_sync.db.schemas import SessionState
from pjn_sync.services.s3_service import S3Service


def session_key(user_id: str) -> str:
    return f"{user_id}/{settings.SESSION_FILE_NAME}"


class LocalSessionBackend:
    """Sessions on local disk (development)."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.SESSION_LOCAL_DIR).resolve()

    def read(self, key: str) -> Optional[bytes]:
        path = self.base_dir / key
        if not path.exists():
            return None
        return path.read_bytes()

    def write(self, key: str, data: bytes) -> None:
        path = self.base_dir / key
        path.parent.mkdir(parents=True, exist_ok=True)
        # Readers only ever see the old or the new blob.
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".session-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def remove(self, key: str) -> None:
        try:
            (self.base_dir / key).unlink()
        except FileNotFoundError:
            pass

    def ping(self) -> bool:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        return os.access(self.base_dir, os.W_OK)


class S3SessionBackend:
    """Sessions in a dedicated S3 bucket (production). PutObject is atomic per key."""

    def __init__(self, s3: Optional[S3Service] = None):
        self.s3 = s3 or S3Service(bucket=settings.SESSION_S3_BUCKET_NAME)

    def read(self, key: str) -> Optional[bytes]:
        return self.s3.get_bytes(key)

    def write(self, key: str, data: bytes) -> None:
        self.s3.upload_bytes(key, data, content_type="application/json", metadata={"cache-control": "no-cache"})

    def remove(self, key: str) -> None:
        self.s3.delete_object(key)

    def ping(self) -> bool:
        return self.s3.head_bucket()


class SessionStore:
    def __init__(self, backend=None):
        self.backend = backend or _default_backend()

    def load(self, user_id: str) -> Optional[SessionState]:
        key = session_key(user_id)
        try:
            raw = self.backend.read(key)
        except (OSError, ClientError) as e:
            logger.error("Failed to load session", extra={"user_id": user_id, "session_key": key, "error": str(e)})
            return None
        if raw is None:
            logger.debug("Session does not exist", extra={"user_id": user_id})
            return None
        try:
            return SessionState.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "Stored session is unreadable, treating as missing",
                extra={"user_id": user_id, "session_key": key, "error": str(e)},
            )
            return None

    def save(self, user_id: str, state: SessionState) -> bool:
        key = session_key(user_id)
        stamped = state.model_copy(update={"last_updated": datetime.utcnow(), "user_id": user_id})
        try:
            self.backend.write(key, stamped.model_dump_json(indent=2).encode("utf-8"))
        except (OSError, ClientError) as e:
            logger.error("Failed to save session", extra={"user_id": user_id, "session_key": key, "error": str(e)})
            return False
        logger.info("Session saved", extra={"user_id": user_id})
        return True

    def delete(self, user_id: str) -> bool:
        key = session_key(user_id)
        try:
            self.backend.remove(key)
        except (OSError, ClientError) as e:
            logger.error("Failed to delete session", extra={"user_id": user_id, "session_key": key, "error": str(e)})
            return False
        logger.info("Session deleted", extra={"user_id": user_id})
        return True

    def ping(self) -> bool:
        try:
            return self.backend.ping()
        except (OSError, ClientError):
            return False


def _default_backend():
    if settings.SESSION_STORE_BACKEND == "s3":
        return S3SessionBackend()
    return LocalSessionBackend()


session_store = SessionStore()
