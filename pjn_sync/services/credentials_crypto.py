"""Fernet encryption for stored PJN passwords."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from pjn_sync.core.config import settings
from pjn_sync.utils.exceptions import CredentialsError

__all__ = ["encrypt_password", "decrypt_password", "InvalidToken"]


@lru_cache(maxsize=None)
def _cipher(key: str) -> Fernet:
    try:
        return Fernet(key.strip().encode("ascii"))
    except (ValueError, TypeError) as exc:
        raise CredentialsError("PJN_CREDENTIALS_ENCRYPTION_KEY must be a urlsafe base64-encoded 32-byte key") from exc


def _resolve(key: Optional[str]) -> Fernet:
    key = key if key is not None else settings.PJN_CREDENTIALS_ENCRYPTION_KEY
    if not key:
        raise CredentialsError("PJN_CREDENTIALS_ENCRYPTION_KEY is not set")
    return _cipher(key)


def encrypt_password(password: str, key: Optional[str] = None) -> str:
    return _resolve(key).encrypt(password.encode("utf-8")).decode("ascii")


def decrypt_password(token: str, key: Optional[str] = None) -> str:
    """Raises ``InvalidToken`` when the ciphertext was not produced with this key."""
    return _resolve(key).decrypt(token.encode("ascii")).decode("utf-8")
