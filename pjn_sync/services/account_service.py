"""
PJN account lifecycle: stored credentials, auth status, and the
reauth-then-retry-once policy every scrape goes through.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Optional, TypeVar

from pjn_sync.core.logger import logger
from pjn_sync.db.models import PjnAccount
from pjn_sync.db.repository import PjnRepository
from pjn_sync.services.credentials_crypto import InvalidToken, decrypt_password, encrypt_password
from pjn_sync.services.pjn_auth_service import PjnAuthService, pjn_auth_service
from pjn_sync.services.session_store import SessionStore, session_store
from pjn_sync.utils.exceptions import (
    AuthRequiredError,
    CredentialsError,
    InvalidCredentialsError,
    LoginAutomationError,
    SessionStoreError,
)

T = TypeVar("T")

NO_ACCOUNT_REASON = "No PJN account found. Please connect your PJN account first."
NO_CREDENTIALS_REASON = "No stored credentials found. Please reconnect your PJN account."
REAUTH_FAILED_REASON = "Session expired and could not be refreshed. Please reconnect your PJN account."
STILL_INVALID_REASON = "Session still invalid after automatic reauth"


class AccountService:
    def __init__(self, store: Optional[SessionStore] = None, auth: Optional[PjnAuthService] = None):
        self.store = store or session_store
        self.auth = auth or pjn_auth_service

    # ── Credentials ──────────────────────────────────────────────────────────

    def get_account(self, repo: PjnRepository, user_id: str) -> Optional[PjnAccount]:
        return repo.find_one(PjnAccount, user_id=user_id)

    def save_credentials(self, repo: PjnRepository, user_id: str, username: str, password: str) -> PjnAccount:
        now = datetime.utcnow()
        account, created = repo.upsert(
            PjnAccount,
            keys={"user_id": user_id},
            values={
                "username": username,
                "encrypted_password": encrypt_password(password),
                "is_active": True,
                "session_valid": True,
                "needs_reauth": False,
                "last_auth_at": now,
            },
        )
        repo.commit()
        logger.info("PJN credentials saved", extra={"user_id": user_id, "created": created})
        return account

    def get_decrypted_credentials(self, repo: PjnRepository, user_id: str) -> Optional[Dict[str, str]]:
        account = self.get_account(repo, user_id)
        if account is None or not account.is_active or not account.encrypted_password:
            return None
        try:
            password = decrypt_password(account.encrypted_password)
        except (InvalidToken, CredentialsError) as e:
            logger.error("Failed to decrypt PJN password", extra={"user_id": user_id, "error": str(e)})
            return None
        return {"username": account.username, "password": password, "account_id": account.id}

    def get_account_status(self, repo: PjnRepository, user_id: str) -> Optional[PjnAccount]:
        return self.get_account(repo, user_id)

    # ── Status flags ─────────────────────────────────────────────────────────

    def mark_needs_reauth(self, repo: PjnRepository, user_id: str, reason: str) -> None:
        account = self.get_account(repo, user_id)
        if account is None:
            return
        repo.update(
            account,
            needs_reauth=True,
            session_valid=False,
            sync_error_count=(account.sync_error_count or 0) + 1,
            last_error_at=datetime.utcnow(),
            last_error_reason=reason,
        )
        repo.commit()
        logger.warning("PJN account marked as needing reauth", extra={"user_id": user_id, "reason": reason})

    def clear_needs_reauth(self, repo: PjnRepository, user_id: str) -> None:
        account = self.get_account(repo, user_id)
        if account is None:
            return
        repo.update(
            account,
            needs_reauth=False,
            session_valid=True,
            sync_error_count=0,
            last_auth_at=datetime.utcnow(),
        )
        repo.commit()

    def update_sync_status(
        self,
        repo: PjnRepository,
        user_id: str,
        last_synced_at: datetime,
        last_event_id: Optional[str] = None,
    ) -> None:
        account = self.get_account(repo, user_id)
        if account is None:
            return
        values: Dict[str, Any] = {
            "last_synced_at": last_synced_at,
            "session_valid": True,
            "needs_reauth": False,
            "sync_error_count": 0,
            "last_error_at": None,
            "last_error_reason": None,
        }
        if last_event_id is not None:
            values["last_event_id"] = last_event_id
        repo.update(account, **values)
        repo.commit()

    # ── Reauthentication ─────────────────────────────────────────────────────

    def reauthenticate(self, user_id: str, username: str, password: str) -> Dict[str, Any]:
        """
        Log in and persist the session.

        Invalid credentials come back as AUTH_FAILED; anything the browser
        could not do comes back as ERROR with BROWSER_ERROR so callers never
        ask the user to fix a password during an infrastructure outage.
        """
        try:
            state = self.auth.login(username, password)
            state.user_id = user_id
            if not self.store.save(user_id, state):
                raise SessionStoreError("Failed to save session")
        except InvalidCredentialsError as e:
            logger.info("PJN reauth rejected credentials", extra={"user_id": user_id})
            return {"status": "AUTH_FAILED", "reason": e.message}
        except (LoginAutomationError, SessionStoreError) as e:
            logger.error("PJN reauth failed", extra={"user_id": user_id, "error": e.message, "code": e.code})
            return e.to_response()

        logger.info("PJN reauth succeeded", extra={"user_id": user_id})
        return {"status": "OK", "session_saved": True}

    def connect_account(self, repo: PjnRepository, user_id: str, username: str, password: str) -> Dict[str, Any]:
        """Validate the credentials with a real login; store them only on success."""
        result = self.reauthenticate(user_id, username, password)
        if result["status"] != "OK":
            return result
        self.save_credentials(repo, user_id, username, password)
        return {"status": "OK", "message": "PJN account connected successfully"}

    def attempt_automatic_reauth(self, repo: PjnRepository, user_id: str) -> str:
        """Returns one of ``ok``, ``auth_failed``, ``error``, ``no_credentials``."""
        credentials = self.get_decrypted_credentials(repo, user_id)
        if not credentials:
            logger.info("No stored PJN credentials, manual reauth required", extra={"user_id": user_id})
            return "no_credentials"

        try:
            result = self.reauthenticate(user_id, credentials["username"], credentials["password"])
        except Exception as e:
            logger.error("Automatic reauth raised", extra={"user_id": user_id, "error": str(e)})
            self.mark_needs_reauth(repo, user_id, str(e) or "Automatic reauth failed")
            return "error"

        if result["status"] == "OK":
            self.clear_needs_reauth(repo, user_id)
            return "ok"
        if result["status"] == "AUTH_FAILED":
            self.mark_needs_reauth(repo, user_id, result.get("reason") or "Invalid credentials")
            return "auth_failed"
        self.mark_needs_reauth(repo, user_id, result.get("error") or "Unknown error")
        return "error"

    @staticmethod
    def reauth_failure_reason(outcome: str) -> str:
        if outcome == "no_credentials":
            return NO_CREDENTIALS_REASON
        return REAUTH_FAILED_REASON

    def run_with_reauth(self, repo: PjnRepository, user_id: str, operation: Callable[[], T]) -> T:
        """
        Run ``operation`` with at most one automatic reauth.

        A flagged account is reauthenticated before the first attempt. An
        AuthRequiredError from the operation triggers one reauth and one
        retry; a second AuthRequiredError flags the account and propagates.
        """
        account = self.get_account(repo, user_id)
        if account is None or not account.is_active:
            raise AuthRequiredError(NO_ACCOUNT_REASON)

        if account.needs_reauth:
            logger.info("Account flagged for reauth, attempting automatic reauth", extra={"user_id": user_id})
            outcome = self.attempt_automatic_reauth(repo, user_id)
            if outcome != "ok":
                raise AuthRequiredError(self.reauth_failure_reason(outcome))

        try:
            return operation()
        except AuthRequiredError as e:
            logger.info(
                "Session expired or invalid, attempting automatic reauth",
                extra={"user_id": user_id, "reason": e.message},
            )

        outcome = self.attempt_automatic_reauth(repo, user_id)
        if outcome != "ok":
            raise AuthRequiredError(self.reauth_failure_reason(outcome))

        try:
            return operation()
        except AuthRequiredError as e:
            self.mark_needs_reauth(repo, user_id, STILL_INVALID_REASON)
            raise AuthRequiredError(f"{STILL_INVALID_REASON}. Please reconnect your PJN account.") from e


account_service = AccountService()
