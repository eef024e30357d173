"""
Custom exception classes
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException


# ── Pipeline errors ──────────────────────────────────────────────────────────


class PjnError(Exception):
    """Base class for portal pipeline failures. ``code`` is the machine code
    surfaced in ERROR responses."""
    code = "ERROR"

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details or {}

    def to_response(self) -> Dict[str, Any]:
        return {"status": "ERROR", "error": self.message, "code": self.code}


class AuthRequiredError(PjnError):
    """Session missing, expired or rejected by the portal."""
    code = "AUTH_REQUIRED"

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": "AUTH_REQUIRED", "reason": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidCredentialsError(PjnError):
    """SSO rejected the username/password pair."""
    code = "AUTH_FAILED"

    def __init__(self, message: str = "Invalid credentials", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class LoginAutomationError(PjnError):
    """Browser could not be driven through the login flow (launch failure,
    missing form fields). Not a credentials problem."""
    code = "BROWSER_ERROR"


class ScrapeError(PjnError):
    """Unexpected portal structure or navigation failure."""
    code = "SCRAPE_ERROR"


class CaseNotFoundError(PjnError):
    """Search yielded no usable candidate."""
    code = "NOT_FOUND"


class SessionStoreError(PjnError):
    """The session blob could not be written."""
    code = "SESSION_STORE_ERROR"


class CredentialsError(PjnError):
    """Stored credentials missing or undecryptable."""
    code = "CREDENTIALS_ERROR"


# ── HTTP errors ──────────────────────────────────────────────────────────────


class ServiceAuthError(HTTPException):
    """Raised when X-Service-Auth doesn't match the configured secret"""
    def __init__(self):
        super().__init__(
            status_code=401,
            detail="Invalid or missing X-Service-Auth header"
        )


class ServiceNotConfiguredError(HTTPException):
    """Raised when the shared secret is not configured"""
    def __init__(self):
        super().__init__(
            status_code=503,
            detail="Service authentication not configured (SERVICE_AUTH_SECRET unset)"
        )


class RecordNotFoundError(HTTPException):
    """Raised when a persisted record doesn't exist"""
    def __init__(self, kind: str, record_id: str):
        super().__init__(
            status_code=404,
            detail=f"{kind} {record_id} not found"
        )
