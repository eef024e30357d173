"""
PJN SSO authentication.

``login`` drives the Keycloak login form in a throwaway Chromium instance and
returns a ``SessionState`` with the portal cookies, the browser User-Agent
and (when the SSO exposes them) the OAuth tokens captured from the token
endpoint response. ``refresh`` trades a refresh token for a new pair with a
plain HTTP call. ``SessionManager`` ties both to the session store through
an explicit state machine.
"""
from __future__ import annotations

import enum
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

import httpx
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from pjn_sync.core.config import settings
from pjn_sync.core.logger import logger
from pjn_sync.db.schemas import SessionState, TokenSet
from pjn_sync.utils.exceptions import (
    AuthRequiredError,
    InvalidCredentialsError,
    LoginAutomationError,
)

USERNAME_SELECTORS = ['input[name="username"]', "input#username", 'input[type="text"]']
PASSWORD_SELECTORS = ['input[name="password"]', "input#password", 'input[type="password"]']
SUBMIT_SELECTORS = ['button[type="submit"]', 'input[type="submit"]', 'button:has-text("Ingresar")']

NO_SESSION_REASON = "No session found. Please authenticate first."
EXPIRED_SESSION_REASON = "Session expired and could not be refreshed. Please re-authenticate."


def _timeout() -> httpx.Timeout:
    return httpx.Timeout(settings.PJN_REQUEST_TIMEOUT_SECONDS, connect=settings.PJN_CONNECT_TIMEOUT_SECONDS)


def is_expired(
    expires_at: Union[datetime, str, None],
    buffer_seconds: int = 60,
    now: Optional[datetime] = None,
) -> bool:
    """True once ``now >= expires_at - buffer``. No expiry means no token to expire."""
    if expires_at is None:
        return False
    if isinstance(expires_at, str):
        expires_at = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
    if expires_at.tzinfo is not None:
        expires_at = expires_at.replace(tzinfo=None) - (expires_at.utcoffset() or timedelta(0))
    now = now or datetime.utcnow()
    return now >= expires_at - timedelta(seconds=buffer_seconds)


class SessionStatus(str, enum.Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    VALID = "VALID"
    EXPIRED_REFRESHABLE = "EXPIRED_REFRESHABLE"
    NEEDS_REAUTH = "NEEDS_REAUTH"


def classify_session(
    state: Optional[SessionState],
    needs_reauth: bool = False,
    buffer_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> SessionStatus:
    if state is None or (not state.cookies and not state.access_token):
        return SessionStatus.UNAUTHENTICATED
    if needs_reauth:
        return SessionStatus.NEEDS_REAUTH
    buffer = settings.TOKEN_REFRESH_BUFFER_SECONDS if buffer_seconds is None else buffer_seconds
    if is_expired(state.access_token_expires_at, buffer, now=now):
        if state.refresh_token:
            return SessionStatus.EXPIRED_REFRESHABLE
        return SessionStatus.NEEDS_REAUTH
    return SessionStatus.VALID


class PjnAuthService:
    def __init__(self, transport: Optional[httpx.BaseTransport] = None, headless: Optional[bool] = None):
        self._transport = transport
        self.headless = settings.PLAYWRIGHT_HEADLESS if headless is None else headless

    # ── Browser login ────────────────────────────────────────────────────────

    def login(self, username: str, password: str) -> SessionState:
        """
        Fresh browser + context per call, always torn down.

        Raises InvalidCredentialsError when the SSO keeps us on its own pages,
        LoginAutomationError for anything that is the browser's fault.
        """
        logger.info("Starting PJN SSO login", extra={"username": username})
        captured: Dict[str, Any] = {}
        last_url: Optional[str] = None

        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(headless=self.headless)
                try:
                    context = browser.new_context()
                    page = context.new_page()
                    page.set_default_navigation_timeout(settings.PLAYWRIGHT_NAVIGATION_TIMEOUT_MS)
                    context.on("requestfinished", lambda request: self._capture_tokens(request, captured))

                    page.goto(settings.pjn_sso_auth_url, wait_until="networkidle")

                    username_selector = self._first_existing(page, USERNAME_SELECTORS, "username")
                    password_selector = self._first_existing(page, PASSWORD_SELECTORS, "password")
                    page.fill(username_selector, username)
                    page.fill(password_selector, password)

                    self._submit(page, password_selector)

                    last_url = page.url
                    logger.info("PJN SSO login flow completed", extra={"final_url": last_url})
                    if last_url.startswith(settings.PJN_SSO_BASE_URL):
                        logger.warning("PJN SSO appears to have rejected credentials", extra={"url": last_url})
                        raise InvalidCredentialsError("Invalid credentials")
                    if not last_url.startswith(settings.PJN_PORTAL_BASE_URL):
                        logger.warning(
                            "PJN login ended on unexpected URL",
                            extra={"url": last_url, "expected_base": settings.PJN_PORTAL_BASE_URL},
                        )

                    self._warm_scw_session(page)

                    cookies = [f"{c['name']}={c['value']}" for c in context.cookies()]
                    user_agent = page.evaluate("() => navigator.userAgent")
                finally:
                    browser.close()
        except (InvalidCredentialsError, LoginAutomationError):
            raise
        except PlaywrightError as e:
            logger.error("PJN login failed", extra={"error": str(e), "last_url": last_url, "username": username})
            raise LoginAutomationError(f"Browser automation failed: {e}") from e

        now = datetime.utcnow()
        state = SessionState(
            cookies=cookies,
            headers={"User-Agent": user_agent},
            username=username,
            authenticated_at=now,
        )
        token = captured.get("token")
        if token:
            self._apply_tokens(state, TokenSet(**token), now)
            logger.info("PJN tokens captured from SSO flow", extra={"expires_at": state.access_token_expires_at})
        else:
            logger.warning("PJN SSO login completed but no token response was captured", extra={"final_url": last_url})

        logger.info("PJN SSO cookies captured", extra={"cookie_count": len(cookies)})
        return state

    @staticmethod
    def _capture_tokens(request, captured: Dict[str, Any]) -> None:
        url = request.url
        if not url.startswith(settings.PJN_SSO_BASE_URL) or "/protocol/openid-connect/token" not in url:
            return
        try:
            response = request.response()
            if response is None:
                return
            if "application/json" not in response.headers.get("content-type", ""):
                return
            payload = response.json()
        except (PlaywrightError, ValueError) as e:
            logger.warning("Failed to capture PJN token response", extra={"error": str(e)})
            return
        if isinstance(payload, dict) and payload.get("access_token") and payload.get("refresh_token"):
            captured["token"] = {
                "access_token": payload["access_token"],
                "refresh_token": payload["refresh_token"],
                "expires_in": int(payload.get("expires_in") or 300),
            }

    @staticmethod
    def _first_existing(page, selectors: List[str], field_name: str) -> str:
        for selector in selectors:
            if page.locator(selector).first.count() > 0:
                return selector
        raise LoginAutomationError(f"Unable to locate PJN login form field: {field_name}")

    @staticmethod
    def _submit(page, password_selector: str) -> None:
        for selector in SUBMIT_SELECTORS:
            button = page.locator(selector).first
            if button.count() > 0:
                button.click()
                try:
                    page.wait_for_load_state("networkidle")
                except PlaywrightError:
                    pass
                return
        page.locator(password_selector).first.press("Enter")
        try:
            page.wait_for_load_state("networkidle")
        except PlaywrightError:
            pass

    @staticmethod
    def _warm_scw_session(page) -> None:
        """Visit the SCW search page once so its JSESSIONID lands in the jar."""
        try:
            page.goto(settings.scw_search_url, wait_until="networkidle", timeout=settings.PLAYWRIGHT_NAVIGATION_TIMEOUT_MS)
            logger.info("SCW session established", extra={"scw_url": page.url})
        except PlaywrightError as e:
            logger.warning("Failed to open SCW portal after login, continuing", extra={"error": str(e)})

    # ── Token refresh ────────────────────────────────────────────────────────

    def refresh(self, refresh_token: str, cookies: Optional[List[str]] = None) -> TokenSet:
        data = {
            "grant_type": "refresh_token",
            "client_id": settings.PJN_SSO_CLIENT_ID,
            "refresh_token": refresh_token,
        }
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if cookies:
            headers["Cookie"] = "; ".join(cookies)

        try:
            with httpx.Client(timeout=_timeout(), transport=self._transport) as client:
                response = client.post(settings.pjn_token_url, data=data, headers=headers)
        except httpx.HTTPError as e:
            logger.error("PJN token refresh request failed", extra={"error": str(e)})
            raise AuthRequiredError(EXPIRED_SESSION_REASON) from e

        if response.status_code >= 300:
            logger.warning("PJN token refresh rejected", extra={"status_code": response.status_code})
            raise AuthRequiredError(EXPIRED_SESSION_REASON, details={"status_code": response.status_code})

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthRequiredError(EXPIRED_SESSION_REASON) from e
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise AuthRequiredError(EXPIRED_SESSION_REASON)
        return TokenSet(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or refresh_token,
            expires_in=int(payload.get("expires_in") or 300),
        )

    @staticmethod
    def _apply_tokens(state: SessionState, tokens: TokenSet, now: Optional[datetime] = None) -> None:
        now = now or datetime.utcnow()
        state.access_token = tokens.access_token
        state.refresh_token = tokens.refresh_token
        state.access_token_expires_at = now + timedelta(seconds=tokens.expires_in)
        state.headers = {**state.headers, "Authorization": f"Bearer {tokens.access_token}"}


class SessionManager:
    """Loads a user's session and moves it to VALID or fails with AUTH_REQUIRED."""

    def __init__(self, store, auth: PjnAuthService):
        self.store = store
        self.auth = auth

    def ensure_valid_session(self, user_id: str, needs_reauth: bool = False) -> SessionState:
        state = self.store.load(user_id)
        status = classify_session(state, needs_reauth)

        if status == SessionStatus.UNAUTHENTICATED:
            raise AuthRequiredError(NO_SESSION_REASON)
        if status == SessionStatus.NEEDS_REAUTH:
            raise AuthRequiredError(EXPIRED_SESSION_REASON)
        if status == SessionStatus.VALID:
            return state

        logger.info(
            "Access token expired, attempting refresh",
            extra={"user_id": user_id, "expires_at": state.access_token_expires_at},
        )
        tokens = self.auth.refresh(state.refresh_token, state.cookies)
        PjnAuthService._apply_tokens(state, tokens)
        if not self.store.save(user_id, state):
            logger.error("Failed to save refreshed session", extra={"user_id": user_id})
        return state


pjn_auth_service = PjnAuthService()
