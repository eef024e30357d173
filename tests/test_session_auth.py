"""
Session persistence, expiry classification and token refresh.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import httpx
import pytest

from pjn_sync.services.pjn_auth_service import (
    EXPIRED_SESSION_REASON,
    NO_SESSION_REASON,
    PjnAuthService,
    SessionManager,
    SessionStatus,
    classify_session,
    is_expired,
)
from pjn_sync.services.session_store import LocalSessionBackend, SessionStore, session_key
from pjn_sync.utils.exceptions import AuthRequiredError
from tests.helpers import valid_session

NOW = datetime(2025, 3, 1, 12, 0, 0)


class TestSessionStore:
    def test_missing_session_loads_as_none(self, session_store) -> None:
        assert session_store.load("nobody") is None

    def test_save_then_load_stamps_user(self, session_store) -> None:
        assert session_store.save("user-1", valid_session()) is True

        loaded = session_store.load("user-1")

        assert loaded is not None
        assert loaded.user_id == "user-1"
        assert loaded.cookies == ["JSESSIONID=abc"]
        assert loaded.last_updated is not None

    def test_unreadable_blob_is_treated_as_missing(self, tmp_path) -> None:
        backend = LocalSessionBackend(str(tmp_path))
        backend.write(session_key("user-1"), b"{not json")
        assert SessionStore(backend).load("user-1") is None

    def test_delete(self, session_store) -> None:
        session_store.save("user-1", valid_session())
        assert session_store.delete("user-1") is True
        assert session_store.load("user-1") is None
        assert session_store.delete("user-1") is True

    def test_s3_backend_round_trip(self, storage, s3_client) -> None:
        from pjn_sync.services.session_store import S3SessionBackend

        store = SessionStore(S3SessionBackend(storage))
        assert store.save("user-9", valid_session()) is True
        assert session_key("user-9") in s3_client.objects
        assert store.load("user-9").access_token == "token"


class TestExpiry:
    def test_no_expiry_never_expires(self) -> None:
        assert is_expired(None, now=NOW) is False

    def test_buffer_applies(self) -> None:
        assert is_expired(NOW + timedelta(seconds=30), buffer_seconds=60, now=NOW) is True
        assert is_expired(NOW + timedelta(seconds=90), buffer_seconds=60, now=NOW) is False

    def test_iso_string_with_zone(self) -> None:
        assert is_expired("2025-03-01T11:00:00Z", buffer_seconds=0, now=NOW) is True
        assert is_expired("2025-03-01T15:00:00+02:00", buffer_seconds=0, now=NOW) is False


class TestClassifySession:
    def test_missing(self) -> None:
        assert classify_session(None) == SessionStatus.UNAUTHENTICATED

    def test_empty_state(self) -> None:
        assert classify_session(valid_session(cookies=[], access_token=None)) == SessionStatus.UNAUTHENTICATED

    def test_flagged_account(self) -> None:
        assert classify_session(valid_session(), needs_reauth=True) == SessionStatus.NEEDS_REAUTH

    def test_valid(self) -> None:
        assert classify_session(valid_session(), now=datetime.utcnow()) == SessionStatus.VALID

    def test_expired_with_refresh_token(self) -> None:
        state = valid_session(access_token_expires_at=datetime.utcnow() - timedelta(minutes=1))
        assert classify_session(state) == SessionStatus.EXPIRED_REFRESHABLE

    def test_expired_without_refresh_token(self) -> None:
        state = valid_session(access_token_expires_at=datetime.utcnow() - timedelta(minutes=1), refresh_token=None)
        assert classify_session(state) == SessionStatus.NEEDS_REAUTH


class TestRefresh:
    def _service(self, handler) -> PjnAuthService:
        return PjnAuthService(transport=httpx.MockTransport(handler), headless=True)

    def test_success(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.content.decode()
            seen["cookie"] = request.headers.get("Cookie")
            return httpx.Response(200, json={"access_token": "new", "refresh_token": "r2", "expires_in": 120})

        tokens = self._service(handler).refresh("r1", ["JSESSIONID=abc", "A=b"])

        assert tokens.access_token == "new"
        assert tokens.refresh_token == "r2"
        assert tokens.expires_in == 120
        assert "grant_type=refresh_token" in seen["body"]
        assert "refresh_token=r1" in seen["body"]
        assert seen["cookie"] == "JSESSIONID=abc; A=b"

    def test_keeps_old_refresh_token_when_not_rotated(self) -> None:
        tokens = self._service(lambda r: httpx.Response(200, json={"access_token": "new"})).refresh("r1")
        assert tokens.refresh_token == "r1"
        assert tokens.expires_in == 300

    def test_rejection_is_auth_required(self) -> None:
        service = self._service(lambda r: httpx.Response(400, json={"error": "invalid_grant"}))
        with pytest.raises(AuthRequiredError) as exc_info:
            service.refresh("r1")
        assert exc_info.value.message == EXPIRED_SESSION_REASON
        assert exc_info.value.details == {"status_code": 400}

    def test_network_error_is_auth_required(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(AuthRequiredError):
            self._service(handler).refresh("r1")

    def test_non_json_is_auth_required(self) -> None:
        with pytest.raises(AuthRequiredError):
            self._service(lambda r: httpx.Response(200, text="<html>")).refresh("r1")


class TestSessionManager:
    def test_no_session(self, session_store, auth) -> None:
        with pytest.raises(AuthRequiredError) as exc_info:
            SessionManager(session_store, auth).ensure_valid_session("user-1")
        assert exc_info.value.message == NO_SESSION_REASON

    def test_valid_session_is_returned_untouched(self, session_store, auth) -> None:
        session_store.save("user-1", valid_session())
        state = SessionManager(session_store, auth).ensure_valid_session("user-1")
        assert state.access_token == "token"
        assert auth.refresh_calls == []

    def test_expired_session_is_refreshed_and_saved(self, session_store, auth) -> None:
        session_store.save("user-1", valid_session(access_token_expires_at=datetime.utcnow() - timedelta(minutes=5)))

        state = SessionManager(session_store, auth).ensure_valid_session("user-1")

        assert auth.refresh_calls == ["refresh"]
        assert state.access_token == "refreshed-token"
        assert state.headers["Authorization"] == "Bearer refreshed-token"
        assert session_store.load("user-1").access_token == "refreshed-token"

    def test_failed_refresh_propagates(self, session_store, auth) -> None:
        session_store.save("user-1", valid_session(access_token_expires_at=datetime.utcnow() - timedelta(minutes=5)))
        auth.refresh_error = AuthRequiredError(EXPIRED_SESSION_REASON)
        with pytest.raises(AuthRequiredError):
            SessionManager(session_store, auth).ensure_valid_session("user-1")

    def test_flagged_account_needs_reauth(self, session_store, auth) -> None:
        session_store.save("user-1", valid_session())
        with pytest.raises(AuthRequiredError) as exc_info:
            SessionManager(session_store, auth).ensure_valid_session("user-1", needs_reauth=True)
        assert exc_info.value.message == EXPIRED_SESSION_REASON
