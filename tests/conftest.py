"""
tests/conftest.py

Shared fixtures. Nothing here touches the network, a browser or AWS:

  repo / session_factory  - in-memory SQLite shared by every session (StaticPool),
                            so inline background tasks see committed rows
  storage                 - real S3Service over an in-memory fake boto3 client
  session_store           - SessionStore on a tmp directory
  auth                    - stand-in for PjnAuthService (no Chromium)
  navigator               - stand-in for PortalNavigator returning canned details
  client                  - TestClient with every service dependency overridden
"""

from __future__ import annotations

import io
import os
import tempfile
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

# Settings are read at import time; configure before importing the package.
os.environ.setdefault("SERVICE_AUTH_SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DATABASE_AUTO_CREATE", "false")
os.environ.setdefault("TASK_QUEUE_MODE", "inline")
os.environ.setdefault("SESSION_STORE_BACKEND", "local")
os.environ.setdefault("SESSION_LOCAL_DIR", tempfile.mkdtemp(prefix="pjn-sessions-"))
os.environ.setdefault("PJN_CREDENTIALS_ENCRYPTION_KEY", "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY=")
os.environ.setdefault("AWS_REGION", "sa-east-1")

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pjn_sync.api.v1 import deps
from pjn_sync.db import models  # noqa: F401
from pjn_sync.db.database import Base
from pjn_sync.db.models import Case, Client, NaturalezaJuridica, PjnAccount
from pjn_sync.db.repository import PjnRepository
from pjn_sync.db.schemas import CaseHistoryDetails, SessionState, TokenSet
from pjn_sync.services.account_service import AccountService
from pjn_sync.services.credentials_crypto import encrypt_password
from pjn_sync.services.document_pipeline import DocumentPipeline
from pjn_sync.services.events_service import EventsService
from pjn_sync.services.matching_service import MatchingService
from pjn_sync.services.pjn_auth_service import SessionManager
from pjn_sync.services.s3_service import S3Service
from pjn_sync.services.scw_http_client import EventsPage
from pjn_sync.services.session_store import LocalSessionBackend, SessionStore
from pjn_sync.services.sync_service import SyncService
from pjn_sync.services.task_queue import InlineTaskQueue
from pjn_sync.utils.exceptions import AuthRequiredError, InvalidCredentialsError

SERVICE_SECRET = "test-secret"


# =============================================================================
# Fakes
# =============================================================================


class FakeS3Client:
    """The handful of boto3 S3 calls S3Service makes, backed by a dict."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.bucket_ok = True

    @staticmethod
    def _missing(op: str) -> ClientError:
        return ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, op)

    def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str = "", Metadata=None):
        self.objects[Key] = Body
        return {}

    def head_object(self, Bucket: str, Key: str):
        if Key not in self.objects:
            raise self._missing("HeadObject")
        return {"ContentLength": len(self.objects[Key])}

    def get_object(self, Bucket: str, Key: str):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def delete_object(self, Bucket: str, Key: str):
        self.objects.pop(Key, None)
        return {}

    def head_bucket(self, Bucket: str):
        if not self.bucket_ok:
            raise ClientError({"Error": {"Code": "403", "Message": "Forbidden"}}, "HeadBucket")
        return {}


class FakeAuth:
    """PjnAuthService without a browser: ``login`` succeeds only for ``valid_password``."""

    def __init__(self):
        self.valid_password = "secret"
        self.login_calls: List[str] = []
        self.refresh_calls: List[str] = []
        self.refresh_error: Optional[Exception] = None

    def login(self, username: str, password: str) -> SessionState:
        self.login_calls.append(username)
        if password != self.valid_password:
            raise InvalidCredentialsError("Invalid username or password")
        now = datetime.utcnow()
        return SessionState(
            cookies=["JSESSIONID=fresh", "KEYCLOAK_IDENTITY=abc"],
            headers={"User-Agent": "pytest"},
            access_token="fresh-token",
            refresh_token="fresh-refresh",
            access_token_expires_at=now + timedelta(minutes=5),
            username=username,
            authenticated_at=now,
        )

    def refresh(self, refresh_token: str, cookies=None) -> TokenSet:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenSet(access_token="refreshed-token", refresh_token=refresh_token, expires_in=300)


class FakeNavigator:
    """PortalNavigator stand-in. ``errors`` are raised in order before ``details`` is returned."""

    def __init__(self):
        self.details: Optional[CaseHistoryDetails] = None
        self.errors: List[Exception] = []
        self.calls: List[Dict[str, Any]] = []
        self.search_outcome = None

    def scrape_case_history_details(self, session, case_key, user_id, **kwargs) -> CaseHistoryDetails:
        self.calls.append({"case_key": case_key, "user_id": user_id, "session": session, **kwargs})
        if self.errors:
            raise self.errors.pop(0)
        return self.details or CaseHistoryDetails(fre=case_key)

    def search_case(self, session, user_id, jurisdiction, case_number, year):
        self.calls.append({"search": (jurisdiction, case_number, year)})
        if self.errors:
            raise self.errors.pop(0)
        return self.search_outcome


class FakeScwClient:
    """Events API pages served from a list; PDFs from a dict."""

    def __init__(self):
        self.pages: List[EventsPage] = []
        self.pdfs: Dict[str, bytes] = {}
        self.requested_pages: List[int] = []
        self.auth_error = False

    def fetch_events(self, session, page=0, page_size=None, categoria="judicial", fecha_desde=None, fecha_hasta=None):
        if self.auth_error:
            raise AuthRequiredError("Session expired or invalid")
        self.requested_pages.append(page)
        if page < len(self.pages):
            return self.pages[page]
        return EventsPage(events=[], has_more=False, total_pages=len(self.pages))

    def download_event_pdf(self, event_id, session):
        return self.pdfs.get(event_id)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def repo(session_factory):
    repository = PjnRepository(session_factory())
    yield repository
    repository.close()


@pytest.fixture
def repository_factory(session_factory):
    return lambda: PjnRepository(session_factory())


@pytest.fixture
def case(repo) -> Case:
    row = repo.insert(Case, fre="FRE-3852/2020", title="GOMEZ c/ ESTADO NACIONAL s/ AMPARO", assigned_lawyer_id="lawyer-1")
    repo.commit()
    return row


@pytest.fixture
def make_client(repo):
    def _make(display_name: str, dni: Optional[str] = None, cuit: Optional[str] = None, juridica: bool = False) -> Client:
        row = repo.insert(
            Client,
            naturaleza_juridica=NaturalezaJuridica.juridica if juridica else NaturalezaJuridica.humana,
            display_name=display_name,
            razon_social=display_name if juridica else None,
            dni=dni,
            cuit=cuit,
            is_active=True,
        )
        repo.commit()
        return row

    return _make


@pytest.fixture
def account(repo) -> PjnAccount:
    row = repo.insert(
        PjnAccount,
        user_id="user-1",
        username="20123456786",
        encrypted_password=encrypt_password("secret"),
        is_active=True,
        session_valid=True,
        needs_reauth=False,
    )
    repo.commit()
    return row


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def storage(s3_client) -> S3Service:
    return S3Service(bucket="test-bucket", client=s3_client)


@pytest.fixture
def session_store(tmp_path) -> SessionStore:
    return SessionStore(LocalSessionBackend(str(tmp_path / "sessions")))


@pytest.fixture
def auth() -> FakeAuth:
    return FakeAuth()


@pytest.fixture
def accounts(session_store, auth) -> AccountService:
    return AccountService(store=session_store, auth=auth)


@pytest.fixture
def inline_queue() -> InlineTaskQueue:
    return InlineTaskQueue()


@pytest.fixture
def matching(repository_factory) -> MatchingService:
    return MatchingService(repository_factory=repository_factory)


@pytest.fixture
def navigator() -> FakeNavigator:
    return FakeNavigator()


@pytest.fixture
def scw_client() -> FakeScwClient:
    return FakeScwClient()


@pytest.fixture
def events(scw_client, storage) -> EventsService:
    return EventsService(client=scw_client, storage=storage)


@pytest.fixture
def pipeline(storage) -> DocumentPipeline:
    return DocumentPipeline(storage=storage)


@pytest.fixture
def sync(accounts, navigator, events, matching, pipeline, inline_queue, repository_factory) -> SyncService:
    return SyncService(
        accounts=accounts,
        navigator=navigator,
        events=events,
        matching=matching,
        pipeline=pipeline,
        queue=inline_queue,
        repository_factory=repository_factory,
    )


# =============================================================================
# HTTP
# =============================================================================


@pytest.fixture
def app(session_factory, storage, accounts, navigator, scw_client, events, matching, sync, inline_queue):
    from pjn_sync.main import app as fastapi_app

    def _repository():
        repository = PjnRepository(session_factory())
        try:
            yield repository
        finally:
            repository.close()

    fastapi_app.dependency_overrides = {
        deps.get_repository: _repository,
        deps.get_storage: lambda: storage,
        deps.get_account_service: lambda: accounts,
        deps.get_session_manager: lambda: SessionManager(accounts.store, accounts.auth),
        deps.get_portal_navigator: lambda: navigator,
        deps.get_scw_http_client: lambda: scw_client,
        deps.get_events_service: lambda: events,
        deps.get_matching_service: lambda: matching,
        deps.get_sync_service: lambda: sync,
        deps.get_task_queue: lambda: inline_queue,
    }
    yield fastapi_app
    fastapi_app.dependency_overrides = {}


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, raise_server_exceptions=False, headers={"X-Service-Auth": SERVICE_SECRET})


@pytest.fixture
def anonymous_client(app) -> TestClient:
    return TestClient(app, raise_server_exceptions=False)
