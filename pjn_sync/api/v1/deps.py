# pjn_sync/api/v1/deps.py

import secrets
from typing import Generator, Optional

from fastapi import Header

from pjn_sync.core.config import settings
from pjn_sync.db.database import SessionLocal
from pjn_sync.db.repository import PjnRepository
from pjn_sync.services.account_service import AccountService, account_service
from pjn_sync.services.events_service import EventsService, events_service
from pjn_sync.services.matching_service import MatchingService, matching_service
from pjn_sync.services.pjn_auth_service import SessionManager
from pjn_sync.services.portal_navigator import PortalNavigator, portal_navigator
from pjn_sync.services.s3_service import S3Service, s3_service
from pjn_sync.services.scw_http_client import ScwHttpClient, scw_http_client
from pjn_sync.services.sync_service import SyncService, sync_service
from pjn_sync.services.task_queue import task_queue
from pjn_sync.utils.exceptions import ServiceAuthError, ServiceNotConfiguredError

# ============================================================================
# Shared-secret Dependency
# ============================================================================

def verify_service_auth(x_service_auth: Optional[str] = Header(None)) -> None:
    """
    Every /api/v1 route requires X-Service-Auth to equal SERVICE_AUTH_SECRET.
    """
    secret = settings.SERVICE_AUTH_SECRET
    if not secret:
        raise ServiceNotConfiguredError()
    if not x_service_auth or not secrets.compare_digest(x_service_auth, secret):
        raise ServiceAuthError()


# ============================================================================
# Persistence
# ============================================================================

def get_repository() -> Generator[PjnRepository, None, None]:
    repo = PjnRepository(SessionLocal())
    try:
        yield repo
    finally:
        repo.close()


# ============================================================================
# Services (overridden in tests)
# ============================================================================

def get_task_queue():
    return task_queue


def get_storage() -> S3Service:
    return s3_service


def get_account_service() -> AccountService:
    return account_service


def get_session_manager() -> SessionManager:
    return SessionManager(account_service.store, account_service.auth)


def get_portal_navigator() -> PortalNavigator:
    return portal_navigator


def get_scw_http_client() -> ScwHttpClient:
    return scw_http_client


def get_events_service() -> EventsService:
    return events_service


def get_matching_service() -> MatchingService:
    return matching_service


def get_sync_service() -> SyncService:
    return sync_service
