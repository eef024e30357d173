"""
Readiness check – verify the database, the document bucket and the session store.
"""
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from pjn_sync.api.v1.deps import get_account_service, get_repository, get_storage
from pjn_sync.core.logger import logger
from pjn_sync.db.repository import PjnRepository
from pjn_sync.services.account_service import AccountService
from pjn_sync.services.s3_service import S3Service

router = APIRouter()


def _check_database(repo: PjnRepository) -> tuple[str, str]:
    """Returns (status, detail). Status is 'ok' or 'error'."""
    try:
        repo.db.execute(text("SELECT 1"))
        return "ok", "Database reachable"
    except SQLAlchemyError as e:
        logger.exception("Database check failed")
        return "error", f"Database: {str(e)}"


def _check_s3(storage: S3Service) -> tuple[str, str]:
    if storage.head_bucket():
        return "ok", f"Bucket '{storage.bucket}' accessible"
    return "error", f"S3: bucket '{storage.bucket}' not accessible"


def _check_session_store(accounts: AccountService) -> tuple[str, str]:
    if accounts.store.ping():
        return "ok", "Session store writable"
    return "error", "Session store not reachable"


@router.get("/ready")
def readiness(
    repo: PjnRepository = Depends(get_repository),
    storage: S3Service = Depends(get_storage),
    accounts: AccountService = Depends(get_account_service),
):
    """
    Check the dependencies every sync relies on.
    - database: SELECT 1
    - s3: head_bucket on the document bucket
    - session_store: backend ping (directory writable or bucket reachable)
    """
    db_status, db_detail = _check_database(repo)
    s3_status, s3_detail = _check_s3(storage)
    store_status, store_detail = _check_session_store(accounts)

    healthy = db_status == s3_status == store_status == "ok"
    return {
        "status": "healthy" if healthy else "degraded",
        "database": {"status": db_status, "detail": db_detail},
        "s3": {"status": s3_status, "detail": s3_detail},
        "session_store": {"status": store_status, "detail": store_detail},
    }
