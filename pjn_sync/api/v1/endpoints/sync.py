"""
Sync endpoints: scrape the portal and persist the result.

``background=true`` hands the work to the task queue and returns at once;
the task key dedupes repeated requests for the same case or user.
"""
from typing import Optional

from fastapi import APIRouter, Depends

from pjn_sync.api.v1.deps import get_repository, get_sync_service
from pjn_sync.core.logger import logger
from pjn_sync.db.repository import PjnRepository
from pjn_sync.db.schemas import CaseHistorySyncRequest, NotificationSyncRequest
from pjn_sync.services.sync_service import SyncService
from pjn_sync.utils.exceptions import PjnError

router = APIRouter()


@router.post("/cases/{case_id}/history")
def sync_case_history(
    case_id: str,
    request: CaseHistorySyncRequest,
    repo: PjnRepository = Depends(get_repository),
    sync: SyncService = Depends(get_sync_service),
):
    if request.background:
        task_key = sync.enqueue_case_history_sync(case_id, request.user_id)
        return {"status": "QUEUED", "task_key": task_key}
    return sync.sync_case_history_for_case(repo, case_id, request.user_id)


@router.post("/users/{user_id}/notifications")
def sync_notifications(
    user_id: str,
    request: Optional[NotificationSyncRequest] = None,
    repo: PjnRepository = Depends(get_repository),
    sync: SyncService = Depends(get_sync_service),
):
    if request is not None and request.background:
        task_key = sync.enqueue_notification_sync(user_id)
        return {"status": "QUEUED", "task_key": task_key}
    try:
        return sync.sync_notifications_for_user(repo, user_id)
    except PjnError as e:
        logger.error("Notification sync failed", extra={"user_id": user_id, "error": e.message})
        return e.to_response()
