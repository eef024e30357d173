"""
Participant-client link decisions.
"""
from typing import Optional

from fastapi import APIRouter, Depends

from pjn_sync.api.v1.deps import get_matching_service, get_repository
from pjn_sync.db.repository import PjnRepository
from pjn_sync.db.schemas import ConfirmLinkRequest
from pjn_sync.services.matching_service import MatchingService

router = APIRouter()


@router.post("/{link_id}/confirm")
def confirm_link(
    link_id: str,
    request: Optional[ConfirmLinkRequest] = None,
    repo: PjnRepository = Depends(get_repository),
    matching: MatchingService = Depends(get_matching_service),
):
    return matching.confirm_link(repo, link_id, performed_by=request.performed_by if request else None)


@router.delete("/{link_id}")
def unlink(
    link_id: str,
    performed_by: Optional[str] = None,
    repo: PjnRepository = Depends(get_repository),
    matching: MatchingService = Depends(get_matching_service),
):
    return matching.unlink(repo, link_id, performed_by=performed_by)
