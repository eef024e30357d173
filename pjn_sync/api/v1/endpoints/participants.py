"""
Case participants: ingestion, matching and the human decisions on their links.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from pjn_sync.api.v1.deps import get_matching_service, get_repository, get_task_queue
from pjn_sync.db.models import Case
from pjn_sync.db.repository import PjnRepository
from pjn_sync.db.schemas import (
    CreateClientFromParticipantRequest,
    IgnoreParticipantRequest,
    LinkAuditResponse,
    ManualLinkRequest,
    NormalizedParticipant,
    ParticipantCreate,
)
from pjn_sync.services.matching_service import MatchingService
from pjn_sync.utils.exceptions import RecordNotFoundError

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_participant(
    request: ParticipantCreate,
    repo: PjnRepository = Depends(get_repository),
    matching: MatchingService = Depends(get_matching_service),
    queue=Depends(get_task_queue),
):
    """
    Find-or-create the participant; a new one is queued for matching once
    the row is committed.
    """
    if repo.get(Case, request.case_id) is None:
        raise RecordNotFoundError("Case", request.case_id)

    result = matching.create_participant_entry(
        repo,
        request.case_id,
        NormalizedParticipant(
            participant_id=request.participant_id,
            role=request.role,
            name=request.name,
            details=request.details,
        ),
    )
    repo.commit()
    if result["is_new"]:
        matching.trigger_matching(queue, result["participant_id"], request.case_id)
    return result


@router.post("/{participant_id}/match")
def match_participant(
    participant_id: str,
    repo: PjnRepository = Depends(get_repository),
    matching: MatchingService = Depends(get_matching_service),
):
    result = matching.match_participant(repo, participant_id)
    if result["status"] == "PARTICIPANT_NOT_FOUND":
        raise RecordNotFoundError("Participant", participant_id)
    return result


@router.post("/{participant_id}/link")
def link_participant(
    participant_id: str,
    request: ManualLinkRequest,
    repo: PjnRepository = Depends(get_repository),
    matching: MatchingService = Depends(get_matching_service),
):
    return matching.manual_link(
        repo, participant_id, request.client_id, role=request.role, performed_by=request.performed_by
    )


@router.post("/{participant_id}/ignore")
def ignore_participant(
    participant_id: str,
    request: Optional[IgnoreParticipantRequest] = None,
    repo: PjnRepository = Depends(get_repository),
    matching: MatchingService = Depends(get_matching_service),
):
    request = request or IgnoreParticipantRequest()
    return matching.ignore_participant(
        repo, participant_id, performed_by=request.performed_by, reason=request.reason
    )


@router.post("/{participant_id}/client", status_code=status.HTTP_201_CREATED)
def create_client_from_participant(
    participant_id: str,
    request: CreateClientFromParticipantRequest,
    repo: PjnRepository = Depends(get_repository),
    matching: MatchingService = Depends(get_matching_service),
):
    try:
        return matching.create_client_from_participant(repo, participant_id, request)
    except ValueError as e:
        repo.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/{participant_id}/audit", response_model=List[LinkAuditResponse])
def get_link_audit(
    participant_id: str,
    repo: PjnRepository = Depends(get_repository),
    matching: MatchingService = Depends(get_matching_service),
):
    return matching.get_link_audit(repo, participant_id)
