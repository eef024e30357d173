"""
Case-level matching operations.
"""
from fastapi import APIRouter, Depends

from pjn_sync.api.v1.deps import get_matching_service, get_repository
from pjn_sync.db.models import Case, CaseParticipant, Client
from pjn_sync.db.repository import PjnRepository
from pjn_sync.db.schemas import ClientCaseRelationRequest
from pjn_sync.services.matching_service import MatchingService
from pjn_sync.utils.exceptions import RecordNotFoundError

router = APIRouter()


def _case_or_404(repo: PjnRepository, case_id: str) -> Case:
    case = repo.get(Case, case_id)
    if case is None:
        raise RecordNotFoundError("Case", case_id)
    return case


@router.get("/{case_id}/participants")
def list_case_participants(
    case_id: str,
    repo: PjnRepository = Depends(get_repository),
    matching: MatchingService = Depends(get_matching_service),
):
    _case_or_404(repo, case_id)
    return matching.get_participants_for_case(repo, case_id)


@router.post("/{case_id}/rematch")
def rematch_case(
    case_id: str,
    repo: PjnRepository = Depends(get_repository),
    matching: MatchingService = Depends(get_matching_service),
):
    _case_or_404(repo, case_id)
    return matching.rematch_all_for_case(repo, case_id)


@router.post("/{case_id}/client-relations")
def ensure_client_relation(
    case_id: str,
    request: ClientCaseRelationRequest,
    repo: PjnRepository = Depends(get_repository),
    matching: MatchingService = Depends(get_matching_service),
):
    _case_or_404(repo, case_id)
    if repo.get(Client, request.client_id) is None:
        raise RecordNotFoundError("Client", request.client_id)
    if repo.get(CaseParticipant, request.participant_id) is None:
        raise RecordNotFoundError("Participant", request.participant_id)

    relation = matching.ensure_client_case_relation(
        repo, request.client_id, case_id, request.participant_id, request.role
    )
    repo.commit()
    return {
        "success": True,
        "client_case_id": relation.id,
        "is_active": relation.is_active,
        "source": relation.source,
    }
