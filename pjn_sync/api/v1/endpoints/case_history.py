"""
Case history ("consulta de expedientes") endpoints.

Search runs either through the browser (default) or through the plain-HTTP
SCW client, depending on PJN_SEARCH_MODE. Details always need the browser:
the tabs are JSF postbacks.
"""
from typing import Optional

from fastapi import APIRouter, Depends

from pjn_sync.api.v1.deps import get_portal_navigator, get_scw_http_client, get_session_manager
from pjn_sync.core.config import settings
from pjn_sync.core.logger import logger
from pjn_sync.db.schemas import CaseHistoryDetailsRequest, CaseHistorySearchRequest
from pjn_sync.services import pjn_parsers
from pjn_sync.services.candidate_selector import select_candidate, to_search_response
from pjn_sync.services.pjn_auth_service import SessionManager
from pjn_sync.services.portal_navigator import PortalNavigator
from pjn_sync.services.scw_http_client import ScwHttpClient
from pjn_sync.utils.exceptions import AuthRequiredError, CaseNotFoundError, PjnError

router = APIRouter()


def _http_search(client: ScwHttpClient, session, request: CaseHistorySearchRequest) -> dict:
    result = client.search(session, request.jurisdiction, request.case_number, request.year)
    parsed = pjn_parsers.parse_search_results(result.html)
    if isinstance(parsed, pjn_parsers.NotFound):
        logger.info("Search results table not found", extra={"fre": result.fre, "reason": parsed.reason})
    selection = select_candidate(result.fre, parsed.records, request.jurisdiction, request.case_number, request.year)
    return to_search_response(result.fre, parsed.records, selection)


@router.post("/search")
def search_case_history(
    request: CaseHistorySearchRequest,
    sessions: SessionManager = Depends(get_session_manager),
    navigator: PortalNavigator = Depends(get_portal_navigator),
    client: ScwHttpClient = Depends(get_scw_http_client),
    mode: Optional[str] = None,
):
    """
    Candidate list for ``jurisdiction`` + ``case_number`` + ``year``.
    ``status`` is NOT_FOUND when the portal listed nothing; otherwise OK,
    with ``case_metadata`` only when exactly one candidate was selected.
    """
    search_mode = (mode or settings.PJN_SEARCH_MODE).lower()
    try:
        session = sessions.ensure_valid_session(request.user_id)
        if search_mode == "http":
            return _http_search(client, session, request)
        outcome = navigator.search_case(
            session, request.user_id, request.jurisdiction, request.case_number, request.year
        )
        return to_search_response(outcome.fre, outcome.candidates, outcome.selection)
    except AuthRequiredError as e:
        return e.to_response()
    except PjnError as e:
        logger.error("Case history search failed", extra={"user_id": request.user_id, "error": e.message})
        return e.to_response()


@router.post("/details")
def case_history_details(
    request: CaseHistoryDetailsRequest,
    sessions: SessionManager = Depends(get_session_manager),
    navigator: PortalNavigator = Depends(get_portal_navigator),
):
    try:
        session = sessions.ensure_valid_session(request.user_id)
        details = navigator.scrape_case_history_details(
            session,
            request.fre,
            request.user_id,
            include_movements=request.include_movements,
            include_documents=request.include_documents,
            include_participants=request.include_participants,
            include_appeals=request.include_appeals,
            include_related_cases=request.include_related_cases,
            max_movements=request.max_movements,
            max_documents=request.max_documents,
            download_pdfs=request.download_pdfs,
        )
    except AuthRequiredError as e:
        return e.to_response()
    except CaseNotFoundError as e:
        return {"status": "NOT_FOUND", "fre": request.fre, "reason": e.message}
    except PjnError as e:
        logger.error("Case history details failed", extra={"fre": request.fre, "error": e.message})
        return e.to_response()

    return {"status": "OK", **details.model_dump()}
