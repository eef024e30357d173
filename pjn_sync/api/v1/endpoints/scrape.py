"""
Notification events scrape.

Stateless with respect to the database: the caller passes its watermark
(``since`` / ``last_event_id``) and persists whatever comes back.
"""
from fastapi import APIRouter, Depends

from pjn_sync.api.v1.deps import get_events_service, get_session_manager
from pjn_sync.core.logger import logger
from pjn_sync.db.schemas import ScrapeEventsRequest
from pjn_sync.services.events_service import EventsService
from pjn_sync.services.pjn_auth_service import SessionManager
from pjn_sync.utils.exceptions import AuthRequiredError, PjnError

router = APIRouter()


@router.post("/events")
def scrape_events(
    request: ScrapeEventsRequest,
    sessions: SessionManager = Depends(get_session_manager),
    events: EventsService = Depends(get_events_service),
):
    try:
        session = sessions.ensure_valid_session(request.user_id)
        return events.scrape_events(
            session,
            request.user_id,
            since=request.since,
            last_event_id=request.last_event_id,
        )
    except AuthRequiredError as e:
        logger.info("Events scrape requires reauth", extra={"user_id": request.user_id, "reason": e.message})
        return e.to_response()
    except PjnError as e:
        logger.error("Events scrape failed", extra={"user_id": request.user_id, "error": e.message})
        return e.to_response()
