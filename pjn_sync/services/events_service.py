"""
Notification events ("eventos") polling.

Pages through the events API newest-first until it reaches the caller's
watermark, normalizes each event and stores its PDF once per user/event.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from pjn_sync.core.config import settings
from pjn_sync.core.logger import logger
from pjn_sync.db.schemas import NormalizedEvent, SessionState
from pjn_sync.services.document_pipeline import event_storage_key
from pjn_sync.services.pjn_parsers import stable_id
from pjn_sync.services.s3_service import S3Service, s3_service
from pjn_sync.services.scw_http_client import ScwHttpClient, scw_http_client
from pjn_sync.utils.case_keys import normalize_case_key
from pjn_sync.utils.exceptions import AuthRequiredError, ScrapeError

_FRE_IN_DESCRIPTION = re.compile(r"FRE\s+(\d+/\d+/\d+/[A-Z0-9]+)", re.IGNORECASE)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None) if value.tzinfo else value
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - (parsed.utcoffset())
    return parsed


def normalize_event(raw: Dict[str, Any], now: Optional[datetime] = None) -> NormalizedEvent:
    """Events without a portal id get one hashed from their content, so the
    same event keeps the same id (and storage key) across polls."""
    event_id = raw.get("id") or raw.get("eventId")
    description = raw.get("descripcion") or ""
    if not event_id:
        event_id = stable_id(
            str(raw.get("fecha") or raw.get("timestamp") or ""),
            description,
            raw.get("categoria") or raw.get("category"),
            raw.get("pdfUrl"),
            raw.get("fre"),
        )

    fre = None
    match = _FRE_IN_DESCRIPTION.search(description)
    if match:
        fre = normalize_case_key(f"FRE-{match.group(1)}")
    elif raw.get("fre"):
        fre = normalize_case_key(raw["fre"])

    timestamp = raw.get("fecha") or raw.get("timestamp") or (now or datetime.utcnow()).isoformat()
    return NormalizedEvent(
        pjn_event_id=str(event_id),
        fre=fre,
        timestamp=str(timestamp),
        category=raw.get("categoria") or raw.get("category") or "judicial",
        description=description,
        pdf_url=raw.get("pdfUrl"),
        raw_payload=raw,
    )


def is_event_new(
    event: NormalizedEvent,
    since: Optional[datetime] = None,
    last_event_id: Optional[str] = None,
) -> bool:
    if last_event_id and event.pjn_event_id == last_event_id:
        return False
    if since is None:
        return True
    when = _parse_timestamp(event.timestamp)
    if when is None:
        return True
    since = _parse_timestamp(since)
    return when > since


class EventsService:
    def __init__(self, client: Optional[ScwHttpClient] = None, storage: Optional[S3Service] = None):
        self.client = client or scw_http_client
        self.storage = storage or s3_service

    def fetch_new_events(
        self,
        session: SessionState,
        since: Optional[datetime] = None,
        last_event_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Page through the API until the watermark or ``MAX_PAGES_PER_SYNC``."""
        collected: List[NormalizedEvent] = []
        page = 0
        pages = 0
        has_more = True
        reached_watermark = False
        fecha_desde = since.isoformat() if since else None
        fecha_hasta = None if since else datetime.utcnow().isoformat()

        while has_more and pages < settings.MAX_PAGES_PER_SYNC:
            result = self.client.fetch_events(
                session,
                page=page,
                categoria="judicial",
                fecha_desde=fecha_desde,
                fecha_hasta=fecha_hasta,
            )
            pages += 1

            new_on_page = 0
            for raw in result.events:
                event = normalize_event(raw)
                if last_event_id and event.pjn_event_id == last_event_id:
                    reached_watermark = True
                    break
                if is_event_new(event, since, last_event_id):
                    collected.append(event)
                    new_on_page += 1

            if reached_watermark:
                break
            has_more = result.has_more and new_on_page > 0
            page += 1

        logger.info(
            "Fetched PJN events",
            extra={"pages": pages, "new_events": len(collected), "reached_watermark": reached_watermark},
        )
        return {"events": collected, "fetched_pages": pages}

    def store_event_pdf(self, user_id: str, event: NormalizedEvent, session: SessionState) -> Optional[str]:
        key = event_storage_key(user_id, event.pjn_event_id)
        if self.storage.object_exists(key):
            return key
        data = self.client.download_event_pdf(event.pjn_event_id, session)
        if not data:
            return None
        self.storage.upload_bytes(key, data, content_type="application/pdf", metadata={"event_id": event.pjn_event_id})
        return key

    def scrape_events(
        self,
        session: SessionState,
        user_id: str,
        since: Optional[datetime] = None,
        last_event_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Returns ``{"status": "OK", "events": [...], "stats": {...}}``.
        ``AuthRequiredError`` propagates so callers can reauth and retry.
        """
        fetched = self.fetch_new_events(session, since, last_event_id)
        events: List[NormalizedEvent] = fetched["events"]

        pdf_errors = 0
        for event in events:
            if not event.pdf_url:
                continue
            try:
                event.storage_key = self.store_event_pdf(user_id, event, session)
            except AuthRequiredError:
                raise
            except (ScrapeError, ClientError) as e:
                logger.warning(
                    "Failed to store event PDF",
                    extra={"user_id": user_id, "event_id": event.pjn_event_id, "error": str(e)},
                )
                event.storage_key = None
            if event.storage_key is None:
                pdf_errors += 1

        return {
            "status": "OK",
            "events": [e.model_dump() for e in events],
            "stats": {
                "fetched_pages": fetched["fetched_pages"],
                "new_events": len(events),
                "pdf_errors": pdf_errors,
            },
        }


events_service = EventsService()
