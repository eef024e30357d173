"""
Persists what the portal returns.

Everything here is keyed by natural identifiers so a retried or redelivered
sync converges on the same rows:

  movements        (case_id, pjn_movement_id)
  documents        (case_id, storage_key)
  participants     (case_id, pjn_participant_id)
  appeals          (case_id, pjn_appeal_id)
  related cases    (case_id, pjn_relation_id)
  activity log     pjn_event_id for notifications,
                   (case_id, action, pjn_movement_id) for docket entries
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx
from botocore.exceptions import ClientError

from pjn_sync.core.config import settings
from pjn_sync.core.logger import logger
from pjn_sync.db.models import (
    Case,
    CaseAppeal,
    DocumentSource,
    PjnActivityLog,
    PjnDocument,
    PjnMovement,
    RelatedCase,
    RelatedCaseStatus,
)
from pjn_sync.db.repository import PjnRepository
from pjn_sync.db.schemas import (
    CaseHistoryDetails,
    CaseHistoryStats,
    NormalizedAppeal,
    NormalizedDigitalDocument,
    NormalizedMovement,
    NormalizedRelatedCase,
    SessionState,
)
from pjn_sync.services.account_service import AccountService, account_service
from pjn_sync.services.document_pipeline import DocumentPipeline, document_pipeline, document_storage_key
from pjn_sync.services.events_service import EventsService, events_service
from pjn_sync.services.matching_service import MatchingService, matching_service
from pjn_sync.services.pjn_auth_service import SessionManager
from pjn_sync.services.portal_navigator import PortalNavigator, portal_navigator
from pjn_sync.services.task_queue import task_queue
from pjn_sync.utils.case_keys import normalize_case_key
from pjn_sync.utils.exceptions import AuthRequiredError, CaseNotFoundError, PjnError, RecordNotFoundError

SOURCE = "PJN-Portal"

_DATE_FORMATS = ("%d/%m/%Y %H:%M", "%d/%m/%Y", "%d-%m-%Y", "%Y-%m-%d")


def parse_portal_date(value: Optional[str]) -> Optional[datetime]:
    """``"05/03/2024"`` (day first) or ISO; None when unparseable."""
    if not value:
        return None
    text = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - parsed.utcoffset()
    return parsed


class SyncService:
    def __init__(
        self,
        accounts: Optional[AccountService] = None,
        navigator: Optional[PortalNavigator] = None,
        events: Optional[EventsService] = None,
        matching: Optional[MatchingService] = None,
        pipeline: Optional[DocumentPipeline] = None,
        queue=None,
        repository_factory: Optional[Callable[[], PjnRepository]] = None,
    ):
        self.accounts = accounts or account_service
        self.navigator = navigator or portal_navigator
        self.events = events or events_service
        self.matching = matching or matching_service
        self.pipeline = pipeline or document_pipeline
        self.queue = queue or task_queue
        self.repository_factory = repository_factory or PjnRepository.open
        self.sessions = SessionManager(self.accounts.store, self.accounts.auth)

    # ── Record upserts ───────────────────────────────────────────────────────

    def upsert_document(
        self,
        repo: PjnRepository,
        case_id: str,
        storage_key: str,
        source: DocumentSource,
        user_id: Optional[str] = None,
        pjn_doc_id: Optional[str] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
        doc_date: Optional[str] = None,
    ) -> PjnDocument:
        """One row per (case, object): two records pointing at the same PDF share it."""
        document, created = repo.find_or_create(
            PjnDocument,
            case_id=case_id,
            storage_key=storage_key,
            defaults={
                "pjn_doc_id": pjn_doc_id,
                "title": title,
                "description": description,
                "doc_date": doc_date,
                "source": source,
                "original_file_name": f"pjn-doc-{pjn_doc_id}.pdf" if pjn_doc_id else None,
                "created_by": user_id,
            },
        )
        if created:
            logger.debug("PJN document registered", extra={"case_id": case_id, "storage_key": storage_key})
        return document

    def upsert_movement(
        self,
        repo: PjnRepository,
        case_id: str,
        movement: NormalizedMovement,
        user_id: Optional[str] = None,
        cookies: Optional[List[str]] = None,
        case_key: Optional[str] = None,
        stats: Optional[CaseHistoryStats] = None,
    ) -> PjnMovement:
        """Failed downloads leave the row without a document and count in ``stats``."""
        existing = repo.find_one(PjnMovement, case_id=case_id, pjn_movement_id=movement.movement_id)

        # Undownloaded document: fetch it before the row is finalized.
        if movement.has_document and movement.doc_ref and not movement.storage_key:
            key = document_storage_key(case_key or movement.fre or case_id, movement.movement_id)
            try:
                movement.storage_key = self.pipeline.store_document(key, movement.doc_ref, cookies or [])
            except (httpx.HTTPError, ClientError) as e:
                logger.warning(
                    "Failed to fetch movement document",
                    extra={"case_id": case_id, "movement_id": movement.movement_id, "error": str(e)},
                )
            if not movement.storage_key and stats is not None:
                stats.download_errors += 1

        document_id = existing.document_id if existing is not None else None
        if movement.storage_key and not document_id:
            document = self.upsert_document(
                repo,
                case_id,
                movement.storage_key,
                DocumentSource(movement.document_source),
                user_id=user_id,
                pjn_doc_id=movement.movement_id,
                title=movement.description or f"PJN Movement - {movement.movement_id}",
                description=movement.description,
                doc_date=movement.date,
            )
            document_id = document.id

        values = {
            "fre": movement.fre,
            "movement_date": parse_portal_date(movement.date),
            "raw_date": movement.date,
            "description": movement.description,
            "has_document": movement.has_document,
            "document_source": DocumentSource(movement.document_source),
            "doc_ref": movement.doc_ref,
            "storage_key": movement.storage_key or (existing.storage_key if existing is not None else None),
            "document_id": document_id,
            "origin": "history_sync",
            "synced_at": datetime.utcnow(),
        }
        row, _ = repo.upsert(PjnMovement, {"case_id": case_id, "pjn_movement_id": movement.movement_id}, values)
        return row

    def log_docket_movement(
        self, repo: PjnRepository, user_id: str, case_id: str, movement: NormalizedMovement
    ) -> PjnActivityLog:
        row, _ = repo.find_or_create(
            PjnActivityLog,
            case_id=case_id,
            action="pjn_docket_movement",
            pjn_movement_id=movement.movement_id,
            defaults={
                "user_id": user_id,
                "source": SOURCE,
                "metadata_json": {
                    "fre": movement.fre,
                    "date": movement.date,
                    "description": movement.description,
                    "has_document": movement.has_document,
                    "document_source": movement.document_source,
                    "doc_ref": movement.doc_ref,
                    "storage_key": movement.storage_key,
                },
                "timestamp": parse_portal_date(movement.date) or datetime.utcnow(),
            },
        )
        return row

    def create_historical_document_entry(
        self, repo: PjnRepository, user_id: str, case_id: str, document: NormalizedDigitalDocument
    ) -> Optional[PjnDocument]:
        """Register the stored PDF and point matching movements at it."""
        metadata: Dict[str, Any] = {
            "fre": document.fre,
            "date": document.date,
            "description": document.description,
            "source": document.source,
            "doc_ref": document.doc_ref,
            "storage_key": document.storage_key,
        }
        stored: Optional[PjnDocument] = None
        if document.storage_key:
            stored = self.upsert_document(
                repo,
                case_id,
                document.storage_key,
                DocumentSource(document.source),
                user_id=user_id,
                pjn_doc_id=document.doc_id,
                title=document.description or f"PJN Docket - {document.doc_id}",
                description=document.description,
                doc_date=document.date,
            )
            metadata["document_id"] = stored.id
            for movement in repo.find_all(PjnMovement, case_id=case_id):
                if document.doc_ref and movement.doc_ref == document.doc_ref:
                    repo.update(movement, document_id=stored.id, storage_key=document.storage_key)
                elif movement.storage_key == document.storage_key and not movement.document_id:
                    repo.update(movement, document_id=stored.id)

        repo.find_or_create(
            PjnActivityLog,
            case_id=case_id,
            action="pjn_historical_document",
            pjn_movement_id=document.doc_id,
            defaults={
                "user_id": user_id,
                "source": SOURCE,
                "metadata_json": metadata,
                "timestamp": parse_portal_date(document.date) or datetime.utcnow(),
            },
        )
        return stored

    def upsert_appeal(self, repo: PjnRepository, case_id: str, appeal: NormalizedAppeal) -> CaseAppeal:
        row, _ = repo.upsert(
            CaseAppeal,
            {"case_id": case_id, "pjn_appeal_id": appeal.appeal_id},
            {
                "appeal_type": appeal.appeal_type,
                "filed_date": appeal.filed_date,
                "status": appeal.status,
                "court": appeal.court,
                "description": appeal.description,
                "synced_at": datetime.utcnow(),
            },
        )
        return row

    def upsert_related_case(self, repo: PjnRepository, case_id: str, related: NormalizedRelatedCase) -> RelatedCase:
        existing = repo.find_one(RelatedCase, case_id=case_id, pjn_relation_id=related.relation_id)
        values = {
            "related_fre": normalize_case_key(related.related_fre),
            "raw_expediente": related.raw_expediente,
            "relationship_type": related.relationship_type,
            "caratula": related.caratula,
            "court": related.court,
            "synced_at": datetime.utcnow(),
        }
        if existing is None:
            values["status"] = RelatedCaseStatus.pending
        row, _ = repo.upsert(RelatedCase, {"case_id": case_id, "pjn_relation_id": related.relation_id}, values)
        return row

    def resolve_related_cases(self, repo: PjnRepository, case_id: str) -> int:
        """Link pending rows to the one case with that key; ambiguous keys stay pending."""
        unique_case: Dict[str, Optional[str]] = {}
        linked = 0
        for row in repo.find_all(RelatedCase, case_id=case_id):
            if row.status != RelatedCaseStatus.pending or row.related_case_id:
                continue
            key = row.related_fre
            if key not in unique_case:
                matches = repo.query(Case).filter(Case.fre == key).limit(2).all()
                unique_case[key] = matches[0].id if len(matches) == 1 else None
            target = unique_case[key]
            if not target:
                continue
            repo.update(row, related_case_id=target, status=RelatedCaseStatus.linked)
            linked += 1
        return linked

    # ── Case history ─────────────────────────────────────────────────────────

    def persist_case_history(
        self,
        repo: PjnRepository,
        case: Case,
        user_id: str,
        details: CaseHistoryDetails,
        cookies: Optional[List[str]] = None,
    ) -> Dict[str, int]:
        for movement in details.movements:
            self.upsert_movement(
                repo, case.id, movement, user_id=user_id, cookies=cookies, case_key=details.fre, stats=details.stats
            )
            self.log_docket_movement(repo, user_id, case.id, movement)

        for document in details.documents:
            self.create_historical_document_entry(repo, user_id, case.id, document)

        new_participants: List[str] = []
        for participant in details.participants:
            result = self.matching.create_participant_entry(repo, case.id, participant)
            if result["is_new"]:
                new_participants.append(result["participant_id"])

        for appeal in details.appeals:
            self.upsert_appeal(repo, case.id, appeal)

        for related in details.related_cases:
            self.upsert_related_case(repo, case.id, related)
        self.resolve_related_cases(repo, case.id)

        repo.commit()

        # Matching reads committed rows from its own session.
        for participant_id in new_participants:
            self.matching.trigger_matching(self.queue, participant_id, case.id)

        return {
            "movements_synced": len(details.movements),
            "documents_synced": len(details.documents),
            "participants_synced": len(details.participants),
            "appeals_synced": len(details.appeals),
            "related_cases_synced": len(details.related_cases),
            "download_errors": details.stats.download_errors,
        }

    def sync_case_history_for_case(self, repo: PjnRepository, case_id: str, user_id: str) -> Dict[str, Any]:
        case = repo.get(Case, case_id)
        if case is None:
            raise RecordNotFoundError("Case", case_id)
        if not case.fre:
            return {"status": "ERROR", "error": "Case does not have an FRE assigned", "code": "MISSING_FRE"}

        fre = normalize_case_key(case.fre)
        max_movements = (
            settings.INCREMENTAL_SYNC_MOVEMENTS_LIMIT
            if case.last_pjn_history_sync_at
            else settings.INITIAL_SYNC_MOVEMENTS_LIMIT
        )
        scraped: Dict[str, Any] = {}

        def scrape() -> CaseHistoryDetails:
            session = self.sessions.ensure_valid_session(user_id)
            scraped["session"] = session
            return self.navigator.scrape_case_history_details(
                session,
                fre,
                user_id,
                max_movements=max_movements,
                download_pdfs=False,
            )

        logger.info("Starting case history sync", extra={"case_id": case_id, "fre": fre, "max_movements": max_movements})
        try:
            details = self.accounts.run_with_reauth(repo, user_id, scrape)
        except AuthRequiredError as e:
            return {"status": "AUTH_REQUIRED", "reason": e.message}
        except CaseNotFoundError as e:
            logger.warning("Case not found on the portal", extra={"case_id": case_id, "fre": fre})
            return {"status": "NOT_FOUND", "reason": e.message}
        except PjnError as e:
            logger.error("Case history sync failed", extra={"case_id": case_id, "user_id": user_id, "error": e.message})
            repo.rollback()
            self.accounts.mark_needs_reauth(repo, user_id, e.message)
            return {"status": "ERROR", "error": e.message, "code": "SCRAPE_ERROR"}

        session: Optional[SessionState] = scraped.get("session")
        counts = self.persist_case_history(repo, case, user_id, details, cookies=session.cookies if session else None)

        last_sync_at = datetime.utcnow()
        repo.update(case, last_pjn_history_sync_at=last_sync_at)
        repo.commit()

        logger.info("Case history sync completed", extra={"case_id": case_id, **counts})
        return {
            "status": "OK",
            **counts,
            "stats": details.stats.model_dump(),
            "last_sync_at": last_sync_at,
        }

    # ── Notifications ────────────────────────────────────────────────────────

    def _find_case_by_fre(self, repo: PjnRepository, fre: Optional[str]) -> Optional[Case]:
        if not fre:
            return None
        return repo.find_one(Case, fre=normalize_case_key(fre))

    def record_notification(self, repo: PjnRepository, user_id: str, event: Dict[str, Any]) -> Optional[str]:
        """Activity log row (idempotent by event id) plus a document when the PDF is stored."""
        case = self._find_case_by_fre(repo, event.get("fre"))
        case_id = case.id if case is not None else None

        repo.find_or_create(
            PjnActivityLog,
            pjn_event_id=event["pjn_event_id"],
            defaults={
                "user_id": user_id,
                "case_id": case_id,
                "action": "pjn_notification_received",
                "source": SOURCE,
                "metadata_json": {
                    "fre": event.get("fre"),
                    "category": event.get("category"),
                    "description": event.get("description"),
                    "storage_key": event.get("storage_key"),
                    "raw_payload": event.get("raw_payload"),
                },
                "timestamp": parse_portal_date(event.get("timestamp")) or datetime.utcnow(),
            },
        )

        if event.get("storage_key"):
            if case_id is None:
                logger.info(
                    "Skipping PJN document creation because no matching case was found for event",
                    extra={"user_id": user_id, "event_id": event["pjn_event_id"], "fre": event.get("fre")},
                )
            else:
                self.upsert_document(
                    repo,
                    case_id,
                    event["storage_key"],
                    DocumentSource.notification,
                    user_id=user_id,
                    pjn_doc_id=event["pjn_event_id"],
                    title=f"PJN Notification - {event['pjn_event_id']}",
                    description=event.get("description"),
                )
        return case_id

    def sync_notifications_for_user(self, repo: PjnRepository, user_id: str) -> Dict[str, Any]:
        account = self.accounts.get_account(repo, user_id)
        if account is None or not account.is_active:
            logger.info("Skipping notification sync, no account", extra={"user_id": user_id})
            return {"skipped": True, "reason": "no_account"}

        if account.needs_reauth:
            if self.accounts.attempt_automatic_reauth(repo, user_id) != "ok":
                return {"skipped": True, "reason": "needs_reauth"}

        since = account.last_synced_at
        last_event_id = account.last_event_id

        def fetch() -> Dict[str, Any]:
            session = self.sessions.ensure_valid_session(user_id)
            return self.events.scrape_events(session, user_id, since=since, last_event_id=last_event_id)

        try:
            result = self.accounts.run_with_reauth(repo, user_id, fetch)
        except AuthRequiredError:
            return {"skipped": True, "reason": "auth_required"}
        except PjnError as e:
            repo.rollback()
            self.accounts.mark_needs_reauth(repo, user_id, e.message)
            raise

        newest_event_id: Optional[str] = None
        for event in result["events"]:
            self.record_notification(repo, user_id, event)
            if newest_event_id is None:
                newest_event_id = event["pjn_event_id"]
        repo.commit()

        self.accounts.update_sync_status(repo, user_id, last_synced_at=datetime.utcnow(), last_event_id=newest_event_id)
        logger.info(
            "Notification sync completed",
            extra={"user_id": user_id, "events_processed": len(result["events"]), **result["stats"]},
        )
        return {"success": True, "events_processed": len(result["events"]), "stats": result["stats"]}

    # ── Background entry points ──────────────────────────────────────────────

    def enqueue_case_history_sync(self, case_id: str, user_id: str) -> str:
        return self.queue.enqueue(
            "sync_case_history",
            f"sync_case_history:{case_id}",
            self._run_in_own_session,
            operation=self.sync_case_history_for_case,
            case_id=case_id,
            user_id=user_id,
        )

    def enqueue_notification_sync(self, user_id: str) -> str:
        return self.queue.enqueue(
            "sync_notifications",
            f"sync_notifications:{user_id}",
            self._run_in_own_session,
            operation=self.sync_notifications_for_user,
            user_id=user_id,
        )

    def _run_in_own_session(self, operation: Callable[..., Dict[str, Any]], **kwargs: Any) -> Dict[str, Any]:
        repo = self.repository_factory()
        try:
            return operation(repo, **kwargs)
        except Exception:
            repo.rollback()
            raise
        finally:
            repo.close()


sync_service = SyncService()
