"""
Persistence of scraped case history and notifications.
"""

from __future__ import annotations

from datetime import datetime

import httpx
from botocore.exceptions import ClientError

from pjn_sync.db.models import (
    Case,
    CaseAppeal,
    CaseParticipant,
    DocumentSource,
    ParticipantClientLink,
    PjnActivityLog,
    PjnDocument,
    PjnMovement,
    RelatedCase,
    RelatedCaseStatus,
)
from pjn_sync.db.schemas import (
    CaseHistoryDetails,
    CaseHistoryStats,
    NormalizedAppeal,
    NormalizedDigitalDocument,
    NormalizedMovement,
    NormalizedParticipant,
    NormalizedRelatedCase,
)
from pjn_sync.services.document_pipeline import DocumentPipeline
from pjn_sync.services.scw_http_client import EventsPage
from pjn_sync.services.sync_service import SyncService, parse_portal_date
from pjn_sync.utils.exceptions import AuthRequiredError, CaseNotFoundError, ScrapeError
from tests.helpers import valid_session


def movement(movement_id: str, **overrides) -> NormalizedMovement:
    values = {"movement_id": movement_id, "fre": "FRE-3852/2020", "date": "05/03/2024", "description": "DESPACHO"}
    values.update(overrides)
    return NormalizedMovement(**values)


def full_details() -> CaseHistoryDetails:
    return CaseHistoryDetails(
        fre="FRE-3852/2020",
        movements=[movement("m1"), movement("m2", date="01/03/2024", storage_key="pjn/FRE-3852_2020/m2.pdf", has_document=True)],
        documents=[
            NormalizedDigitalDocument(
                doc_id="d1", fre="FRE-3852/2020", date="02/03/2024", description="CEDULA",
                storage_key="pjn/FRE-3852_2020/d1.pdf",
            )
        ],
        participants=[NormalizedParticipant(participant_id="p1", role="ACTOR", name="PEREZ, JUAN", details="DNI 12345678")],
        appeals=[NormalizedAppeal(appeal_id="a1", appeal_type="APELACION", status="CONCEDIDO")],
        related_cases=[
            NormalizedRelatedCase(relation_id="r1", related_fre="FRE 123/2019", raw_expediente="FRE 000123/2019", relationship_type="INCIDENTE")
        ],
    )


class TestParsePortalDate:
    def test_day_first(self) -> None:
        assert parse_portal_date("05/03/2024") == datetime(2024, 3, 5)

    def test_iso_with_zone(self) -> None:
        assert parse_portal_date("2024-03-05T10:00:00-03:00") == datetime(2024, 3, 5, 13, 0)

    def test_garbage(self) -> None:
        assert parse_portal_date("ayer") is None
        assert parse_portal_date(None) is None


class TestUpserts:
    def test_movement_is_idempotent(self, repo, sync, case) -> None:
        sync.upsert_movement(repo, case.id, movement("m1"))
        sync.upsert_movement(repo, case.id, movement("m1", description="DESPACHO CORREGIDO"))
        repo.commit()

        rows = repo.find_all(PjnMovement, case_id=case.id)
        assert len(rows) == 1
        assert rows[0].description == "DESPACHO CORREGIDO"
        assert rows[0].movement_date == datetime(2024, 3, 5)

    def test_movement_document_is_downloaded_once(self, repo, case, accounts, storage, s3_client, matching, inline_queue) -> None:
        downloads = []

        def handler(request: httpx.Request) -> httpx.Response:
            downloads.append(str(request.url))
            return httpx.Response(200, content=b"%PDF")

        sync = SyncService(
            accounts=accounts,
            matching=matching,
            pipeline=DocumentPipeline(storage=storage, transport=httpx.MockTransport(handler)),
            queue=inline_queue,
        )
        for _ in range(2):
            sync.upsert_movement(
                repo, case.id, movement("m1", has_document=True, doc_ref="/scw/a.pdf"), user_id="user-1", cookies=["A=b"]
            )
        repo.commit()

        assert len(downloads) == 1
        row = repo.find_one(PjnMovement, case_id=case.id, pjn_movement_id="m1")
        assert row.storage_key == "pjn/FRE-3852_2020/m1.pdf"
        assert repo.get(PjnDocument, row.document_id).source == DocumentSource.actuaciones
        assert len(repo.find_all(PjnDocument, case_id=case.id)) == 1

    def test_historical_document_points_movement_at_it(self, repo, sync, case) -> None:
        sync.upsert_movement(repo, case.id, movement("m1", has_document=True, doc_ref="/scw/x.pdf", storage_key="k-old"))
        stored = sync.create_historical_document_entry(
            repo, "user-1", case.id,
            NormalizedDigitalDocument(doc_id="d1", date="02/03/2024", description="CEDULA", doc_ref="/scw/x.pdf", storage_key="k-new"),
        )
        sync.create_historical_document_entry(
            repo, "user-1", case.id,
            NormalizedDigitalDocument(doc_id="d1", date="02/03/2024", description="CEDULA", doc_ref="/scw/x.pdf", storage_key="k-new"),
        )
        repo.commit()

        row = repo.find_one(PjnMovement, pjn_movement_id="m1")
        assert row.document_id == stored.id
        assert row.storage_key == "k-new"
        assert len(repo.find_all(PjnActivityLog, action="pjn_historical_document")) == 1

    def test_related_case_resolution(self, repo, sync, case) -> None:
        target = repo.insert(Case, fre="FRE-123/2019")
        sync.upsert_related_case(
            repo, case.id,
            NormalizedRelatedCase(relation_id="r1", related_fre="fre 0123/2019", raw_expediente="FRE 0123/2019", relationship_type="INCIDENTE"),
        )
        sync.upsert_related_case(
            repo, case.id,
            NormalizedRelatedCase(relation_id="r2", related_fre="FRE-999/2019", raw_expediente="FRE 999/2019"),
        )

        assert sync.resolve_related_cases(repo, case.id) == 1
        linked = repo.find_one(RelatedCase, pjn_relation_id="r1")
        assert linked.related_case_id == target.id
        assert linked.status == RelatedCaseStatus.linked
        assert repo.find_one(RelatedCase, pjn_relation_id="r2").status == RelatedCaseStatus.pending

    def test_ambiguous_related_case_stays_pending(self, repo, sync, case) -> None:
        repo.insert(Case, fre="FRE-123/2019")
        repo.insert(Case, fre="FRE-123/2019")
        sync.upsert_related_case(
            repo, case.id,
            NormalizedRelatedCase(relation_id="r1", related_fre="FRE-123/2019", raw_expediente="FRE 123/2019"),
        )
        assert sync.resolve_related_cases(repo, case.id) == 0


class TestSyncCaseHistory:
    def test_missing_fre(self, repo, sync) -> None:
        case = repo.insert(Case, title="sin FRE")
        repo.commit()
        result = sync.sync_case_history_for_case(repo, case.id, "user-1")
        assert result["code"] == "MISSING_FRE"

    def test_ok_persists_everything(self, repo, sync, case, account, session_store, navigator) -> None:
        session_store.save("user-1", valid_session())
        navigator.details = full_details()

        result = sync.sync_case_history_for_case(repo, case.id, "user-1")

        assert result["status"] == "OK"
        assert result["movements_synced"] == 2
        assert result["participants_synced"] == 1
        assert navigator.calls[0]["max_movements"] == 50
        assert navigator.calls[0]["download_pdfs"] is False
        assert len(repo.find_all(PjnMovement, case_id=case.id)) == 2
        assert len(repo.find_all(PjnActivityLog, action="pjn_docket_movement")) == 2
        assert repo.find_one(CaseAppeal, pjn_appeal_id="a1").status == "CONCEDIDO"
        assert repo.find_one(RelatedCase, pjn_relation_id="r1").related_fre == "FRE-123/2019"
        participant = repo.find_one(CaseParticipant, case_id=case.id)
        assert repo.find_one(ParticipantClientLink, participant_id=participant.id) is not None
        repo.db.refresh(case)
        assert case.last_pjn_history_sync_at is not None

    def test_second_sync_is_incremental_and_idempotent(self, repo, sync, case, account, session_store, navigator) -> None:
        session_store.save("user-1", valid_session())
        navigator.details = full_details()

        sync.sync_case_history_for_case(repo, case.id, "user-1")
        sync.sync_case_history_for_case(repo, case.id, "user-1")

        assert navigator.calls[1]["max_movements"] == 5
        assert len(repo.find_all(PjnMovement, case_id=case.id)) == 2
        assert len(repo.find_all(CaseParticipant, case_id=case.id)) == 1
        assert len(repo.find_all(PjnActivityLog, action="pjn_docket_movement")) == 2
        assert len(repo.find_all(PjnDocument, case_id=case.id)) == 2

    def test_expired_session_reauths_once(self, repo, sync, case, account, session_store, navigator, auth) -> None:
        session_store.save("user-1", valid_session())
        navigator.errors = [AuthRequiredError("Session expired or invalid")]

        result = sync.sync_case_history_for_case(repo, case.id, "user-1")

        assert result["status"] == "OK"
        assert auth.login_calls == ["20123456786"]

    def test_still_invalid_after_reauth(self, repo, sync, case, account, session_store, navigator) -> None:
        session_store.save("user-1", valid_session())
        navigator.errors = [AuthRequiredError("expired"), AuthRequiredError("expired")]

        result = sync.sync_case_history_for_case(repo, case.id, "user-1")

        assert result["status"] == "AUTH_REQUIRED"
        repo.db.refresh(account)
        assert account.needs_reauth is True

    def test_not_found(self, repo, sync, case, account, session_store, navigator) -> None:
        session_store.save("user-1", valid_session())
        navigator.errors = [CaseNotFoundError("No results found for case FRE-3852/2020")]

        result = sync.sync_case_history_for_case(repo, case.id, "user-1")

        assert result == {"status": "NOT_FOUND", "reason": "No results found for case FRE-3852/2020"}
        repo.db.refresh(account)
        assert account.needs_reauth is False

    def test_scrape_error(self, repo, sync, case, account, session_store, navigator) -> None:
        session_store.save("user-1", valid_session())
        navigator.errors = [ScrapeError("Portal layout changed")]

        result = sync.sync_case_history_for_case(repo, case.id, "user-1")

        assert result == {"status": "ERROR", "error": "Portal layout changed", "code": "SCRAPE_ERROR"}
        repo.db.refresh(account)
        assert account.needs_reauth is True
        assert account.last_error_reason == "Portal layout changed"

    def test_failed_downloads_are_counted(
        self, repo, case, account, accounts, session_store, navigator, storage, s3_client, matching, inline_queue, repository_factory
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("missing.pdf"):
                return httpx.Response(404)
            return httpx.Response(200, content=b"%PDF")

        def reject_upload(*args, **kwargs):
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")

        s3_client.put_object = reject_upload
        sync = SyncService(
            accounts=accounts,
            navigator=navigator,
            matching=matching,
            pipeline=DocumentPipeline(storage=storage, transport=httpx.MockTransport(handler)),
            queue=inline_queue,
            repository_factory=repository_factory,
        )
        session_store.save("user-1", valid_session())
        navigator.details = CaseHistoryDetails(
            fre="FRE-3852/2020",
            movements=[
                movement("m1", has_document=True, doc_ref="/scw/a.pdf"),
                movement("m2", has_document=True, doc_ref="/scw/missing.pdf"),
                movement("m3"),
            ],
        )

        result = sync.sync_case_history_for_case(repo, case.id, "user-1")

        assert result["status"] == "OK"
        assert result["download_errors"] == 2
        assert result["stats"]["download_errors"] == 2
        rows = repo.find_all(PjnMovement, case_id=case.id)
        assert len(rows) == 3
        assert all(row.document_id is None for row in rows)

    def test_single_upload_failure_is_counted(self, repo, case, accounts, storage, s3_client, matching, inline_queue) -> None:
        def reject_upload(*args, **kwargs):
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")

        s3_client.put_object = reject_upload
        sync = SyncService(
            accounts=accounts,
            matching=matching,
            pipeline=DocumentPipeline(storage=storage, transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"%PDF"))),
            queue=inline_queue,
        )
        stats = CaseHistoryStats()

        sync.upsert_movement(repo, case.id, movement("m1", has_document=True, doc_ref="/scw/a.pdf"), stats=stats)

        assert stats.download_errors == 1

    def test_background_sync_uses_its_own_session(self, repo, sync, case, account, session_store, navigator, inline_queue) -> None:
        session_store.save("user-1", valid_session())
        navigator.details = full_details()

        key = sync.enqueue_case_history_sync(case.id, "user-1")

        assert key == f"sync_case_history:{case.id}"
        assert len(repo.find_all(PjnMovement, case_id=case.id)) == 2


class TestSyncNotifications:
    def _events(self):
        return [
            {"id": "e2", "fecha": "2025-03-02T10:00:00Z", "descripcion": "CEDULA", "fre": "FRE-3852/2020", "pdfUrl": "/x"},
            {"id": "e1", "fecha": "2025-03-01T10:00:00Z", "descripcion": "OTRA", "fre": "FRE-9/2021"},
        ]

    def test_no_account(self, repo, sync) -> None:
        assert sync.sync_notifications_for_user(repo, "ghost") == {"skipped": True, "reason": "no_account"}

    def test_records_events_and_watermark(self, repo, sync, case, account, session_store, scw_client) -> None:
        session_store.save("user-1", valid_session())
        scw_client.pages = [EventsPage(events=self._events(), has_more=False)]
        scw_client.pdfs = {"e2": b"%PDF"}

        result = sync.sync_notifications_for_user(repo, "user-1")

        assert result["success"] is True
        assert result["events_processed"] == 2
        logs = {row.pjn_event_id: row for row in repo.find_all(PjnActivityLog, action="pjn_notification_received")}
        assert logs["e2"].case_id == case.id
        assert logs["e1"].case_id is None
        document = repo.find_one(PjnDocument, case_id=case.id)
        assert document.source == DocumentSource.notification
        assert document.storage_key == "pjn/user-1/e2.pdf"
        repo.db.refresh(account)
        assert account.last_event_id == "e2"
        assert account.last_synced_at is not None

    def test_rerun_stops_at_watermark(self, repo, sync, case, account, session_store, scw_client) -> None:
        session_store.save("user-1", valid_session())
        scw_client.pages = [EventsPage(events=self._events(), has_more=False)]

        sync.sync_notifications_for_user(repo, "user-1")
        second = sync.sync_notifications_for_user(repo, "user-1")

        assert second["events_processed"] == 0
        assert len(repo.find_all(PjnActivityLog, action="pjn_notification_received")) == 2
        repo.db.refresh(account)
        assert account.last_event_id == "e2"

    def test_auth_required_is_skipped(self, repo, sync, account, session_store, scw_client, auth) -> None:
        session_store.save("user-1", valid_session())
        scw_client.auth_error = True

        result = sync.sync_notifications_for_user(repo, "user-1")

        assert result == {"skipped": True, "reason": "auth_required"}
        assert auth.login_calls == ["20123456786"]

    def test_background_notification_sync(self, repo, sync, account, session_store, scw_client) -> None:
        session_store.save("user-1", valid_session())
        scw_client.pages = [EventsPage(events=self._events(), has_more=False)]

        assert sync.enqueue_notification_sync("user-1") == "sync_notifications:user-1"
        assert len(repo.find_all(PjnActivityLog, action="pjn_notification_received")) == 2
