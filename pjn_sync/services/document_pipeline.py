"""
Download the PDFs referenced by scraped records and put them in S3.
"""
from __future__ import annotations

import re
from typing import Iterable, List, Optional, Union

import httpx
from botocore.exceptions import ClientError

from pjn_sync.core.config import settings
from pjn_sync.core.logger import logger
from pjn_sync.db.schemas import NormalizedDigitalDocument, NormalizedMovement
from pjn_sync.services.s3_service import S3Service, s3_service
from pjn_sync.utils.case_keys import safe_key

_EMBEDDED_PDF_URL = re.compile(r"""['"]([^'"]+\.pdf[^'"]*)['"]""", re.IGNORECASE)

DocumentRecord = Union[NormalizedMovement, NormalizedDigitalDocument]


def resolve_document_url(doc_ref: Optional[str]) -> Optional[str]:
    """
    Turn a row's document reference into an absolute URL.

    Script references (``javascript:`` hrefs, onclick bodies) only resolve
    when they embed a quoted ``.pdf`` URL.
    """
    if not doc_ref:
        return None
    ref = doc_ref.strip()
    if ref.lower().startswith("javascript:") or "(" in ref:
        match = _EMBEDDED_PDF_URL.search(ref)
        if match is None:
            logger.warning("Could not extract URL from script reference", extra={"doc_ref": ref[:200]})
            return None
        ref = match.group(1)

    if ref.startswith("http://") or ref.startswith("https://"):
        return ref
    if ref.startswith("/"):
        return f"{settings.PJN_SCW_BASE_URL}{ref}"
    return f"{settings.PJN_SCW_BASE_URL}/scw/{ref}"


def document_storage_key(case_key: str, item_id: str) -> str:
    return f"{settings.PJN_DOCUMENTS_PREFIX}/{safe_key(case_key)}/{item_id}.pdf"


def event_storage_key(user_id: str, event_id: str) -> str:
    return f"{settings.PJN_DOCUMENTS_PREFIX}/{user_id}/{event_id}.pdf"


class DocumentPipeline:
    def __init__(self, storage: Optional[S3Service] = None, transport: Optional[httpx.BaseTransport] = None):
        self.storage = storage or s3_service
        self._transport = transport

    def fetch_pdf(self, url: str, cookies: List[str], referer: Optional[str] = None) -> Optional[bytes]:
        """GET with the session cookies, following at most one redirect."""
        headers = {"Accept": "application/pdf,*/*", "Cookie": "; ".join(cookies)}
        if referer:
            headers["Referer"] = referer

        timeout = httpx.Timeout(settings.PJN_REQUEST_TIMEOUT_SECONDS, connect=settings.PJN_CONNECT_TIMEOUT_SECONDS)
        with httpx.Client(timeout=timeout, follow_redirects=False, transport=self._transport) as client:
            response = client.get(url, headers=headers)
            if response.is_redirect:
                location = response.headers.get("location")
                if not location:
                    return None
                response = client.get(str(response.url.join(location)), headers=headers)
                if response.is_redirect:
                    logger.warning("PDF download redirected twice", extra={"url": url})
                    return None

        if response.status_code >= 400:
            logger.warning("Failed to download PDF", extra={"url": url, "status_code": response.status_code})
            return None
        return response.content or None

    def store_document(
        self,
        storage_key: str,
        doc_ref: Optional[str],
        cookies: List[str],
        referer: Optional[str] = None,
    ) -> Optional[str]:
        """Stored object key, or None when the reference can't be fetched."""
        if self.storage.object_exists(storage_key):
            logger.debug("Document already stored, skipping download", extra={"storage_key": storage_key})
            return storage_key

        url = resolve_document_url(doc_ref)
        if url is None:
            return None
        data = self.fetch_pdf(url, cookies, referer)
        if data is None:
            return None
        self.storage.upload_bytes(storage_key, data, content_type="application/pdf")
        return storage_key

    def attach_documents(
        self,
        case_key: str,
        records: Iterable[DocumentRecord],
        cookies: List[str],
        referer: Optional[str] = None,
    ) -> int:
        """
        Download every referenced PDF not yet stored and set ``storage_key``
        on the record. Returns the number of failed items.
        """
        errors = 0
        for record in records:
            if record.storage_key or not record.doc_ref:
                continue
            if isinstance(record, NormalizedMovement):
                if not record.has_document:
                    continue
                item_id = record.movement_id
            else:
                item_id = record.doc_id

            try:
                key = self.store_document(document_storage_key(case_key, item_id), record.doc_ref, cookies, referer)
            except (httpx.HTTPError, ClientError) as e:
                logger.error(
                    "Error processing document PDF",
                    extra={"case_key": case_key, "item_id": item_id, "error": str(e)},
                )
                key = None

            if key is None:
                errors += 1
                continue
            record.storage_key = key
        return errors


document_pipeline = DocumentPipeline()
