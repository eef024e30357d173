"""
PDF reference resolution and storage.
"""

from __future__ import annotations

import httpx
import pytest

from pjn_sync.db.schemas import NormalizedDigitalDocument, NormalizedMovement
from pjn_sync.services.document_pipeline import (
    DocumentPipeline,
    document_storage_key,
    resolve_document_url,
)


class TestResolveDocumentUrl:
    @pytest.mark.parametrize(
        "ref, expected",
        [
            ("https://example.test/a.pdf", "https://example.test/a.pdf"),
            ("/scw/viewer.seam?id=1", "https://scw.pjn.gov.ar/scw/viewer.seam?id=1"),
            ("viewer.seam?id=1", "https://scw.pjn.gov.ar/scw/viewer.seam?id=1"),
            ("window.open('/scw/descarga/d1.pdf')", "https://scw.pjn.gov.ar/scw/descarga/d1.pdf"),
            ("javascript:abrir(\"/scw/x.pdf?t=1\")", "https://scw.pjn.gov.ar/scw/x.pdf?t=1"),
        ],
    )
    def test_resolves(self, ref, expected) -> None:
        assert resolve_document_url(ref) == expected

    @pytest.mark.parametrize("ref", [None, "", "javascript:void(0)", "PrimeFaces.ab({s:'x'})"])
    def test_unresolvable(self, ref) -> None:
        assert resolve_document_url(ref) is None


def test_document_storage_key() -> None:
    assert document_storage_key("fre 3852/2020/TO2", "m1") == "pjn/FRE-3852_2020_TO2/m1.pdf"


class TestStoreDocument:
    def _pipeline(self, storage, handler) -> DocumentPipeline:
        return DocumentPipeline(storage=storage, transport=httpx.MockTransport(handler))

    def test_downloads_and_uploads(self, storage, s3_client) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["cookie"] = request.headers.get("Cookie")
            return httpx.Response(200, content=b"%PDF-1.4")

        key = self._pipeline(storage, handler).store_document("pjn/k/m1.pdf", "/scw/a.pdf", ["JSESSIONID=abc"])

        assert key == "pjn/k/m1.pdf"
        assert s3_client.objects[key] == b"%PDF-1.4"
        assert seen["cookie"] == "JSESSIONID=abc"

    def test_existing_object_is_not_downloaded(self, storage, s3_client) -> None:
        s3_client.objects["pjn/k/m1.pdf"] = b"old"

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("should not download")

        assert self._pipeline(storage, handler).store_document("pjn/k/m1.pdf", "/scw/a.pdf", []) == "pjn/k/m1.pdf"
        assert s3_client.objects["pjn/k/m1.pdf"] == b"old"

    def test_follows_one_relative_redirect(self, storage, s3_client) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/scw/a.pdf":
                return httpx.Response(302, headers={"location": "files/real.pdf"})
            assert request.url.path == "/scw/files/real.pdf"
            return httpx.Response(200, content=b"%PDF")

        key = self._pipeline(storage, handler).store_document("pjn/k/m1.pdf", "/scw/a.pdf", [])
        assert key == "pjn/k/m1.pdf"

    def test_second_redirect_gives_up(self, storage, s3_client) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"location": "/loop.pdf"})

        assert self._pipeline(storage, handler).store_document("pjn/k/m1.pdf", "/scw/a.pdf", []) is None
        assert s3_client.objects == {}

    def test_http_error_status(self, storage) -> None:
        pipeline = self._pipeline(storage, lambda r: httpx.Response(404))
        assert pipeline.store_document("pjn/k/m1.pdf", "/scw/a.pdf", []) is None


class TestAttachDocuments:
    def test_counts_failures_and_sets_keys(self, storage) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if "broken" in request.url.path:
                return httpx.Response(500)
            return httpx.Response(200, content=b"%PDF")

        records = [
            NormalizedMovement(movement_id="m1", date="01/01/2024", description="a", has_document=True, doc_ref="/ok.pdf"),
            NormalizedMovement(movement_id="m2", date="01/01/2024", description="b", has_document=False),
            NormalizedDigitalDocument(doc_id="d1", date="01/01/2024", description="c", doc_ref="/broken.pdf"),
        ]

        errors = DocumentPipeline(storage=storage, transport=httpx.MockTransport(handler)).attach_documents(
            "FRE-1/2020", records, ["JSESSIONID=abc"]
        )

        assert errors == 1
        assert records[0].storage_key == "pjn/FRE-1_2020/m1.pdf"
        assert records[1].storage_key is None
        assert records[2].storage_key is None

    def test_transport_error_is_counted(self, storage) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        record = NormalizedMovement(movement_id="m1", date="d", description="x", has_document=True, doc_ref="/a.pdf")
        pipeline = DocumentPipeline(storage=storage, transport=httpx.MockTransport(handler))
        assert pipeline.attach_documents("FRE-1/2020", [record], []) == 1
