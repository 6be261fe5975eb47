"""
Tests for PDF Tools Backend HTTP surface.

Tests cover:
- Health check
- Error body shape and status mapping
- Route registration under both prefixes
- Download and preview file serving, including lazy thumbnails
- Request size ceilings
"""

import asyncio
from contextlib import suppress

import pytest
from starlette.requests import Request

from pdf_tools_backend.dependencies import MEGABYTE, body_limit, job_store
from pdf_tools_backend.main import app


class TestHealthCheck:
    """Tests for the /health endpoint."""

    def test_health_check_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestRouting:
    """Every operation is reachable under /pdf and /api/pdf."""

    OPERATIONS = [
        "merge", "split", "remove-pages", "extract-pages", "organize", "rotate", "crop",
        "page-numbers", "watermark", "preview", "compress", "repair", "ocr", "scan-to-pdf",
        "image-to-pdf", "convert-to-pdfa", "validate-pdfa", "compare", "add-header-footer",
        "protect", "unlock", "redact", "flatten", "digital-signature", "word-to-pdf",
        "excel-to-pdf", "powerpoint-to-pdf", "pdf-to-word", "pdf-to-excel", "pdf-to-powerpoint",
        "pdf-to-jpg", "pdf-to-html", "extract-text", "extract-images", "html-to-pdf",
    ]

    def test_all_operations_registered_twice(self):
        paths = {route.path for route in app.routes}
        for operation in self.OPERATIONS:
            assert f"/pdf/{operation}" in paths
            assert f"/api/pdf/{operation}" in paths

    def test_get_on_operation_is_405(self, client):
        response = client.get("/api/pdf/merge")
        assert response.status_code == 405
        assert response.json() == {"error": "method not allowed"}

    def test_unknown_route_is_404_with_error_body(self, client):
        response = client.get("/api/pdf/does-not-exist")
        assert response.status_code == 404
        assert "error" in response.json()


class TestErrorMapping:
    """Handlers answer {"error": ...} with 400 or 500."""

    def test_missing_file_is_400(self, client, fake_tools):
        response = client.post("/pdf/rotate", data={"degrees": "90"})
        assert response.status_code == 400
        assert response.json() == {"error": "file is required"}
        assert fake_tools.calls == []

    def test_tool_failure_is_500_with_short_message(self, client, fake_tools, pdf_upload):
        fake_tools.failing.add("pdfcpu")
        response = client.post("/pdf/rotate", files=pdf_upload, data={"degrees": "180"})
        assert response.status_code == 500
        assert response.json() == {"error": "failed to rotate PDF"}

    def test_failed_job_directory_is_kept(self, client, fake_tools, pdf_upload):
        fake_tools.failing.add("pdfcpu")
        before = {path.name for path in job_store.root.iterdir()}
        client.post("/pdf/repair", files=pdf_upload)
        after = {path.name for path in job_store.root.iterdir()}
        assert len(after - before) == 1


class TestDownloads:
    """Tests for GET /downloads/{job}/{file}."""

    def test_download_is_served_as_attachment(self, client, fake_tools, pdf_upload):
        response = client.post("/api/pdf/repair", files=pdf_upload)
        url = response.json()["downloadUrl"]
        assert url.startswith("http://testserver/downloads/")
        assert url.endswith("/output.pdf")

        download = client.get(url)
        assert download.status_code == 200
        assert download.headers["content-disposition"].startswith("attachment")
        assert 'filename="output.pdf"' in download.headers["content-disposition"]
        assert download.content == b"%PDF-1.4 fake"

    def test_download_releases_lease(self, client, fake_tools, pdf_upload):
        url = client.post("/api/pdf/repair", files=pdf_upload).json()["downloadUrl"]
        job_id = url.split("/downloads/")[1].split("/")[0]
        client.get(url)
        assert not job_store.is_leased(job_id)

    def test_client_disconnect_releases_lease(self):
        job = job_store.allocate()
        job.file("output.pdf").write_bytes(b"%PDF-1.4 fake")
        path = f"/downloads/{job.id}/output.pdf"
        scope = {
            "type": "http",
            "asgi": {"version": "3.0", "spec_version": "2.4"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": b"",
            "headers": [(b"host", b"testserver")],
            "client": ("testclient", 50000),
            "server": ("testserver", 80),
        }

        async def receive():
            return {"type": "http.request", "body": b"", "more_body": False}

        async def send(message):
            if message["type"] == "http.response.body":
                raise OSError("client went away")

        # the transport error reaches the server; only the lease matters here
        with suppress(Exception):
            asyncio.run(app(scope, receive, send))
        assert not job_store.is_leased(job.id)

    def test_encoded_traversal_is_forbidden(self, client):
        response = client.get("/downloads/x/..%2F..%2Fetc%2Fpasswd")
        assert response.status_code == 403
        assert response.json() == {"error": "forbidden"}

    def test_missing_file_is_404(self, client):
        response = client.get("/downloads/00000000-0000-0000-0000-000000000000/output.pdf")
        assert response.status_code == 404

    def test_directory_is_404(self, client):
        job = job_store.allocate()
        response = client.get(f"/downloads/{job.id}")
        assert response.status_code == 404

    def test_forwarded_proto_is_honored(self, client, fake_tools, pdf_upload):
        response = client.post("/api/pdf/repair", files=pdf_upload, headers={"X-Forwarded-Proto": "https"})
        assert response.json()["downloadUrl"].startswith("https://testserver/downloads/")


class TestPreviews:
    """Tests for GET /previews/{job}/{path}."""

    def test_missing_thumbnail_is_rendered_on_demand(self, client, fake_tools):
        job = job_store.allocate()
        job.file("input.pdf").write_bytes(b"%PDF-1.4")

        response = client.get(f"/previews/{job.id}/previews/page-2.png")
        assert response.status_code == 200
        assert "content-disposition" not in response.headers
        assert job.file("previews/page-2.png").is_file()

        (args,) = fake_tools.invocations("pdftoppm")
        assert args[args.index("-f") + 1] == "2"
        assert args[args.index("-l") + 1] == "2"
        assert "-singlefile" in args

    def test_existing_thumbnail_is_not_rerendered(self, client, fake_tools):
        job = job_store.allocate()
        job.file("input.pdf").write_bytes(b"%PDF-1.4")
        (job.path / "previews").mkdir()
        job.file("previews/page-1.png").write_bytes(b"png")

        response = client.get(f"/previews/{job.id}/previews/page-1.png")
        assert response.status_code == 200
        assert response.content == b"png"
        assert fake_tools.invocations("pdftoppm") == []

    def test_page_zero_is_404(self, client, fake_tools):
        job = job_store.allocate()
        job.file("input.pdf").write_bytes(b"%PDF-1.4")
        response = client.get(f"/previews/{job.id}/previews/page-0.png")
        assert response.status_code == 404
        assert fake_tools.calls == []

    def test_job_without_source_is_404(self, client, fake_tools):
        job = job_store.allocate()
        response = client.get(f"/previews/{job.id}/previews/page-1.png")
        assert response.status_code == 404
        assert fake_tools.calls == []

    def test_render_failure_is_500(self, client, fake_tools):
        fake_tools.failing.add("pdftoppm")
        job = job_store.allocate()
        job.file("input.pdf").write_bytes(b"%PDF-1.4")
        response = client.get(f"/previews/{job.id}/previews/page-9.png")
        assert response.status_code == 500
        assert response.json() == {"error": "failed to render preview"}

    def test_traversal_is_forbidden(self, client):
        response = client.get("/previews/x/..%2F..%2Fetc%2Fpasswd")
        assert response.status_code == 403


def _request_with_length(length):
    scope = {"type": "http", "method": "POST", "headers": [(b"content-length", str(length).encode())]}
    return Request(scope)


class TestBodyLimit:
    """The declared Content-Length ceiling checked once the form is received."""

    def test_declared_length_over_default_ceiling_is_rejected(self):
        from fastapi import HTTPException

        check = body_limit()
        with pytest.raises(HTTPException) as excinfo:
            check(_request_with_length(64 * MEGABYTE + 1))
        assert excinfo.value.status_code == 400
        assert excinfo.value.detail == "request body exceeds 64 MB"

    def test_operation_specific_ceiling(self):
        check = body_limit(256)
        assert check(_request_with_length(200 * MEGABYTE)) == 256 * MEGABYTE

    def test_missing_length_is_accepted(self):
        scope = {"type": "http", "method": "POST", "headers": []}
        assert body_limit()(Request(scope)) == 64 * MEGABYTE
