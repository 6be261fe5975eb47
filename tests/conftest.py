"""
Pytest configuration and fixtures for PDF Tools Backend tests.
"""

import os
import shutil
import tempfile
from pathlib import Path
from urllib.parse import unquote, urlsplit

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["PDF_TOOLS_WORK_DIR"] = tempfile.mkdtemp(prefix="pdf_tools_test_work_")
os.environ["PDF_TOOLS_PUBLIC_BASE_URL"] = ""

from pdf_tools_backend import tools
from pdf_tools_backend.dependencies import job_store
from pdf_tools_backend.main import app
from pdf_tools_backend.tools import ToolResult

SAMPLE_PDF = b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R] /Count 1 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>
endobj
xref
0 4
0000000000 65535 f
0000000009 00000 n
0000000058 00000 n
0000000115 00000 n
trailer
<< /Size 4 /Root 1 0 R >>
startxref
196
%%EOF"""


class FakeTools:
    """
    Stand-in for the external programs.

    Records every invocation and writes the files each program would have
    produced, following the same naming rules as the real tools.

    Attributes:
        calls: ``(program, args)`` tuples in invocation order
        pages: Page count reported by pdfinfo and used for per-page outputs
        images: Number of images pdfimages pretends to find
        texts: pdftotext output keyed by input filename
        failing: Programs that exit with status 1
    """

    def __init__(self):
        self.calls = []
        self.pages = 1
        self.images = 1
        self.texts = {}
        self.failing = set()

    def __call__(self, job_path, program, *args, timeout=None):
        args = [str(arg) for arg in args]
        self.calls.append((program, args))
        if program in self.failing:
            return ToolResult(returncode=1, output=f"{program} failed")
        handler = getattr(self, "_" + program.replace("-", "_"), None)
        if handler is not None:
            output = handler(Path(job_path), args)
        else:
            output = self._default(Path(job_path), args)
        return ToolResult(returncode=0, output=output or "")

    def invocations(self, program):
        return [args for name, args in self.calls if name == program]

    @staticmethod
    def _write(path, content=b"%PDF-1.4 fake"):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def _default(self, job_path, args):
        for arg in args:
            if arg.startswith("-sOutputFile="):
                self._write(arg.split("=", 1)[1])
                return ""
        if args and os.path.isabs(args[-1]) and Path(args[-1]).suffix:
            self._write(args[-1])
        return ""

    def _pdfinfo(self, job_path, args):
        return f"Producer:       fake\nPages:          {self.pages}\nPage size:      595 x 842 pts (A4)\n"

    def _pdfcpu(self, job_path, args):
        command = args[0]
        if command == "info":
            return f"Pages: {self.pages}\n"
        if command == "merge":
            self._write(args[1])
        elif command == "extract":
            target = Path(args[-1])
            stem = Path(args[-2]).stem
            for page in range(1, self.pages + 1):
                self._write(target / f"{stem}_page_{page}.pdf")
        elif command == "rotate" and not args[-1].endswith(".pdf"):
            pass
        else:
            self._write(args[-1])
        return ""

    def _pdftoppm(self, job_path, args):
        prefix = args[-1]
        if "-singlefile" in args:
            self._write(prefix + ".png", b"\x89PNG fake")
            return ""
        extension = "jpg" if "-jpeg" in args else "png"
        for page in range(1, self.pages + 1):
            self._write(f"{prefix}-{page}.{extension}", b"image")
        return ""

    def _pdfimages(self, job_path, args):
        for index in range(self.images):
            self._write(f"{args[-1]}-{index:03d}.png", b"image")
        return ""

    def _pdftotext(self, job_path, args):
        source = Path(args[-2])
        Path(args[-1]).write_text(self.texts.get(source.name, "same text\n"), encoding="utf-8")
        return ""

    def _pdftohtml(self, job_path, args):
        self._write(args[-1] + ".html", b"<html></html>")
        return ""

    def _identify(self, job_path, args):
        return "2550 3300"

    def _libreoffice(self, job_path, args):
        outdir = Path(args[args.index("--outdir") + 1])
        self._write(outdir / f"{Path(args[-1]).stem}.pdf")
        return ""

    def _qpdf(self, job_path, args):
        if "--check" in args:
            return "checking input.pdf\nNo syntax or stream encoding errors found\n"
        self._write(args[-1])
        return ""


@pytest.fixture(scope="session", autouse=True)
def work_dir():
    """Cleanup the job root after all tests."""
    root = os.environ["PDF_TOOLS_WORK_DIR"]
    yield Path(root)
    shutil.rmtree(root, ignore_errors=True)


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def fake_tools(monkeypatch):
    """Replace every external program with FakeTools."""
    fake = FakeTools()
    monkeypatch.setattr(tools, "execute", fake)
    return fake


@pytest.fixture
def sample_pdf():
    """Create a minimal valid PDF file for testing."""
    fd, path = tempfile.mkstemp(suffix=".pdf")
    try:
        os.write(fd, SAMPLE_PDF)
        os.close(fd)
        yield path
    finally:
        os.unlink(path)


@pytest.fixture
def pdf_upload():
    """Multipart ``file`` part holding the sample PDF."""
    return {"file": ("report.pdf", SAMPLE_PDF, "application/pdf")}


@pytest.fixture
def artifact_path():
    """Map a download or preview URL back to the file in the job root."""

    def resolve(url):
        path = unquote(urlsplit(url).path)
        relative = path.split("/", 2)[2]
        return job_store.root / relative

    return resolve
