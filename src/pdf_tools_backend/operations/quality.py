"""
Operations that rewrite a whole document for size, health, searchability or
archival: Ghostscript, qpdf, ocrmypdf and poppler recipes, plus a text diff
and a header/footer overlay.
"""

from __future__ import annotations

import difflib
import re
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile

from .. import tools
from ..dependencies import body_limit, get_job_store
from ..errors import ToolError
from ..job_store import Job, JobStore
from ..models import DownloadResponse
from ..responses import download_response
from ..utils import base_name_without_ext, safe_extension
from .common import (
    DEFAULT_OUTPUT,
    failure_as,
    require_upload,
    require_uploads,
    start_job,
    start_job_with_files,
)

router = APIRouter()

# Ghostscript PDFSETTINGS per compression level.
COMPRESSION_SETTINGS = {
    "low": "/screen",
    "medium": "/ebook",
    "high": "/printer",
}

OCR_LANGUAGE_PATTERN = re.compile(r"^[A-Za-z0-9_+]+$")

NO_DIFFERENCES = "No differences found between the two PDF files.\n"

HEADER_MARGIN = 25.0
FOOTER_MARGIN = 20.0


def escape_postscript(text: str) -> str:
    """Escape text for use inside a PostScript string literal."""
    return (
        text.replace("\\", "\\\\")
        .replace("(", "\\(")
        .replace(")", "\\)")
        .replace("\r", " ")
        .replace("\n", " ")
    )


def header_footer_overlay(width: float, height: float, header: str, footer: str) -> str:
    """
    Build a PostScript prologue whose EndPage procedure draws centered header
    and footer text on every page Ghostscript writes.
    """
    center = width / 2
    commands = ["/Helvetica findfont 12 scalefont setfont", "0.5 0.5 0.5 setrgbcolor"]
    for text, y in ((header, height - HEADER_MARGIN), (footer, FOOTER_MARGIN)):
        if text:
            commands.append(
                f"{center:.1f} {y:.1f} moveto ({escape_postscript(text)}) "
                "dup stringwidth pop 2 div neg 0 rmoveto show"
            )
    body = "\n    ".join(commands)
    return (
        "%!PS-Adobe-3.0\n"
        "<< /EndPage {\n"
        "  exch pop\n"
        "  0 eq {\n"
        f"    {body}\n"
        "    true\n"
        "  } { false } ifelse\n"
        "} bind >> setpagedevice\n"
    )


def text_differences(first: str, second: str) -> str:
    diff = difflib.unified_diff(
        first.splitlines(keepends=True),
        second.splitlines(keepends=True),
        fromfile="file1",
        tofile="file2",
    )
    return "".join(diff) or NO_DIFFERENCES


def _report_section(job: Job, title: str, empty: str, program: str, *args: str) -> str:
    lines = [f"=== {title} ===\n\n"]
    try:
        result = tools.execute(job.path, program, *args)
    except ToolError as exc:
        lines.append(f"{program} failed: {exc}\n")
        return "".join(lines)
    if not result.ok:
        lines.append(f"{program} failed: exit status {result.returncode}\n")
    lines.append(result.output if result.output else empty)
    return "".join(lines)


@router.post("/compress", response_model=DownloadResponse)
def compress(
    request: Request,
    file: Optional[UploadFile] = File(None),
    level: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    setting = COMPRESSION_SETTINGS.get(level.strip().lower() or "medium", "/screen")

    job, source = start_job(store, "compress", upload, "input.pdf", limit)
    output = job.file(DEFAULT_OUTPUT)
    with failure_as("compress", "failed to compress PDF"):
        tools.run(
            job.path,
            "gs",
            "-sDEVICE=pdfwrite",
            "-dCompatibilityLevel=1.4",
            f"-dPDFSETTINGS={setting}",
            "-dNOPAUSE",
            "-dQUIET",
            "-dBATCH",
            f"-sOutputFile={output}",
            str(source),
        )

    return download_response(request, job, output.name)


@router.post("/repair", response_model=DownloadResponse)
def repair(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    job, source = start_job(store, "repair", upload, "input.pdf", limit)
    output = job.file(DEFAULT_OUTPUT)
    # optimize rewrites the cross-reference table, which fixes most damage.
    with failure_as("repair", "failed to repair PDF"):
        tools.run(job.path, "pdfcpu", "optimize", str(source), str(output))

    return download_response(request, job, output.name)


@router.post("/ocr", response_model=DownloadResponse)
def ocr(
    request: Request,
    file: Optional[UploadFile] = File(None),
    lang: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    language = lang.strip()
    if language and not OCR_LANGUAGE_PATTERN.match(language):
        raise HTTPException(status_code=400, detail="invalid lang")

    job, source = start_job(store, "ocr", upload, "input.pdf", limit)
    output = job.file(DEFAULT_OUTPUT)
    args = ["--skip-text"]
    if language:
        args += ["-l", language]
    with failure_as("ocr", "failed to OCR PDF"):
        tools.run(job.path, "ocrmypdf", *args, str(source), str(output))

    return download_response(request, job, output.name)


@router.post("/scan-to-pdf", response_model=DownloadResponse)
def scan_to_pdf(
    request: Request,
    files: Optional[List[UploadFile]] = File(None),
    limit: int = Depends(body_limit(256)),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    uploads = require_uploads(files)
    job, scans = start_job_with_files(
        store,
        "scan-to-pdf",
        uploads,
        lambda index, upload: f"scan_{index}{safe_extension(upload.filename, '.png')}",
        limit,
    )

    raw = job.file("scans_raw.pdf")
    with failure_as("scan-to-pdf", "failed to convert scans"):
        tools.run(job.path, "convert", *[str(scan) for scan in scans], str(raw))

    output = job.file(DEFAULT_OUTPUT)
    with failure_as("scan-to-pdf", "failed to OCR scans"):
        tools.run(job.path, "ocrmypdf", "--skip-text", str(raw), str(output))

    return download_response(request, job, output.name)


@router.post("/convert-to-pdfa", response_model=DownloadResponse)
def convert_to_pdfa(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    job, source = start_job(store, "convert-to-pdfa", upload, "input.pdf", limit)
    output = job.file(f"{base_name_without_ext(upload.filename)}_pdfa.pdf")

    with failure_as("convert-to-pdfa", "failed to convert to PDF/A"):
        tools.run(
            job.path,
            "gs",
            "-dBATCH",
            "-dNOPAUSE",
            "-dQUIET",
            "-sDEVICE=pdfwrite",
            "-dPDFA=2",
            "-dPDFACompatibilityPolicy=1",
            f"-sOutputFile={output}",
            str(source),
        )

    return download_response(request, job, output.name)


@router.post("/validate-pdfa", response_model=DownloadResponse)
def validate_pdfa(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    """
    Write a plain-text report of qpdf's structural check and pdfinfo metadata.

    Tool failures end up in the report instead of failing the request.
    """
    upload = require_upload(file)
    job, source = start_job(store, "validate-pdfa", upload, "input.pdf", limit)
    output = job.file(f"{base_name_without_ext(upload.filename)}_validation.txt")

    report = _report_section(
        job,
        "PDF Structure Validation (qpdf --check)",
        "No issues found.\n",
        "qpdf",
        "--check",
        "--warning-exit-0",
        str(source),
    )
    report += "\n" + _report_section(
        job,
        "PDF Metadata (pdfinfo)",
        "No metadata available.\n",
        "pdfinfo",
        str(source),
    )

    with failure_as("validate-pdfa", "failed to write validation report"):
        output.write_text(report, encoding="utf-8")

    return download_response(request, job, output.name)


@router.post("/compare", response_model=DownloadResponse)
def compare(
    request: Request,
    file1: Optional[UploadFile] = File(None),
    file2: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit(100)),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    first_upload = require_upload(file1, "file1")
    second_upload = require_upload(file2, "file2")
    job, sources = start_job_with_files(
        store,
        "compare",
        [first_upload, second_upload],
        lambda index, _: f"input{index + 1}.pdf",
        limit,
    )

    texts: List[Path] = []
    for index, source in enumerate(sources, start=1):
        text_path = job.file(f"text{index}.txt")
        with failure_as("compare", f"failed to extract text from file{index}"):
            tools.run(job.path, "pdftotext", str(source), str(text_path))
        texts.append(text_path)

    output = job.file("differences.txt")
    with failure_as("compare", "failed to write diff output"):
        first, second = (path.read_text(encoding="utf-8", errors="replace") for path in texts)
        output.write_text(text_differences(first, second), encoding="utf-8")

    return download_response(request, job, output.name)


@router.post("/add-header-footer", response_model=DownloadResponse)
def add_header_footer(
    request: Request,
    file: Optional[UploadFile] = File(None),
    headerText: str = Form(""),
    footerText: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    # Query parameters win over form fields of the same name.
    header = request.query_params.get("headerText") or headerText
    footer = request.query_params.get("footerText") or footerText
    if not header and not footer:
        raise HTTPException(status_code=400, detail="at least one of headerText or footerText is required")

    job, source = start_job(store, "add-header-footer", upload, "input.pdf", limit)
    output = job.file(f"{base_name_without_ext(upload.filename)}_headerfooter.pdf")

    width, height = tools.page_size(job.path, source)
    overlay = job.file("overlay.ps")
    with failure_as("add-header-footer", "failed to create overlay script"):
        overlay.write_text(header_footer_overlay(width, height, header, footer), encoding="utf-8")

    with failure_as("add-header-footer", "failed to add header/footer"):
        tools.run(
            job.path,
            "gs",
            "-dBATCH",
            "-dNOPAUSE",
            "-dQUIET",
            "-sDEVICE=pdfwrite",
            "-dPDFSETTINGS=/prepress",
            f"-sOutputFile={output}",
            str(overlay),
            str(source),
        )

    return download_response(request, job, output.name)
