"""
Format conversions into and out of PDF.

Office documents go through LibreOffice, images through ImageMagick, HTML
through wkhtmltopdf and PDF output formats through poppler or the bundled
conversion scripts in ``pdf_tools_backend.scripts``.
"""

from __future__ import annotations

import os
import shutil
from typing import List, Optional
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile

from .. import tools
from ..dependencies import body_limit, get_job_store
from ..errors import OutputNotFoundError
from ..job_store import JobStore
from ..models import DownloadResponse
from ..responses import download_response
from ..utils import (
    base_name_without_ext,
    clamp,
    ensure_directory,
    parse_int_default,
    safe_extension,
    zip_directory,
)
from .common import failure_as, new_job, require_upload, require_uploads, start_job, start_job_with_files
from .pages import output_filename

router = APIRouter()

JPG_DPI_RANGE = (72, 600)
DEFAULT_JPG_DPI = 150

HTML_URL_SCHEMES = {"http", "https"}


def _office_to_pdf(
    request: Request,
    store: JobStore,
    operation: str,
    upload: UploadFile,
    default_extension: str,
    limit: int,
) -> DownloadResponse:
    # LibreOffice picks its import filter from the extension.
    extension = safe_extension(upload.filename, default_extension)
    job, source = start_job(store, operation, upload, f"document{extension}", limit)
    output = job.file(f"{base_name_without_ext(upload.filename)}.pdf")

    with failure_as(operation, "failed to convert document"):
        converted = tools.libreoffice_convert(job.path, source)
        os.replace(converted, output)

    return download_response(request, job, output.name)


def _pdf_to_format(
    request: Request,
    store: JobStore,
    operation: str,
    upload: UploadFile,
    script: str,
    suffix: str,
    limit: int,
) -> DownloadResponse:
    job, source = start_job(store, operation, upload, "input.pdf", limit)
    output = job.file(f"{base_name_without_ext(upload.filename)}{suffix}")

    with failure_as(operation, "failed to convert PDF"):
        tools.run_script(job.path, script, str(source), str(output))
        tools.require_output(output)

    return download_response(request, job, output.name)


def validate_page_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme.lower() not in HTML_URL_SCHEMES or not parts.netloc:
        raise HTTPException(status_code=400, detail="url must be an http or https URL")
    return url


@router.post("/image-to-pdf", response_model=DownloadResponse)
def image_to_pdf(
    request: Request,
    files: Optional[List[UploadFile]] = File(None),
    outputFilename: str = Form(""),
    limit: int = Depends(body_limit(256)),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    uploads = require_uploads(files)
    job, images = start_job_with_files(
        store,
        "image-to-pdf",
        uploads,
        lambda index, upload: f"image_{index}{safe_extension(upload.filename, '.png')}",
        limit,
    )
    output = job.file(output_filename(outputFilename))

    with failure_as("image-to-pdf", "failed to convert images"):
        tools.run(job.path, "convert", *[str(image) for image in images], str(output))

    return download_response(request, job, output.name)


@router.post("/word-to-pdf", response_model=DownloadResponse)
def word_to_pdf(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit(128)),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    return _office_to_pdf(request, store, "word-to-pdf", require_upload(file), ".docx", limit)


@router.post("/excel-to-pdf", response_model=DownloadResponse)
def excel_to_pdf(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    return _office_to_pdf(request, store, "excel-to-pdf", require_upload(file), ".xlsx", limit)


@router.post("/powerpoint-to-pdf", response_model=DownloadResponse)
def powerpoint_to_pdf(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit(128)),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    return _office_to_pdf(request, store, "powerpoint-to-pdf", require_upload(file), ".pptx", limit)


@router.post("/pdf-to-word", response_model=DownloadResponse)
def pdf_to_word(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    return _pdf_to_format(request, store, "pdf-to-word", require_upload(file), "pdf_to_docx", ".docx", limit)


@router.post("/pdf-to-excel", response_model=DownloadResponse)
def pdf_to_excel(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    return _pdf_to_format(request, store, "pdf-to-excel", require_upload(file), "pdf_to_xlsx", ".xlsx", limit)


@router.post("/pdf-to-powerpoint", response_model=DownloadResponse)
def pdf_to_powerpoint(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    return _pdf_to_format(request, store, "pdf-to-powerpoint", require_upload(file), "pdf_to_pptx", ".pptx", limit)


@router.post("/pdf-to-jpg", response_model=DownloadResponse)
def pdf_to_jpg(
    request: Request,
    file: Optional[UploadFile] = File(None),
    dpi: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    """
    Render every page as JPEG.

    A single-page document yields one ``.jpg``; anything longer is zipped.
    """
    upload = require_upload(file)
    resolution = clamp(parse_int_default(dpi, DEFAULT_JPG_DPI), *JPG_DPI_RANGE)
    base = base_name_without_ext(upload.filename)
    job, source = start_job(store, "pdf-to-jpg", upload, "input.pdf", limit)

    with failure_as("pdf-to-jpg", "failed to read page count"):
        total = tools.page_count(job.path, source)

    with failure_as("pdf-to-jpg", "failed to render pages"):
        images_dir = ensure_directory(job.file("images"))
        tools.run(job.path, "pdftoppm", "-jpeg", "-r", str(resolution), str(source), str(images_dir / "page"))
        images = tools.numbered_outputs(images_dir, "page-", ".jpg")
        if not images:
            raise OutputNotFoundError(["page-*.jpg"])

    if total == 1:
        output = job.file(f"{base}.jpg")
        with failure_as("pdf-to-jpg", "failed to write image"):
            shutil.move(str(images[0]), output)
        return download_response(request, job, output.name)

    archive = job.file(f"{base}_images.zip")
    with failure_as("pdf-to-jpg", "failed to zip images"):
        zip_directory(images_dir, archive)
    return download_response(request, job, archive.name)


@router.post("/pdf-to-html", response_model=DownloadResponse)
def pdf_to_html(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    base = base_name_without_ext(upload.filename)
    job, source = start_job(store, "pdf-to-html", upload, "input.pdf", limit)

    with failure_as("pdf-to-html", "failed to convert PDF to HTML"):
        tools.run(job.path, "pdftohtml", "-s", "-noframes", "-enc", "UTF-8", str(source), str(job.file(base)))
        # pdftohtml's naming of the single-file output varies across versions.
        output = tools.find_output(job.path, [f"{base}.html", f"{base}-html.html", f"{base}s.html"])

    return download_response(request, job, output.name)


@router.post("/extract-text", response_model=DownloadResponse)
def extract_text(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    job, source = start_job(store, "extract-text", upload, "input.pdf", limit)
    output = job.file(f"{base_name_without_ext(upload.filename)}.txt")

    with failure_as("extract-text", "failed to extract text"):
        tools.run(job.path, "pdftotext", "-layout", str(source), str(output))

    return download_response(request, job, output.name)


@router.post("/extract-images", response_model=DownloadResponse)
def extract_images(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    job, source = start_job(store, "extract-images", upload, "input.pdf", limit)

    with failure_as("extract-images", "failed to extract images"):
        images_dir = ensure_directory(job.file("images"))
        # -all keeps each image in its native encoding.
        tools.run(job.path, "pdfimages", "-all", str(source), str(images_dir / "image"))
        found = any(path.is_file() for path in images_dir.iterdir())
    if not found:
        raise HTTPException(status_code=400, detail="no images found in PDF")

    archive = job.file(f"{base_name_without_ext(upload.filename)}_extracted_images.zip")
    with failure_as("extract-images", "failed to zip images"):
        zip_directory(images_dir, archive)

    return download_response(request, job, archive.name)


@router.post("/html-to-pdf", response_model=DownloadResponse)
def html_to_pdf(
    request: Request,
    file: Optional[UploadFile] = File(None),
    url: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    """
    Render a web page or an uploaded HTML file.

    A non-empty ``url`` takes precedence over ``file``. Local file access is
    only enabled for uploaded HTML, so a remote page cannot pull files off
    the server.
    """
    page_url = url.strip()
    if page_url:
        validate_page_url(page_url)
        job = new_job(store, "html-to-pdf")
        output = job.file("webpage.pdf")
        args = ["--quiet", page_url]
    else:
        if file is None or not file.filename:
            raise HTTPException(status_code=400, detail="file or url required")
        job, source = start_job(store, "html-to-pdf", file, "input.html", limit)
        output = job.file(f"{base_name_without_ext(file.filename)}.pdf")
        args = ["--enable-local-file-access", "--quiet", str(source)]

    with failure_as("html-to-pdf", "failed to convert HTML to PDF"):
        tools.run(job.path, "wkhtmltopdf", *args, str(output))

    return download_response(request, job, output.name)
