"""
Page-level PDF operations: merging, splitting, page selection, reordering,
rotation, cropping, stamping and thumbnail previews. All of them are pdfcpu
recipes except the preview, which uses poppler.
"""

from __future__ import annotations

import shutil
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from pydantic import TypeAdapter, ValidationError

from .. import tools
from ..dependencies import body_limit, get_job_store, get_preview_renderer
from ..errors import OutputNotFoundError
from ..job_store import JobStore
from ..models import DownloadResponse, OrganizeRotation, PreviewPage, PreviewResponse
from ..previews import PREVIEW_DIR, SOURCE_NAME, PreviewRenderer, preview_filename
from ..responses import build_preview_url, download_response
from ..utils import (
    base_name_without_ext,
    clamp,
    ensure_directory,
    parse_float_default,
    parse_int_default,
    sanitize_filename,
    zip_directory,
)
from .common import (
    DEFAULT_OUTPUT,
    RIGHT_ANGLES,
    failure_as,
    parse_json_field,
    require_text,
    require_upload,
    require_uploads,
    start_job,
    start_job_with_files,
)

router = APIRouter()

STAMP_POSITIONS = {"tl", "tc", "tr", "l", "c", "r", "bl", "bc", "br"}
CROP_UNITS = {"po", "in", "cm", "mm"}

_ROTATIONS = TypeAdapter(List[OrganizeRotation])


def output_filename(requested: Optional[str]) -> str:
    name = sanitize_filename(requested, fallback=DEFAULT_OUTPUT)
    if not name.lower().endswith(".pdf"):
        name += ".pdf"
    return name


def stamp_position(value: Optional[str], default: str) -> str:
    position = (value or "").strip().lower() or default
    if position not in STAMP_POSITIONS:
        raise HTTPException(status_code=400, detail=f"position must be one of {', '.join(sorted(STAMP_POSITIONS))}")
    return position


def page_number_description(position: str, font_size: int, opacity: float) -> str:
    # Absolute scale and zero rotation keep every page's stamp identical.
    return f"pos:{position}, points:{font_size}, scale:1 abs, rot:0, op:{opacity:.2f}, fillc:.2 .2 .2"


def watermark_description(position: str, rotation: int, font_size: int, opacity: float) -> str:
    return f"pos:{position}, rot:{rotation}, points:{font_size}, op:{opacity:.2f}, c:.9 .9 .9"


def bucket_rotations(rotations: List[OrganizeRotation]) -> Dict[int, List[int]]:
    """
    Group requested page rotations by clockwise angle.

    Angles are normalized modulo 360; zero, non-right angles and non-positive
    page numbers are dropped. Each bucket is sorted ascending.
    """
    buckets: Dict[int, List[int]] = {angle: [] for angle in RIGHT_ANGLES}
    for rotation in rotations:
        angle = rotation.degrees % 360
        if angle not in buckets or rotation.page_number <= 0:
            continue
        buckets[angle].append(rotation.page_number)
    return {angle: sorted(pages) for angle, pages in buckets.items()}


@router.post("/merge", response_model=DownloadResponse)
def merge(
    request: Request,
    files: Optional[List[UploadFile]] = File(None),
    outputFilename: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    uploads = require_uploads(files)
    job, sources = start_job_with_files(store, "merge", uploads, lambda index, _: f"input_{index}.pdf", limit)
    output = job.file(output_filename(outputFilename))

    with failure_as("merge", "failed to merge PDFs"):
        tools.run(job.path, "pdfcpu", "merge", str(output), *[str(source) for source in sources])

    return download_response(request, job, output.name)


@router.post("/split", response_model=DownloadResponse)
def split(
    request: Request,
    file: Optional[UploadFile] = File(None),
    mode: str = Form(""),
    ranges: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    job, source = start_job(store, "split", upload, "input.pdf", limit)
    archive = job.file(f"{base_name_without_ext(upload.filename)}_split_pages.zip")

    with failure_as("split", "failed to split PDF"):
        pages_dir = ensure_directory(job.file("pages"))
        selection = ["-pages", ranges.strip()] if mode == "ranges" and ranges.strip() else []
        tools.run(job.path, "pdfcpu", "extract", "-mode", "page", *selection, str(source), str(pages_dir))
    with failure_as("split", "failed to zip pages"):
        zip_directory(pages_dir, archive)

    return download_response(request, job, archive.name)


@router.post("/remove-pages", response_model=DownloadResponse)
def remove_pages(
    request: Request,
    file: Optional[UploadFile] = File(None),
    pages: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    selection = require_text(pages, "pages")
    job, source = start_job(store, "remove-pages", upload, "input.pdf", limit)
    output = job.file(DEFAULT_OUTPUT)

    with failure_as("remove-pages", "failed to remove pages"):
        tools.run(job.path, "pdfcpu", "pages", "remove", "-pages", selection, str(source), str(output))

    return download_response(request, job, output.name)


@router.post("/extract-pages", response_model=DownloadResponse)
def extract_pages(
    request: Request,
    file: Optional[UploadFile] = File(None),
    mode: str = Form(""),
    ranges: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    job, source = start_job(store, "extract-pages", upload, "input.pdf", limit)

    if mode == "ranges" and ranges.strip():
        output = job.file(DEFAULT_OUTPUT)
        with failure_as("extract-pages", "failed to extract pages"):
            tools.run(job.path, "pdfcpu", "collect", "-pages", ranges.strip(), str(source), str(output))
        return download_response(request, job, output.name)

    archive = job.file("extracted_pages.zip")
    with failure_as("extract-pages", "failed to extract pages"):
        pages_dir = ensure_directory(job.file("pages"))
        tools.run(job.path, "pdfcpu", "extract", "-mode", "page", str(source), str(pages_dir))
    with failure_as("extract-pages", "failed to zip pages"):
        zip_directory(pages_dir, archive)

    return download_response(request, job, archive.name)


@router.post("/organize", response_model=DownloadResponse)
def organize(
    request: Request,
    file: Optional[UploadFile] = File(None),
    order: str = Form(""),
    rotations: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    page_order = require_text(order, "order")

    requested: List[OrganizeRotation] = []
    if rotations.strip():
        payload = parse_json_field(rotations, "rotations")
        try:
            requested = _ROTATIONS.validate_python(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail="invalid rotations") from exc

    job, source = start_job(store, "organize", upload, "input.pdf", limit)
    work = job.file("work.pdf")
    with failure_as("organize", "failed to prepare work file"):
        shutil.copyfile(source, work)

    # pdfcpu rotate edits the work copy in place, one call per angle.
    with failure_as("organize", "failed to rotate pages"):
        for angle, pages in bucket_rotations(requested).items():
            if pages:
                tools.run(job.path, "pdfcpu", "rotate", "-pages", tools.join_pages(pages), str(work), str(angle))

    output = job.file(DEFAULT_OUTPUT)
    with failure_as("organize", "failed to organize PDF"):
        tools.run(job.path, "pdfcpu", "collect", "-pages", page_order, str(work), str(output))

    return download_response(request, job, output.name)


@router.post("/rotate", response_model=DownloadResponse)
def rotate(
    request: Request,
    file: Optional[UploadFile] = File(None),
    degrees: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    angle = parse_int_default(degrees, 90)
    if angle not in RIGHT_ANGLES:
        raise HTTPException(status_code=400, detail="degrees must be 90, 180, or 270")

    job, source = start_job(store, "rotate", upload, "input.pdf", limit)
    output = job.file(DEFAULT_OUTPUT)
    with failure_as("rotate", "failed to rotate PDF"):
        tools.run(job.path, "pdfcpu", "rotate", str(source), str(angle), str(output))

    return download_response(request, job, output.name)


@router.post("/crop", response_model=DownloadResponse)
def crop(
    request: Request,
    file: Optional[UploadFile] = File(None),
    description: str = Form(""),
    unit: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    box = require_text(description, "description")
    crop_unit = unit.strip() or "po"
    if crop_unit not in CROP_UNITS:
        raise HTTPException(status_code=400, detail=f"unit must be one of {', '.join(sorted(CROP_UNITS))}")

    job, source = start_job(store, "crop", upload, "input.pdf", limit)
    output = job.file(DEFAULT_OUTPUT)
    with failure_as("crop", "failed to crop PDF"):
        tools.run(job.path, "pdfcpu", "crop", "-u", crop_unit, "--", box, str(source), str(output))

    return download_response(request, job, output.name)


@router.post("/page-numbers", response_model=DownloadResponse)
def page_numbers(
    request: Request,
    file: Optional[UploadFile] = File(None),
    position: str = Form(""),
    fontSize: str = Form(""),
    opacity: str = Form(""),
    startAt: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    """
    Number every page.

    Stamping the same document N times makes pdfcpu pile up stamp resources,
    so each page is extracted to its own document, stamped exactly once and
    the stamped pages are merged back in page order.
    """
    upload = require_upload(file)
    pos = stamp_position(position, "bc")
    size = clamp(parse_int_default(fontSize, 10), 6, 72)
    alpha = clamp(parse_float_default(opacity, 0.95), 0.0, 1.0)
    first = max(parse_int_default(startAt, 1), 1)

    job, source = start_job(store, "page-numbers", upload, "input.pdf", limit)

    with failure_as("page-numbers", "failed to read page count"):
        total = tools.page_count(job.path, source)

    with failure_as("page-numbers", "failed to prepare pages"):
        pages_dir = ensure_directory(job.file("pages"))
        tools.run(job.path, "pdfcpu", "extract", "-mode", "page", str(source), str(pages_dir))
        extracted = tools.extracted_pages(pages_dir)
        missing = [f"page {n}" for n in range(1, total + 1) if n not in extracted]
        if missing:
            raise OutputNotFoundError(missing)

    description = page_number_description(pos, size, alpha)
    stamped = []
    with failure_as("page-numbers", "failed to add page numbers"):
        for number in range(1, total + 1):
            stamped_page = job.file(f"stamped-{number:04d}.pdf")
            label = str(first + number - 1)
            tools.run(job.path, "pdfcpu", *tools.pdfcpu_stamp_args(label, description, extracted[number], stamped_page))
            stamped.append(str(stamped_page))

    output = job.file(DEFAULT_OUTPUT)
    with failure_as("page-numbers", "failed to write output"):
        tools.run(job.path, "pdfcpu", "merge", str(output), *stamped)

    return download_response(request, job, output.name)


@router.post("/watermark", response_model=DownloadResponse)
def watermark(
    request: Request,
    file: Optional[UploadFile] = File(None),
    text: str = Form(""),
    position: str = Form(""),
    rotation: str = Form(""),
    fontSize: str = Form(""),
    opacity: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    label = require_text(text, "text")
    pos = stamp_position(position, "c")
    angle = parse_int_default(rotation, 45)
    size = clamp(parse_int_default(fontSize, 48), 8, 200)
    alpha = clamp(parse_float_default(opacity, 0.25), 0.0, 1.0)

    job, source = start_job(store, "watermark", upload, "input.pdf", limit)
    output = job.file(DEFAULT_OUTPUT)
    # A foreground stamp stays visible on scanned pages.
    description = watermark_description(pos, angle, size, alpha)
    with failure_as("watermark", "failed to add watermark"):
        tools.run(job.path, "pdfcpu", *tools.pdfcpu_stamp_args(label, description, source, output))

    return download_response(request, job, output.name)


@router.post("/preview", response_model=PreviewResponse)
def preview(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
    renderer: PreviewRenderer = Depends(get_preview_renderer),
) -> PreviewResponse:
    """
    Return one thumbnail URL per page without waiting for the images.

    Rendering of every page starts in the background; any thumbnail requested
    before it is ready is rendered on demand by the preview file server.
    """
    upload = require_upload(file)
    # The preview file server looks for the source under this fixed name.
    job, source = start_job(store, "preview", upload, SOURCE_NAME, limit)

    with failure_as("preview", "failed to create previews dir"):
        ensure_directory(job.file(PREVIEW_DIR))
    with failure_as("preview", "failed to read page count"):
        total = tools.page_count(job.path, source)

    pages = [
        PreviewPage(page_number=number, image_url=build_preview_url(request, job, preview_filename(number)))
        for number in range(1, total + 1)
    ]
    renderer.schedule_all(job, total)
    return PreviewResponse(pages=pages)
