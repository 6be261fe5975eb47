"""
Password protection, permanent redaction and related qpdf recipes.
"""

from __future__ import annotations

import logging
import os
from collections import defaultdict
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from pydantic import TypeAdapter, ValidationError

from .. import tools
from ..dependencies import body_limit, get_job_store
from ..errors import OutputNotFoundError, ParseError
from ..job_store import Job, JobStore
from ..models import DownloadResponse, RedactionArea
from ..responses import download_response
from ..utils import base_name_without_ext
from .common import failure_as, parse_json_field, require_text, require_upload, start_job

logger = logging.getLogger(__name__)

router = APIRouter()

REDACTION_DPI = 300

_REDACTIONS = TypeAdapter(List[RedactionArea])


def parse_dimensions(text: str) -> tuple[int, int]:
    """Parse ImageMagick ``identify -format "%w %h"`` output."""
    fields = text.split()
    if len(fields) != 2 or not all(field.isdigit() for field in fields):
        raise ParseError(f"could not parse image dimensions from {text.strip()!r}")
    return int(fields[0]), int(fields[1])


def rectangle_commands(areas: List[RedactionArea], width: int, height: int) -> List[str]:
    """
    ImageMagick ``-draw`` arguments for each area.

    Area coordinates are fractions of the page; pixel corners are truncated.
    """
    commands = []
    for area in areas:
        x1 = int(area.x * width)
        y1 = int(area.y * height)
        x2 = int((area.x + area.width) * width)
        y2 = int((area.y + area.height) * height)
        commands.append(f"rectangle {x1},{y1} {x2},{y2}")
    return commands


def group_by_page(areas: List[RedactionArea]) -> Dict[int, List[RedactionArea]]:
    grouped: Dict[int, List[RedactionArea]] = defaultdict(list)
    for area in areas:
        grouped[area.page].append(area)
    return dict(grouped)


def _black_out(job: Job, image, areas: List[RedactionArea]) -> None:
    width, height = parse_dimensions(tools.run_output(job.path, "identify", "-format", "%w %h", str(image)))
    draw_args = []
    for command in rectangle_commands(areas, width, height):
        draw_args += ["-draw", command]
    redacted = image.with_name(image.name + ".tmp.png")
    tools.run(job.path, "convert", str(image), "-fill", "black", *draw_args, str(redacted))
    os.replace(redacted, image)


@router.post("/protect", response_model=DownloadResponse)
def protect(
    request: Request,
    file: Optional[UploadFile] = File(None),
    password: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    secret = require_text(password, "password")
    upload = require_upload(file)
    job, source = start_job(store, "protect", upload, "input.pdf", limit)
    output = job.file(f"{base_name_without_ext(upload.filename)}_protected.pdf")

    # Same user and owner password, AES-256.
    with failure_as("protect", "failed to encrypt PDF"):
        tools.run(
            job.path, "qpdf", "--warning-exit-0", "--encrypt", secret, secret, "256", "--", str(source), str(output)
        )

    return download_response(request, job, output.name)


@router.post("/unlock", response_model=DownloadResponse)
def unlock(
    request: Request,
    file: Optional[UploadFile] = File(None),
    password: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    secret = password.strip()
    job, source = start_job(store, "unlock", upload, "input.pdf", limit)
    output = job.file(f"{base_name_without_ext(upload.filename)}_unlocked.pdf")

    args = ["--warning-exit-0"]
    if secret:
        args.append(f"--password={secret}")
    with failure_as("unlock", "failed to decrypt PDF"):
        tools.run(job.path, "qpdf", *args, "--decrypt", str(source), str(output))

    return download_response(request, job, output.name)


@router.post("/redact", response_model=DownloadResponse)
def redact(
    request: Request,
    file: Optional[UploadFile] = File(None),
    redactions: str = Form(""),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    """
    Permanently black out areas of a PDF.

    Every page is rasterized, the rectangles are painted into the page images
    and the document is rebuilt from the images, so nothing under a redaction
    survives in the output. qpdf then rewrites the result, dropping the
    rasterizer's metadata.

    ``redactions`` is a JSON list of ``{"page", "x", "y", "width", "height"}``
    objects with coordinates given as fractions of the page size.
    """
    payload = parse_json_field(require_text(redactions, "redactions"), "redactions")
    try:
        areas = _REDACTIONS.validate_python(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail="invalid redactions") from exc
    if not areas:
        raise HTTPException(status_code=400, detail="at least one redaction area required")

    upload = require_upload(file)
    job, source = start_job(store, "redact", upload, "input.pdf", limit)

    with failure_as("redact", "failed to rasterize PDF"):
        tools.run(job.path, "pdftoppm", "-png", "-r", str(REDACTION_DPI), str(source), str(job.file("page")))
        images = tools.numbered_output_map(job.path, "page-", ".png")
        if not images:
            raise OutputNotFoundError(["page-*.png"])

    with failure_as("redact", "failed to draw redactions"):
        for page, page_areas in sorted(group_by_page(areas).items()):
            if page not in images:
                logger.warning("[redact] page %d not found, skipping", page)
                continue
            _black_out(job, images[page], page_areas)

    rebuilt = job.file("temp_redacted.pdf")
    with failure_as("redact", "failed to rebuild PDF"):
        tools.run(job.path, "convert", *[str(images[page]) for page in sorted(images)], str(rebuilt))

    output = job.file(f"{base_name_without_ext(upload.filename)}_redacted.pdf")
    with failure_as("redact", "failed to optimize PDF"):
        tools.run(
            job.path,
            "qpdf",
            "--warning-exit-0",
            "--linearize",
            "--compress-streams=y",
            "--object-streams=disable",
            str(rebuilt),
            str(output),
        )

    return download_response(request, job, output.name)


@router.post("/flatten", response_model=DownloadResponse)
def flatten(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    job, source = start_job(store, "flatten", upload, "input.pdf", limit)
    output = job.file(f"{base_name_without_ext(upload.filename)}_flattened.pdf")

    with failure_as("flatten", "failed to flatten PDF"):
        tools.run(
            job.path,
            "qpdf",
            "--warning-exit-0",
            "--flatten-annotations=all",
            "--flatten-rotation",
            str(source),
            str(output),
        )

    return download_response(request, job, output.name)


@router.post("/digital-signature", response_model=DownloadResponse)
def digital_signature(
    request: Request,
    file: Optional[UploadFile] = File(None),
    limit: int = Depends(body_limit()),
    store: JobStore = Depends(get_job_store),
) -> DownloadResponse:
    upload = require_upload(file)
    job, source = start_job(store, "digital-signature", upload, "input.pdf", limit)
    output = job.file(f"{base_name_without_ext(upload.filename)}_signed.pdf")

    # Linearized copy only; no cryptographic signature is applied.
    with failure_as("digital-signature", "failed to process PDF"):
        tools.run(job.path, "qpdf", "--linearize", "--warning-exit-0", str(source), str(output))

    return download_response(request, job, output.name)
