"""
Building blocks shared by the operation handlers.

Every handler follows the same sequence: validate the form, allocate a job,
materialize the upload(s), run one or more tools, answer with a download URL.
The helpers here cover the validation and the first two steps and map
failures onto HTTP errors.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional

from fastapi import HTTPException, UploadFile

from ..errors import PdfToolsError, UploadTooLargeError
from ..job_store import Job, JobStore
from ..uploads import materialize, materialize_all

logger = logging.getLogger("pdf_tools_backend.operations")

DEFAULT_OUTPUT = "output.pdf"
RIGHT_ANGLES = (90, 180, 270)


def require_upload(upload: Optional[UploadFile], field: str = "file") -> UploadFile:
    if upload is None or not upload.filename:
        raise HTTPException(status_code=400, detail=f"{field} is required")
    return upload


def require_uploads(uploads: Optional[list[UploadFile]]) -> list[UploadFile]:
    present = [upload for upload in uploads or [] if upload.filename]
    if not present:
        raise HTTPException(status_code=400, detail="no files provided")
    return present


def require_text(value: Optional[str], field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise HTTPException(status_code=400, detail=f"{field} is required")
    return value


def parse_json_field(raw: str, field: str):
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"invalid {field}: {exc.msg}") from exc


@contextmanager
def failure_as(operation: str, message: str) -> Iterator[None]:
    """
    Turn processing failures inside the block into a 500 carrying ``message``.

    The underlying error is logged with an ``[operation]`` tag. Nothing is
    cleaned up; the job directory ages out through the sweep.
    """
    try:
        yield
    except HTTPException:
        raise
    except UploadTooLargeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (PdfToolsError, OSError) as exc:
        logger.error("[%s] %s: %s", operation, message, exc)
        raise HTTPException(status_code=500, detail=message) from exc


def new_job(store: JobStore, operation: str) -> Job:
    with failure_as(operation, "failed to create job"):
        return store.allocate()


def start_job(store: JobStore, operation: str, upload: UploadFile, filename: str, limit: int) -> tuple[Job, Path]:
    """Allocate a job and store ``upload`` in it as ``filename``."""
    job = new_job(store, operation)
    with failure_as(operation, "failed to save file"):
        source = materialize(upload, job.file(filename), limit=limit)
    return job, source


def start_job_with_files(
    store: JobStore,
    operation: str,
    uploads: list[UploadFile],
    name_for: Callable[[int, UploadFile], str],
    limit: int,
) -> tuple[Job, list[Path]]:
    job = new_job(store, operation)
    with failure_as(operation, "failed to save input file"):
        sources = materialize_all(uploads, job.path, name_for, limit=limit)
    return job, sources
