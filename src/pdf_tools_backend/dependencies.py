"""
Process-wide collaborators and the FastAPI dependencies that hand them out.

The job store and preview renderer are built once from the loaded settings;
routes receive them through ``Depends`` so tests can swap them with
``app.dependency_overrides``.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Optional

from fastapi import HTTPException, Request

from . import tools, uploads
from .configuration import get_settings
from .job_store import JobStore
from .previews import PreviewRenderer

MEGABYTE = 1024 * 1024

settings = get_settings()

job_store = JobStore(
    Path(settings.storage.work_dir),
    retention=timedelta(minutes=float(settings.storage.retention_minutes)),
    sweep_interval=timedelta(minutes=float(settings.storage.sweep_interval_minutes)),
)
preview_renderer = PreviewRenderer(
    job_store,
    dpi=int(settings.previews.dpi),
    max_workers=int(settings.previews.max_workers),
)

_timeout = settings.tools.timeout_seconds
tools.configure(
    timeout=float(_timeout) if _timeout is not None else None,
    python=settings.tools.python,
)
uploads.configure(chunk_size=int(settings.uploads.chunk_size))


def get_job_store() -> JobStore:
    return job_store


def get_preview_renderer() -> PreviewRenderer:
    return preview_renderer


def body_limit(megabytes: Optional[int] = None):
    """
    Dependency factory enforcing an operation's multipart size ceiling.

    FastAPI resolves this only after the multipart form has been received and
    spooled, so the declared Content-Length check turns an oversized request
    into a 400 but does not stop it from being read. The returned byte limit is
    also passed to the upload materializer, which enforces it while copying
    each part into the job.
    """
    limit = (megabytes or int(settings.uploads.default_limit_mb)) * MEGABYTE

    def check(request: Request) -> int:
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > limit:
            raise HTTPException(status_code=400, detail=f"request body exceeds {limit // MEGABYTE} MB")
        return limit

    return check
