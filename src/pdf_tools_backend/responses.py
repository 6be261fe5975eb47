"""Absolute result URLs for download and preview responses."""

from __future__ import annotations

from urllib.parse import quote

from fastapi import Request

from .dependencies import settings
from .job_store import Job
from .models import DownloadResponse


def infer_base_url(request: Request) -> str:
    configured = settings.server.public_base_url
    if configured:
        return str(configured).rstrip("/")
    scheme = request.url.scheme
    if request.headers.get("x-forwarded-proto", "").lower() == "https":
        scheme = "https"
    host = request.headers.get("host") or request.url.netloc
    return f"{scheme}://{host}"


def build_download_url(request: Request, job: Job, filename: str) -> str:
    return f"{infer_base_url(request)}/downloads/{job.id}/{quote(filename)}"


def build_preview_url(request: Request, job: Job, filename: str) -> str:
    return f"{infer_base_url(request)}/previews/{job.id}/{quote(filename)}"


def download_response(request: Request, job: Job, filename: str) -> DownloadResponse:
    return DownloadResponse(download_url=build_download_url(request, job, filename))
