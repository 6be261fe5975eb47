"""
File server for produced artifacts and page thumbnails.

Both routes map the URL path onto the work root through ``JobStore.resolve``
and hold a lease on the job until sending the response ends, whether the
body went out or the client disconnected, so the sweep never deletes a file
that is being streamed.
"""

from __future__ import annotations

import logging
import posixpath

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from .dependencies import get_job_store, get_preview_renderer
from .errors import PathTraversalError, ProcessingError
from .job_store import JobStore
from .previews import SOURCE_NAME, PreviewRenderer, match_lazy_preview

logger = logging.getLogger(__name__)

router = APIRouter()


def _resolve(store: JobStore, relative: str):
    try:
        return store.resolve(relative)
    except PathTraversalError as exc:
        raise HTTPException(status_code=403, detail="forbidden") from exc


class LeasedFileResponse(FileResponse):
    """A ``FileResponse`` that releases a job lease once sending ends, however it ends."""

    def __init__(self, path, store: JobStore, job_id: str, **kwargs) -> None:
        super().__init__(path, **kwargs)
        self.store = store
        self.job_id = job_id

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.store.release(self.job_id)


def _leased_file_response(store: JobStore, relative: str, path, attachment: bool) -> FileResponse:
    job_id = store.job_id_of(relative)
    store.acquire(job_id)
    if not path.is_file():
        store.release(job_id)
        raise HTTPException(status_code=404, detail="file not found")
    if attachment:
        return LeasedFileResponse(
            path, store, job_id, filename=path.name, content_disposition_type="attachment"
        )
    return LeasedFileResponse(path, store, job_id)


def _render_missing_preview(store: JobStore, renderer: PreviewRenderer, relative: str) -> None:
    target = match_lazy_preview(posixpath.normpath(relative))
    if target is None:
        return
    job_id, page = target
    job = store.get(job_id)
    if job is None or not job.file(SOURCE_NAME).is_file():
        return
    with store.lease(job_id):
        try:
            renderer.render_page(job, page)
        except (ProcessingError, OSError) as exc:
            logger.error("lazy preview error (job=%s page=%d): %s", job_id, page, exc)
            raise HTTPException(status_code=500, detail="failed to render preview") from exc


@router.get("/downloads/{relative:path}")
def download(relative: str, store: JobStore = Depends(get_job_store)) -> FileResponse:
    path = _resolve(store, relative)
    return _leased_file_response(store, relative, path, attachment=True)


@router.get("/previews/{relative:path}")
def preview_image(
    relative: str,
    store: JobStore = Depends(get_job_store),
    renderer: PreviewRenderer = Depends(get_preview_renderer),
) -> FileResponse:
    """
    Serve a file inline. A missing ``{job}/previews/page-{n}.png`` is rendered
    on demand from the job's ``input.pdf`` before giving up with a 404.
    """
    path = _resolve(store, relative)
    if not path.is_file():
        _render_missing_preview(store, renderer, relative)
    return _leased_file_response(store, relative, path, attachment=False)
