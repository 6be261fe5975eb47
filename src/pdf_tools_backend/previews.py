"""
Page thumbnail rendering for the preview operation.

Thumbnails are produced two ways: the preview operation schedules a
background render of every page, and the preview file server renders a single
page on demand when a thumbnail is requested before the background render got
to it. Both paths go through ``PreviewRenderer.render_page``, which holds a
per-(job, page) lock, so concurrent requests for one page coalesce into a
single pdftoppm call. Each image is written under a temporary name and moved
into place, so readers never see a half-written PNG.
"""

from __future__ import annotations

import logging
import os
import re
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Dict, Iterator, Optional, Tuple
from uuid import uuid4

from . import tools
from .errors import ProcessingError
from .job_store import Job, JobStore
from .utils import ensure_directory

logger = logging.getLogger(__name__)

SOURCE_NAME = "input.pdf"
PREVIEW_DIR = "previews"

# {jobID}/previews/page-{n}.png, relative to the work root
LAZY_PREVIEW_PATTERN = re.compile(r"^(?P<job>[^/]+)/" + PREVIEW_DIR + r"/page-(?P<page>\d+)\.png$")


def preview_filename(page: int) -> str:
    return f"{PREVIEW_DIR}/page-{page}.png"


def match_lazy_preview(relative: str) -> Optional[Tuple[str, int]]:
    """Return ``(job_id, page)`` if ``relative`` names a per-page thumbnail."""
    match = LAZY_PREVIEW_PATTERN.match(relative)
    if not match:
        return None
    page = int(match.group("page"))
    if page <= 0:
        return None
    return match.group("job"), page


class PreviewRenderer:
    """
    Renders PNG thumbnails of ``input.pdf`` into ``previews/`` of a job.

    Attributes:
        store: Job store used to lease jobs during background renders
        dpi: Rendering resolution passed to pdftoppm
    """

    def __init__(self, store: JobStore, dpi: int = 110, max_workers: int = 2) -> None:
        self.store = store
        self.dpi = dpi
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="preview")
        self._locks: Dict[Tuple[str, int], list] = {}
        self._guard = Lock()

    @contextmanager
    def _page_lock(self, job_id: str, page: int) -> Iterator[None]:
        key = (job_id, page)
        with self._guard:
            entry = self._locks.setdefault(key, [Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def page_path(self, job: Job, page: int) -> Path:
        return job.path / preview_filename(page)

    def render_page(self, job: Job, page: int) -> Path:
        """
        Make sure the thumbnail for ``page`` exists, rendering it if needed.

        Raises:
            ToolError: If pdftoppm fails (for example the page is out of range)
            OutputNotFoundError: If pdftoppm exited cleanly but wrote nothing
        """
        target = self.page_path(job, page)
        if target.is_file():
            return target

        with self._page_lock(job.id, page):
            if target.is_file():
                return target
            ensure_directory(target.parent)
            # -singlefile makes pdftoppm write exactly "<prefix>.png"
            prefix = target.parent / f".page-{page}-{uuid4().hex}"
            tools.run(
                job.path,
                "pdftoppm",
                "-png",
                "-r",
                str(self.dpi),
                "-f",
                str(page),
                "-l",
                str(page),
                "-singlefile",
                str(job.file(SOURCE_NAME)),
                str(prefix),
            )
            rendered = tools.require_output(prefix.with_name(prefix.name + ".png"))
            os.replace(rendered, target)
        return target

    def render_all(self, job: Job, total: int) -> None:
        with self.store.lease(job.id):
            for page in range(1, total + 1):
                try:
                    self.render_page(job, page)
                except ProcessingError as exc:
                    logger.warning("[preview] background render stopped (job=%s page=%d): %s", job.id, page, exc)
                    return
                except OSError as exc:
                    # The sweep or a disk problem removed the job under us.
                    logger.warning("[preview] background render aborted (job=%s): %s", job.id, exc)
                    return

    def schedule_all(self, job: Job, total: int) -> Future:
        return self._executor.submit(self.render_all, job, total)

    def shutdown(self) -> None:
        """Stop accepting background renders and drop the ones still queued."""
        self._executor.shutdown(wait=False, cancel_futures=True)
