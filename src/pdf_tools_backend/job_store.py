"""
Job directory lifecycle for the PDF tools backend.

Every request that processes files gets its own directory under a single work
root; the directory is the job. This module manages:
- Allocating uniquely named, owner-only job directories
- Resolving client-supplied artifact paths without escaping the work root
- Leasing jobs while they are being read or rendered
- Periodically sweeping directories older than the retention window

The JobStore class is constructed explicitly with its root path so that tests
can point it at a temporary directory and drive ``sweep`` directly.
"""

from __future__ import annotations

import logging
import posixpath
import shutil
import time
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from threading import Event, Lock, Thread
from typing import Iterator, Optional
from uuid import uuid4

from .errors import PathTraversalError
from .utils import ensure_directory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Job:
    """
    A single job directory.

    Attributes:
        id: Random 128-bit identifier (UUID4 string), also the directory name
        path: Absolute path of the job directory
    """

    id: str
    path: Path

    @property
    def modified_at(self) -> datetime:
        return datetime.fromtimestamp(self.path.stat().st_mtime)

    def file(self, name: str) -> Path:
        return self.path / name


class JobStore:
    """
    Owner of the work root and everything below it.

    Thread Safety:
        Lease bookkeeping is protected by a lock; allocation relies on random
        identifiers and ``mkdir(exist_ok=False)`` so it never hands out the
        same directory twice.

    Attributes:
        root: Directory holding one subdirectory per job
        retention: Age after which an unleased job directory is deleted
        sweep_interval: Delay between two sweeps of the background thread
    """

    def __init__(
        self,
        root: Path,
        retention: timedelta = timedelta(hours=2),
        sweep_interval: timedelta = timedelta(minutes=30),
    ) -> None:
        self.root = ensure_directory(Path(root)).resolve()
        self.retention = retention
        self.sweep_interval = sweep_interval
        self._leases: Counter[str] = Counter()
        self._lock = Lock()
        self._stop = Event()
        self._thread: Optional[Thread] = None

    def allocate(self) -> Job:
        """
        Create a fresh job directory.

        Returns:
            The new Job

        Raises:
            OSError: If the directory cannot be created (disk full, permissions)
        """
        job_id = str(uuid4())
        path = self.root / job_id
        path.mkdir(mode=0o700, parents=False, exist_ok=False)
        logger.debug("Allocated job %s", job_id)
        return Job(id=job_id, path=path)

    def get(self, job_id: str) -> Optional[Job]:
        if not job_id or "/" in job_id or "\\" in job_id or job_id in {".", ".."}:
            return None
        path = self.root / job_id
        if not path.is_dir():
            return None
        return Job(id=job_id, path=path)

    def resolve(self, relative: str) -> Path:
        """
        Map a ``{jobID}/{filename}`` style path onto the work root.

        Args:
            relative: Path taken from the request URL

        Returns:
            Absolute path below the root (it may not exist)

        Raises:
            PathTraversalError: If the path is absolute, contains a parent
                directory segment, or resolves outside
                the root through a symlink
        """
        candidate = relative.replace("\\", "/")
        if candidate.startswith("/"):
            raise PathTraversalError("absolute paths are not allowed")
        normalized = posixpath.normpath(candidate)
        if ".." in candidate.split("/") or normalized in {"", "."}:
            raise PathTraversalError("path escapes the job root")

        full = (self.root / normalized).resolve()
        if full != self.root and self.root not in full.parents:
            raise PathTraversalError("path escapes the job root")
        return full

    @staticmethod
    def job_id_of(relative: str) -> str:
        return posixpath.normpath(relative.replace("\\", "/")).split("/", 1)[0]

    def acquire(self, job_id: str) -> None:
        with self._lock:
            self._leases[job_id] += 1

    def release(self, job_id: str) -> None:
        with self._lock:
            self._leases[job_id] -= 1
            if self._leases[job_id] <= 0:
                del self._leases[job_id]

    def is_leased(self, job_id: str) -> bool:
        with self._lock:
            return self._leases[job_id] > 0

    @contextmanager
    def lease(self, job_id: str) -> Iterator[None]:
        """Keep ``job_id`` out of the sweep while the block runs."""
        self.acquire(job_id)
        try:
            yield
        finally:
            self.release(job_id)

    def sweep(self, now: Optional[float] = None) -> list[str]:
        """
        Delete job directories whose modification time is older than the retention window.

        Leased jobs are skipped and picked up by a later sweep once released.

        Args:
            now: Reference UNIX timestamp (defaults to the current time)

        Returns:
            Identifiers of the deleted jobs
        """
        cutoff = (now if now is not None else time.time()) - self.retention.total_seconds()
        removed: list[str] = []
        try:
            entries = list(self.root.iterdir())
        except OSError as exc:
            logger.warning("Sweep could not list %s: %s", self.root, exc)
            return removed

        for entry in entries:
            try:
                if not entry.is_dir() or entry.stat().st_mtime >= cutoff:
                    continue
            except FileNotFoundError:
                continue
            if self.is_leased(entry.name):
                logger.info("Sweep skipped job %s: still in use", entry.name)
                continue
            shutil.rmtree(entry, ignore_errors=True)
            removed.append(entry.name)

        if removed:
            logger.info("Sweep removed %d expired job(s)", len(removed))
        return removed

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval.total_seconds()):
            try:
                self.sweep()
            except Exception:  # noqa: BLE001 - the sweeper thread must survive
                logger.exception("Sweep failed")

    def start(self) -> None:
        """Start the background sweeper thread (idempotent)."""
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = Thread(target=self._sweep_loop, name="job-sweeper", daemon=True)
        self._thread.start()
        logger.info(
            "Job sweeper started (root=%s, retention=%s, interval=%s)",
            self.root,
            self.retention,
            self.sweep_interval,
        )

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())
