"""Persisting multipart file parts into a job directory."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from .errors import UploadTooLargeError

CHUNK_SIZE = 1024 * 1024


def configure(chunk_size: int = CHUNK_SIZE) -> None:
    global CHUNK_SIZE
    CHUNK_SIZE = chunk_size


def materialize(
    upload: UploadFile,
    destination: Path,
    limit: Optional[int] = None,
    chunk_size: Optional[int] = None,
) -> Path:
    """
    Stream-copy ``upload`` to ``destination``.

    The destination name is always chosen by the caller; the client filename is
    never used to build the path.

    Raises:
        UploadTooLargeError: If more than ``limit`` bytes are read
        OSError: If the part cannot be read or the destination cannot be written
    """
    chunk_size = chunk_size or CHUNK_SIZE
    written = 0
    upload.file.seek(0)
    with destination.open("wb") as buffer:
        while chunk := upload.file.read(chunk_size):
            written += len(chunk)
            if limit is not None and written > limit:
                raise UploadTooLargeError(f"upload exceeds {limit} bytes")
            buffer.write(chunk)
    return destination


def materialize_all(
    uploads: list[UploadFile],
    directory: Path,
    name_for,
    limit: Optional[int] = None,
    chunk_size: Optional[int] = None,
) -> list[Path]:
    """Materialize several parts; ``name_for(index, upload)`` picks each filename."""
    paths = []
    remaining = limit
    for index, upload in enumerate(uploads):
        path = materialize(upload, directory / name_for(index, upload), limit=remaining, chunk_size=chunk_size)
        if remaining is not None:
            remaining -= path.stat().st_size
        paths.append(path)
    return paths
