"""
Utility functions for file system operations and form value parsing.

This module provides helper functions for:
- Sanitizing client-supplied filenames before they touch the job directory
- Ensuring directory creation with owner-only permissions
- Lenient parsing of numeric form fields with defaults and clamping
- Packing a directory of generated pages into a zip archive
"""

from __future__ import annotations

import re
import zipfile
from pathlib import Path, PurePosixPath
from typing import Optional

# Extensions are reused in stored filenames, so keep them to a small safe alphabet.
EXTENSION_PATTERN = re.compile(r"^\.[a-zA-Z0-9]{1,10}$")


def sanitize_filename(name: Optional[str], fallback: str = "file") -> str:
    """
    Reduce a client-supplied filename to a safe single path component.

    Directory components are dropped, any remaining path separators are
    replaced, and an empty result collapses to ``fallback``.

    Args:
        name: The original filename from the multipart part (may be None)
        fallback: Value returned when nothing usable is left

    Returns:
        A filename without directory components

    Example:
        >>> sanitize_filename("../../etc/passwd")
        "passwd"
        >>> sanitize_filename("C:\\\\docs\\\\report.pdf")
        "report.pdf"
        >>> sanitize_filename("   ")
        "file"
    """
    cleaned = (name or "").strip().replace("\\", "/")
    cleaned = PurePosixPath(cleaned).name if cleaned else ""
    cleaned = cleaned.replace("/", "_").strip()
    if cleaned in {"", ".", ".."}:
        return fallback
    return cleaned


def base_name_without_ext(name: Optional[str]) -> str:
    """
    Sanitized filename with its final extension removed.

    Example:
        >>> base_name_without_ext("reports/Q3 summary.pdf")
        "Q3 summary"
    """
    filename = sanitize_filename(name)
    stem = Path(filename).stem
    return stem or filename


def safe_extension(name: Optional[str], default: str) -> str:
    """
    Return the lowercased extension of ``name`` if it is short and alphanumeric.

    Used when inputs are stored under positional names such as ``image_0.png``
    and the converter relies on the extension to pick a decoder.
    """
    suffix = Path(sanitize_filename(name)).suffix.lower()
    if EXTENSION_PATTERN.match(suffix):
        return suffix
    return default


def ensure_directory(path: Path, mode: int = 0o700) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create
        mode: Permission bits for newly created directories (owner-only by default)

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(mode=mode, parents=True, exist_ok=True)
    return path


def parse_int_default(value: Optional[str], default: int) -> int:
    """Parse an integer form field, falling back to ``default`` when blank or malformed."""
    value = (value or "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_float_default(value: Optional[str], default: float) -> float:
    """Parse a float form field, falling back to ``default`` when blank or malformed."""
    value = (value or "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def clamp(value, lower, upper):
    return max(lower, min(upper, value))


def zip_directory(source: Path, zip_path: Path) -> Path:
    """
    Write every file below ``source`` into ``zip_path`` using relative arc names.

    Files are added in sorted order so archives are reproducible.
    """
    with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as archive:
        for file_path in sorted(p for p in source.rglob("*") if p.is_file()):
            archive.write(file_path, arcname=file_path.relative_to(source).as_posix())
    return zip_path
