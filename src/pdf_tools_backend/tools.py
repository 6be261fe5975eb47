"""
External tool invocation.

All document work is delegated to pre-installed command-line programs
(pdfcpu, qpdf, Ghostscript, LibreOffice, poppler-utils, ImageMagick,
ocrmypdf, wkhtmltopdf) and to the interpreter scripts in
``pdf_tools_backend.scripts``. This module is the only place that starts
processes:

- ``execute`` runs a program inside a job directory and captures its output
- ``run`` / ``run_output`` additionally treat a nonzero exit as a failure
- page-count and page-size helpers parse ``pdfinfo`` / ``pdfcpu info`` text
- the naming helpers encode how each tool names the files it writes, so
  handlers never have to guess

Calls are one-shot: no retries, and no timeout unless one is configured.
"""

from __future__ import annotations

import logging
import re
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .errors import OutputNotFoundError, ParseError, ToolError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT: Optional[float] = None
PYTHON_EXECUTABLE: Optional[str] = None

LETTER_SIZE = (612.0, 792.0)

_PAGE_SIZE_PATTERN = re.compile(r"^\s*Page size:\s*([\d.]+)\s*x\s*([\d.]+)")
_EXTRACTED_PAGE_PATTERN = re.compile(r"(?:^|_)page[_-](\d+)\.pdf$")


def configure(timeout: Optional[float] = None, python: Optional[str] = None) -> None:
    global DEFAULT_TIMEOUT, PYTHON_EXECUTABLE
    DEFAULT_TIMEOUT = timeout
    PYTHON_EXECUTABLE = python


def python_executable() -> str:
    return PYTHON_EXECUTABLE or sys.executable


@dataclass(frozen=True)
class ToolResult:
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def execute(job_path: Path, program: str, *args: str, timeout: Optional[float] = None) -> ToolResult:
    """
    Run ``program`` with ``job_path`` as working directory.

    Returns:
        The exit status and the combined stdout/stderr text

    Raises:
        ToolError: If the program cannot be started or exceeds the timeout
    """
    argv = [program, *[str(arg) for arg in args]]
    limit = timeout if timeout is not None else DEFAULT_TIMEOUT
    logger.debug("Running %s in %s", argv, job_path)
    try:
        completed = subprocess.run(
            argv,
            cwd=job_path,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            timeout=limit,
            check=False,
        )
    except FileNotFoundError as exc:
        raise ToolError(program, "program not found") from exc
    except subprocess.TimeoutExpired as exc:
        raise ToolError(program, f"timed out after {limit}s") from exc
    except OSError as exc:
        raise ToolError(program, f"failed to start: {exc}") from exc
    return ToolResult(returncode=completed.returncode, output=completed.stdout or "")


def run_output(job_path: Path, program: str, *args: str, timeout: Optional[float] = None) -> str:
    """Like ``execute`` but a nonzero exit raises ``ToolError``; returns the output."""
    result = execute(job_path, program, *args, timeout=timeout)
    if not result.ok:
        logger.warning("%s exited with status %d: %s", program, result.returncode, result.output.strip()[-2000:])
        raise ToolError(program, f"exit status {result.returncode}", result.returncode, result.output)
    return result.output


def run(job_path: Path, program: str, *args: str, timeout: Optional[float] = None) -> None:
    run_output(job_path, program, *args, timeout=timeout)


def parse_page_count(text: str) -> int:
    """
    Extract the page count from ``pdfinfo`` or ``pdfcpu info`` output.

    Both print a line of the form ``Pages:   12``.

    Raises:
        ParseError: If no positive ``Pages:`` value is present
    """
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped.startswith("Pages:"):
            continue
        fields = stripped.split()
        if len(fields) >= 2:
            try:
                count = int(fields[-1])
            except ValueError:
                continue
            if count > 0:
                return count
    raise ParseError("could not parse page count")


def page_count(job_path: Path, pdf: Path) -> int:
    """Count pages with pdfinfo, falling back to pdfcpu when poppler chokes."""
    try:
        return parse_page_count(run_output(job_path, "pdfinfo", str(pdf)))
    except (ToolError, ParseError) as exc:
        logger.info("pdfinfo could not count pages (%s); trying pdfcpu", exc)
    return parse_page_count(run_output(job_path, "pdfcpu", "info", str(pdf)))


def parse_page_size(text: str) -> tuple[float, float]:
    """Return the first ``Page size: W x H`` from pdfinfo output, or US Letter."""
    for line in text.splitlines():
        match = _PAGE_SIZE_PATTERN.match(line)
        if match:
            return float(match.group(1)), float(match.group(2))
    return LETTER_SIZE


def page_size(job_path: Path, pdf: Path) -> tuple[float, float]:
    try:
        return parse_page_size(run_output(job_path, "pdfinfo", str(pdf)))
    except ToolError:
        return LETTER_SIZE


def numbered_outputs(directory: Path, prefix: str, suffix: str) -> list[Path]:
    """
    Files named ``<prefix><n><suffix>`` in page order.

    pdftoppm writes ``page-1.png`` or ``page-01.png`` (padding grows with the
    page count) and pdfcpu extract writes ``<stem>_page_<n>.pdf``; both are
    covered by choosing the right prefix. Sorting is numeric, so ``page-10``
    follows ``page-9``.
    """
    numbered = numbered_output_map(directory, prefix, suffix)
    return [numbered[page] for page in sorted(numbered)]


def numbered_output_map(directory: Path, prefix: str, suffix: str) -> dict[int, Path]:
    pattern = re.compile(re.escape(prefix) + r"(\d+)" + re.escape(suffix) + "$")
    return {
        int(match.group(1)): path
        for path in directory.iterdir()
        if (match := pattern.match(path.name)) and path.is_file()
    }


def extracted_pages(directory: Path) -> dict[int, Path]:
    """
    Single-page PDFs written by ``pdfcpu extract -mode page``, keyed by page number.

    pdfcpu names them ``<input stem>_page_<n>.pdf``.
    """
    return {
        int(match.group(1)): path
        for path in directory.iterdir()
        if (match := _EXTRACTED_PAGE_PATTERN.search(path.name)) and path.is_file()
    }


def find_output(directory: Path, candidates: Sequence[str]) -> Path:
    """
    Return the first candidate filename that exists in ``directory``.

    Raises:
        OutputNotFoundError: If none of the candidates were produced
    """
    for name in candidates:
        path = directory / name
        if path.is_file():
            return path
    raise OutputNotFoundError(candidates)


def require_output(path: Path) -> Path:
    if not path.is_file():
        raise OutputNotFoundError([path.name])
    return path


def pdfcpu_stamp_args(text: str, description: str, source: Path, destination: Path) -> list[str]:
    return ["stamp", "add", "-mode", "text", "--", text, description, str(source), str(destination)]


def libreoffice_convert(job_path: Path, source: Path) -> Path:
    """
    Convert an office document to PDF with LibreOffice.

    LibreOffice writes ``<source stem>.pdf`` into ``--outdir``.
    """
    run(job_path, "libreoffice", "--headless", "--nologo", "--convert-to", "pdf", "--outdir", str(job_path), str(source))
    return require_output(job_path / f"{source.stem}.pdf")


def run_script(job_path: Path, module: str, *args: str) -> None:
    """Run one of the bundled conversion scripts with the configured interpreter."""
    run(job_path, python_executable(), "-m", f"pdf_tools_backend.scripts.{module}", *args)


def join_pages(pages: Iterable[int]) -> str:
    return ",".join(str(page) for page in pages)
