"""
Exception taxonomy shared by the job store, the tool invoker and the handlers.

Handlers translate these into ``HTTPException`` with a short, operation
specific message; ``status_code`` records the HTTP status each family maps to.
"""

from __future__ import annotations

from typing import Sequence


class PdfToolsError(Exception):
    status_code = 500


class ProcessingError(PdfToolsError):
    """Anything that went wrong after the request was accepted."""


class ToolError(ProcessingError):
    def __init__(self, program: str, message: str, returncode: int | None = None, output: str = "") -> None:
        super().__init__(f"{program}: {message}")
        self.program = program
        self.returncode = returncode
        self.output = output


class ParseError(ProcessingError):
    """A tool succeeded but its output lacked the expected token."""


class OutputNotFoundError(ProcessingError):
    def __init__(self, candidates: Sequence[str]) -> None:
        super().__init__(f"output not found among candidates: {', '.join(candidates)}")
        self.candidates = list(candidates)


class PathTraversalError(PdfToolsError):
    status_code = 403


class UploadTooLargeError(PdfToolsError):
    status_code = 400
