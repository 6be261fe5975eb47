"""Convert a PDF to a Word document with pdf2docx."""

from __future__ import annotations

import sys
from typing import List, Optional

from pdf2docx import Converter


def convert(pdf_path: str, docx_path: str) -> None:
    converter = Converter(pdf_path)
    try:
        converter.convert(docx_path, start=0, end=None)
    finally:
        converter.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 2:
        print("usage: pdf_to_docx <input.pdf> <output.docx>", file=sys.stderr)
        return 2
    try:
        convert(args[0], args[1])
    except Exception as exc:  # noqa: BLE001
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print("Conversion successful")
    return 0


if __name__ == "__main__":
    sys.exit(main())
