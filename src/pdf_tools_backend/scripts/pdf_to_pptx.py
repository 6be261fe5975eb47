"""
Convert a PDF to a PowerPoint deck with one full-bleed slide image per page.

Pages are rasterized with pdf2image (poppler) and placed on blank 10 x 7.5
inch slides with python-pptx.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional

from pdf2image import convert_from_path
from pptx import Presentation
from pptx.util import Inches

SLIDE_DPI = 150
BLANK_LAYOUT = 6


def convert(pdf_path: str, pptx_path: str) -> int:
    work_dir = Path(pdf_path).resolve().parent
    images = convert_from_path(pdf_path, dpi=SLIDE_DPI)

    presentation = Presentation()
    presentation.slide_width = Inches(10)
    presentation.slide_height = Inches(7.5)

    for number, image in enumerate(images, start=1):
        slide = presentation.slides.add_slide(presentation.slide_layouts[BLANK_LAYOUT])
        image_path = work_dir / f"slide_{number}.png"
        image.save(image_path, "PNG")
        slide.shapes.add_picture(
            str(image_path),
            Inches(0),
            Inches(0),
            width=presentation.slide_width,
            height=presentation.slide_height,
        )

    presentation.save(pptx_path)
    return len(images)


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 2:
        print("usage: pdf_to_pptx <input.pdf> <output.pptx>", file=sys.stderr)
        return 2
    try:
        count = convert(args[0], args[1])
    except Exception as exc:  # noqa: BLE001
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Conversion successful ({count} slides)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
