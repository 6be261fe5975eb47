"""Extract the tables of a PDF into an Excel workbook, one sheet per table."""

from __future__ import annotations

import sys
from typing import List, Optional

import pandas as pd
import tabula


def convert(pdf_path: str, xlsx_path: str) -> int:
    tables = tabula.read_pdf(pdf_path, pages="all", multiple_tables=True)
    if not tables:
        # An empty workbook still opens in spreadsheet applications.
        pd.DataFrame().to_excel(xlsx_path, index=False)
        return 0
    with pd.ExcelWriter(xlsx_path, engine="openpyxl") as writer:
        for index, table in enumerate(tables, start=1):
            table.to_excel(writer, sheet_name=f"Sheet{index}", index=False)
    return len(tables)


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 2:
        print("usage: pdf_to_xlsx <input.pdf> <output.xlsx>", file=sys.stderr)
        return 2
    try:
        count = convert(args[0], args[1])
    except Exception as exc:  # noqa: BLE001
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Conversion successful ({count} tables)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
