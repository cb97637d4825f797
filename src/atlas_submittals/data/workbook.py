import logging
from io import BytesIO
from typing import List, Optional

import pandas as pd
from openpyxl import load_workbook

from atlas_submittals.data.dto import RawSheet
from atlas_submittals.exceptions import DataSourceError, NoSheetsError

logger = logging.getLogger(__name__)

ZIP_SIGNATURE = b"PK\x03\x04"  # .xlsx / .xlsm
OLE_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"  # legacy .xls


def decode_workbook(content: bytes, source_name: str = "workbook") -> List[RawSheet]:
    """
    Decode raw spreadsheet bytes into verbatim cell grids, one per worksheet.
    Cached formula results are read, never the formulas themselves.
    """
    if not content:
        raise NoSheetsError(f"{source_name}: file is empty")

    if content.startswith(ZIP_SIGNATURE):
        sheets = _decode_xlsx(content, source_name)
    elif content.startswith(OLE_SIGNATURE):
        sheets = _decode_xls(content, source_name)
    else:
        raise DataSourceError(f"{source_name}: not a recognized spreadsheet format")

    if not sheets:
        raise NoSheetsError(f"{source_name}: workbook has no worksheets")
    logger.info(
        "workbook decoded",
        extra={"source": source_name, "sheets": [s.name for s in sheets]},
    )
    return sheets


def select_sheet(sheets: List[RawSheet], sheet_name: Optional[str] = None) -> RawSheet:
    if not sheets:
        raise NoSheetsError("workbook has no worksheets")
    if sheet_name is None:
        return sheets[0]
    for sheet in sheets:
        if sheet.name == sheet_name:
            return sheet
    # Tolerate case and whitespace drift in configured names
    wanted = sheet_name.strip().lower()
    for sheet in sheets:
        if sheet.name.strip().lower() == wanted:
            return sheet
    raise DataSourceError(
        f"Worksheet '{sheet_name}' not found. Available: {', '.join(s.name for s in sheets)}"
    )


def _decode_xlsx(content: bytes, source_name: str) -> List[RawSheet]:
    try:
        wb = load_workbook(BytesIO(content), data_only=True)
    except Exception as exc:
        raise DataSourceError(f"{source_name}: could not open workbook: {exc}") from exc
    # worksheets excludes chartsheets
    return [
        RawSheet(name=ws.title, rows=[tuple(r) for r in ws.iter_rows(values_only=True)])
        for ws in wb.worksheets
    ]


def _decode_xls(content: bytes, source_name: str) -> List[RawSheet]:
    try:
        frames = pd.read_excel(BytesIO(content), sheet_name=None, header=None, engine="xlrd")
    except Exception as exc:
        raise DataSourceError(f"{source_name}: could not open legacy workbook: {exc}") from exc
    sheets = []
    for name, df in frames.items():
        rows = [
            tuple(None if pd.isna(v) else v for v in row)
            for row in df.itertuples(index=False, name=None)
        ]
        sheets.append(RawSheet(name=str(name), rows=rows))
    return sheets
