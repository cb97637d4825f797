from datetime import datetime, timedelta
from io import BytesIO
from pathlib import Path
from typing import Iterable, Optional, Sequence

import pytest
from openpyxl import Workbook

from atlas_submittals.config_fields import default_field_config
from atlas_submittals.data.dto import RawSheet

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0)

DOC_HEADER = ["S.N", "Document No.", "Document Name", "Vendor", "Category", "Status", "Submission Date", "Priority"]


class FakeClock:
    def __init__(self, start: datetime = FIXED_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def build_workbook(rows: Iterable[Sequence], title: str = "Log", extra_sheets: Optional[dict] = None) -> Workbook:
    wb = Workbook()
    ws = wb.active
    ws.title = title
    for r_idx, row in enumerate(rows, start=1):
        for c_idx, value in enumerate(row, start=1):
            if value is not None:
                ws.cell(row=r_idx, column=c_idx, value=value)
    for name, sheet_rows in (extra_sheets or {}).items():
        extra = wb.create_sheet(name)
        for row in sheet_rows:
            extra.append(list(row))
    return wb


def write_workbook(path: Path, rows: Iterable[Sequence], title: str = "Log", **kwargs) -> Path:
    build_workbook(rows, title=title, **kwargs).save(path)
    return path


def workbook_bytes(rows: Iterable[Sequence], title: str = "Log", **kwargs) -> bytes:
    buffer = BytesIO()
    build_workbook(rows, title=title, **kwargs).save(buffer)
    return buffer.getvalue()


def document_rows() -> list:
    return [
        ["Atlas Tower - Document Submittal Log", None, None],
        ["Contract: AT-2023-114", None, None],
        [],
        DOC_HEADER,
        [1, "DOC-001", "Design Spec", "Acme", "Project submittal", "Code 1", 45000, "High"],
        [2, "DOC-002", "Fire Alarm Shop Manual", "Blaze Ltd", "Close Out Submittal", "UR (ATJV)", 45010, None],
        [3, "DOC-003", "Method Statement", "Acme", None, "RTN (AS)", "2023-04-02", "low"],
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fields():
    return default_field_config()


@pytest.fixture
def doc_schema(fields):
    return fields.documents


@pytest.fixture
def shop_schema(fields):
    return fields.shop_drawings


@pytest.fixture
def doc_sheet():
    return RawSheet(name="Log", rows=[tuple(r) for r in document_rows()])


@pytest.fixture
def documents_file(tmp_path):
    return write_workbook(tmp_path / "Document Submittal Log.xlsx", document_rows())
