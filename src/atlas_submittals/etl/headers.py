import logging
import re
from typing import Any, List, Optional, Sequence

from atlas_submittals.config_fields import RecordSchema
from atlas_submittals.data.dto import ColumnMap, HeaderDetection, RawSheet
from atlas_submittals.etl.status import StatusNormalizer
from atlas_submittals.exceptions import HeaderNotFound

logger = logging.getLogger(__name__)

DEFAULT_SCAN_LIMIT = 20
STATUS_FIELD = "currentStatus"


def header_text(value: Any) -> str:
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()


class HeaderDetector:
    """
    Finds the header row of a loosely structured log sheet.
    Metadata rows, logos and blank lines above the real header are common,
    so every row within the scan limit is tried against the field patterns.
    """

    def __init__(self, schema: RecordSchema, scan_limit: int = DEFAULT_SCAN_LIMIT, min_fields: int = 2):
        self.schema = schema
        self.scan_limit = scan_limit
        self.min_fields = min_fields

    def build_column_map(self, row: Sequence[Any]) -> ColumnMap:
        texts = [header_text(cell) for cell in row]
        column_map: ColumnMap = {}
        for field_name, spec in self.schema.fields.items():
            for col_idx, text in enumerate(texts):
                if text and spec.matches(text):
                    column_map[field_name] = col_idx
                    break
        return column_map

    def qualifies(self, column_map: ColumnMap) -> bool:
        if len(column_map) < self.min_fields:
            return False
        return all(any(name in column_map for name in group) for group in self.schema.anchors)

    def detect(self, sheet: RawSheet) -> HeaderDetection:
        limit = min(len(sheet), self.scan_limit)
        best_row: Optional[int] = None
        best_size = 0
        for idx in range(limit):
            row = sheet.row(idx)
            if not row:
                continue
            column_map = self.build_column_map(row)
            if self.qualifies(column_map):
                logger.info(
                    "header detected",
                    extra={"sheet": sheet.name, "row": idx, "fields": sorted(column_map)},
                )
                return HeaderDetection(header_row_index=idx, column_map=column_map, headers=tuple(row))
            if len(column_map) > best_size:
                best_row, best_size = idx, len(column_map)

        raise HeaderNotFound(
            f"No header row found in the first {limit} rows of '{sheet.name}'",
            scanned_rows=limit,
            best_row=best_row,
        )

    def fallback(self, sheet: RawSheet, row_index: int) -> HeaderDetection:
        row = sheet.row(row_index)
        return HeaderDetection(
            header_row_index=row_index,
            column_map=self.build_column_map(row),
            headers=tuple(row),
            fallback=True,
        )

    def infer_status_column(
        self,
        sheet: RawSheet,
        detection: HeaderDetection,
        normalizer: StatusNormalizer,
        sample_rows: int = 20,
    ) -> Optional[int]:
        """
        Look for a status column by content when no header named one.
        Returns the first unmapped column whose sampled values hit the vocabulary exactly.
        """
        if STATUS_FIELD in detection.column_map:
            return detection.column_map[STATUS_FIELD]

        start = detection.header_row_index + 1
        sample: List[Sequence[Any]] = [sheet.row(i) for i in range(start, min(len(sheet), start + sample_rows))]
        width = max((len(r) for r in sample), default=0)
        claimed = set(detection.column_map.values())
        for col_idx in range(width):
            if col_idx in claimed:
                continue
            values = [RawSheet.cell(r, col_idx) for r in sample]
            if normalizer.looks_like_status_column(values):
                return col_idx
        return None
