import hashlib
import logging
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from atlas_submittals.config_fields import RecordSchema
from atlas_submittals.data.dto import ColumnMap, Diagnostic, ExtractionResult, HeaderDetection, RawSheet
from atlas_submittals.domain.models import DocumentRecord, RecordKind, ShopDrawingRecord, SubmittalRecord
from atlas_submittals.etl.headers import header_text
from atlas_submittals.etl.status import ProjectVocabulary, StatusNormalizer
from atlas_submittals.etl.values import (
    DEFAULT_SERIAL_THRESHOLD,
    clean_text,
    is_blank,
    parse_date,
    parse_priority,
)

logger = logging.getLogger(__name__)

# Canonical field name -> record attribute, per kind.
COMMON_ATTRS = {"discipline": "discipline", "system": "system"}
KIND_ATTRS: Dict[RecordKind, Dict[str, str]] = {
    RecordKind.DOCUMENT: {
        "vendor": "vendor",
        "documentType": "document_type",
        "category": "category",
    },
    RecordKind.SHOP_DRAWING: {
        "drawingType": "drawing_type",
        "subSystem": "sub_system",
        "projectNumber": "project_number",
        "building": "building",
        "floor": "floor",
    },
}
RECORD_TYPES = {RecordKind.DOCUMENT: DocumentRecord, RecordKind.SHOP_DRAWING: ShopDrawingRecord}
DEFAULT_SENTINELS = {"discipline": "General", "system": "Unknown"}
# Fields whose absence is not filled from a text default.
VALUE_FALLBACKS = {
    "currentStatus": "'Pending'",
    "submissionDate": "the extraction time",
    "priority": "'medium'",
    "serialNumber": "no serial number",
}


class RecordExtractor:
    """
    Turns the data rows under a detected header into typed submittal records.
    Rows are processed independently: a bad row becomes a diagnostic, never a failed batch.
    """

    def __init__(
        self,
        schema: RecordSchema,
        vocabulary: ProjectVocabulary | str = "atlas",
        project: str = "atlas",
        dataset: Optional[str] = None,
        serial_threshold: float = DEFAULT_SERIAL_THRESHOLD,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.schema = schema
        self.status = StatusNormalizer(vocabulary)
        self.project = project
        self.dataset = dataset or schema.kind.value
        self.serial_threshold = serial_threshold
        self.now = now
        self.attrs = {**COMMON_ATTRS, **KIND_ATTRS[schema.kind]}

    def extract(self, sheet: RawSheet, detection: HeaderDetection) -> ExtractionResult:
        column_map = detection.column_map
        extracted_at = self.now()
        result = ExtractionResult(
            dataset=self.dataset,
            sheet_name=sheet.name,
            header_row_index=detection.header_row_index,
            column_map=dict(column_map),
        )
        result.diagnostics.extend(self._missing_columns(column_map))

        used_ids: set[str] = set()
        for idx in range(detection.header_row_index + 1, len(sheet)):
            row = sheet.row(idx)
            row_number = idx + 1
            if all(is_blank(cell) for cell in row):
                continue
            echo = self._header_echo(row, detection)
            if echo:
                result.diagnostics.append(
                    Diagnostic.warning("header_echo", f"Skipped repeated header row ({echo})", row_number)
                )
                continue

            record_id = len(result.records) + 1
            try:
                record, row_diags = self._build_record(row, column_map, row_number, record_id, extracted_at, used_ids)
            except Exception as exc:
                logger.warning(
                    "row extraction failed",
                    extra={"dataset": self.dataset, "row": row_number, "error": str(exc)},
                )
                result.diagnostics.append(
                    Diagnostic.error("row_failed", f"Row could not be processed: {exc}", row_number)
                )
                continue
            used_ids.add(record.external_id)
            result.records.append(record)
            result.diagnostics.extend(row_diags)

        result.diagnostics.extend(self._duplicate_ids(result.records))
        if not result.records:
            result.diagnostics.append(
                Diagnostic.error("no_data_rows", f"No data rows found below header row {detection.header_row_index + 1}")
            )
        result.finished_at = extracted_at
        logger.info(
            "extraction finished",
            extra={
                "dataset": self.dataset,
                "records": len(result.records),
                "warnings": len(result.warnings),
                "errors": len(result.errors),
            },
        )
        return result

    def _build_record(
        self,
        row: Sequence[Any],
        column_map: ColumnMap,
        row_number: int,
        record_id: int,
        extracted_at: datetime,
        used_ids: set[str],
    ) -> Tuple[SubmittalRecord, List[Diagnostic]]:
        diags: List[Diagnostic] = []

        def cell(name: str) -> Any:
            return RawSheet.cell(row, column_map.get(name))

        values: Dict[str, Any] = {}
        for name, attr in self.attrs.items():
            values[attr] = self._text_field(name, cell(name))

        title = self._title(cell)
        if title is None:
            title = self.schema.title_placeholder.format(n=record_id)
            diags.append(Diagnostic.warning("title_placeholder", f"Blank title; using '{title}'", row_number))

        status = self.status.normalize(cell("currentStatus"))
        if not status.recognized:
            diags.append(
                Diagnostic.warning("unrecognized_status", f"Unrecognized status code '{status.value}'", row_number)
            )

        raw_date = cell("submissionDate")
        submitted = parse_date(raw_date, now=lambda: extracted_at, serial_threshold=self.serial_threshold)
        if submitted.substituted:
            diags.append(
                Diagnostic.warning(
                    "date_fallback",
                    f"{submitted.reason} (raw value {raw_date!r}); using extraction time",
                    row_number,
                )
            )

        raw_priority = cell("priority")
        priority, valid = parse_priority(raw_priority)
        if not valid:
            diags.append(
                Diagnostic.warning("invalid_priority", f"Invalid priority {raw_priority!r}; using 'medium'", row_number)
            )

        serial = clean_text(cell("serialNumber"))
        identifier = clean_text(cell(self.schema.identifier_field)) if self.schema.identifier_field else None
        if self.schema.kind == RecordKind.SHOP_DRAWING:
            values["drawing_number"] = identifier or self.schema.default_for("drawingNumber")
        external_id = identifier or self._synthesize_id(serial, title, values, used_ids)

        record = RECORD_TYPES[self.schema.kind](
            id=record_id,
            external_id=external_id,
            project=self.project,
            title=title,
            serial_number=serial,
            current_status=status.value,
            submitted_date=submitted.value,
            priority=priority,
            last_updated=extracted_at,
            source_row=row_number,
            **values,
        )
        return record, diags

    def _text_field(self, name: str, raw: Any) -> str:
        spec = self.schema.field(name)
        default = self.schema.default_for(name, DEFAULT_SENTINELS.get(name, "N/A"))
        text = clean_text(raw)
        if text is None:
            return default
        return spec.canonical_value(text) if spec else text

    def _title(self, cell: Callable[[str], Any]) -> Optional[str]:
        for name in [self.schema.title_field, *self.schema.title_fallback_fields]:
            text = clean_text(cell(name))
            if text:
                return text
        return None

    def _synthesize_id(self, serial: Optional[str], title: str, values: Dict[str, Any], used: set[str]) -> str:
        # Content-derived so unchanged rows keep their id across refreshes.
        parts = [self.schema.kind.value, self.project, serial or "", title]
        parts.extend(f"{k}={values[k]}" for k in sorted(values))
        digest = hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()[:10].upper()
        base = f"{self.schema.external_id_prefix}-{digest}"
        candidate, n = base, 1
        while candidate in used:
            n += 1
            candidate = f"{base}-{n}"
        return candidate

    def _header_echo(self, row: Sequence[Any], detection: HeaderDetection) -> Optional[str]:
        for name in self.schema.echo_fields:
            col = detection.column_map.get(name)
            if col is None:
                continue
            text = header_text(RawSheet.cell(row, col))
            if not text:
                continue
            label = header_text(RawSheet.cell(detection.headers, col))
            if text.lower() == label.lower():
                return f"{name}='{text}'"
        return None

    def _missing_columns(self, column_map: ColumnMap) -> List[Diagnostic]:
        diags = []
        for name in self.schema.fields:
            if name in column_map:
                continue
            diags.append(
                Diagnostic.warning(
                    "missing_column", f"Column '{name}' not found; defaulting to {self._fallback_label(name)}"
                )
            )
        return diags

    def _fallback_label(self, name: str) -> str:
        if name in VALUE_FALLBACKS:
            return VALUE_FALLBACKS[name]
        if name == self.schema.identifier_field:
            return "a content-derived id"
        if name == self.schema.title_field:
            return "the title fallback"
        return f"'{self.schema.default_for(name, DEFAULT_SENTINELS.get(name, 'N/A'))}'"

    @staticmethod
    def _duplicate_ids(records: List[SubmittalRecord]) -> List[Diagnostic]:
        counts = Counter(r.external_id for r in records)
        diags = []
        seen: set[str] = set()
        for record in records:
            if counts[record.external_id] < 2:
                continue
            if record.external_id in seen:
                diags.append(
                    Diagnostic.warning(
                        "duplicate_external_id",
                        f"Duplicate id '{record.external_id}' ({counts[record.external_id]} rows)",
                        record.source_row,
                    )
                )
            seen.add(record.external_id)
        return diags
