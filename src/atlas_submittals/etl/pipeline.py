import dataclasses
import logging
from datetime import datetime
from typing import Callable, Optional

from atlas_submittals.config import DatasetSettings, IngestionSettings
from atlas_submittals.config_fields import FieldConfig, RecordSchema, field_config
from atlas_submittals.data.dto import Diagnostic, ExtractionResult, HeaderDetection, RawSheet
from atlas_submittals.data.sources import SpreadsheetSource
from atlas_submittals.data.workbook import decode_workbook, select_sheet
from atlas_submittals.etl.extractor import RecordExtractor
from atlas_submittals.etl.headers import STATUS_FIELD, HeaderDetector
from atlas_submittals.etl.status import StatusNormalizer, get_vocabulary
from atlas_submittals.exceptions import DataSourceError, HeaderNotFound, NoSheetsError

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """
    One parameterized pipeline for every dataset:
    bytes -> worksheet -> header row -> column map -> records + diagnostics.

    Sheet-level problems never raise; they end the run with an error
    diagnostic and no records, so callers can keep what they had.
    """

    def __init__(
        self,
        dataset: str,
        schema: RecordSchema,
        vocabulary: str = "atlas",
        project: str = "atlas",
        sheet_name: Optional[str] = None,
        fallback_header_row: Optional[int] = None,
        scan_limit: int = 20,
        min_header_fields: int = 2,
        serial_threshold: float = 40000,
        status_sample_rows: int = 20,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.dataset = dataset
        self.schema = schema
        self.vocabulary = get_vocabulary(vocabulary)
        self.sheet_name = sheet_name
        self.fallback_header_row = fallback_header_row
        self.status_sample_rows = status_sample_rows
        self.now = now
        self.detector = HeaderDetector(schema, scan_limit=scan_limit, min_fields=min_header_fields)
        self.extractor = RecordExtractor(
            schema,
            vocabulary=self.vocabulary,
            project=project,
            dataset=dataset,
            serial_threshold=serial_threshold,
            now=now,
        )

    @classmethod
    def from_settings(
        cls,
        key: str,
        dataset: DatasetSettings,
        ingestion: IngestionSettings,
        fields: FieldConfig = field_config,
        now: Callable[[], datetime] = datetime.now,
    ) -> "IngestionPipeline":
        return cls(
            dataset=key,
            schema=fields.schema_for(dataset.kind),
            vocabulary=dataset.vocabulary,
            project=dataset.project,
            sheet_name=dataset.sheet_name,
            fallback_header_row=dataset.fallback_header_row,
            scan_limit=ingestion.scan_limit,
            min_header_fields=ingestion.min_header_fields,
            serial_threshold=ingestion.serial_date_threshold,
            status_sample_rows=ingestion.status_inference_sample_rows,
            now=now,
        )

    def run(self, source: SpreadsheetSource) -> ExtractionResult:
        try:
            content = source.read_bytes()
        except DataSourceError as exc:
            logger.warning("source unavailable", extra={"dataset": self.dataset, "error": str(exc)})
            return self._aborted("source_unavailable", str(exc), source_name=source.name)
        return self.run_bytes(content, source_name=getattr(source, "last_used", None) or source.name)

    def run_bytes(self, content: bytes, source_name: str = "workbook") -> ExtractionResult:
        try:
            sheets = decode_workbook(content, source_name)
        except NoSheetsError as exc:
            return self._aborted("no_sheets", str(exc), source_name=source_name)
        except DataSourceError as exc:
            logger.warning("decode failed", extra={"dataset": self.dataset, "error": str(exc)})
            return self._aborted("decode_failed", str(exc), source_name=source_name)

        try:
            sheet = select_sheet(sheets, self.sheet_name)
        except DataSourceError as exc:
            return self._aborted("sheet_missing", str(exc), source_name=source_name)

        result = self.run_sheet(sheet)
        result.source_name = source_name
        return result

    def run_sheet(self, sheet: RawSheet) -> ExtractionResult:
        notes = []
        try:
            detection = self.detector.detect(sheet)
        except HeaderNotFound as exc:
            if self.fallback_header_row is None or self.fallback_header_row >= len(sheet):
                logger.warning(
                    "header not found",
                    extra={"dataset": self.dataset, "sheet": sheet.name, "best_row": exc.best_row},
                )
                return self._aborted("header_not_found", str(exc), sheet_name=sheet.name)
            detection = self.detector.fallback(sheet, self.fallback_header_row)
            notes.append(
                Diagnostic.warning(
                    "header_fallback",
                    f"{exc}; using configured header row {self.fallback_header_row + 1}",
                )
            )

        detection = self._with_inferred_status(sheet, detection, notes)
        result = self.extractor.extract(sheet, detection)
        result.diagnostics[:0] = notes
        return result

    def _with_inferred_status(self, sheet: RawSheet, detection: HeaderDetection, notes: list) -> HeaderDetection:
        if STATUS_FIELD in detection.column_map:
            return detection
        col = self.detector.infer_status_column(
            sheet, detection, StatusNormalizer(self.vocabulary), sample_rows=self.status_sample_rows
        )
        if col is None:
            return detection
        notes.append(
            Diagnostic.warning(
                "status_column_inferred",
                f"No status header found; using column {col + 1} based on its values",
            )
        )
        column_map = {**detection.column_map, STATUS_FIELD: col}
        return dataclasses.replace(detection, column_map=column_map)

    def _aborted(
        self,
        code: str,
        message: str,
        source_name: Optional[str] = None,
        sheet_name: Optional[str] = None,
    ) -> ExtractionResult:
        return ExtractionResult(
            dataset=self.dataset,
            diagnostics=[Diagnostic.error(code, message)],
            sheet_name=sheet_name,
            source_name=source_name,
            finished_at=self.now(),
        )
