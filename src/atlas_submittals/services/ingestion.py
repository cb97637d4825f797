import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from atlas_submittals.config import DatasetSettings, IngestionSettings, Settings
from atlas_submittals.config_fields import FieldConfig, field_config, load_field_config
from atlas_submittals.data.dto import Diagnostic
from atlas_submittals.data.sources import FallbackSource, FileSource, SpreadsheetSource, UploadSource
from atlas_submittals.data.storage import UploadStore
from atlas_submittals.domain.models import SubmittalRecord
from atlas_submittals.etl.pipeline import IngestionPipeline
from atlas_submittals.exceptions import ConfigError, UnknownDatasetError, UnknownProjectError
from atlas_submittals.services.cache import DatasetCache, RefreshSummary

logger = logging.getLogger(__name__)


@dataclass
class UploadSummary:
    dataset: str
    file_name: str
    accepted: bool
    record_count: int
    warning_count: int
    error_count: int
    sample: List[Dict[str, Any]] = field(default_factory=list)
    upload_id: Optional[int] = None
    refresh: Optional[RefreshSummary] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dataset": self.dataset,
            "fileName": self.file_name,
            "accepted": self.accepted,
            "recordCount": self.record_count,
            "warningCount": self.warning_count,
            "errorCount": self.error_count,
            "sample": self.sample,
            "uploadId": self.upload_id,
            "refresh": self.refresh.to_dict() if self.refresh else None,
        }


class IngestionService:
    """
    Registry of configured datasets, each with its own pipeline and cache.
    This is the only surface the API and CLI talk to.
    """

    def __init__(
        self,
        datasets: Dict[str, DatasetSettings],
        ingestion: IngestionSettings,
        input_dir: Path,
        store: Optional[UploadStore] = None,
        fields: FieldConfig = field_config,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.datasets = dict(datasets)
        self.ingestion = ingestion
        self.input_dir = Path(input_dir)
        self.store = store
        self.pipelines: Dict[str, IngestionPipeline] = {}
        self.caches: Dict[str, DatasetCache] = {}
        for key, ds in self.datasets.items():
            pipeline = IngestionPipeline.from_settings(key, ds, ingestion, fields=fields, now=clock)
            source = self._build_source(key, ds)
            self.pipelines[key] = pipeline
            self.caches[key] = DatasetCache(
                key,
                loader=lambda p=pipeline, s=source: p.run(s),
                staleness_seconds=ingestion.staleness_seconds,
                clock=clock,
                parse_timeout=ingestion.parse_timeout_seconds,
            )

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] = datetime.now) -> "IngestionService":
        store = UploadStore(settings.paths.uploads_db_path)
        return cls(
            datasets=settings.datasets,
            ingestion=settings.ingestion,
            input_dir=settings.paths.input_dir,
            store=store,
            fields=load_field_config(settings.paths.fields_path),
            clock=clock,
        )

    def _build_source(self, key: str, ds: DatasetSettings) -> SpreadsheetSource:
        file_source = FileSource(self.input_dir / ds.file_name)
        if self.store is not None and ds.use_uploads:
            return FallbackSource([UploadSource(self.store, key), file_source])
        return file_source

    def _cache(self, key: str) -> DatasetCache:
        try:
            return self.caches[key]
        except KeyError:
            raise UnknownDatasetError(key)

    def get(self, key: str) -> List[SubmittalRecord]:
        return list(self._cache(key).get())

    def projects(self) -> List[str]:
        return sorted({ds.project for ds in self.datasets.values()})

    def project_datasets(self, project: str) -> List[str]:
        keys = [key for key, ds in self.datasets.items() if ds.project == project]
        if not keys:
            raise UnknownProjectError(project)
        return keys

    def force_refresh(self, key: str) -> RefreshSummary:
        return self._cache(key).force_refresh()

    def diagnostics(self, key: str) -> List[Diagnostic]:
        return list(self._cache(key).diagnostics())

    def refresh_stale(self) -> List[RefreshSummary]:
        """Refresh every stale dataset that is not already refreshing."""
        summaries = []
        for key, cache in self.caches.items():
            if not cache.is_stale():
                continue
            summary = cache.refresh_if_idle()
            if summary is not None:
                summaries.append(summary)
        return summaries

    def status(self) -> List[Dict[str, Any]]:
        out = []
        for key, cache in self.caches.items():
            ds = self.datasets[key]
            snap = cache.snapshot
            out.append(
                {
                    "dataset": key,
                    "kind": ds.kind.value,
                    "project": ds.project,
                    "state": cache.state.value,
                    "recordCount": len(snap.records),
                    "pendingCount": sum(1 for r in snap.records if r.is_pending),
                    "diagnosticCount": len(snap.diagnostics),
                    "refreshedAt": snap.refreshed_at.isoformat() if snap.refreshed_at else None,
                    "attemptedAt": snap.attempted_at.isoformat() if snap.attempted_at else None,
                    "stale": cache.is_stale(),
                    "source": snap.source_name,
                }
            )
        return out

    def upload_history(self, key: str, limit: int = 20) -> List[Dict[str, Any]]:
        self._cache(key)
        if self.store is None:
            return []
        return [u.to_dict() for u in self.store.history(key, limit=limit)]

    def accept_upload(
        self,
        key: str,
        file_name: str,
        content: bytes,
        uploaded_by: Optional[str] = None,
    ) -> UploadSummary:
        """
        Dry-run the bytes through the dataset's pipeline; only a workbook
        without sheet-level errors becomes the active upload and is loaded.
        """
        cache = self._cache(key)
        if self.store is None or not self.datasets[key].use_uploads:
            raise ConfigError(f"Uploads are not enabled for dataset '{key}'")

        result = self.pipelines[key].run_bytes(content, source_name=file_name)
        sample_size = self.ingestion.diagnostic_sample_size
        summary = UploadSummary(
            dataset=key,
            file_name=file_name,
            accepted=not result.failed,
            record_count=len(result.records),
            warning_count=len(result.warnings),
            error_count=len(result.errors),
            sample=[d.to_dict() for d in result.diagnostics[:sample_size]],
        )
        if result.failed:
            logger.warning(
                "upload rejected",
                extra={"dataset": key, "file_name": file_name, "errors": summary.error_count},
            )
            return summary

        upload = self.store.save_upload(key, file_name, content, uploaded_by=uploaded_by)
        summary.upload_id = upload.id
        summary.refresh = cache.force_refresh()
        self.store.set_record_count(upload.id, summary.refresh.record_count)
        logger.info(
            "upload accepted",
            extra={"dataset": key, "file_name": file_name, "records": summary.record_count, "upload_id": upload.id},
        )
        return summary
