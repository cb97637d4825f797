from atlas_submittals.services.analytics import AnalyticsService
from atlas_submittals.services.cache import CacheState, DatasetCache, RefreshSummary, Snapshot
from atlas_submittals.services.ingestion import IngestionService, UploadSummary

__all__ = [
    "AnalyticsService",
    "CacheState",
    "DatasetCache",
    "IngestionService",
    "RefreshSummary",
    "Snapshot",
    "UploadSummary",
]
