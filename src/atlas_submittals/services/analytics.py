from collections import Counter
from typing import Any, Dict, List, Optional

from atlas_submittals.domain.models import CanonicalStatus, RecordKind, SubmittalRecord
from atlas_submittals.services.ingestion import IngestionService

UNDER_REVIEW = (CanonicalStatus.UR_ATJV.value, CanonicalStatus.UR_DAR.value)


class AnalyticsService:
    """
    Per-project aggregates over the cached record batches.
    Counts only; every call reads the current snapshots through the ingestion service.
    """

    def __init__(self, ingestion: IngestionService):
        self.ingestion = ingestion

    def _records(self, project: str, kind: Optional[RecordKind] = None) -> List[SubmittalRecord]:
        records: List[SubmittalRecord] = []
        for key in self.ingestion.project_datasets(project):
            if kind is not None and self.ingestion.datasets[key].kind != kind:
                continue
            records.extend(self.ingestion.get(key))
        return records

    @staticmethod
    def _status_counts(records: List[SubmittalRecord]) -> Dict[str, int]:
        return dict(Counter(r.current_status or CanonicalStatus.PENDING.value for r in records))

    def overview(self, project: str) -> Dict[str, Any]:
        documents = self._records(project, RecordKind.DOCUMENT)
        shop_drawings = self._records(project, RecordKind.SHOP_DRAWING)
        document_counts = self._status_counts(documents)

        pending = sum(1 for r in documents if r.is_pending)
        return {
            "project": project,
            "totalDocuments": len(documents),
            "totalShopDrawings": len(shop_drawings),
            "pendingDocuments": pending,
            "submittedDocuments": max(0, len(documents) - pending),
            "underReview": sum(document_counts.get(s, 0) for s in UNDER_REVIEW),
            "documentStatusCounts": document_counts,
            "shopDrawingStatusCounts": self._status_counts(shop_drawings),
            "vendorDistribution": self.vendor_distribution(project),
        }

    def status_distribution(self, project: str) -> Dict[str, int]:
        """Status counts across every record kind of the project."""
        return self._status_counts(self._records(project))

    def vendor_distribution(self, project: str, top_n: Optional[int] = None) -> Dict[str, int]:
        # Shop drawings carry no vendor column and count as Unknown.
        counts = Counter(getattr(r, "vendor", None) or "Unknown" for r in self._records(project))
        return dict(counts.most_common(top_n))
