from typing import Optional

from atlas_submittals.config import settings
from atlas_submittals.services.ingestion import IngestionService

# Global/Cached instance
_service_instance: Optional[IngestionService] = None


def get_ingestion_service() -> IngestionService:
    global _service_instance
    if _service_instance is None:
        _service_instance = IngestionService.from_settings(settings)
    return _service_instance


def set_ingestion_service(service: Optional[IngestionService]) -> None:
    """Swap the shared service (tests, or create_app with an explicit instance)."""
    global _service_instance
    _service_instance = service
