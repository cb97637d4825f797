from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

from atlas_submittals.domain.models import RecordKind


class AppSettings(BaseSettings):
    name: str = "Atlas Submittals"
    version: str = "1.0.0"


class PathSettings(BaseSettings):
    input_dir: Path = Path("./data/input")
    uploads_db_path: Path = Path("./data/uploads.db")
    fields_path: Path = Path("./config/fields.yaml")


class IngestionSettings(BaseSettings):
    scan_limit: int = 20  # rows searched for a header
    min_header_fields: int = 2
    serial_date_threshold: float = 40000  # spreadsheet serials below this are not dates
    staleness_seconds: float = 30.0
    refresh_interval_seconds: float = 30.0  # periodic refresh driven by the API process
    parse_timeout_seconds: Optional[float] = None
    status_inference_sample_rows: int = 20
    diagnostic_sample_size: int = 10


class DatasetSettings(BaseModel):
    """
    One logical dataset: a record kind read from one spreadsheet, with the
    status vocabulary of the project that maintains it.
    """
    kind: RecordKind
    project: str = "atlas"
    vocabulary: str = "atlas"
    file_name: str
    sheet_name: Optional[str] = None  # None -> first worksheet
    fallback_header_row: Optional[int] = None  # zero-based; None -> abort when no header found
    use_uploads: bool = True


class LoggingSettings(BaseSettings):
    log_requests: bool = True
    level: str = "INFO"


class SecuritySettings(BaseSettings):
    max_upload_mb: int = 15  # Hard cap for uploads (Content-Length guard)


def _default_datasets() -> dict[str, DatasetSettings]:
    return {
        "documents": DatasetSettings(
            kind=RecordKind.DOCUMENT,
            file_name="Document Submittal Log.xlsx",
            fallback_header_row=7,
        ),
        "shop_drawings": DatasetSettings(
            kind=RecordKind.SHOP_DRAWING,
            file_name="Shop Drawing Log.xlsx",
            fallback_header_row=8,
        ),
        "emct_documents": DatasetSettings(
            kind=RecordKind.DOCUMENT,
            project="emct",
            vocabulary="emct",
            file_name="Document Submittal Log - EMCT.xlsx",
        ),
        "emct_shop_drawings": DatasetSettings(
            kind=RecordKind.SHOP_DRAWING,
            project="emct",
            vocabulary="emct",
            file_name="Shop Drawing Log - EMCT.xlsx",
        ),
    }


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_nested_delimiter="__", env_file=".env", extra="ignore")
    app: AppSettings = AppSettings()
    paths: PathSettings = PathSettings()
    ingestion: IngestionSettings = IngestionSettings()
    datasets: dict[str, DatasetSettings] = _default_datasets()
    logging: LoggingSettings = LoggingSettings()
    security: SecuritySettings = SecuritySettings()

    def dataset_path(self, key: str) -> Path:
        return Path(self.paths.input_dir) / self.datasets[key].file_name

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        # Load from default path if exists
        default_path = Path("config/settings.yaml")
        path = config_path or (default_path if default_path.exists() else None)

        if not path:
            return cls()

        with open(path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

settings = Settings.load()
