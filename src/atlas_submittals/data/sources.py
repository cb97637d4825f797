from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, Sequence, runtime_checkable

from atlas_submittals.data.storage import UploadStore
from atlas_submittals.exceptions import DataSourceError


@runtime_checkable
class SpreadsheetSource(Protocol):
    """Anything that can hand over the current bytes of one spreadsheet."""

    name: str

    def read_bytes(self) -> bytes:
        ...


class FileSource:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.name = self.path.name

    def available(self) -> bool:
        return self.path.is_file()

    def read_bytes(self) -> bytes:
        if not self.path.is_file():
            raise DataSourceError(f"Input file not found: {self.path}")
        try:
            return self.path.read_bytes()
        except OSError as exc:
            raise DataSourceError(f"Could not read {self.path}: {exc}") from exc


class BytesSource:
    def __init__(self, content: bytes, name: str = "upload.xlsx"):
        self.content = content
        self.name = name

    def available(self) -> bool:
        return True

    def read_bytes(self) -> bytes:
        return self.content


class UploadSource:
    """The dataset's active upload in the upload store."""

    def __init__(self, store: UploadStore, dataset: str):
        self.store = store
        self.dataset = dataset
        self.name = f"upload:{dataset}"

    def available(self) -> bool:
        return self.store.active_upload(self.dataset) is not None

    def read_bytes(self) -> bytes:
        upload = self.store.active_upload(self.dataset)
        if upload is None or upload.content is None:
            raise DataSourceError(f"No active upload for dataset '{self.dataset}'")
        self.name = f"upload:{upload.file_name}"
        return upload.content


class FallbackSource:
    """
    Reads from the first available source, e.g. the active upload before the
    configured file on disk.
    """

    def __init__(self, sources: Sequence[SpreadsheetSource]):
        self.sources = list(sources)
        self.name = " | ".join(s.name for s in self.sources)
        self.last_used: Optional[str] = None

    def read_bytes(self) -> bytes:
        errors = []
        for source in self.sources:
            available = getattr(source, "available", None)
            if available is not None and not available():
                errors.append(f"{source.name}: unavailable")
                continue
            try:
                content = source.read_bytes()
            except DataSourceError as exc:
                errors.append(str(exc))
                continue
            self.last_used = source.name
            return content
        raise DataSourceError("No spreadsheet source available: " + "; ".join(errors))
