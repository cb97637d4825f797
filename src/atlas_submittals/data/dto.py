from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from atlas_submittals.domain.models import SubmittalRecord

ColumnMap = Dict[str, int]


class Severity(str, Enum):
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Diagnostic:
    """One warning or error from an extraction run. row_number is 1-based; None means sheet-level."""
    row_number: Optional[int]
    severity: Severity
    code: str
    message: str

    @classmethod
    def warning(cls, code: str, message: str, row_number: Optional[int] = None) -> "Diagnostic":
        return cls(row_number=row_number, severity=Severity.WARNING, code=code, message=message)

    @classmethod
    def error(cls, code: str, message: str, row_number: Optional[int] = None) -> "Diagnostic":
        return cls(row_number=row_number, severity=Severity.ERROR, code=code, message=message)

    @property
    def is_sheet_level(self) -> bool:
        return self.row_number is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rowNumber": self.row_number,
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
        }


@dataclass(frozen=True)
class RawSheet:
    """Verbatim cell grid of one worksheet."""
    name: str
    rows: Sequence[Sequence[Any]]

    def __len__(self) -> int:
        return len(self.rows)

    def row(self, index: int) -> Sequence[Any]:
        if 0 <= index < len(self.rows):
            return self.rows[index] or ()
        return ()

    @staticmethod
    def cell(row: Sequence[Any], index: Optional[int]) -> Any:
        if index is None or index < 0 or index >= len(row):
            return None
        return row[index]


@dataclass(frozen=True)
class HeaderDetection:
    header_row_index: int
    column_map: ColumnMap
    headers: Sequence[Any] = ()
    fallback: bool = False


@dataclass
class ExtractionResult:
    dataset: str
    records: List[SubmittalRecord] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    sheet_name: Optional[str] = None
    header_row_index: Optional[int] = None
    column_map: ColumnMap = field(default_factory=dict)
    source_name: Optional[str] = None
    finished_at: Optional[datetime] = None

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.WARNING]

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def failed(self) -> bool:
        """True when a sheet-level error aborted the run."""
        return any(d.severity == Severity.ERROR and d.is_sheet_level for d in self.diagnostics)
