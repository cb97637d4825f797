from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CanonicalStatus(str, Enum):
    """
    Closed set of review codes produced by the status normalizer.
    Unrecognized tokens pass through as plain strings next to these values.
    """
    CODE1 = "CODE1"  # Approved
    CODE2 = "CODE2"  # Approved with comments
    CODE3 = "CODE3"  # Revise and resubmit
    CODE4 = "CODE4"  # Rejected
    UR_ATJV = "UR(ATJV)"  # Under review with ATJV
    AR_ATJV = "AR(ATJV)"  # Advance review with ATJV
    UR_DAR = "UR(DAR)"  # Under review with DAR
    RTN_ATLS = "RTN(ATLS)"  # Returned to Atlas
    RTN_AS = "RTN(AS)"  # Returned as submitted
    PENDING = "Pending"


class RecordKind(str, Enum):
    DOCUMENT = "document"
    SHOP_DRAWING = "shop_drawing"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SubmittalRecord(BaseModel):
    """
    Shared shape of a normalized submittal row.
    Serialized with camelCase aliases for the dashboard.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    external_id: str
    kind: RecordKind
    project: str
    title: str
    serial_number: Optional[str] = None
    discipline: str = "General"
    system: str = "Unknown"
    current_status: str = CanonicalStatus.PENDING.value
    submitted_date: datetime
    priority: Priority = Priority.MEDIUM
    last_updated: datetime
    source_row: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.current_status == CanonicalStatus.PENDING.value


class DocumentRecord(SubmittalRecord):
    kind: Literal[RecordKind.DOCUMENT] = RecordKind.DOCUMENT
    vendor: str = "Unknown"
    document_type: str = "Unknown"
    category: str = "General"


class ShopDrawingRecord(SubmittalRecord):
    kind: Literal[RecordKind.SHOP_DRAWING] = RecordKind.SHOP_DRAWING
    drawing_number: str = "N/A"
    drawing_type: str = "General"
    sub_system: str = "N/A"
    project_number: str = "N/A"
    building: str = "N/A"
    floor: str = "N/A"


