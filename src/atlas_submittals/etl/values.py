"""
Cell-level value normalization: trimmed text, spreadsheet dates and priorities.

Every function here is total. Bad input never raises; callers get a value
plus enough information to record what was substituted.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

import pandas as pd

from atlas_submittals.domain.models import Priority

# Spreadsheet day zero (Lotus 1900 leap-year bug included).
SERIAL_EPOCH = datetime(1899, 12, 30)
DEFAULT_SERIAL_THRESHOLD = 40000

PLACEHOLDER_TOKENS = {"", "---", "--", "-", "null", "undefined", "none", "nan", "nat"}
NO_DATE_TOKENS = PLACEHOLDER_TOKENS | {"n/a", "na", "tbd", "tba", "#n/a", "#ref!", "#value!"}

_DIGITS_RE = re.compile(r"^-?\d+(\.\d+)?$")


@dataclass(frozen=True)
class DateResult:
    value: datetime
    substituted: bool = False
    reason: Optional[str] = None


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def clean_text(value: Any) -> Optional[str]:
    """
    Render a cell as trimmed text. Integral floats lose their trailing '.0'
    (serial numbers often come back as floats); placeholders become None.
    """
    if is_blank(value):
        return None
    if isinstance(value, bool):
        text = "TRUE" if value else "FALSE"
    elif isinstance(value, float) and value.is_integer():
        text = str(int(value))
    elif isinstance(value, datetime):
        text = value.isoformat()
    else:
        text = str(value)
    text = re.sub(r"\s+", " ", text).strip()
    if text.lower() in PLACEHOLDER_TOKENS:
        return None
    return text


def parse_date(
    raw: Any,
    now: Optional[Callable[[], datetime]] = None,
    serial_threshold: float = DEFAULT_SERIAL_THRESHOLD,
) -> DateResult:
    """
    Turn a raw cell into a datetime. Unusable input falls back to now() with
    substituted=True and a reason describing the offending value.
    """
    clock = now or datetime.now
    try:
        parsed, reason = _parse(raw, serial_threshold)
    except Exception as exc:
        parsed, reason = None, f"unparseable date {raw!r}: {exc}"
    if parsed is None:
        return DateResult(value=clock(), substituted=True, reason=reason)
    return DateResult(value=parsed)


def from_serial(serial: float) -> datetime:
    return SERIAL_EPOCH + timedelta(days=float(serial))


def _parse(raw: Any, serial_threshold: float) -> tuple[Optional[datetime], Optional[str]]:
    if raw is None or raw is pd.NaT:
        return None, "missing date"
    if isinstance(raw, pd.Timestamp):
        if pd.isna(raw):
            return None, "missing date"
        return raw.to_pydatetime(), None
    if isinstance(raw, datetime):
        return raw, None
    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day), None
    if isinstance(raw, bool):
        return None, f"boolean is not a date: {raw!r}"
    if isinstance(raw, (int, float)):
        return _parse_serial(float(raw), serial_threshold)
    if isinstance(raw, str):
        return _parse_text(raw, serial_threshold)
    return None, f"unsupported date value {raw!r}"


def _parse_serial(serial: float, serial_threshold: float) -> tuple[Optional[datetime], Optional[str]]:
    if math.isnan(serial) or math.isinf(serial):
        return None, "missing date"
    if serial < serial_threshold:
        return None, f"implausible serial date {serial:g} (below {serial_threshold:g})"
    return from_serial(serial), None


def _parse_text(raw: str, serial_threshold: float) -> tuple[Optional[datetime], Optional[str]]:
    text = raw.strip()
    if text.lower() in NO_DATE_TOKENS:
        return None, f"no date given ({raw!r})" if text else "missing date"
    if _DIGITS_RE.match(text):
        return _parse_serial(float(text), serial_threshold)
    try:
        return datetime.fromisoformat(text), None
    except ValueError:
        pass
    parsed = pd.to_datetime(text, errors="coerce")
    if parsed is None or pd.isna(parsed):
        return None, f"unparseable date {raw!r}"
    return parsed.to_pydatetime(), None


def parse_priority(raw: Any) -> tuple[Priority, bool]:
    """Returns (priority, valid). Blank input is valid and means medium."""
    text = clean_text(raw)
    if text is None:
        return Priority.MEDIUM, True
    try:
        return Priority(text.lower()), True
    except ValueError:
        return Priority.MEDIUM, False
