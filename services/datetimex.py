# services/datetimex.py
from __future__ import annotations
from datetime import datetime, date, timezone
import pandas as pd

from services.errors import ValidationError


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def today_utc() -> date:
    return now_utc().date()


def to_iso_z(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def to_date(x, field: str = "date") -> date:
    """Coerce a date, datetime or date-like string to a calendar date."""
    if isinstance(x, datetime):
        return x.date()
    if isinstance(x, date):
        return x
    if not x:
        raise ValidationError(f"{field} is required")
    # pandas handles many formats; anything it cannot read is a caller error
    ts = pd.to_datetime(str(x), errors="coerce")
    if pd.isna(ts):
        raise ValidationError(f"{field} is not a valid date: {x!r}")
    return ts.date()


def to_date_or_none(x, field: str = "date") -> date | None:
    if x is None or x == "":
        return None
    return to_date(x, field)
