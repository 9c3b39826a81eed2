"""Event records and timestamp handling."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config.source_families import SourceFamily, field_name

logger = logging.getLogger(__name__)

_SLASHED_FORMATS = ("%Y/%m/%d %H:%M:%S", "%Y/%m/%d %H:%M", "%Y/%m/%d")


@dataclass(frozen=True)
class EventRecord:
    """One row from a source table mapped onto the canonical event fields.

    ``datetime`` keeps the raw value from the table; ``timestamp`` is the
    same instant parsed into the server's local zone, or ``None`` when the
    raw value is missing or unparsable.
    """

    unit_id: str | None
    datetime: Any
    timestamp: datetime | None
    car_type: str | None
    result: str | None
    errtype: str | None
    table: str = ""

    @property
    def local_date(self) -> date | None:
        return self.timestamp.date() if self.timestamp else None


def local_timezone(name: str | None = None) -> tzinfo | None:
    """Return the zone used for calendar dates and shifts.

    Prefers the configured ``name``.  ``None`` means the system local zone,
    whose rules (including daylight saving) are applied per instant rather
    than as one fixed offset.
    """

    if name and name.upper() == "UTC":
        return timezone.utc
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                "Timezone %s unavailable; falling back to system local time", name
            )
    return None


def local_now(tz: tzinfo | None = None) -> datetime:
    """Return the current aware time in ``tz`` (system local when ``None``)."""

    if tz is None:
        return datetime.now().astimezone()
    return datetime.now(tz)


def _parse_slashed(text: str) -> datetime | None:
    for fmt in _SLASHED_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_timestamp(value: Any, tz: tzinfo | None) -> datetime | None:
    """Parse ``value`` into an aware datetime in ``tz``.

    Naive values are taken to already be local time.  Numbers are treated as
    epoch seconds, or milliseconds when too large to be seconds.  A ``tz`` of
    ``None`` resolves each instant with the system local zone.
    """

    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        if math.isnan(value) or math.isinf(value):
            return None
        seconds = value / 1000 if abs(value) >= 1e11 else value
        try:
            parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = _parse_slashed(text)
            if parsed is None:
                return None

    try:
        if parsed.tzinfo is None:
            return parsed.astimezone() if tz is None else parsed.replace(tzinfo=tz)
        return parsed.astimezone(tz)
    except (OverflowError, OSError):
        return None


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def record_from_row(
    row: Mapping[str, Any], family: SourceFamily, table: str, tz: tzinfo | None
) -> EventRecord:
    """Map a raw source row through ``family``'s column layout."""

    raw_datetime = row.get(field_name(family, "datetime"))
    return EventRecord(
        unit_id=_clean_text(row.get(field_name(family, "unit_id"))),
        datetime=raw_datetime,
        timestamp=parse_timestamp(raw_datetime, tz),
        car_type=_clean_text(row.get(field_name(family, "car_type"))),
        result=_clean_text(row.get(field_name(family, "result"))),
        errtype=_clean_text(row.get(field_name(family, "errtype"))),
        table=table,
    )
