"""Reducers turning filtered event records into dashboard series.

All functions here are pure: they take already merged, deduplicated and
filtered records plus the reference ``today`` and return plain lists and
dictionaries ready for JSON serialisation.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, datetime
from typing import Iterable

from .pipeline import ALL_CAR_TYPES, normalize_car_type
from .records import EventRecord

WINDOW_DAYS = 7
TOP_DEFECTS = 5
DAY_SHIFT_START = 7
DAY_SHIFT_END = 19
DAY_SHIFT = "day"
NIGHT_SHIFT = "night"
DEFAULT_MODEL = "V254"
NO_DATA_LABEL = "无数据"
THOUSANDS_SUFFIX = "千"


def _bucket_date(record: EventRecord, today: date) -> date:
    return record.local_date or today


def _recent_dates(dates: Iterable[date], limit: int = WINDOW_DAYS) -> list[date]:
    """Return the ``limit`` most recent distinct dates, newest first."""

    return sorted(set(dates), reverse=True)[:limit]


def _count_by_date(records: Iterable[EventRecord], today: date) -> Counter:
    return Counter(_bucket_date(record, today) for record in records)


def daily_counts(
    records: Iterable[EventRecord], result: str, today: date
) -> list[dict]:
    """Count records with ``result`` per calendar date, newest first.

    Records without a usable timestamp are counted on ``today``.  Only the
    seven most recent dates with data are returned; an empty selection
    yields a single zero bucket for today so that charts always render.
    """

    counts = _count_by_date((r for r in records if r.result == result), today)
    series = [
        {"name": day.isoformat(), "value": counts[day]}
        for day in _recent_dates(counts)
    ]
    if not series:
        return [{"name": today.isoformat(), "value": 0}]
    return series


def shift_for(timestamp: datetime | None) -> str:
    if timestamp is not None and DAY_SHIFT_START <= timestamp.hour < DAY_SHIFT_END:
        return DAY_SHIFT
    return NIGHT_SHIFT


def shift_counts(
    records: Iterable[EventRecord], result: str, today: date
) -> list[dict]:
    """Split the daily ``result`` counts into day (``value1``) and night (``value2``)."""

    by_shift: dict[str, Counter] = {DAY_SHIFT: Counter(), NIGHT_SHIFT: Counter()}
    for record in records:
        if record.result != result:
            continue
        by_shift[shift_for(record.timestamp)][_bucket_date(record, today)] += 1

    day_series = {d: by_shift[DAY_SHIFT][d] for d in _recent_dates(by_shift[DAY_SHIFT])}
    night_series = {
        d: by_shift[NIGHT_SHIFT][d] for d in _recent_dates(by_shift[NIGHT_SHIFT])
    }

    dates = sorted(set(day_series) | set(night_series))[-WINDOW_DAYS:]
    rows = [
        {
            "name": day.isoformat(),
            "value1": day_series.get(day, 0),
            "value2": night_series.get(day, 0),
        }
        for day in dates
    ]
    if not rows:
        return [{"name": today.isoformat(), "value1": 0, "value2": 0}]
    return rows


def defect_rows(records: Iterable[EventRecord]) -> list[EventRecord]:
    """Return the point-level rows, i.e. those naming a defect."""

    return [record for record in records if record.errtype]


def defect_counts(records: Iterable[EventRecord]) -> list[dict]:
    """Count defect occurrences over all rows, in first-seen order."""

    counts = Counter(record.errtype for record in defect_rows(records))
    return [{"name": name, "value": value} for name, value in counts.items()]


def defect_counts_recent(
    records: Iterable[EventRecord],
    days: int = WINDOW_DAYS,
    *,
    no_data_label: str = NO_DATA_LABEL,
) -> list[dict]:
    """Count defects over the ``days`` most recent dates that have defects.

    The window is made of data-dates, not calendar days: a line idle for a
    fortnight still reports its last seven working days.
    """

    dated = [r for r in defect_rows(records) if r.local_date is not None]
    window = set(_recent_dates((r.local_date for r in dated), days))

    counts = Counter(r.errtype for r in dated if r.local_date in window)
    if not counts:
        return [{"id": 1, "name": no_data_label, "value": 0}]
    return [
        {"id": index, "name": name, "value": value}
        for index, (name, value) in enumerate(counts.items(), start=1)
    ]


def top_defects(records: Iterable[EventRecord], limit: int = TOP_DEFECTS) -> list[dict]:
    """Rank defects by the number of distinct units showing them.

    Ties keep the order in which the defects were first seen.
    """

    units: dict[str, set] = {}
    for record in defect_rows(records):
        seen = units.setdefault(record.errtype, set())
        if record.unit_id:
            seen.add(record.unit_id)

    counted = [(name, ids) for name, ids in units.items() if ids]
    ranked = sorted(counted, key=lambda item: len(item[1]), reverse=True)
    return [{"name": name, "value": len(ids)} for name, ids in ranked[:limit]]


def format_thousands(total: int) -> str:
    return f"{total // 1000} {THOUSANDS_SUFFIX}"


def summary_counts(
    records: Iterable[EventRecord],
    today: date,
    car_type: str | None = None,
    *,
    default_model: str = DEFAULT_MODEL,
) -> dict:
    records = list(records)

    units_by_date: dict[date, set] = defaultdict(set)
    all_units: set = set()
    for record in records:
        if not record.unit_id:
            continue
        all_units.add(record.unit_id)
        if record.local_date is not None:
            units_by_date[record.local_date].add(record.unit_id)

    today_count = len(units_by_date.get(today, ()))
    week_count = sum(len(units_by_date[d]) for d in _recent_dates(units_by_date))

    requested = normalize_car_type(car_type)
    current_model = next((r.car_type for r in records if r.car_type), None)
    if current_model is None:
        current_model = default_model if requested == ALL_CAR_TYPES else requested

    return {
        "todayCount": today_count,
        "weekCount": week_count,
        "totalCount": format_thousands(len(all_units)),
        "currentModel": current_model,
    }


def distinct_car_types(records: Iterable[EventRecord]) -> list[str]:
    return sorted({record.car_type for record in records if record.car_type})
