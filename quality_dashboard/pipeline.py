"""Merge, deduplicate and filter event records read from a row source."""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import date, tzinfo
from typing import Iterable, Mapping, Sequence

from config.source_families import (
    SourceFamily,
    family_for_table,
    families_with_role,
    field_name,
)

from .records import EventRecord, record_from_row
from .sources import RowSource, RowSourceError

logger = logging.getLogger(__name__)

ALL_CAR_TYPES = "ALL"
CAR_TYPE_PREFIX = "V"
MAX_FETCH_WORKERS = 8


def normalize_car_type(value: str | None) -> str:
    """Return the canonical vehicle-type code for a request parameter.

    Empty values and ``ALL`` mean "no filter".  Anything else is upper-cased
    and prefixed with ``V`` unless already prefixed, so ``254`` and ``v254``
    both become ``V254``.
    """

    if value is None:
        return ALL_CAR_TYPES
    text = str(value).strip().upper()
    if not text or text == ALL_CAR_TYPES:
        return ALL_CAR_TYPES
    if not text.startswith(CAR_TYPE_PREFIX):
        text = f"{CAR_TYPE_PREFIX}{text}"
    return text


def _select_tables(
    tables: Iterable[str],
    families: Sequence[SourceFamily],
    role: str | Iterable[str],
    table_pattern: str | None,
) -> list[tuple[str, SourceFamily]]:
    serving = families_with_role(families, role)
    selected = []
    for table in sorted(set(tables)):
        if table_pattern and re.search(table_pattern, table) is None:
            continue
        family = family_for_table(table, families)
        if family is None or family not in serving:
            continue
        selected.append((table, family))
    return selected


def _pushdown_filters(
    family: SourceFamily, pushdown: Mapping[str, object] | None
) -> dict[str, object] | None:
    if not pushdown:
        return None
    return {field_name(family, field): value for field, value in pushdown.items()}


def merge_records(
    source: RowSource,
    families: Sequence[SourceFamily],
    role: str | Iterable[str],
    tz: tzinfo | None,
    *,
    table_pattern: str | None = None,
    pushdown: Mapping[str, object] | None = None,
) -> list[EventRecord]:
    """Read every table serving ``role`` and return one record sequence.

    ``role`` may also be several roles; a table serving more than one is
    still read once.  Tables are read concurrently and joined before
    merging; a failure on any table fails the whole merge.  Records are
    concatenated in table-name order so that later tables win deduplication
    ties.
    """

    selected = _select_tables(source.list_tables(), families, role, table_pattern)
    if not selected:
        return []

    def _read(entry: tuple[str, SourceFamily]) -> list[dict]:
        table, family = entry
        try:
            return source.read_all(table, filters=_pushdown_filters(family, pushdown))
        except RowSourceError:
            raise
        except Exception as exc:
            raise RowSourceError(
                f"Failed to read table {table}: {exc}", table=table
            ) from exc

    workers = min(MAX_FETCH_WORKERS, len(selected))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        # ``map`` yields in submission order and re-raises the first failure.
        results = list(executor.map(_read, selected))

    records: list[EventRecord] = []
    for (table, family), rows in zip(selected, results):
        for row in rows or []:
            if not isinstance(row, Mapping):
                continue
            records.append(record_from_row(row, family, table, tz))

    logger.debug("Merged %d records from %d tables", len(records), len(selected))
    return records


def _supersedes(candidate: EventRecord, kept: EventRecord) -> bool:
    if kept.timestamp is None:
        return True
    if candidate.timestamp is None:
        return False
    return candidate.timestamp >= kept.timestamp


def dedup_latest(records: Iterable[EventRecord]) -> list[EventRecord]:
    """Keep one record per unit id, the one with the latest timestamp.

    Records without a unit id are dropped.  A missing timestamp ranks below
    any valid one; equal (or equally missing) timestamps keep the record
    seen last.
    """

    latest: dict[str, EventRecord] = {}
    total = 0
    for record in records:
        total += 1
        if not record.unit_id:
            continue
        kept = latest.get(record.unit_id)
        if kept is None or _supersedes(record, kept):
            latest[record.unit_id] = record

    unique = list(latest.values())
    if total != len(unique):
        logger.debug(
            "Deduplicated by unit id: %d records in, %d unique units out",
            total,
            len(unique),
        )
    return unique


def filter_by_car_type(
    records: Iterable[EventRecord], car_type: str | None
) -> list[EventRecord]:
    wanted = normalize_car_type(car_type)
    if wanted == ALL_CAR_TYPES:
        return list(records)
    return [record for record in records if record.car_type == wanted]


def filter_today(records: Iterable[EventRecord], today: date) -> list[EventRecord]:
    """Keep records whose local calendar date is ``today``."""

    return [record for record in records if record.local_date == today]
