from datetime import date

from flask import current_app

from .pipeline import merge_records
from .records import local_now
from .sources import RowSourceError


def _get_source():
    """Return the configured row source."""
    return current_app.config.get("ROW_SOURCE")


def get_local_timezone():
    """Return the configured zone, or ``None`` for the system local zone."""
    return current_app.config.get("LOCAL_TZ")


def local_today() -> date:
    """Return the server's current calendar date in the configured zone."""
    return local_now(get_local_timezone()).date()


def fetch_event_records(
    role,
    *,
    pushdown: dict | None = None,
):
    """Merge the event records of every table serving ``role``.

    Args:
        role: ``"unit"`` for pass/fail rows, ``"defect"`` for point rows, or
            a tuple of roles to read every table serving any of them.
        pushdown: Optional ``{canonical_field: value}`` equality filters the
            source may apply while reading.

    Returns:
        tuple[list | None, str | None]: (records, error)
    """
    source = _get_source()
    if source is None:
        return None, "Row source is not configured."

    try:
        records = merge_records(
            source,
            current_app.config["SOURCE_FAMILIES"],
            role,
            get_local_timezone(),
            table_pattern=current_app.config.get("TABLE_PATTERN"),
            pushdown=pushdown,
        )
    except RowSourceError as exc:
        current_app.logger.error(
            "Failed to fetch %s records (table %s): %s",
            role if isinstance(role, str) else "/".join(role),
            exc.table or "-",
            exc,
        )
        return None, f"Failed to fetch event records: {exc}"
    return records, None


def fetch_table_schemas():
    """Return ``[{tableName, columns}]`` for every table in the source.

    Returns:
        tuple[list | None, str | None]: (schemas, error)
    """
    source = _get_source()
    if source is None:
        return None, "Row source is not configured."

    try:
        return [
            {"tableName": table, "columns": source.describe(table)}
            for table in source.list_tables()
        ], None
    except RowSourceError as exc:
        current_app.logger.error("Failed to describe tables: %s", exc)
        return None, f"Failed to fetch table structure: {exc}"
