"""Read-only row sources backing the dashboard.

A row source answers three questions: which tables exist, what rows a table
holds and which columns it has.  Rows are returned as plain dictionaries
keyed by the physical column names; mapping them onto event fields is the
merger's job.  Every failure is raised as :class:`RowSourceError`.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Protocol


class RowSourceError(Exception):
    """Raised when listing tables or reading rows from the source fails."""

    def __init__(self, message: str, *, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class RowSource(Protocol):
    def list_tables(self) -> list[str]:
        ...

    def read_all(
        self,
        table: str,
        columns: Iterable[str] | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> list[dict]:
        ...

    def describe(self, table: str) -> list[dict]:
        ...


def _quote_identifier(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'


class SqliteRowSource:
    """Row source reading a SQLite production database in read-only mode.

    Each call opens its own connection so that concurrent per-table reads
    issued from worker threads never share a ``sqlite3.Connection``.
    """

    def __init__(self, database_path: str | Path) -> None:
        self.database_path = Path(database_path)
        if not self.database_path.exists():
            raise FileNotFoundError(
                f"Production database not found: {self.database_path}"
            )

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        uri = f"{self.database_path.resolve().as_uri()}?mode=ro"
        conn = sqlite3.connect(uri, uri=True)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def list_tables(self) -> list[str]:
        try:
            with self._connect() as conn:
                cur = conn.execute(
                    "SELECT name FROM sqlite_master "
                    "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' "
                    "ORDER BY name"
                )
                return [row["name"] for row in cur.fetchall()]
        except sqlite3.Error as exc:
            raise RowSourceError(f"Failed to list tables: {exc}") from exc

    def read_all(
        self,
        table: str,
        columns: Iterable[str] | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> list[dict]:
        selected = ", ".join(_quote_identifier(c) for c in columns) if columns else "*"
        sql = f"SELECT {selected} FROM {_quote_identifier(table)}"
        params: list[Any] = []
        if filters:
            clauses = []
            for column, value in filters.items():
                clauses.append(f"{_quote_identifier(column)} = ?")
                params.append(value)
            sql += " WHERE " + " AND ".join(clauses)

        try:
            with self._connect() as conn:
                cur = conn.execute(sql, params)
                return [dict(row) for row in cur.fetchall()]
        except sqlite3.Error as exc:
            raise RowSourceError(
                f"Failed to read table {table}: {exc}", table=table
            ) from exc

    def describe(self, table: str) -> list[dict]:
        try:
            with self._connect() as conn:
                cur = conn.execute(f"PRAGMA table_info({_quote_identifier(table)})")
                return [dict(row) for row in cur.fetchall()]
        except sqlite3.Error as exc:
            raise RowSourceError(
                f"Failed to describe table {table}: {exc}", table=table
            ) from exc


class SupabaseRowSource:
    """Row source backed by a Supabase/PostgREST project.

    PostgREST cannot enumerate tables on its own, so table discovery goes
    through the ``list_tables`` RPC unless a static ``table_names`` list is
    configured.  Pages are ordered by ``order_column`` so that paging neither
    skips nor repeats rows.
    """

    def __init__(
        self,
        client: Any,
        table_names: Iterable[str] | None = None,
        *,
        page_size: int = 1000,
        order_column: str | None = "id",
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be greater than zero")
        self.client = client
        self.table_names = list(table_names) if table_names else None
        self.page_size = page_size
        self.order_column = order_column

    def list_tables(self) -> list[str]:
        if self.table_names is not None:
            return sorted(self.table_names)

        try:
            response = self.client.rpc("list_tables", {}).execute()
        except Exception as exc:
            raise RowSourceError(f"Failed to list tables: {exc}") from exc

        names = []
        for row in getattr(response, "data", None) or []:
            if isinstance(row, Mapping):
                name = row.get("name") or row.get("table_name")
            else:
                name = row
            if isinstance(name, str) and name:
                names.append(name)
        return sorted(names)

    def read_all(
        self,
        table: str,
        columns: Iterable[str] | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> list[dict]:
        """Fetch every row of ``table`` in ``page_size`` chunks.

        Supabase caps responses to 1,000 rows by default, so the query is
        reissued with a moving range until a short page is returned.
        """

        selected = ",".join(columns) if columns else "*"
        rows: list[dict] = []
        offset = 0
        try:
            while True:
                query = self.client.table(table).select(selected)
                if self.order_column:
                    query = query.order(self.order_column)
                for column, value in (filters or {}).items():
                    query = query.eq(column, value)
                query = query.range(offset, offset + self.page_size - 1)

                response = query.execute()
                batch = getattr(response, "data", None) or []
                rows.extend(batch)

                if len(batch) < self.page_size:
                    break
                offset += self.page_size
        except Exception as exc:
            raise RowSourceError(
                f"Failed to read table {table}: {exc}", table=table
            ) from exc
        return rows

    def describe(self, table: str) -> list[dict]:
        try:
            response = self.client.table(table).select("*").limit(1).execute()
        except Exception as exc:
            raise RowSourceError(
                f"Failed to describe table {table}: {exc}", table=table
            ) from exc

        sample = (getattr(response, "data", None) or [{}])[0]
        return [{"cid": index, "name": name} for index, name in enumerate(sample)]
