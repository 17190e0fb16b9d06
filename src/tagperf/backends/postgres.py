from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import ClassVar, Sequence

import psycopg

from tagperf.backends.base import Backend
from tagperf.predicate import NUMERIC_TEXT_PATTERN


@dataclass(frozen=True)
class SqlQuery:
    text: str
    params: tuple = ()
    count: bool = False


def values_placeholders(row_count: int, width: int, *, row_template: str | None = None) -> str:
    row = row_template or "(" + ", ".join(["%s"] * width) + ")"
    return ", ".join([row] * row_count)


def finish_select(select_sql: str, params: Sequence, *, limit: int | None, count: bool) -> SqlQuery:
    """Bound a ``SELECT`` by ``limit`` and optionally wrap it in ``COUNT(*)``."""
    text = select_sql
    bound = list(params)
    if limit is not None:
        text += " LIMIT %s"
        bound.append(int(limit))
    if count:
        text = f"SELECT COUNT(*) FROM ({text}) AS matched"
    return SqlQuery(text=text, params=tuple(bound), count=count)


def numeric_text(column: str) -> str:
    return f"(CASE WHEN {column} ~ '{NUMERIC_TEXT_PATTERN}' THEN {column}::numeric END)"


class PostgresBackend(Backend):
    """Layouts that live in one PostgreSQL database reached through psycopg."""

    driver_errors = (psycopg.Error,)
    schema_statements: ClassVar[tuple[str, ...]] = ()
    entities_table: ClassVar[str]

    def __init__(self, conn, **kwargs):
        super().__init__(**kwargs)
        self.conn = conn

    @contextmanager
    def _write_scope(self):
        try:
            with self.conn.transaction():
                with self.conn.cursor() as cursor:
                    yield cursor
        except BaseException:
            self._discard_setup_state()
            raise

    def _discard_setup_state(self) -> None:
        return None

    def _recreate_schema(self, cursor) -> None:
        for statement in self.schema_statements:
            cursor.execute(statement)

    def execute(self, query: SqlQuery) -> int:
        with self.conn.transaction():
            with self.conn.cursor() as cursor:
                if self.query_timeout_ms:
                    cursor.execute("SELECT set_config('statement_timeout', %s, true)", (str(self.query_timeout_ms),))
                cursor.execute(query.text, query.params)
                if query.count:
                    row = cursor.fetchone()
                    return int(row[0]) if row else 0
                matched = 0
                for _row in cursor:
                    matched += 1
                return matched

    def describe_query(self, query: SqlQuery) -> dict[str, object]:
        return {"sql": query.text, "params": list(query.params)}

    def stored_entity_count(self) -> int:
        return self.table_row_count(self.entities_table)

    def table_row_count(self, table: str) -> int:
        with self.conn.transaction():
            with self.conn.cursor() as cursor:
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                row = cursor.fetchone()
        return int(row[0]) if row else 0
