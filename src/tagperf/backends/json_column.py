from __future__ import annotations

from typing import Sequence

from psycopg.types.json import Jsonb

from tagperf.backends.postgres import PostgresBackend, SqlQuery, finish_select, values_placeholders
from tagperf.domain import Entity
from tagperf.predicate import Operator, Predicate
from tagperf.util.json import json_dumps

ENTITIES_TABLE = "entities_b"

_JSONPATH_OPERATORS = {
    Operator.EQ: "==",
    Operator.GT: ">",
    Operator.GE: ">=",
    Operator.LT: "<",
    Operator.LE: "<=",
}


def jsonpath_predicate(predicate: Predicate) -> str:
    """Render ``predicate`` as a jsonpath boolean for the ``@@`` operator.

    Keys and literals are JSON-quoted, so tag names with dots or quotes stay a
    single member access. A missing member makes its comparison false.
    """
    terms = []
    for cond in predicate.conditions:
        member = f"$.{json_dumps(str(cond.name))}"
        terms.append(f"{member} {_JSONPATH_OPERATORS[cond.op]} {json_dumps(cond.value)}")
    return " && ".join(terms)


class JsonColumnBackend(PostgresBackend):
    name = "json_column"
    default_batch_size = 100
    entities_table = ENTITIES_TABLE
    schema_statements = (
        f"DROP TABLE IF EXISTS {ENTITIES_TABLE}",
        f"CREATE TABLE {ENTITIES_TABLE}(name VARCHAR NOT NULL, tags JSONB NOT NULL)",
        f"CREATE INDEX entities_b_tags ON {ENTITIES_TABLE} USING GIN(tags)",
    )

    def _write_batch(self, cursor, batch: Sequence[Entity]) -> None:
        params: list[object] = []
        for entity in batch:
            params.append(entity.name)
            params.append(Jsonb(entity.tag_map()))
        cursor.execute(
            f"INSERT INTO {ENTITIES_TABLE}(name, tags) VALUES {values_placeholders(len(batch), 2)}",
            params,
        )

    def compile(self, predicate: Predicate, *, limit: int | None = None, count: bool = False) -> SqlQuery:
        select = f"SELECT name FROM {ENTITIES_TABLE} WHERE tags @@ %s::jsonpath"
        return finish_select(select, [jsonpath_predicate(predicate)], limit=limit, count=count)
