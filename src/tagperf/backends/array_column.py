"""Denormalized layout: each entity row carries the surrogate ids of its tag values.

Queries are answered with the GIN-backed array operators: ``@>`` for the
equality terms (every id must be present) and ``&&`` for each range term (at
least one of the ids whose value falls in the range must be present).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from tagperf.backends.postgres import PostgresBackend, SqlQuery, finish_select, values_placeholders
from tagperf.domain import Entity, Tag
from tagperf.errors import IDResolutionFailure
from tagperf.ids import SurrogateIdResolver, TagValueIdMap, TagValueKey, tag_value_key
from tagperf.predicate import Operator, Predicate, as_number

ENTITIES_TABLE = "entities_a"
TAG_DEFS_TABLE = "tag_defs_a"
TAG_VALUES_TABLE = "tag_values_a"


@dataclass(frozen=True)
class ArrayMatch:
    contains: tuple[int, ...] = ()
    overlaps: tuple[tuple[int, ...], ...] = ()
    satisfiable: bool = True

    def matches(self, tag_ids: Iterable[int]) -> bool:
        if not self.satisfiable:
            return False
        present = set(tag_ids)
        if not present.issuperset(self.contains):
            return False
        return all(present.intersection(group) for group in self.overlaps)


def compile_array_match(predicate: Predicate, value_ids: Mapping[TagValueKey, int]) -> ArrayMatch:
    contains: set[int] = set()
    overlaps: list[tuple[int, ...]] = []
    for cond in predicate.conditions:
        if cond.op is Operator.EQ:
            ident = value_ids.get(tag_value_key(cond.name, cond.value))
            if ident is None:
                return ArrayMatch(satisfiable=False)
            contains.add(ident)
            continue
        group = []
        for (name, value), ident in value_ids.items():
            if name != cond.name:
                continue
            number = as_number(value)
            if number is not None and cond.op.compare(number, cond.value):
                group.append(ident)
        if not group:
            return ArrayMatch(satisfiable=False)
        overlaps.append(tuple(sorted(group)))
    return ArrayMatch(contains=tuple(sorted(contains)), overlaps=tuple(overlaps))


def encode_entity(entity: Entity, value_ids: Mapping[TagValueKey, int], *, backend: str | None = None) -> list[int]:
    encoded = []
    for tag in entity.tags:
        ident = value_ids.get(tag_value_key(tag.name, tag.value))
        if ident is None:
            raise IDResolutionFailure(
                f"{entity.name} carries unregistered value {tag.name}={tag.value!r}",
                backend=backend,
            )
        encoded.append(ident)
    return sorted(encoded)


class ArrayColumnBackend(PostgresBackend):
    name = "array_column"
    default_batch_size = 100
    entities_table = ENTITIES_TABLE
    schema_statements = (
        f"DROP TABLE IF EXISTS {ENTITIES_TABLE}",
        f"DROP TABLE IF EXISTS {TAG_DEFS_TABLE}",
        f"DROP TABLE IF EXISTS {TAG_VALUES_TABLE}",
        f"CREATE TABLE {ENTITIES_TABLE}(name VARCHAR NOT NULL, tag_ids INTEGER[] NOT NULL)",
        f"CREATE TABLE {TAG_DEFS_TABLE}(id SERIAL PRIMARY KEY, name VARCHAR NOT NULL)",
        f"CREATE TABLE {TAG_VALUES_TABLE}(id SERIAL PRIMARY KEY, tag_id INTEGER NOT NULL, value VARCHAR NOT NULL)",
        f"CREATE INDEX entities_a_tag_ids ON {ENTITIES_TABLE} USING GIN(tag_ids)",
        f"CREATE UNIQUE INDEX tag_defs_a_name ON {TAG_DEFS_TABLE}(name)",
        f"CREATE UNIQUE INDEX tag_values_a_tag_value ON {TAG_VALUES_TABLE}(tag_id, value)",
    )

    def __init__(self, conn, **kwargs):
        super().__init__(conn, **kwargs)
        self.tag_value_ids: TagValueIdMap | None = None

    def _discard_setup_state(self) -> None:
        self.tag_value_ids = None

    def _resolver(self, cursor) -> SurrogateIdResolver:
        return SurrogateIdResolver(
            cursor,
            backend=self.name,
            tags_table=TAG_DEFS_TABLE,
            values_table=TAG_VALUES_TABLE,
        )

    def _resolve_ids(self, cursor, tags: Sequence[Tag]) -> None:
        resolver = self._resolver(cursor)
        tag_ids = resolver.resolve_tags(tags)
        self.tag_value_ids = resolver.resolve_tag_values(tags, tag_ids)

    def _write_batch(self, cursor, batch: Sequence[Entity]) -> None:
        value_ids = self.tag_value_ids or {}
        params: list[object] = []
        for entity in batch:
            params.append(entity.name)
            params.append(encode_entity(entity, value_ids, backend=self.name))
        cursor.execute(
            f"INSERT INTO {ENTITIES_TABLE}(name, tag_ids) "
            f"VALUES {values_placeholders(len(batch), 2, row_template='(%s, %s::integer[])')}",
            params,
        )

    def load_tag_value_ids(self) -> TagValueIdMap:
        if self.tag_value_ids is None:
            with self.conn.transaction():
                with self.conn.cursor() as cursor:
                    self.tag_value_ids = self._resolver(cursor).lookup_tag_value_ids()
        return self.tag_value_ids

    def compile(self, predicate: Predicate, *, limit: int | None = None, count: bool = False) -> SqlQuery:
        return self.render(compile_array_match(predicate, self.load_tag_value_ids()), limit=limit, count=count)

    @staticmethod
    def render(match: ArrayMatch, *, limit: int | None = None, count: bool = False) -> SqlQuery:
        clauses: list[str] = []
        params: list[object] = []
        if not match.satisfiable:
            clauses.append("FALSE")
        else:
            if match.contains:
                clauses.append("tag_ids @> %s::integer[]")
                params.append(list(match.contains))
            for group in match.overlaps:
                clauses.append("tag_ids && %s::integer[]")
                params.append(list(group))
        select = f"SELECT name FROM {ENTITIES_TABLE} WHERE {' AND '.join(clauses)}"
        return finish_select(select, params, limit=limit, count=count)
