"""Normalized layout: one row per (entity, tag) pair joined back to the entity."""

from __future__ import annotations

from typing import Sequence

from tagperf.backends.postgres import PostgresBackend, SqlQuery, finish_select, numeric_text, values_placeholders
from tagperf.domain import Entity, Tag
from tagperf.errors import BatchWriteFailure, IDResolutionFailure
from tagperf.ids import SurrogateIdResolver, TagIdMap
from tagperf.predicate import Operator, Predicate

ENTITIES_TABLE = "entities"
TAG_DEFS_TABLE = "tag_defs"
ENTITY_TAGS_TABLE = "entity_tags"


class JoinTableBackend(PostgresBackend):
    name = "join_table"
    default_batch_size = 100
    entities_table = ENTITIES_TABLE
    schema_statements = (
        f"DROP TABLE IF EXISTS {ENTITY_TAGS_TABLE}",
        f"DROP TABLE IF EXISTS {ENTITIES_TABLE}",
        f"DROP TABLE IF EXISTS {TAG_DEFS_TABLE}",
        f"CREATE TABLE {ENTITIES_TABLE}(id SERIAL PRIMARY KEY, name VARCHAR NOT NULL)",
        f"CREATE TABLE {TAG_DEFS_TABLE}(id SERIAL PRIMARY KEY, name VARCHAR NOT NULL)",
        f"CREATE TABLE {ENTITY_TAGS_TABLE}(entity_id INTEGER NOT NULL, tag_id INTEGER NOT NULL, value VARCHAR NOT NULL)",
        f"CREATE UNIQUE INDEX tag_defs_name ON {TAG_DEFS_TABLE}(name)",
        f"CREATE INDEX entity_tags_tag_value ON {ENTITY_TAGS_TABLE}(tag_id, value)",
        f"CREATE INDEX entity_tags_entity ON {ENTITY_TAGS_TABLE}(entity_id)",
    )

    def __init__(self, conn, **kwargs):
        super().__init__(conn, **kwargs)
        self.tag_ids: TagIdMap | None = None

    def _discard_setup_state(self) -> None:
        self.tag_ids = None

    def _resolve_ids(self, cursor, tags: Sequence[Tag]) -> None:
        resolver = SurrogateIdResolver(cursor, backend=self.name, tags_table=TAG_DEFS_TABLE)
        self.tag_ids = resolver.resolve_tags(tags)

    def _write_batch(self, cursor, batch: Sequence[Entity]) -> None:
        names = [entity.name for entity in batch]
        cursor.execute(
            f"INSERT INTO {ENTITIES_TABLE}(name) VALUES {values_placeholders(len(names), 1)} RETURNING id, name",
            names,
        )
        entity_ids = {str(name): int(ident) for ident, name in cursor.fetchall()}
        if len(entity_ids) != len(batch):
            raise BatchWriteFailure(
                f"expected {len(batch)} entity ids, got {len(entity_ids)}",
                backend=self.name,
                batch_size=len(batch),
            )

        tag_ids = self.tag_ids or {}
        params: list[object] = []
        rows = 0
        for entity in batch:
            for tag in entity.tags:
                tag_id = tag_ids.get(tag.name)
                if tag_id is None:
                    raise IDResolutionFailure(f"tag {tag.name!r} was never registered", backend=self.name)
                params.extend((entity_ids[entity.name], tag_id, str(tag.value)))
                rows += 1
        if rows:
            cursor.execute(
                f"INSERT INTO {ENTITY_TAGS_TABLE}(entity_id, tag_id, value) VALUES {values_placeholders(rows, 3)}",
                params,
            )

    def compile(self, predicate: Predicate, *, limit: int | None = None, count: bool = False) -> SqlQuery:
        # One pair of joins (tag row + tag definition) per condition.
        joins: list[str] = []
        where: list[str] = []
        params: list[object] = []
        for index, cond in enumerate(predicate.conditions, start=1):
            tag_row = f"t{index}"
            tag_def = f"d{index}"
            joins.append(f"JOIN {ENTITY_TAGS_TABLE} {tag_row} ON {tag_row}.entity_id = e.id")
            joins.append(f"JOIN {TAG_DEFS_TABLE} {tag_def} ON {tag_def}.id = {tag_row}.tag_id")
            where.append(f"{tag_def}.name = %s")
            params.append(cond.name)
            if cond.op is Operator.EQ:
                where.append(f"{tag_row}.value = %s")
                params.append(str(cond.value))
            else:
                where.append(f"{numeric_text(tag_row + '.value')} {cond.op.symbol} %s")
                params.append(cond.value)
        select = f"SELECT e.name FROM {ENTITIES_TABLE} e {' '.join(joins)} WHERE {' AND '.join(where)}"
        return finish_select(select, params, limit=limit, count=count)
