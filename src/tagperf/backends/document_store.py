"""External document store: one MongoDB document per entity.

Each document embeds its tags as a ``{name: value}`` map under ``tags``.
Setup loads a staging collection and swaps it in with a rename once every
batch landed, so a failed load never leaves a partial collection queryable.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Sequence

from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from tagperf.backends.base import Backend
from tagperf.domain import Entity, Tag
from tagperf.predicate import Operator, Predicate

DEFAULT_COLLECTION = "entities"
STAGING_SUFFIX = "_loading"
TAGS_FIELD = "tags"

_MONGO_OPERATORS = {
    Operator.EQ: "$eq",
    Operator.GT: "$gt",
    Operator.GE: "$gte",
    Operator.LT: "$lt",
    Operator.LE: "$lte",
}


@dataclass(frozen=True)
class MongoQuery:
    filter: dict = field(default_factory=dict)
    limit: int | None = None
    count: bool = False


def tag_field(name: str) -> str:
    return f"{TAGS_FIELD}.{name}"


def mongo_filter(predicate: Predicate) -> dict:
    """Translate ``predicate`` into a find filter over ``tags.<name>`` fields."""
    names = [cond.name for cond in predicate.conditions]
    if len(set(names)) != len(names):
        return {"$and": [_condition_filter(cond) for cond in predicate.conditions]}
    combined: dict = {}
    for cond in predicate.conditions:
        combined.update(_condition_filter(cond))
    return combined


def _condition_filter(cond) -> dict:
    if cond.op is Operator.EQ:
        return {tag_field(cond.name): cond.value}
    return {tag_field(cond.name): {_MONGO_OPERATORS[cond.op]: cond.value}}


def entity_document(entity: Entity) -> dict:
    return {"name": entity.name, TAGS_FIELD: entity.tag_map()}


class DocumentStoreBackend(Backend):
    name = "document_store"
    default_batch_size = 1000
    driver_errors = (PyMongoError,)

    def __init__(self, database, *, collection: str = DEFAULT_COLLECTION, **kwargs):
        super().__init__(**kwargs)
        self.database = database
        self.collection_name = collection
        self._tags: tuple[Tag, ...] = ()

    @property
    def collection(self):
        return self.database[self.collection_name]

    @property
    def staging_name(self) -> str:
        return self.collection_name + STAGING_SUFFIX

    def setup(self, entities, tags: Sequence[Tag], *, batch_size: int | None = None):
        self._tags = tuple(tags)
        return super().setup(entities, tags, batch_size=batch_size)

    @contextmanager
    def _write_scope(self):
        staging = self.database[self.staging_name]
        try:
            yield staging
            staging.rename(self.collection_name, dropTarget=True)
        except BaseException:
            staging.drop()
            raise

    def _recreate_schema(self, staging) -> None:
        staging.drop()
        self.database.create_collection(self.staging_name)
        for tag in self._tags:
            staging.create_index([(tag_field(tag.name), ASCENDING)], name=f"{TAGS_FIELD}_{tag.name}")

    def _write_batch(self, staging, batch: Sequence[Entity]) -> None:
        staging.insert_many([entity_document(entity) for entity in batch], ordered=True)

    def compile(self, predicate: Predicate, *, limit: int | None = None, count: bool = False) -> MongoQuery:
        return MongoQuery(filter=mongo_filter(predicate), limit=limit, count=count)

    def execute(self, query: MongoQuery) -> int:
        options = {}
        if self.query_timeout_ms:
            options["maxTimeMS"] = self.query_timeout_ms
        if query.count:
            if query.limit is not None:
                options["limit"] = query.limit
            return int(self.collection.count_documents(query.filter, **options))
        find_options = {"limit": query.limit or 0}
        if self.query_timeout_ms:
            find_options["max_time_ms"] = self.query_timeout_ms
        cursor = self.collection.find(query.filter, projection={"name": True, "_id": False}, **find_options)
        matched = 0
        try:
            for _document in cursor:
                matched += 1
        finally:
            cursor.close()
        return matched

    def describe_query(self, query: MongoQuery) -> dict[str, object]:
        return {"filter": query.filter, "limit": query.limit}

    def stored_entity_count(self) -> int:
        return int(self.collection.count_documents({}))
