"""Surrogate identifiers for tag names and (name, value) pairs.

Normalized layouts store small integers instead of tag text. The resolver
registers every declared tag (and, when asked, every value in each tag's
domain) in the backend's lookup tables and hands back the identifiers the
database assigned, so entity batches can be encoded before they are written.
"""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

import psycopg
from psycopg import errors as pg_errors

from tagperf.domain import Tag
from tagperf.errors import DuplicateTag, IDResolutionFailure
from tagperf.util.logging import log_structured_event

LOG = logging.getLogger(__name__)

TagIdMap = dict[str, int]
TagValueKey = tuple[str, str]
TagValueIdMap = dict[TagValueKey, int]


def tag_value_key(name: str, value) -> TagValueKey:
    """Key a (name, value) pair the way the value column stores it (as text)."""
    return (str(name), str(value))


def _values_placeholders(row_count: int, width: int) -> str:
    row = "(" + ", ".join(["%s"] * width) + ")"
    return ", ".join([row] * row_count)


def _ensure_injective(mapping: Mapping, *, backend, what: str) -> None:
    seen: dict[int, object] = {}
    for key, ident in mapping.items():
        other = seen.get(ident)
        if other is not None:
            raise IDResolutionFailure(
                f"{what} {key!r} and {other!r} share identifier {ident}",
                backend=backend,
            )
        seen[ident] = key


class SurrogateIdResolver:
    def __init__(self, cursor, *, backend: str, tags_table: str, values_table: str | None = None):
        self._cursor = cursor
        self.backend = backend
        self.tags_table = tags_table
        self.values_table = values_table

    def resolve_tags(self, tags: Sequence[Tag]) -> TagIdMap:
        names = [tag.name for tag in tags]
        seen: set[str] = set()
        for name in names:
            if name in seen:
                raise DuplicateTag(name, backend=self.backend)
            seen.add(name)
        if not names:
            return {}

        query = (
            f"INSERT INTO {self.tags_table}(name) VALUES {_values_placeholders(len(names), 1)} "
            "RETURNING id, name"
        )
        try:
            self._cursor.execute(query, names)
            rows = self._cursor.fetchall()
        except pg_errors.UniqueViolation as exc:
            raise DuplicateTag(_duplicate_name(exc, names), exc, backend=self.backend) from exc
        except psycopg.Error as exc:
            raise IDResolutionFailure(
                f"registering {len(names)} tags in {self.tags_table} failed",
                exc,
                backend=self.backend,
            ) from exc

        tag_ids: TagIdMap = {}
        for ident, name in rows:
            tag_ids[str(name)] = int(ident)
        if len(rows) != len(names) or set(tag_ids) != seen:
            raise IDResolutionFailure(
                f"expected {len(names)} tag ids from {self.tags_table}, got {len(rows)}",
                backend=self.backend,
            )
        _ensure_injective(tag_ids, backend=self.backend, what="tags")
        log_structured_event(LOG, logging.DEBUG, "tags_resolved", backend=self.backend, count=len(tag_ids))
        return tag_ids

    def resolve_tag_values(self, tags: Sequence[Tag], tag_ids: Mapping[str, int]) -> TagValueIdMap:
        if self.values_table is None:
            raise IDResolutionFailure("no value table configured", backend=self.backend)
        params: list[object] = []
        expected: dict[tuple[int, str], TagValueKey] = {}
        for tag in tags:
            if tag.name not in tag_ids:
                raise IDResolutionFailure(f"tag {tag.name!r} has no id", backend=self.backend)
            for value in tag.values:
                key = tag_value_key(tag.name, value)
                slot = (int(tag_ids[tag.name]), key[1])
                if slot in expected:
                    continue
                expected[slot] = key
                params.extend(slot)
        if not expected:
            return {}

        query = (
            f"INSERT INTO {self.values_table}(tag_id, value) "
            f"VALUES {_values_placeholders(len(expected), 2)} RETURNING id, tag_id, value"
        )
        try:
            self._cursor.execute(query, params)
            rows = self._cursor.fetchall()
        except psycopg.Error as exc:
            raise IDResolutionFailure(
                f"registering {len(expected)} tag values in {self.values_table} failed",
                exc,
                backend=self.backend,
            ) from exc

        value_ids: TagValueIdMap = {}
        for ident, tag_id, value in rows:
            key = expected.get((int(tag_id), str(value)))
            if key is None:
                raise IDResolutionFailure(
                    f"{self.values_table} returned unknown pair ({tag_id}, {value!r})",
                    backend=self.backend,
                )
            value_ids[key] = int(ident)
        if len(rows) != len(expected) or len(value_ids) != len(expected):
            raise IDResolutionFailure(
                f"expected {len(expected)} tag value ids from {self.values_table}, got {len(rows)}",
                backend=self.backend,
            )
        _ensure_injective(value_ids, backend=self.backend, what="tag values")
        log_structured_event(LOG, logging.DEBUG, "tag_values_resolved", backend=self.backend, count=len(value_ids))
        return value_ids

    def lookup_tag_value_ids(self) -> TagValueIdMap:
        """Reload the value ids a previous setup registered."""
        if self.values_table is None:
            raise IDResolutionFailure("no value table configured", backend=self.backend)
        query = (
            f"SELECT v.id, t.name, v.value FROM {self.values_table} v "
            f"JOIN {self.tags_table} t ON v.tag_id = t.id"
        )
        self._cursor.execute(query)
        return {tag_value_key(name, value): int(ident) for ident, name, value in self._cursor.fetchall()}


def _duplicate_name(exc, names: Sequence[str]) -> str:
    detail = str(getattr(getattr(exc, "diag", None), "message_detail", "") or "")
    for name in names:
        if f"=({name})" in detail:
            return name
    return names[0]
