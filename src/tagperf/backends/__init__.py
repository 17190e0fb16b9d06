"""The closed set of storage layouts, selected by tag."""

from __future__ import annotations

from tagperf.backends.array_column import ArrayColumnBackend
from tagperf.backends.base import (
    COUNT_MODE_ROWS,
    COUNT_MODE_SERVER,
    VALID_COUNT_MODES,
    Backend,
    QueryResult,
    SetupResult,
)
from tagperf.backends.document_store import DocumentStoreBackend
from tagperf.backends.join_table import JoinTableBackend
from tagperf.backends.json_column import JsonColumnBackend

BACKEND_CLASSES: dict[str, type[Backend]] = {
    JoinTableBackend.name: JoinTableBackend,
    ArrayColumnBackend.name: ArrayColumnBackend,
    JsonColumnBackend.name: JsonColumnBackend,
    DocumentStoreBackend.name: DocumentStoreBackend,
}
BACKEND_NAMES = tuple(BACKEND_CLASSES)
POSTGRES_BACKENDS = frozenset({JoinTableBackend.name, ArrayColumnBackend.name, JsonColumnBackend.name})
MONGO_BACKENDS = frozenset({DocumentStoreBackend.name})


def create_backend(name: str, *, postgres=None, mongo_database=None, **kwargs) -> Backend:
    try:
        backend_cls = BACKEND_CLASSES[name]
    except KeyError:
        raise ValueError(f"unknown backend {name!r}; expected one of {', '.join(BACKEND_NAMES)}") from None
    if name in MONGO_BACKENDS:
        if mongo_database is None:
            raise ValueError(f"backend {name!r} needs a MongoDB database handle")
        return backend_cls(mongo_database, **kwargs)
    if postgres is None:
        raise ValueError(f"backend {name!r} needs a PostgreSQL connection")
    return backend_cls(postgres, **kwargs)


__all__ = [
    "ArrayColumnBackend",
    "BACKEND_CLASSES",
    "BACKEND_NAMES",
    "Backend",
    "COUNT_MODE_ROWS",
    "COUNT_MODE_SERVER",
    "DocumentStoreBackend",
    "JoinTableBackend",
    "JsonColumnBackend",
    "MONGO_BACKENDS",
    "POSTGRES_BACKENDS",
    "QueryResult",
    "SetupResult",
    "VALID_COUNT_MODES",
    "create_backend",
]
