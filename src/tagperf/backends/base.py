from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, ClassVar, Iterable, Sequence

from tagperf.batching import DEFAULT_PROGRESS_INTERVAL, BatchBuffer, ProgressCounter
from tagperf.domain import Entity, Tag
from tagperf.errors import (
    BatchWriteFailure,
    IDResolutionFailure,
    QueryExecutionFailure,
    SchemaTeardownFailure,
    SetupFailure,
    TagPerfError,
)
from tagperf.predicate import Predicate
from tagperf.util.logging import log_structured_event
from tagperf.util.timing import elapsed_ms, timed

LOG = logging.getLogger("tagperf.backends")

COUNT_MODE_ROWS = "rows"
COUNT_MODE_SERVER = "server"
VALID_COUNT_MODES = frozenset({COUNT_MODE_ROWS, COUNT_MODE_SERVER})


def normalize_limit(limit) -> int | None:
    if limit is None:
        return None
    value = int(limit)
    return value if value > 0 else None


@dataclass(frozen=True)
class SetupResult:
    backend: str
    entity_count: int
    batch_count: int
    batch_size: int
    elapsed_seconds: float

    @property
    def elapsed_ms(self) -> float:
        return elapsed_ms(self.elapsed_seconds)


@dataclass(frozen=True)
class QueryResult:
    backend: str
    predicate: str
    count: int
    elapsed_seconds: float
    limit: int | None = None
    count_mode: str = COUNT_MODE_ROWS

    @property
    def elapsed_ms(self) -> float:
        return elapsed_ms(self.elapsed_seconds)


class Backend(abc.ABC):
    """One physical layout: how entities are loaded and how predicates are asked.

    Subclasses fill in the hooks; the ordering of setup steps, batching,
    progress reporting, timing and error classification live here so every
    layout is measured the same way.
    """

    name: ClassVar[str]
    default_batch_size: ClassVar[int] = 100
    driver_errors: ClassVar[tuple[type[BaseException], ...]] = ()

    def __init__(self, *, progress_interval: int = DEFAULT_PROGRESS_INTERVAL, query_timeout_ms: int | None = None):
        self.progress_interval = int(progress_interval)
        self.query_timeout_ms = int(query_timeout_ms) if query_timeout_ms else None

    def __repr__(self):
        return f"<{type(self).__name__} name={self.name!r}>"

    # -- hooks -------------------------------------------------------------

    @abc.abstractmethod
    def _write_scope(self):
        """Context manager yielding the handle every setup step writes through."""

    @abc.abstractmethod
    def _recreate_schema(self, scope) -> None:
        ...

    def _resolve_ids(self, scope, tags: Sequence[Tag]) -> None:
        return None

    @abc.abstractmethod
    def _write_batch(self, scope, batch: Sequence[Entity]) -> None:
        ...

    @abc.abstractmethod
    def compile(self, predicate: Predicate, *, limit: int | None = None, count: bool = False) -> Any:
        """Translate ``predicate`` into this backend's native query form."""

    @abc.abstractmethod
    def execute(self, query) -> int:
        """Run a compiled query and return the number of matches."""

    def describe_query(self, query) -> dict[str, object]:
        return {"query": repr(query)}

    @abc.abstractmethod
    def stored_entity_count(self) -> int:
        """Number of entities currently persisted by this layout."""

    # -- setup -------------------------------------------------------------

    def _run_step(self, failure_cls, description: str, fn, *args):
        try:
            return fn(*args)
        except TagPerfError as exc:
            if exc.backend is None:
                exc.backend = self.name
            raise
        except self.driver_errors as exc:
            raise failure_cls(f"{description} failed", exc, backend=self.name) from exc

    def _flush_batch(self, scope, state: dict, batch: Sequence[Entity]) -> None:
        state["batch_number"] += 1
        try:
            self._write_batch(scope, batch)
        except TagPerfError as exc:
            if exc.backend is None:
                exc.backend = self.name
            raise
        except self.driver_errors as exc:
            raise BatchWriteFailure(
                f"writing batch {state['batch_number']} ({len(batch)} entities) failed",
                exc,
                backend=self.name,
                batch_number=state["batch_number"],
                batch_size=len(batch),
            ) from exc

    def setup(self, entities: Iterable[Entity], tags: Sequence[Tag], *, batch_size: int | None = None) -> SetupResult:
        """Drop, recreate and load this backend's schema inside one write scope."""
        size = int(batch_size or self.default_batch_size)
        if size <= 0:
            raise ValueError("batch_size must be a positive integer")
        log_structured_event(LOG, logging.INFO, "setup_start", backend=self.name, batch_size=size)
        state = {"batch_number": 0}
        counter = ProgressCounter(self.name, self.progress_interval, logger=LOG)
        with timed() as timing:
            try:
                with self._write_scope() as scope:
                    self._run_step(SchemaTeardownFailure, "recreating schema", self._recreate_schema, scope)
                    self._run_step(IDResolutionFailure, "resolving surrogate ids", self._resolve_ids, scope, tags)
                    with BatchBuffer(size, partial(self._flush_batch, scope, state)) as buffer:
                        for entity in entities:
                            buffer.add(entity)
                            counter.increment()
            except SetupFailure as exc:
                log_structured_event(
                    LOG,
                    logging.ERROR,
                    "setup_failed",
                    backend=self.name,
                    error_type=type(exc).__name__,
                    processed=counter.count,
                )
                raise
            except self.driver_errors as exc:
                log_structured_event(
                    LOG,
                    logging.ERROR,
                    "setup_failed",
                    backend=self.name,
                    error_type=type(exc).__name__,
                    processed=counter.count,
                )
                raise BatchWriteFailure("finalizing setup failed", exc, backend=self.name) from exc
        result = SetupResult(
            backend=self.name,
            entity_count=counter.count,
            batch_count=state["batch_number"],
            batch_size=size,
            elapsed_seconds=timing["seconds"],
        )
        log_structured_event(
            LOG,
            logging.INFO,
            "setup_done",
            backend=self.name,
            entities=result.entity_count,
            batches=result.batch_count,
            elapsed_ms=result.elapsed_ms,
        )
        return result

    # -- queries -----------------------------------------------------------

    def run_query(self, predicate: Predicate, *, limit: int | None = None, count_mode: str = COUNT_MODE_ROWS) -> QueryResult:
        if count_mode not in VALID_COUNT_MODES:
            raise ValueError(f"count_mode must be one of {sorted(VALID_COUNT_MODES)}")
        limit = normalize_limit(limit)
        try:
            query = self.compile(predicate, limit=limit, count=count_mode == COUNT_MODE_SERVER)
        except QueryExecutionFailure:
            raise
        except (ValueError, TagPerfError, *self.driver_errors) as exc:
            raise QueryExecutionFailure(
                f"compiling {predicate.label!r} failed",
                exc,
                backend=self.name,
                predicate=predicate.label,
            ) from exc
        log_structured_event(LOG, logging.DEBUG, "query_compiled", backend=self.name, predicate=predicate.label, **self.describe_query(query))

        failure = None
        with timed() as timing:
            try:
                count = self.execute(query)
            except self.driver_errors as exc:
                failure = exc
        if failure is not None:
            log_structured_event(
                LOG,
                logging.ERROR,
                "query_failed",
                backend=self.name,
                predicate=predicate.label,
                error_type=type(failure).__name__,
                elapsed_ms=elapsed_ms(timing["seconds"]),
            )
            raise QueryExecutionFailure(
                f"running {predicate.label!r} failed",
                failure,
                backend=self.name,
                predicate=predicate.label,
            ) from failure
        result = QueryResult(
            backend=self.name,
            predicate=predicate.label,
            count=int(count),
            elapsed_seconds=timing["seconds"],
            limit=limit,
            count_mode=count_mode,
        )
        log_structured_event(
            LOG,
            logging.INFO,
            "query_done",
            backend=self.name,
            predicate=predicate.label,
            count=result.count,
            elapsed_ms=result.elapsed_ms,
        )
        return result

