"""Run every selected backend through setup and the fixed predicate shapes.

Backends run one after another so no two layouts compete for the machine
while being timed. A setup failure aborts the run; a query failure is
recorded against its backend and predicate and the run carries on.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Mapping, Sequence

from tagperf.backends.base import Backend, QueryResult, SetupResult
from tagperf.config.settings import BenchmarkConfig
from tagperf.domain import Entity, Tag, generate_entities, generate_tags
from tagperf.errors import PredicateTranslationMismatch, QueryExecutionFailure
from tagperf.predicate import Predicate, standard_predicates
from tagperf.util.logging import log_structured_event, new_job_id

LOG = logging.getLogger("tagperf.orchestrator")


@dataclass(frozen=True)
class QueryFailureRecord:
    backend: str
    predicate: str
    phase: str
    error_type: str
    message: str

    @classmethod
    def from_exception(cls, exc: QueryExecutionFailure) -> "QueryFailureRecord":
        cause = exc.cause if exc.cause is not None else exc
        return cls(
            backend=str(exc.backend),
            predicate=str(exc.predicate),
            phase=str(exc.phase),
            error_type=type(cause).__name__,
            message=str(exc),
        )


@dataclass(frozen=True)
class TranslationMismatch:
    predicate: str
    counts: Mapping[str, int]
    expected: int | None = None

    def describe(self) -> str:
        observed = ", ".join(f"{name}={count}" for name, count in sorted(self.counts.items()))
        if self.expected is None:
            return f"{self.predicate}: backends disagree ({observed})"
        return f"{self.predicate}: expected {self.expected} ({observed})"


@dataclass
class BenchmarkReport:
    job_id: str
    entity_count: int | None
    limit: int | None
    count_mode: str
    setups: list[SetupResult] = field(default_factory=list)
    results: list[QueryResult] = field(default_factory=list)
    failures: list[QueryFailureRecord] = field(default_factory=list)
    mismatches: list[TranslationMismatch] = field(default_factory=list)
    expected_counts: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.mismatches

    def counts_for(self, predicate: str) -> dict[str, int]:
        return {result.backend: result.count for result in self.results if result.predicate == predicate}

    def raise_for_mismatch(self) -> None:
        if self.mismatches:
            summary = "; ".join(mismatch.describe() for mismatch in self.mismatches)
            raise PredicateTranslationMismatch(summary, mismatches=self.mismatches)

    def to_dict(self) -> dict:
        payload = {
            "job_id": self.job_id,
            "entity_count": self.entity_count,
            "limit": self.limit,
            "count_mode": self.count_mode,
            "ok": self.ok,
            "expected_counts": dict(self.expected_counts),
            "setups": [],
            "results": [],
            "failures": [asdict(failure) for failure in self.failures],
            "mismatches": [
                {"predicate": m.predicate, "counts": dict(m.counts), "expected": m.expected}
                for m in self.mismatches
            ],
        }
        for setup in self.setups:
            row = asdict(setup)
            row["elapsed_ms"] = setup.elapsed_ms
            payload["setups"].append(row)
        for result in self.results:
            row = asdict(result)
            row["elapsed_ms"] = result.elapsed_ms
            payload["results"].append(row)
        return payload


def expected_count(predicate: Predicate, entities: Sequence[Entity], limit: int | None) -> int:
    matched = predicate.count_matches(entities)
    return matched if limit is None else min(matched, limit)


def find_mismatches(
    report: BenchmarkReport,
    predicates: Sequence[Predicate],
) -> list[TranslationMismatch]:
    mismatches = []
    for predicate in predicates:
        counts = report.counts_for(predicate.label)
        if not counts:
            continue
        expected = report.expected_counts.get(predicate.label)
        if expected is None:
            if len(set(counts.values())) > 1:
                mismatches.append(TranslationMismatch(predicate.label, counts))
        elif any(count != expected for count in counts.values()):
            mismatches.append(TranslationMismatch(predicate.label, counts, expected))
    return mismatches


def run_benchmark(
    config: BenchmarkConfig,
    backends: Sequence[Backend],
    *,
    tags: Sequence[Tag] | None = None,
    entities: Sequence[Entity] | None = None,
    run_setup: bool = True,
) -> BenchmarkReport:
    job_id = new_job_id("bench")
    limit = config.query_row_limit or None
    tags = list(tags) if tags is not None else generate_tags()
    if entities is None and run_setup:
        entities = generate_entities(tags, config.entity_count, seed=config.seed)
    predicates = standard_predicates(config.age_threshold)

    report = BenchmarkReport(
        job_id=job_id,
        entity_count=len(entities) if entities is not None else None,
        limit=limit,
        count_mode=config.count_mode,
    )
    if entities is not None:
        for predicate in predicates:
            report.expected_counts[predicate.label] = expected_count(predicate, entities, limit)

    log_structured_event(
        LOG,
        logging.INFO,
        "benchmark_start",
        job_id=job_id,
        backends=[backend.name for backend in backends],
        entities=report.entity_count,
        limit=limit,
        count_mode=config.count_mode,
    )
    for backend in backends:
        if run_setup:
            report.setups.append(
                backend.setup(entities, tags, batch_size=config.batch_size_for(backend.name))
            )
        for predicate in predicates:
            try:
                result = backend.run_query(predicate, limit=limit, count_mode=config.count_mode)
            except QueryExecutionFailure as exc:
                report.failures.append(QueryFailureRecord.from_exception(exc))
                continue
            report.results.append(result)

    report.mismatches.extend(find_mismatches(report, predicates))
    for mismatch in report.mismatches:
        log_structured_event(
            LOG,
            logging.ERROR,
            "translation_mismatch",
            job_id=job_id,
            predicate=mismatch.predicate,
            expected=mismatch.expected,
            counts=dict(mismatch.counts),
        )
    log_structured_event(
        LOG,
        logging.INFO,
        "benchmark_done",
        job_id=job_id,
        ok=report.ok,
        results=len(report.results),
        failures=len(report.failures),
        mismatches=len(report.mismatches),
    )
    return report
