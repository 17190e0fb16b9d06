"""Command-line entry point: ``tagperf [options]``."""

from __future__ import annotations

import argparse
import logging
import sys
from contextlib import ExitStack
from dataclasses import replace

import psycopg
import pymongo
from pymongo.errors import PyMongoError

from tagperf.backends import BACKEND_NAMES, MONGO_BACKENDS, POSTGRES_BACKENDS, VALID_COUNT_MODES, create_backend
from tagperf.config.settings import BenchmarkConfig, ConnectionSettings, load_settings
from tagperf.errors import TagPerfError
from tagperf.orchestrator import BenchmarkReport, run_benchmark
from tagperf.report import render_markdown, write_json_report, write_markdown_report
from tagperf.util.logging import configure_cli_logging, log_structured_event

LOG = logging.getLogger("tagperf.cli")

SUCCESS_EXIT_CODE = 0
FAIL_EXIT_CODE = 1
DRIVER_CONNECT_ERRORS = (psycopg.Error, PyMongoError)


def _parse_non_negative_int(value: str) -> int:
    parsed = int(value)
    if parsed < 0:
        raise argparse.ArgumentTypeError("value must be a non-negative integer")
    return parsed


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tagperf",
        description="Compare tag-predicate query latency across storage layouts",
    )
    parser.add_argument("--entities", type=_parse_non_negative_int, default=None, help="Number of entities to generate.")
    parser.add_argument("--limit", type=_parse_non_negative_int, default=None, help="Row limit per query; 0 means unbounded.")
    parser.add_argument("--age-threshold", type=_parse_non_negative_int, default=None)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument(
        "--backend",
        dest="backends",
        action="append",
        choices=BACKEND_NAMES,
        default=None,
        help="Backend to run; repeat to select several. Defaults to the configured set.",
    )
    parser.add_argument("--count-mode", choices=sorted(VALID_COUNT_MODES), default=None)
    parser.add_argument("--skip-setup", action="store_true", help="Query data left by a previous run.")
    parser.add_argument("--postgres-dsn", default=None)
    parser.add_argument("--mongo-uri", default=None)
    parser.add_argument("--mongo-database", default=None)
    parser.add_argument("--json-out", default=None)
    parser.add_argument("--markdown-out", default=None)
    parser.add_argument("--log-level", default="INFO")
    return parser


def resolve_config(args: argparse.Namespace, config: BenchmarkConfig) -> BenchmarkConfig:
    overrides = {
        "entity_count": args.entities,
        "age_threshold": args.age_threshold,
        "seed": args.seed,
        "count_mode": args.count_mode,
        "backends": tuple(dict.fromkeys(args.backends)) if args.backends else None,
    }
    resolved = config.with_overrides(**overrides)
    if args.limit is not None:
        resolved = replace(resolved, query_row_limit=args.limit or None)
    return resolved


def resolve_connections(args: argparse.Namespace, connections: ConnectionSettings) -> ConnectionSettings:
    return ConnectionSettings(
        postgres_dsn=args.postgres_dsn or connections.postgres_dsn,
        mongo_uri=args.mongo_uri or connections.mongo_uri,
        mongo_database=args.mongo_database or connections.mongo_database,
    )


def open_postgres(dsn: str):
    return psycopg.connect(dsn, autocommit=True)


def open_mongo(uri: str):
    return pymongo.MongoClient(uri)


def build_backends(config: BenchmarkConfig, connections: ConnectionSettings, stack: ExitStack) -> list:
    postgres = None
    mongo_database = None
    if POSTGRES_BACKENDS.intersection(config.backends):
        postgres = stack.enter_context(open_postgres(connections.postgres_dsn))
    if MONGO_BACKENDS.intersection(config.backends):
        client = stack.enter_context(open_mongo(connections.mongo_uri))
        mongo_database = client[connections.mongo_database]
    return [
        create_backend(
            name,
            postgres=postgres,
            mongo_database=mongo_database,
            progress_interval=config.progress_interval,
            query_timeout_ms=config.query_timeout_ms,
        )
        for name in config.backends
    ]


def _emit(report: BenchmarkReport, args: argparse.Namespace) -> None:
    if args.json_out:
        write_json_report(report, args.json_out)
    if args.markdown_out:
        write_markdown_report(report, args.markdown_out)
    sys.stdout.write(render_markdown(report))
    sys.stdout.flush()


def run(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    configure_cli_logging(args.log_level)
    config, connections = load_settings()
    config = resolve_config(args, config)
    connections = resolve_connections(args, connections)

    with ExitStack() as stack:
        backends = build_backends(config, connections, stack)
        report = run_benchmark(config, backends, run_setup=not args.skip_setup)
    _emit(report, args)
    return SUCCESS_EXIT_CODE if report.ok else FAIL_EXIT_CODE


def main(argv: list[str] | None = None) -> int:
    try:
        return run(argv)
    except TagPerfError as exc:
        log_structured_event(
            LOG,
            logging.ERROR,
            "benchmark_failed",
            backend=exc.backend,
            phase=exc.phase,
            error_type=type(exc).__name__,
        )
        sys.stderr.write(f"tagperf: {exc}\n")
        return FAIL_EXIT_CODE
    except DRIVER_CONNECT_ERRORS as exc:
        log_structured_event(
            LOG,
            logging.ERROR,
            "benchmark_failed",
            phase="connect",
            error_type=type(exc).__name__,
        )
        sys.stderr.write(f"tagperf: could not connect: {exc}\n")
        return FAIL_EXIT_CODE


if __name__ == "__main__":
    raise SystemExit(main())
