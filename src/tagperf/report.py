from __future__ import annotations

from pathlib import Path
from typing import Any

from tagperf.orchestrator import BenchmarkReport
from tagperf.util.deps import require_polars
from tagperf.util.json import json_dumps_pretty


def _fmt_ms(value: Any) -> str:
    if value is None:
        return "n/a"
    try:
        return f"{float(value):,.2f}"
    except (TypeError, ValueError):
        return "n/a"


def _fmt_optional(value: Any) -> str:
    return "-" if value is None else str(value)


def _render_setup_table(report: BenchmarkReport) -> list[str]:
    if not report.setups:
        return []
    lines = [
        "### Setup",
        "",
        "| Backend | Entities | Batches | Batch size | ms |",
        "| :--- | ---: | ---: | ---: | ---: |",
    ]
    for setup in report.setups:
        lines.append(
            f"| {setup.backend} | {setup.entity_count} | {setup.batch_count} | "
            f"{setup.batch_size} | {_fmt_ms(setup.elapsed_ms)} |"
        )
    lines.append("")
    return lines


def _render_query_table(report: BenchmarkReport) -> list[str]:
    lines = [
        "### Queries",
        "",
        "| Backend | Predicate | Count | Expected | ms | Status |",
        "| :--- | :--- | ---: | ---: | ---: | :--- |",
    ]
    for result in report.results:
        expected = report.expected_counts.get(result.predicate)
        status = "ok" if expected is None or expected == result.count else "mismatch"
        lines.append(
            f"| {result.backend} | {result.predicate} | {result.count} | "
            f"{_fmt_optional(expected)} | {_fmt_ms(result.elapsed_ms)} | {status} |"
        )
    for failure in report.failures:
        lines.append(
            f"| {failure.backend} | {failure.predicate} | - | "
            f"{_fmt_optional(report.expected_counts.get(failure.predicate))} | n/a | "
            f"failed ({failure.error_type}) |"
        )
    lines.append("")
    return lines


def render_markdown(report: BenchmarkReport) -> str:
    lines = [
        f"## Benchmark {report.job_id}",
        "",
        f"- Entities: `{_fmt_optional(report.entity_count)}`",
        f"- Row limit: `{_fmt_optional(report.limit)}`",
        f"- Count mode: `{report.count_mode}`",
        f"- Status: `{'ok' if report.ok else 'failed'}`",
        "",
    ]
    lines.extend(_render_setup_table(report))
    lines.extend(_render_query_table(report))
    if report.mismatches:
        lines.append("### Mismatches")
        lines.append("")
        lines.extend(f"- {mismatch.describe()}" for mismatch in report.mismatches)
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def write_json_report(report: BenchmarkReport, path) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json_dumps_pretty(report.to_dict()) + "\n", encoding="utf-8")
    return target


def write_markdown_report(report: BenchmarkReport, path) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("a", encoding="utf-8") as handle:
        handle.write(render_markdown(report) + "\n")
    return target


def report_dataframe(report: BenchmarkReport):
    """One row per (backend, predicate), failed queries included with a null count."""
    polars_module = require_polars("report_dataframe()")
    rows = []
    for result in report.results:
        rows.append(
            {
                "backend": result.backend,
                "predicate": result.predicate,
                "count": result.count,
                "expected": report.expected_counts.get(result.predicate),
                "elapsed_ms": result.elapsed_ms,
                "count_mode": result.count_mode,
                "failed": False,
            }
        )
    for failure in report.failures:
        rows.append(
            {
                "backend": failure.backend,
                "predicate": failure.predicate,
                "count": None,
                "expected": report.expected_counts.get(failure.predicate),
                "elapsed_ms": None,
                "count_mode": report.count_mode,
                "failed": True,
            }
        )
    schema = {
        "backend": polars_module.Utf8,
        "predicate": polars_module.Utf8,
        "count": polars_module.Int64,
        "expected": polars_module.Int64,
        "elapsed_ms": polars_module.Float64,
        "count_mode": polars_module.Utf8,
        "failed": polars_module.Boolean,
    }
    return polars_module.from_dicts(rows, schema=schema)
