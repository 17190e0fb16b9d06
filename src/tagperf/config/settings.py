from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Any, Mapping

from tagperf.backends import BACKEND_CLASSES, BACKEND_NAMES, COUNT_MODE_ROWS, VALID_COUNT_MODES
from tagperf.config.loader import load_override_detailed, load_packaged_defaults_detailed
from tagperf.predicate import DEFAULT_AGE_THRESHOLD
from tagperf.util.logging import log_structured_event

SETTINGS_SCHEMA_VERSION = 1
_MAX_CONFIG_STRING_LENGTH = 512
_MAX_CONFIG_INT = 100_000_000
_SETTINGS_LOG = logging.getLogger("tagperf.config.settings")

ENV_POSTGRES_DSN = "TAGPERF_POSTGRES_DSN"
ENV_MONGO_URI = "TAGPERF_MONGO_URI"
ENV_MONGO_DATABASE = "TAGPERF_MONGO_DATABASE"


def _default_batch_sizes() -> dict[str, int]:
    return {name: backend_cls.default_batch_size for name, backend_cls in BACKEND_CLASSES.items()}


@dataclass(frozen=True)
class BenchmarkConfig:
    entity_count: int = 100_000
    batch_size_per_backend: Mapping[str, int] = field(default_factory=_default_batch_sizes)
    query_row_limit: int | None = None
    age_threshold: int = DEFAULT_AGE_THRESHOLD
    seed: int | None = None
    backends: tuple[str, ...] = BACKEND_NAMES
    count_mode: str = COUNT_MODE_ROWS
    progress_interval: int = 10_000
    query_timeout_ms: int | None = None

    def batch_size_for(self, backend: str) -> int | None:
        """Configured batch size, or None to let the backend use its own default."""
        size = self.batch_size_per_backend.get(backend)
        return int(size) if size else None

    def with_overrides(self, **changes) -> "BenchmarkConfig":
        return replace(self, **{key: value for key, value in changes.items() if value is not None})


@dataclass(frozen=True)
class ConnectionSettings:
    postgres_dsn: str = "postgresql://postgres@localhost:8000/perf?sslmode=disable"
    mongo_uri: str = "mongodb://localhost:8001"
    mongo_database: str = "cats"


_BUILTIN_BENCHMARK_CONFIG = BenchmarkConfig()
_BUILTIN_CONNECTION_SETTINGS = ConnectionSettings()


def _to_mapping(value: Any) -> Mapping[str, Any]:
    if isinstance(value, Mapping):
        return value
    return {}


def _parse_positive_int(raw: Any, default: int) -> int:
    if raw is None or isinstance(raw, bool):
        return int(default)
    try:
        parsed = int(raw)
    except (TypeError, ValueError):
        return int(default)
    if parsed <= 0:
        return int(default)
    return min(parsed, _MAX_CONFIG_INT)


def _parse_non_negative_int(raw: Any, default: int) -> int:
    if raw is None or isinstance(raw, bool):
        return int(default)
    try:
        parsed = int(raw)
    except (TypeError, ValueError):
        return int(default)
    if parsed < 0:
        return int(default)
    return min(parsed, _MAX_CONFIG_INT)


def _parse_limit(raw: Any, default: int | None) -> int | None:
    """``0``, ``"none"`` and ``"unlimited"`` all mean no row limit."""
    if raw is None:
        return default
    if isinstance(raw, str) and raw.strip().lower() in {"", "none", "null", "unlimited"}:
        return None
    if isinstance(raw, bool):
        return default
    try:
        parsed = int(raw)
    except (TypeError, ValueError):
        return default
    if parsed < 0:
        return default
    return min(parsed, _MAX_CONFIG_INT) or None


def _parse_seed(raw: Any, default: int | None) -> int | None:
    if raw is None:
        return default
    if isinstance(raw, str) and raw.strip().lower() in {"", "none", "null", "random"}:
        return None
    if isinstance(raw, bool):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _parse_choice(raw: Any, default: str, valid_values: frozenset[str]) -> str:
    if raw is None:
        return str(default)
    value = str(raw).strip().lower()
    return value if value in valid_values else str(default)


def _parse_small_string(raw: Any, default: str) -> str:
    if raw is None:
        return str(default)
    value = str(raw).strip()
    if not value or len(value) > _MAX_CONFIG_STRING_LENGTH:
        return str(default)
    return value


def _parse_backends(raw: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(raw, str):
        raw = [token for token in raw.split(",")]
    if not isinstance(raw, (list, tuple)):
        return tuple(default)
    result: list[str] = []
    for value in raw:
        name = str(value).strip().lower()
        if name in BACKEND_CLASSES and name not in result:
            result.append(name)
    return tuple(result) if result else tuple(default)


def _parse_batch_sizes(raw: Any, default: Mapping[str, int]) -> dict[str, int]:
    sizes = dict(default)
    for name, value in _to_mapping(raw).items():
        key = str(name).strip().lower()
        if key in BACKEND_CLASSES:
            sizes[key] = _parse_positive_int(value, sizes.get(key, BACKEND_CLASSES[key].default_batch_size))
    return sizes


def _schema_status(payload: Mapping[str, Any], *, require_schema: bool) -> tuple[bool, str]:
    raw = _to_mapping(payload.get("meta")).get("schema_version")
    if raw is None:
        return (False, "missing") if require_schema else (True, "absent")
    try:
        version = int(raw)
    except (TypeError, ValueError):
        return False, "mismatch"
    if version != SETTINGS_SCHEMA_VERSION:
        return False, "mismatch"
    return True, "ok"


def parse_benchmark_config(payload: Mapping[str, Any] | None, *, base: BenchmarkConfig | None = None) -> BenchmarkConfig:
    root = _to_mapping(payload)
    bench = _to_mapping(root.get("benchmark"))
    builtin = _BUILTIN_BENCHMARK_CONFIG if base is None else base
    timeout = _parse_non_negative_int(bench.get("query_timeout_ms"), builtin.query_timeout_ms or 0)
    return BenchmarkConfig(
        entity_count=_parse_non_negative_int(bench.get("entity_count"), builtin.entity_count),
        batch_size_per_backend=_parse_batch_sizes(root.get("batch_size"), builtin.batch_size_per_backend),
        query_row_limit=_parse_limit(bench.get("query_row_limit"), builtin.query_row_limit),
        age_threshold=_parse_non_negative_int(bench.get("age_threshold"), builtin.age_threshold),
        seed=_parse_seed(bench.get("seed"), builtin.seed),
        backends=_parse_backends(bench.get("backends"), builtin.backends),
        count_mode=_parse_choice(bench.get("count_mode"), builtin.count_mode, VALID_COUNT_MODES),
        progress_interval=_parse_positive_int(bench.get("progress_interval"), builtin.progress_interval),
        query_timeout_ms=timeout or None,
    )


def parse_connection_settings(
    payload: Mapping[str, Any] | None,
    *,
    base: ConnectionSettings | None = None,
    environ: Mapping[str, str] | None = None,
) -> ConnectionSettings:
    root = _to_mapping(payload)
    raw = _to_mapping(root.get("connections"))
    builtin = _BUILTIN_CONNECTION_SETTINGS if base is None else base
    env = os.environ if environ is None else environ
    return ConnectionSettings(
        postgres_dsn=_parse_small_string(env.get(ENV_POSTGRES_DSN) or raw.get("postgres_dsn"), builtin.postgres_dsn),
        mongo_uri=_parse_small_string(env.get(ENV_MONGO_URI) or raw.get("mongo_uri"), builtin.mongo_uri),
        mongo_database=_parse_small_string(
            env.get(ENV_MONGO_DATABASE) or raw.get("mongo_database"),
            builtin.mongo_database,
        ),
    )


@lru_cache(maxsize=1)
def _load_settings_cached() -> tuple[BenchmarkConfig, ConnectionSettings, str, str | None]:
    packaged = load_packaged_defaults_detailed()
    payload = packaged.get("payload") if packaged.get("ok") else None
    source = "packaged_toml"
    error_kind = packaged.get("error_kind")
    if not isinstance(payload, Mapping) or not _schema_status(payload, require_schema=True)[0]:
        payload = {}
        source = "builtin"
        error_kind = error_kind or "packaged_schema_mismatch"
    config = parse_benchmark_config(payload)
    connections = parse_connection_settings(payload, environ={})

    override = load_override_detailed()
    if override is not None:
        override_payload = override.get("payload")
        if override.get("ok") and _schema_status(override_payload, require_schema=False)[0]:
            config = parse_benchmark_config(override_payload, base=config)
            connections = parse_connection_settings(override_payload, base=connections, environ={})
            source = "override_toml"
            error_kind = None
        else:
            error_kind = f"override_{override.get('error_kind') or 'schema_mismatch'}"
    return config, connections, source, error_kind


def load_settings() -> tuple[BenchmarkConfig, ConnectionSettings]:
    config, connections, source, error_kind = _load_settings_cached()
    level = logging.WARNING if error_kind else logging.DEBUG
    log_structured_event(_SETTINGS_LOG, level, "settings_source", source=source, error_kind=error_kind)
    # Environment variables win over every file and are re-read on each call.
    return config, parse_connection_settings({}, base=connections)


def clear_settings_cache() -> None:
    _load_settings_cached.cache_clear()
