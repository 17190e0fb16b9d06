from tagperf.config.loader import (
    CONFIG_PATH_ENV_VAR,
    load_toml,
    load_toml_detailed,
    resolve_defaults_path,
    resolve_override_path,
)
from tagperf.config.settings import (
    SETTINGS_SCHEMA_VERSION,
    BenchmarkConfig,
    ConnectionSettings,
    clear_settings_cache,
    load_settings,
    parse_benchmark_config,
    parse_connection_settings,
)

__all__ = [
    "CONFIG_PATH_ENV_VAR",
    "SETTINGS_SCHEMA_VERSION",
    "BenchmarkConfig",
    "ConnectionSettings",
    "clear_settings_cache",
    "load_settings",
    "load_toml",
    "load_toml_detailed",
    "parse_benchmark_config",
    "parse_connection_settings",
    "resolve_defaults_path",
    "resolve_override_path",
]
