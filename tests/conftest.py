from __future__ import annotations

from pathlib import Path

import pytest

from tagperf.config.settings import clear_settings_cache
from tagperf.domain import generate_entities, generate_tags
from tests.live_test_config import LIVE_TESTS_ENABLED


def pytest_ignore_collect(collection_path, config):  # pragma: no cover - pytest hook
    del config
    if LIVE_TESTS_ENABLED:
        return False
    path = Path(str(collection_path))
    return path.name.startswith("live_")


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    for name in ("TAGPERF_CONFIG_PATH", "TAGPERF_POSTGRES_DSN", "TAGPERF_MONGO_URI", "TAGPERF_MONGO_DATABASE"):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def tags():
    return generate_tags()


@pytest.fixture
def entities(tags):
    return generate_entities(tags, 500, seed=7)
