from __future__ import annotations

from pathlib import Path

import pytest

from meshfeed.config import CONFIG_ENV_OVERRIDES
from meshfeed.sync.workers import WorkerPool


@pytest.fixture(autouse=True)
def _isolate_meshfeed_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in CONFIG_ENV_OVERRIDES.values():
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MESHFEED_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("MESHFEED_TOKEN_DB", str(tmp_path / "tokens.sqlite"))


@pytest.fixture
def pool():
    workers = WorkerPool(2, queue_size=8)
    yield workers
    workers.close()
