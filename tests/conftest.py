from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from prodtrack.core.metrics import metrics_registry  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics_registry.reset()
    yield
    metrics_registry.reset()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    for name in (
        "PRODTRACK_SPREADSHEET_ID",
        "PRODTRACK_CREDENTIALS_PATH",
        "PRODTRACK_ID_COLUMN",
        "PRODTRACK_API_BASE_URL",
        "PRODTRACK_LOG_MAX_BYTES",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PRODTRACK_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("PRODTRACK_HOME", str(tmp_path / "home"))
