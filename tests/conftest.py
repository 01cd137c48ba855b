import os
import tempfile
from pathlib import Path

# point the package at throwaway paths before anything imports it
_TMP = Path(tempfile.mkdtemp(prefix="homedigest-tests-"))
os.environ.setdefault("HOMEDIGEST_DB", str(_TMP / "import.db"))
os.environ.setdefault("HOMEDIGEST_CONFIG", str(_TMP / "homedigest_config.yaml"))

from unittest.mock import AsyncMock

import pytest

from homedigest.api import db
from homedigest.app import config


@pytest.fixture(autouse=True)
def fresh_db(tmp_path, monkeypatch):
    """Every test gets its own empty sqlite file and settings file."""
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "homedigest.db")
    monkeypatch.setattr(config, "CONFIG_PATH", tmp_path / "homedigest_config.yaml")
    db.init_db()
    return db


@pytest.fixture
def ha():
    """Home Assistant client double with every collector endpoint returning nothing."""
    client = AsyncMock()
    client.states.return_value = []
    client.addons.return_value = []
    client.config_entries.return_value = []
    client.system_log.return_value = []
    client.automation_traces.return_value = []
    client.call_service.return_value = {}
    return client
