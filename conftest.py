from __future__ import annotations

import os
import tempfile
from pathlib import Path

_DATA_DIR = Path(tempfile.mkdtemp(prefix="township-tests-"))
os.environ["TOWNSHIP_DB_URL"] = f"sqlite:///{_DATA_DIR / 'township.db'}"
os.environ["TOWNSHIP_STORAGE_ROOT"] = str(_DATA_DIR / "storage")

import pytest  # noqa: E402

from township_server import main  # noqa: E402
from township_server.db import get_engine, metadata  # noqa: E402
from township_server.schema_compat import reset_cache  # noqa: E402
from township_server.storage import LocalObjectStore  # noqa: E402
from scripts.seed import main as seed_main  # noqa: E402


@pytest.fixture(autouse=True)
def _seed_db(tmp_path, monkeypatch) -> None:
    metadata.drop_all(get_engine())
    reset_cache()
    seed_main()
    monkeypatch.setattr(main, "object_store", LocalObjectStore(tmp_path / "storage"))
