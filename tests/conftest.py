from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from instructor_hub.bootstrap import Bootstrapper
from instructor_hub.config import ADMIN_TOKEN_ENV, AppConfig

ADMIN_TOKEN = "letmein"


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.delenv(ADMIN_TOKEN_ENV, raising=False)
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/instructor_hub.db",
            "blob_root": "storage/blobs",
            "admin_token": ADMIN_TOKEN,
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config
