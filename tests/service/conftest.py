"""Fixtures for service tests: the whole application on a temporary data root."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.utils.config import get_settings


@pytest.fixture
def data_root(tmp_path) -> Path:
    return tmp_path / "_data"


@pytest.fixture
def api(data_root, monkeypatch, fake_client):
    """Running application wired to a temporary data root and a fake Feishu client."""
    monkeypatch.setenv("DATA_ROOT", str(data_root))
    monkeypatch.setenv("FEISHU_APP_ID", "cli_test")
    monkeypatch.setenv("FEISHU_APP_SECRET", "secret")
    monkeypatch.setenv("SWEEP_INTERVAL_SECONDS", "0")
    monkeypatch.delenv("FEISHU_VERIFICATION_TOKEN", raising=False)
    get_settings.cache_clear()

    import app.main as main_module
    monkeypatch.setattr(main_module, "get_feishu_client", lambda: fake_client)

    with TestClient(main_module.app) as client:
        yield client

    get_settings.cache_clear()

