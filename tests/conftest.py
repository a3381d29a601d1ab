import pytest
from fastapi.testclient import TestClient

from airbitrage.config import settings
from airbitrage.main import app


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    """Keep ledgers and key files written during tests out of the working tree."""
    monkeypatch.setattr(settings, "data_dir", str(tmp_path / "data"))
    monkeypatch.setattr(settings, "site_password", None)
    return tmp_path / "data"


@pytest.fixture
def client():
    """API client; dependency overrides installed by a test are dropped afterwards."""
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
