import pytest
from fastapi.testclient import TestClient

from app import create_app
from core.config import get_settings


@pytest.fixture
def client(settings_env):
    """
    TestClient over the full app; the lifespan indexes the temp library
    (LIBRARY_DIR is redirected by settings_env).
    """
    app = create_app()
    with TestClient(app) as c:
        yield c


def test_app_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "MidiShare"


def test_docs_exist(client):
    response = client.get("/docs")
    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]


def test_lifespan_indexes_library(client, library_dir):
    assert client.app.state.library.root == library_dir.resolve()
    assert len(client.app.state.library.list()) == 2
    assert client.app.state.settings is get_settings()


def test_dev_cors_allows_localhost(monkeypatch, library_dir):
    monkeypatch.setenv("LIBRARY_DIR", str(library_dir))
    monkeypatch.setenv("APP_ENV", "development")
    get_settings.cache_clear()
    try:
        with TestClient(create_app()) as c:
            r = c.get("/api/midis", headers={"Origin": "http://localhost:5173"})
            assert r.status_code == 200
            assert r.headers["access-control-allow-origin"] == "http://localhost:5173"
    finally:
        get_settings.cache_clear()
