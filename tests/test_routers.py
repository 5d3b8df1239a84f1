# tests/test_routers.py
from __future__ import annotations

import random

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.library import MidiLibrary
from routers import files, midis


@pytest.fixture
def library(library_dir):
    lib = MidiLibrary(library_dir, rng=random.Random(3))
    lib.refresh()
    return lib


@pytest.fixture
def client(library):
    app = FastAPI()
    app.include_router(files.router)
    app.include_router(midis.router)
    app.state.library = library
    return TestClient(app)


# --- files ---

def test_stream_by_id_is_inline_midi(client, library_dir):
    r = client.get("/api/files/stream/scale")
    assert r.status_code == 200
    assert r.headers["content-type"] == "audio/midi"
    assert r.headers["content-disposition"].startswith("inline")
    assert r.content == (library_dir / "scale.mid").read_bytes()


def test_stream_by_filename(client):
    r = client.get("/api/files/stream/ode_to_joy.mid")
    assert r.status_code == 200
    assert r.content[:4] == b"MThd"


def test_stream_unknown_is_404(client):
    assert client.get("/api/files/stream/nothing").status_code == 404


def test_stream_non_midi_is_403(client):
    assert client.get("/api/files/stream/notes.txt").status_code == 403


def test_library_missing_is_500():
    app = FastAPI()
    app.include_router(files.router)
    r = TestClient(app).get("/api/files/stream/scale")
    assert r.status_code == 500


# --- midis ---

def test_list(client):
    r = client.get("/api/midis")
    assert r.status_code == 200
    ids = sorted(d["id"] for d in r.json())
    assert ids == ["ode_to_joy", "scale"]


def test_get_counts_views(client):
    assert client.get("/api/midis/scale").json()["views"] == 1
    body = client.get("/api/midis/scale").json()
    assert body["views"] == 2
    assert body["stream_url"] == "/api/files/stream/scale"
    assert client.get("/api/midis/nope").status_code == 404


def test_download_counts_downloads(client, library):
    r = client.get("/api/midis/download/ode_to_joy")
    assert r.status_code == 200
    assert r.headers["content-disposition"].startswith("attachment")
    assert 'filename="ode_to_joy.mid"' in r.headers["content-disposition"]
    assert library.get("ode_to_joy").downloads == 1
    assert client.get("/api/midis/download/nope").status_code == 404


def test_leaderboard(client):
    client.get("/api/midis/download/scale")
    client.get("/api/midis/ode_to_joy")

    top = client.get("/api/midis/leaderboard").json()
    assert [d["id"] for d in top] == ["scale", "ode_to_joy"]

    top_views = client.get("/api/midis/leaderboard", params={"by": "views", "limit": 1}).json()
    assert [d["id"] for d in top_views] == ["ode_to_joy"]

    assert client.get("/api/midis/leaderboard", params={"by": "likes"}).status_code == 422
    assert client.get("/api/midis/leaderboard", params={"limit": 0}).status_code == 422


def test_next_excludes_current(client):
    for _ in range(10):
        body = client.get("/api/midis/next", params={"exclude": "scale"}).json()
        assert body["id"] == "ode_to_joy"


def test_next_is_null_when_nothing_else(tmp_path):
    root = tmp_path / "solo"
    root.mkdir()
    (root / "only.mid").write_bytes(b"MThd")
    lib = MidiLibrary(root)
    lib.refresh()

    app = FastAPI()
    app.include_router(midis.router)
    app.state.library = lib
    r = TestClient(app).get("/api/midis/next", params={"exclude": "only"})
    assert r.status_code == 200
    assert r.json() is None
