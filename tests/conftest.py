from __future__ import annotations

import pytest

from core.config import get_settings

from tests.helpers import FakeClock, make_midi_bytes


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def library_dir(tmp_path):
    root = tmp_path / "library"
    root.mkdir()
    (root / "ode_to_joy.mid").write_bytes(make_midi_bytes([(64, 0.0, 0.5, 100), (65, 0.5, 0.5, 100)]))
    (root / "ode_to_joy.json").write_text(
        '{"title": "Ode to Joy", "artist": "Beethoven", "description": "Theme"}', encoding="utf-8"
    )
    (root / "scale.mid").write_bytes(
        make_midi_bytes([(60 + i, i * 0.25, 0.25, 90) for i in range(8)], name="Scale")
    )
    (root / "notes.txt").write_text("not a midi file", encoding="utf-8")
    return root


@pytest.fixture
def settings_env(monkeypatch, library_dir):
    """Point settings at the temp library and reset the cache around the test."""
    monkeypatch.setenv("LIBRARY_DIR", str(library_dir))
    monkeypatch.setenv("APP_ENV", "test")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()
