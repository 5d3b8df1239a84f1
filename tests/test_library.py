from __future__ import annotations

import asyncio
import random

import pytest

from core.errors import NotFoundError
from core.library import LibraryFetcher, MidiLibrary, guess_media_type
from core.loader import ResourceLoader
from core.models import LeaderboardKey

from tests.helpers import make_midi_bytes


@pytest.fixture
def library(library_dir):
    lib = MidiLibrary(library_dir, rng=random.Random(7))
    lib.refresh()
    return lib


def test_refresh_indexes_midi_files_with_sidecar_metadata(library):
    items = {d.id: d for d in library.list()}
    assert set(items) == {"ode_to_joy", "scale"}

    ode = items["ode_to_joy"]
    assert ode.title == "Ode to Joy"
    assert ode.artist == "Beethoven"
    assert ode.description == "Theme"
    assert ode.filename == "ode_to_joy.mid"
    assert ode.stream_url == "/api/files/stream/ode_to_joy"
    assert ode.size_bytes > 0

    scale = items["scale"]
    assert scale.title == "scale"
    assert scale.artist == "Unknown Artist"


def test_bad_sidecar_is_ignored(library_dir):
    (library_dir / "scale.json").write_text("{not json", encoding="utf-8")
    lib = MidiLibrary(library_dir)
    lib.refresh()
    assert lib.get("scale").title == "scale"


def test_counters_and_leaderboard(library):
    library.record_view("scale")
    library.record_view("scale")
    library.record_download("ode_to_joy")

    by_downloads = library.leaderboard(by=LeaderboardKey.downloads)
    assert [d.id for d in by_downloads] == ["ode_to_joy", "scale"]

    by_views = library.leaderboard(by=LeaderboardKey.views, limit=1)
    assert [d.id for d in by_views] == ["scale"]
    assert by_views[0].views == 2

    with pytest.raises(KeyError):
        library.record_view("nope")


def test_counters_survive_refresh(library, library_dir):
    library.record_download("scale")
    (library_dir / "new_song.midi").write_bytes(make_midi_bytes([(60, 0.0, 0.5, 100)]))
    assert library.refresh() == 3
    assert library.get("scale").downloads == 1
    assert library.exists("new_song")


def test_get_path_missing_on_disk(library, library_dir):
    (library_dir / "scale.mid").unlink()
    with pytest.raises(FileNotFoundError):
        library.get_path("scale")
    with pytest.raises(KeyError):
        library.get_path("unknown")


def test_resolve_stream_by_id_or_filename(library, library_dir):
    path = library.resolve_stream("scale")
    assert path.name == "scale.mid"
    assert path.parent == library.root
    assert library.resolve_stream("ode_to_joy.mid").name == "ode_to_joy.mid"

    with pytest.raises(PermissionError):
        library.resolve_stream("notes.txt")
    with pytest.raises(KeyError):
        library.resolve_stream("nothing.mid")
    with pytest.raises(KeyError):
        library.resolve_stream("../library/scale.mid")


def test_pick_next_never_returns_excluded(library):
    for _ in range(20):
        nxt = library.pick_next("scale")
        assert nxt is not None
        assert nxt.id == "ode_to_joy"
    assert library.pick_next(None) is not None


def test_pick_next_single_entry_returns_none(tmp_path):
    root = tmp_path / "solo"
    root.mkdir()
    (root / "only.mid").write_bytes(make_midi_bytes([(60, 0.0, 0.5, 100)]))
    lib = MidiLibrary(root)
    lib.refresh()
    assert lib.pick_next("only") is None


def test_guess_media_type(tmp_path):
    assert guess_media_type(tmp_path / "a.MID") == "audio/midi"
    assert guess_media_type(tmp_path / "a.json") == "application/json"
    assert guess_media_type(tmp_path / "a.bin") == "application/octet-stream"


def test_library_fetcher_feeds_loader(library):
    async def scenario():
        fetcher = LibraryFetcher(library)
        timeline = await ResourceLoader(fetcher).load("scale")
        assert timeline.name == "scale"
        assert timeline.note_count == 8
        assert timeline.duration == pytest.approx(2.0)

        with pytest.raises(NotFoundError):
            await fetcher.fetch("missing")

        nxt = await fetcher.next_resource("scale")
        assert nxt.id == "ode_to_joy"

    asyncio.run(scenario())
