from __future__ import annotations

import json

import pytest

import midishare.cli as cli
from core.config import get_settings

from tests.helpers import make_midi_bytes


@pytest.fixture(autouse=True)
def silent_env(settings_env, monkeypatch):
    monkeypatch.delenv("MIDI_OUTPUT_PORT", raising=False)
    monkeypatch.delenv("MIDI_PORT", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_inspect_prints_summary(tmp_path, capsys):
    p = tmp_path / "tune.mid"
    p.write_bytes(make_midi_bytes([(60, 0.0, 0.5, 100), (67, 0.5, 1.0, 100)], name="Lead"))

    code = cli.main(["inspect", str(p)])
    assert code == cli.EXIT_OK

    out = json.loads(capsys.readouterr().out)
    assert out["name"] == "tune"
    assert out["duration"] == pytest.approx(1.5)
    assert out["note_count"] == 2
    assert out["tracks"][0]["name"] == "Lead"
    assert out["tracks"][0]["range"] == "C4-G4"


def test_inspect_errors(tmp_path, capsys):
    assert cli.main(["inspect", str(tmp_path / "nope.mid")]) == cli.EXIT_BAD_ARGS
    bad = tmp_path / "bad.mid"
    bad.write_bytes(b"garbage")
    assert cli.main(["inspect", str(bad)]) == cli.EXIT_PLAYBACK_FAILED
    assert "Invalid MIDI" in capsys.readouterr().err


def test_play_local_library_until_end(tmp_path, capsys):
    lib = tmp_path / "lib"
    lib.mkdir()
    (lib / "blip.mid").write_bytes(make_midi_bytes([(72, 0.0, 0.2, 100)]))

    code = cli.main(["play", "blip", "--library", str(lib), "--poll-interval", "0.05", "--timeout", "10"])
    assert code == cli.EXIT_OK

    out = capsys.readouterr().out.strip().splitlines()
    assert out[0].startswith("status=playing ref=blip")
    assert out[-1] == "status=paused ref=blip position=0.2/0.2"


def test_play_unknown_ref_fails(tmp_path, capsys):
    lib = tmp_path / "lib"
    lib.mkdir()
    code = cli.main(["play", "ghost", "--library", str(lib)])
    assert code == cli.EXIT_PLAYBACK_FAILED
    assert "ghost" in capsys.readouterr().err


def test_play_timeout(tmp_path, capsys):
    lib = tmp_path / "lib"
    lib.mkdir()
    (lib / "long.mid").write_bytes(make_midi_bytes([(60, 0.0, 30.0, 100)]))
    code = cli.main(["play", "long", "--library", str(lib), "--timeout", "0.2", "--poll-interval", "0.05"])
    assert code == cli.EXIT_TIMEOUT


def test_play_network_error_exit_code(capsys):
    # nothing listens on port 9 (discard)
    code = cli.main(["play", "x", "--base-url", "http://127.0.0.1:9"])
    assert code == cli.EXIT_NETWORK_OR_HTTP


@pytest.mark.parametrize(
    "extra",
    [["--volume", "2"], ["--timeout", "0"], ["--library", "/definitely/not/here"]],
)
def test_play_bad_args(extra, capsys):
    assert cli.main(["play", "x", *extra]) == cli.EXIT_BAD_ARGS


def test_list_prints_catalog(monkeypatch, capsys):
    from core.models import MidiDescriptor

    async def fake_list(self):
        return [
            MidiDescriptor(
                id="scale", title="Scale", filename="scale.mid", views=2, downloads=1,
                stream_url="/api/files/stream/scale",
            )
        ]

    monkeypatch.setattr(cli.MidiShareClient, "list_midis", fake_list)
    assert cli.main(["list", "--base-url", "http://h"]) == cli.EXIT_OK
    assert capsys.readouterr().out.strip() == "scale\tScale\tUnknown Artist\tviews=2\tdownloads=1"


def test_list_network_error(capsys):
    assert cli.main(["list", "--base-url", "http://127.0.0.1:9"]) == cli.EXIT_NETWORK_OR_HTTP
