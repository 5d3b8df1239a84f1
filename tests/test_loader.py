from __future__ import annotations

import asyncio

import pytest

from core.errors import NetworkError, NotFoundError, ParseError
from core.loader import ResourceLoader

from tests.helpers import make_midi_bytes


class DictFetcher:
    def __init__(self, files):
        self.files = files

    async def fetch(self, resource_ref):
        value = self.files.get(resource_ref)
        if value is None:
            raise NotFoundError(resource_ref)
        if isinstance(value, Exception):
            raise value
        return value


def _load(files, ref):
    return asyncio.run(ResourceLoader(DictFetcher(files)).load(ref))


def test_load_returns_timeline():
    tl = _load({"a": make_midi_bytes([(60, 0.0, 2.0, 100)])}, "a")
    assert tl.name == "a"
    assert tl.duration == pytest.approx(2.0)


def test_empty_track_set_is_not_an_error():
    tl = _load({"a": make_midi_bytes([])}, "a")
    assert tl.duration == 0.0


@pytest.mark.parametrize(
    "files, exc",
    [
        ({}, NotFoundError),
        ({"a": b"garbage"}, ParseError),
        ({"a": NetworkError("timeout")}, NetworkError),
    ],
)
def test_errors_propagate(files, exc):
    with pytest.raises(exc):
        _load(files, "a")
