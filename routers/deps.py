from __future__ import annotations

from fastapi import HTTPException, Request

from core.library import MidiLibrary


def get_library(request: Request) -> MidiLibrary:
    library = getattr(request.app.state, "library", None)
    if library is None:
        raise HTTPException(status_code=500, detail="Server error: MIDI library not ready.")
    return library
