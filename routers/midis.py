from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import FileResponse

from core.library import guess_media_type
from core.models import LeaderboardKey, MidiDescriptor
from routers.deps import get_library

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/midis", tags=["Midis"])


@router.get("", response_model=List[MidiDescriptor])
def list_midis(request: Request) -> List[MidiDescriptor]:
    return get_library(request).list()


@router.get("/leaderboard", response_model=List[MidiDescriptor])
def leaderboard(
    request: Request,
    by: LeaderboardKey = Query(LeaderboardKey.downloads),
    limit: int = Query(10, ge=1, le=100),
) -> List[MidiDescriptor]:
    return get_library(request).leaderboard(by=by, limit=limit)


@router.get("/next", response_model=Optional[MidiDescriptor])
def next_midi(
    request: Request,
    exclude: Optional[str] = Query(None, description="Current id; never returned"),
) -> Optional[MidiDescriptor]:
    """
    Random other entry for autoplay. `null` when the library has nothing else.
    """
    return get_library(request).pick_next(exclude)


@router.get("/download/{file_id}")
def download_midi(file_id: str, request: Request):
    """
    Contract:
    - 200: attachment, downloads counter incremented
    - 404: unknown id or file missing on disk
    """
    library = get_library(request)
    try:
        path = library.get_path(file_id)
        library.record_download(file_id)
    except (KeyError, FileNotFoundError):
        logger.info("Download of unknown MIDI: %s", file_id)
        raise HTTPException(status_code=404, detail="MIDI not found")

    return FileResponse(
        path=str(path),
        filename=path.name,
        media_type=guess_media_type(path),
    )


@router.get("/{file_id}", response_model=MidiDescriptor)
def get_midi(file_id: str, request: Request) -> MidiDescriptor:
    """Descriptor; every fetch counts as a view."""
    try:
        return get_library(request).record_view(file_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="MIDI not found")
