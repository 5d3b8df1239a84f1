"""
File streaming route: MIDI bytes by library id or stored filename.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse

from core.library import guess_media_type
from routers.deps import get_library

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["Files"])


@router.get("/stream/{identifier}")
def stream_file(identifier: str, request: Request):
    """
    Contract:
    - 200: MIDI stream (inline)
    - 403: identifier names a non-MIDI file
    - 404: nothing matches / file gone from disk
    """
    library = get_library(request)
    try:
        path = library.resolve_stream(identifier)
    except PermissionError as e:
        logger.warning("Denied stream of non-MIDI file: %s", identifier)
        raise HTTPException(status_code=403, detail=str(e))
    except (KeyError, FileNotFoundError):
        logger.info("No file found for identifier: %s", identifier)
        raise HTTPException(status_code=404, detail="No file exists with that identifier.")

    return FileResponse(
        path=str(path),
        filename=path.name,
        media_type=guess_media_type(path),
        content_disposition_type="inline",
    )
