"""
Health check route for uptime monitoring.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from fastapi import APIRouter, Request

from core.config import get_settings

router = APIRouter(prefix="/api/v1", tags=["Health"])


@router.get("/health")
def health(request: Request) -> Dict[str, Any]:
    """
    Health check (frontend / deploy platform / monitoring)
    - always returns ok=True if API is alive
    - extra diagnostics: library dir, indexed file count
    """
    s = get_settings()
    library_dir = Path(s.library_dir)

    library = getattr(request.app.state, "library", None)
    indexed = len(library.list()) if library is not None else 0

    return {
        "ok": True,
        "env": s.app_env,
        "paths": {
            "library_dir": str(library_dir),
        },
        "checks": {
            "library_dir_exists": library_dir.exists(),
            "library_loaded": library is not None,
            "midi_files": indexed,
        },
    }
