# app.py
"""
MidiShare main entry (FastAPI)

- App Factory pattern for testing & packaging
- Lifespan startup: ensure library dir + index MIDI files
- Dev CORS: allow localhost any port (supports credentials)
- Prod CORS: MUST specify explicit origins (no wildcard with credentials)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_settings
from core.library import MidiLibrary
from routers.files import router as files_router
from routers.health import router as health_router
from routers.midis import router as midis_router

logger = logging.getLogger("midishare")


def _is_dev(app_env: str) -> bool:
    v = (app_env or "").strip().lower()
    return v in {"dev", "development", "local"}


def _parse_origins(raw: Optional[str]) -> list[str]:
    """
    Parse comma-separated origins string into list.
    Example: "https://a.com,https://b.com"
    """
    if not raw:
        return []
    parts = [p.strip() for p in raw.split(",")]
    return [p for p in parts if p]


@asynccontextmanager
async def lifespan(app: FastAPI):
    s = get_settings()

    library = MidiLibrary(s.library_dir)
    try:
        library.refresh()
    except OSError as e:
        logger.critical("Failed to index MIDI library %s: %s", s.library_dir, e)
        raise
    app.state.library = library

    yield
    logger.info("Service shutting down...")


def create_app() -> FastAPI:
    # logging once (avoid duplicated handlers in reload/test)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    s = get_settings()
    app = FastAPI(
        title="MidiShare",
        version="0.1.0",
        description="Share, stream and play MIDI files",
        lifespan=lifespan,
    )

    # expose settings for debugging
    app.state.settings = s

    # ---- CORS ----
    # Dev: allow localhost any port, supports credentials
    # Prod: must specify explicit origins (CORS_ALLOW_ORIGINS)
    if _is_dev(s.app_env):
        allow_origins: list[str] = []
        allow_origin_regex = r"http://(?:localhost|127\.0\.0\.1)(?::\d+)?"
        allow_credentials = True
    else:
        allow_origins = _parse_origins(s.cors_allow_origins)
        allow_origin_regex = None
        # no explicit origins -> credentials disabled
        allow_credentials = bool(allow_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_origin_regex=allow_origin_regex,
        allow_credentials=allow_credentials,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # ---- Routers ----
    app.include_router(health_router)
    app.include_router(files_router)
    app.include_router(midis_router)

    @app.get("/", include_in_schema=False)
    def root():
        return {"service": "MidiShare", "docs_url": "/docs"}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    s = get_settings()
    uvicorn.run("app:app", host=s.host, port=s.port, reload=_is_dev(s.app_env))
