from __future__ import annotations

import json
import logging
import random
import re
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Union

import aiofiles

from core.errors import NotFoundError
from core.models import LeaderboardKey, MidiDescriptor

logger = logging.getLogger(__name__)

MIDI_SUFFIXES = (".mid", ".midi")
STREAM_URL_TEMPLATE = "/api/files/stream/{file_id}"

_ID_SAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def _file_id_for(path: Path) -> str:
    return _ID_SAFE.sub("_", path.stem) or "midi"


def _title_for(path: Path) -> str:
    return path.stem.replace("_", " ").replace("-", " ").strip() or path.name


def guess_media_type(path: Path) -> str:
    suf = path.suffix.lower()
    if suf in MIDI_SUFFIXES:
        return "audio/midi"
    if suf == ".json":
        return "application/json"
    return "application/octet-stream"


@dataclass
class _MidiRecord:
    """
    Internal record: descriptor fields + local absolute path + counters.
    """
    file_id: str
    path: Path
    title: str
    artist: str = "Unknown Artist"
    description: Optional[str] = None
    size_bytes: int = 0
    views: int = 0
    downloads: int = 0

    def to_descriptor(self) -> MidiDescriptor:
        return MidiDescriptor(
            id=self.file_id,
            title=self.title,
            artist=self.artist,
            description=self.description,
            filename=self.path.name,
            size_bytes=self.size_bytes,
            views=self.views,
            downloads=self.downloads,
            stream_url=STREAM_URL_TEMPLATE.format(file_id=self.file_id),
        )


class MidiLibrary:
    """
    In-memory index over a directory of MIDI files.

    Optional sidecar `<stem>.json` supplies title/artist/description.
    Counters (views/downloads) live in memory only.
    """

    def __init__(self, root: Union[str, Path], *, rng: Optional[random.Random] = None) -> None:
        self.root = Path(root).expanduser().resolve()
        self._lock = Lock()
        self._records: Dict[str, _MidiRecord] = {}
        self._rng = rng or random.Random()

    # ----------------------------
    # Index
    # ----------------------------
    def _read_sidecar(self, midi_path: Path) -> Dict[str, str]:
        sidecar = midi_path.with_suffix(".json")
        if not sidecar.exists():
            return {}
        try:
            data = json.loads(sidecar.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable metadata %s: %s", sidecar.name, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: str(v) for k, v in data.items() if k in ("title", "artist", "description") and v}

    def refresh(self) -> int:
        """Rescan the directory. Counters survive for files that are still present."""
        self.root.mkdir(parents=True, exist_ok=True)
        found: Dict[str, _MidiRecord] = {}
        for p in sorted(self.root.iterdir()):
            if not p.is_file() or p.suffix.lower() not in MIDI_SUFFIXES:
                continue
            fid = _file_id_for(p)
            if fid in found:
                logger.warning("Duplicate library id %s (%s); skipping", fid, p.name)
                continue
            meta = self._read_sidecar(p)
            found[fid] = _MidiRecord(
                file_id=fid,
                path=p,
                title=meta.get("title") or _title_for(p),
                artist=meta.get("artist") or "Unknown Artist",
                description=meta.get("description"),
                size_bytes=p.stat().st_size,
            )

        with self._lock:
            for fid, rec in found.items():
                old = self._records.get(fid)
                if old is not None:
                    rec.views = old.views
                    rec.downloads = old.downloads
            self._records = found
        logger.info("Library indexed: %d MIDI files in %s", len(found), self.root)
        return len(found)

    # ----------------------------
    # Read Methods
    # ----------------------------
    def _get_record_locked(self, file_id: str) -> _MidiRecord:
        if file_id not in self._records:
            raise KeyError(f"MIDI not found: {file_id}")
        return self._records[file_id]

    def exists(self, file_id: str) -> bool:
        with self._lock:
            return file_id in self._records

    def list(self) -> List[MidiDescriptor]:
        with self._lock:
            return [rec.to_descriptor() for rec in self._records.values()]

    def get(self, file_id: str) -> MidiDescriptor:
        with self._lock:
            return self._get_record_locked(file_id).to_descriptor()

    def get_path(self, file_id: str) -> Path:
        """
        Error semantics:
        - KeyError -> unknown id (404)
        - FileNotFoundError -> indexed but gone from disk (404)
        """
        with self._lock:
            p = self._get_record_locked(file_id).path
        if not p.exists():
            raise FileNotFoundError(f"MIDI file missing on disk: {p}")
        return p

    def resolve_stream(self, identifier: str) -> Path:
        """
        Resolve a stream identifier: a library id or a plain filename in the root.

        - KeyError -> nothing matches (404)
        - PermissionError -> the name exists but is not a MIDI file (403)
        """
        with self._lock:
            rec = self._records.get(identifier)
        if rec is not None:
            return self.get_path(identifier)

        name = Path(identifier).name
        if not name or name != identifier:
            raise KeyError(f"MIDI not found: {identifier}")
        candidate = self.root / name
        if not candidate.is_file():
            raise KeyError(f"MIDI not found: {identifier}")
        if candidate.suffix.lower() not in MIDI_SUFFIXES:
            raise PermissionError(f"File type not allowed for streaming: {name}")
        return candidate

    def pick_next(self, exclude: Optional[str] = None) -> Optional[MidiDescriptor]:
        """Random other entry, never the excluded id. None when nothing else exists."""
        with self._lock:
            candidates = [rec for fid, rec in self._records.items() if fid != exclude]
            if not candidates:
                return None
            return self._rng.choice(candidates).to_descriptor()

    def leaderboard(self, *, by: LeaderboardKey = LeaderboardKey.downloads, limit: int = 10) -> List[MidiDescriptor]:
        limit = max(1, min(int(limit), 100))
        with self._lock:
            recs = list(self._records.values())
        other = "views" if by == LeaderboardKey.downloads else "downloads"
        recs.sort(key=lambda r: (-getattr(r, by.value), -getattr(r, other), r.title.lower()))
        return [r.to_descriptor() for r in recs[:limit]]

    # ----------------------------
    # Write Methods (counters)
    # ----------------------------
    def record_view(self, file_id: str) -> MidiDescriptor:
        with self._lock:
            rec = self._get_record_locked(file_id)
            rec.views += 1
            return rec.to_descriptor()

    def record_download(self, file_id: str) -> MidiDescriptor:
        with self._lock:
            rec = self._get_record_locked(file_id)
            rec.downloads += 1
            return rec.to_descriptor()


class LibraryFetcher:
    """
    Local fetch / next-resource capability for the player (no HTTP hop).
    """

    def __init__(self, library: MidiLibrary) -> None:
        self.library = library

    async def fetch(self, resource_ref: str) -> bytes:
        try:
            path = self.library.get_path(resource_ref)
        except (KeyError, FileNotFoundError) as e:
            raise NotFoundError(f"No MIDI with id {resource_ref}") from e

        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    async def next_resource(self, exclude_ref: Optional[str]) -> Optional[MidiDescriptor]:
        return self.library.pick_next(exclude_ref)
