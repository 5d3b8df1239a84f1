from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Protocol

from core.midi_parse import parse_midi_bytes
from core.models import MidiDescriptor
from core.timeline import ParsedTimeline

logger = logging.getLogger(__name__)


class ResourceFetcher(Protocol):
    async def fetch(self, resource_ref: str) -> bytes:
        """Return raw MIDI bytes or raise NotFoundError / NetworkError."""
        ...


# (current ref to exclude) -> another descriptor or None
NextResourceFn = Callable[[Optional[str]], Awaitable[Optional[MidiDescriptor]]]


class ResourceLoader:
    """
    Fetch + parse. No shared state is touched; the result is all-or-nothing.
    """

    def __init__(self, fetcher: ResourceFetcher) -> None:
        self.fetcher = fetcher

    async def load(self, resource_ref: str) -> ParsedTimeline:
        data = await self.fetcher.fetch(resource_ref)
        timeline = parse_midi_bytes(data, name=str(resource_ref))
        logger.info(
            "Loaded %s: tracks=%d notes=%d duration=%.2fs",
            resource_ref,
            len(timeline.tracks),
            timeline.note_count,
            timeline.duration,
        )
        return timeline
