from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]


def note_name(pitch: int) -> str:
    """MIDI pitch -> scientific pitch name (60 -> 'C4')."""
    octave = (pitch // 12) - 1
    return f"{NOTE_NAMES[pitch % 12]}{octave}"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class NoteEvent(_FrozenModel):
    """
    One note of a parsed timeline.
    Times are in seconds (float) relative to track start.
    """
    pitch: int = Field(..., ge=0, le=127, description="MIDI pitch 0-127")
    start_time: float = Field(..., ge=0.0, description="Start time in seconds")
    duration: float = Field(..., ge=0.0, description="Duration in seconds")
    velocity: float = Field(0.5, ge=0.0, le=1.0, description="Normalized velocity 0-1")

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    @property
    def name(self) -> str:
        return note_name(self.pitch)


class Track(_FrozenModel):
    name: str = Field("Track", description="Track name")
    channel: Optional[int] = Field(None, ge=0, le=15, description="MIDI channel 0-15")
    program: Optional[int] = Field(None, ge=0, le=127, description="MIDI program/instrument 0-127")
    notes: List[NoteEvent] = Field(default_factory=list)

    @property
    def end_time(self) -> float:
        return max((n.end_time for n in self.notes), default=0.0)


class ParsedTimeline(_FrozenModel):
    """
    Schedulable representation of one MIDI resource.
    An empty track list is a valid zero-duration timeline.
    """
    name: str = Field("", description="Resource name / id")
    tracks: List[Track] = Field(default_factory=list)

    @property
    def duration(self) -> float:
        return max((t.end_time for t in self.tracks), default=0.0)

    @property
    def note_count(self) -> int:
        return sum(len(t.notes) for t in self.tracks)

    def iter_notes(self):
        for tr in self.tracks:
            yield from tr.notes
