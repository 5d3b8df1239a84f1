from __future__ import annotations

import io
from typing import Iterable, List, Optional, Sequence, Tuple

import mido

# 480 ppq at 120 bpm -> 960 ticks per second
TICKS_PER_BEAT = 480
TICKS_PER_SECOND = 960

# (pitch, start_s, duration_s, velocity 0-127)
NoteSpec = Tuple[int, float, float, int]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


def _sec_to_tick(sec: float) -> int:
    return int(round(sec * TICKS_PER_SECOND))


def build_track(
    notes: Iterable[NoteSpec],
    *,
    name: Optional[str] = None,
    channel: int = 0,
    program: Optional[int] = None,
    tempo: Optional[int] = 500000,
) -> mido.MidiTrack:
    events: List[Tuple[int, int, mido.Message]] = []
    for pitch, start, dur, vel in notes:
        on = _sec_to_tick(start)
        off = _sec_to_tick(start + dur)
        events.append((on, 1, mido.Message("note_on", note=pitch, velocity=vel, channel=channel)))
        events.append((off, 0, mido.Message("note_off", note=pitch, velocity=0, channel=channel)))
    # note-offs first on shared ticks
    events.sort(key=lambda e: (e[0], e[1]))

    track = mido.MidiTrack()
    if name is not None:
        track.append(mido.MetaMessage("track_name", name=name, time=0))
    if tempo is not None:
        track.append(mido.MetaMessage("set_tempo", tempo=tempo, time=0))
    if program is not None:
        track.append(mido.Message("program_change", program=program, channel=channel, time=0))

    last = 0
    for tick, _, msg in events:
        track.append(msg.copy(time=tick - last))
        last = tick
    track.append(mido.MetaMessage("end_of_track", time=0))
    return track


def midi_bytes_from_tracks(tracks: Sequence[mido.MidiTrack], *, midi_type: int = 1) -> bytes:
    mid = mido.MidiFile(type=midi_type, ticks_per_beat=TICKS_PER_BEAT)
    for tr in tracks:
        mid.tracks.append(tr)
    buf = io.BytesIO()
    mid.save(file=buf)
    return buf.getvalue()


def make_midi_bytes(notes: Iterable[NoteSpec], **kwargs) -> bytes:
    """Single-track SMF at 120 bpm."""
    return midi_bytes_from_tracks([build_track(notes, **kwargs)])

