from __future__ import annotations

import io
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import mido
from pydantic import ValidationError

from core.errors import ParseError
from core.timeline import NoteEvent, ParsedTimeline, Track

DEFAULT_TEMPO_US = 500000  # 120 bpm


def _build_tempo_map(mid: mido.MidiFile) -> List[Tuple[int, int]]:
    """Collect (abs_tick, us_per_qn) from every track, sorted by tick."""
    tempo_map: List[Tuple[int, int]] = [(0, DEFAULT_TEMPO_US)]
    for tr in mid.tracks:
        abs_tick = 0
        for msg in tr:
            abs_tick += int(msg.time)
            if msg.type == "set_tempo":
                tempo_map.append((abs_tick, int(msg.tempo)))

    # a tempo set at tick 0 overrides the default
    tempo_map.sort(key=lambda x: x[0])
    dedup: Dict[int, int] = {}
    for tick, tempo in tempo_map:
        dedup[tick] = tempo
    return sorted(dedup.items(), key=lambda x: x[0])


def _make_tick_to_seconds(tempo_map: List[Tuple[int, int]], ppq: int):
    def tick_to_seconds(tick: int) -> float:
        """Convert absolute tick -> seconds using tempo map."""
        if tick <= 0:
            return 0.0
        sec = 0.0
        last_tick = 0
        cur_tempo = tempo_map[0][1] if tempo_map else DEFAULT_TEMPO_US
        for (t, tempo_us) in tempo_map[1:]:
            if tick < t:
                break
            sec += mido.tick2second(t - last_tick, ppq, cur_tempo)
            last_tick = t
            cur_tempo = tempo_us
        sec += mido.tick2second(tick - last_tick, ppq, cur_tempo)
        return float(sec)

    return tick_to_seconds


def _read_midi(data: bytes) -> mido.MidiFile:
    if not data:
        raise ParseError("Empty MIDI payload")
    try:
        return mido.MidiFile(file=io.BytesIO(data))
    except (OSError, EOFError, ValueError, KeyError, IndexError, TypeError) as e:
        raise ParseError(f"Invalid MIDI structure: {e}") from e


def parse_midi_bytes(data: bytes, *, name: str = "") -> ParsedTimeline:
    """
    Raw SMF bytes -> ParsedTimeline (seconds-based, tick-accurate via the tempo map).

    All-or-nothing: any structural error raises ParseError and no timeline is returned.
    """
    mid = _read_midi(data)
    if mid.type == 2:
        raise ParseError("MIDI type 2 (asynchronous tracks) is not supported")

    # mido reports an SMPTE division as a negative ticks_per_beat
    ppq = int(getattr(mid, "ticks_per_beat", 480) or 480)
    if ppq <= 0:
        raise ParseError("SMPTE time division is not supported")

    tick_to_seconds = _make_tick_to_seconds(_build_tempo_map(mid), ppq)
    try:
        return ParsedTimeline(name=name, tracks=_build_tracks(mid, tick_to_seconds))
    except ValidationError as e:
        raise ParseError(f"Invalid MIDI content: {e}") from e


def _build_tracks(mid: mido.MidiFile, tick_to_seconds) -> List[Track]:
    tracks: List[Track] = []
    for idx, tr in enumerate(mid.tracks):
        abs_tick = 0
        track_name: Optional[str] = None
        program: Optional[int] = None
        channels: Dict[int, int] = {}  # channel -> note count
        # (ch, pitch) -> stack of (start_tick, velocity)
        active: Dict[Tuple[int, int], List[Tuple[int, int]]] = {}
        raw: List[Tuple[int, int, int, int]] = []  # (start_tick, end_tick, pitch, velocity)

        for msg in tr:
            abs_tick += int(msg.time)

            if msg.type == "track_name" and track_name is None:
                track_name = str(msg.name).strip() or None
            elif msg.type == "program_change" and program is None:
                program = int(msg.program)
            elif msg.type == "note_on" and int(msg.velocity) > 0:
                key = (int(msg.channel), int(msg.note))
                active.setdefault(key, []).append((abs_tick, int(msg.velocity)))
            elif msg.type in ("note_off", "note_on"):
                key = (int(msg.channel), int(msg.note))
                stack = active.get(key)
                if not stack:
                    continue
                # first-in first-out for overlapping same-pitch notes
                st_tick, vel = stack.pop(0)
                if abs_tick <= st_tick:
                    continue
                raw.append((st_tick, abs_tick, key[1], vel))
                channels[key[0]] = channels.get(key[0], 0) + 1

        # unterminated notes are dropped
        if not raw:
            continue

        raw.sort(key=lambda x: (x[0], x[2]))
        notes: List[NoteEvent] = []
        for (st_tick, end_tick, pitch, vel) in raw:
            st_sec = tick_to_seconds(st_tick)
            end_sec = tick_to_seconds(end_tick)
            notes.append(
                NoteEvent(
                    pitch=pitch,
                    start_time=st_sec,
                    duration=max(0.0, end_sec - st_sec),
                    velocity=max(0.0, min(1.0, vel / 127.0)),
                )
            )

        main_channel = max(channels.items(), key=lambda x: x[1])[0] if channels else None
        tracks.append(
            Track(
                name=track_name or f"Track{idx + 1}",
                channel=main_channel,
                program=program,
                notes=notes,
            )
        )

    return tracks


def parse_midi_file(midi_path: Path) -> ParsedTimeline:
    midi_path = Path(midi_path)
    if not midi_path.exists() or not midi_path.is_file():
        raise FileNotFoundError(f"midi_path not found: {midi_path}")
    return parse_midi_bytes(midi_path.read_bytes(), name=midi_path.stem)
