# core/sampler.py
"""
Voice sampler (polyphonic instrument shared across tracks).

- constructed once per player session, loads its sound data asynchronously
- receives note_on / note_off commands stamped with transport time
- volume / mute live on a shared output stage, applied instantly to sounding voices
- MidoSampler renders through a MIDI output port (e.g. a FluidSynth instance)
- SilentSampler only tracks voices (headless / dry run)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

import mido

from core.errors import SamplerNotReadyError
from core.timeline import note_name

logger = logging.getLogger(__name__)

# Piano key range (A0..C8)
LOWEST_KEY = 21
HIGHEST_KEY = 108


def _clamp01(v: float) -> float:
    return float(min(max(float(v), 0.0), 1.0))


class VoiceSampler:
    """
    Base sampler. Subclasses implement the _load_sounds/_emit_* hooks.
    """

    def __init__(self, *, volume: float = 1.0, muted: bool = False) -> None:
        self.ready = False
        self._volume = _clamp01(volume)
        self._muted = bool(muted)
        # pitch -> number of sounding voices (same pitch may overlap)
        self._voices: Dict[int, int] = {}

    # ----------------------------
    # Lifecycle
    # ----------------------------
    async def load(self) -> None:
        if self.ready:
            return
        await self._load_sounds()
        self.ready = True
        self._emit_gain(self.gain)
        logger.info("%s ready", type(self).__name__)

    def dispose(self) -> None:
        if self.ready:
            self.release_all()
        self.ready = False
        self._close()

    # ----------------------------
    # Output stage
    # ----------------------------
    @property
    def volume(self) -> float:
        return self._volume

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def gain(self) -> float:
        return 0.0 if self._muted else self._volume

    def set_volume(self, volume: float) -> None:
        self._volume = _clamp01(volume)
        if self.ready:
            self._emit_gain(self.gain)

    def set_muted(self, muted: bool) -> None:
        self._muted = bool(muted)
        if self.ready:
            self._emit_gain(self.gain)

    # ----------------------------
    # Voices
    # ----------------------------
    @property
    def sounding(self) -> Dict[int, int]:
        return dict(self._voices)

    def _require_ready(self) -> None:
        if not self.ready:
            raise SamplerNotReadyError("Sampler sound data is not loaded yet")

    def note_on(self, pitch: int, at_time: float, velocity: float) -> None:
        self._require_ready()
        self._voices[pitch] = self._voices.get(pitch, 0) + 1
        self._emit_note_on(int(pitch), float(at_time), _clamp01(velocity))

    def note_off(self, pitch: int, at_time: float) -> None:
        self._require_ready()
        count = self._voices.get(pitch, 0)
        if count <= 0:
            return
        if count == 1:
            del self._voices[pitch]
        else:
            self._voices[pitch] = count - 1
        self._emit_note_off(int(pitch), float(at_time))

    def release_all(self, at_time: float = 0.0) -> None:
        """Silence every sounding voice (track switch / seek / stop)."""
        if not self.ready:
            return
        self._voices.clear()
        self._emit_release_all(float(at_time))

    # ----------------------------
    # Hooks
    # ----------------------------
    async def _load_sounds(self) -> None:
        return None

    def _emit_note_on(self, pitch: int, at_time: float, velocity: float) -> None:
        raise NotImplementedError

    def _emit_note_off(self, pitch: int, at_time: float) -> None:
        raise NotImplementedError

    def _emit_release_all(self, at_time: float) -> None:
        raise NotImplementedError

    def _emit_gain(self, gain: float) -> None:
        raise NotImplementedError

    def _close(self) -> None:
        return None


class SilentSampler(VoiceSampler):
    """Tracks voices and logs commands; produces no sound."""

    def _emit_note_on(self, pitch: int, at_time: float, velocity: float) -> None:
        logger.debug("note_on %s t=%.3f vel=%.2f", note_name(pitch), at_time, velocity)

    def _emit_note_off(self, pitch: int, at_time: float) -> None:
        logger.debug("note_off %s t=%.3f", note_name(pitch), at_time)

    def _emit_release_all(self, at_time: float) -> None:
        logger.debug("release_all t=%.3f", at_time)

    def _emit_gain(self, gain: float) -> None:
        logger.debug("gain=%.2f", gain)


class MidoSampler(VoiceSampler):
    """
    Renders through a mido output port.

    Output stage is channel volume (CC7), so volume/mute changes reach
    already-sounding notes without re-sending them.
    """

    def __init__(
        self,
        port_name: Optional[str] = None,
        *,
        channel: int = 0,
        program: Optional[int] = 0,
        volume: float = 1.0,
        muted: bool = False,
    ) -> None:
        super().__init__(volume=volume, muted=muted)
        self.port_name = port_name
        self.channel = int(min(max(channel, 0), 15))
        self.program = program
        self._port = None

    async def _load_sounds(self) -> None:
        # opening a backend port may block (rtmidi / device enumeration)
        self._port = await asyncio.to_thread(mido.open_output, self.port_name)
        if self.program is not None:
            self._send(mido.Message("program_change", program=int(self.program), channel=self.channel))

    def _send(self, msg: mido.Message) -> None:
        if self._port is None:
            raise SamplerNotReadyError("MIDI output port is not open")
        self._port.send(msg)

    def _emit_note_on(self, pitch: int, at_time: float, velocity: float) -> None:
        vel = max(1, min(127, int(round(velocity * 127))))
        self._send(mido.Message("note_on", note=pitch, velocity=vel, channel=self.channel))

    def _emit_note_off(self, pitch: int, at_time: float) -> None:
        self._send(mido.Message("note_off", note=pitch, velocity=0, channel=self.channel))

    def _emit_release_all(self, at_time: float) -> None:
        # all-notes-off is not honoured by every synth; also key-up the whole piano range
        self._send(mido.Message("control_change", control=123, value=0, channel=self.channel))
        for pitch in range(LOWEST_KEY, HIGHEST_KEY + 1):
            self._send(mido.Message("note_off", note=pitch, velocity=0, channel=self.channel))

    def _emit_gain(self, gain: float) -> None:
        value = int(round(_clamp01(gain) * 127))
        self._send(mido.Message("control_change", control=7, value=value, channel=self.channel))

    def _close(self) -> None:
        port, self._port = self._port, None
        if port is not None:
            port.close()
