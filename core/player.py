"""
Playback controller.

State machine exposed to callers:
    idle -> loading -> playing <-> paused -> (close / load-new) -> idle
    error is reachable from loading / playing, left via close() or a new load.

Owns the current timeline and the PlaybackState record; mediates between
ResourceLoader, Transport and VoiceSampler and drives the progress loop.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, List, Optional

from core.activation import AlwaysReady, AudioActivation
from core.errors import AudioActivationError, SamplerNotReadyError
from core.loader import NextResourceFn, ResourceLoader
from core.models import MidiDescriptor, PlaybackSnapshot, PlayerStatus
from core.sampler import VoiceSampler
from core.timeline import NoteEvent, ParsedTimeline
from core.transport import Clock, Transport

logger = logging.getLogger("midishare.player")

SnapshotCallback = Callable[[PlaybackSnapshot], None]

DEFAULT_END_EPSILON = 0.1
DEFAULT_FRAME_INTERVAL = 1.0 / 60.0


@dataclass
class _PlaybackState:
    """Internal mutable record. Only the controller writes it."""
    current_resource_ref: Optional[str] = None
    current_resource: Optional[MidiDescriptor] = None
    status: PlayerStatus = PlayerStatus.idle
    position: float = 0.0
    duration: float = 0.0
    looping: bool = False
    autoplay_next: bool = False
    volume: float = 1.0
    muted: bool = False
    last_error: Optional[str] = None


class PlaybackController:
    """
    Dependencies are injected so the same controller runs against a browser-like
    activation gate, a real MIDI port or a silent sampler.
    """

    def __init__(
        self,
        *,
        loader: ResourceLoader,
        sampler: VoiceSampler,
        transport: Optional[Transport] = None,
        activation: Optional[AudioActivation] = None,
        next_resource: Optional[NextResourceFn] = None,
        end_epsilon: float = DEFAULT_END_EPSILON,
        frame_interval: float = DEFAULT_FRAME_INTERVAL,
        clock: Clock = time.monotonic,
    ) -> None:
        self.loader = loader
        self.sampler = sampler
        self.transport = transport or Transport(clock=clock)
        self.transport.on_error = self._on_playback_error
        self.activation = activation or AlwaysReady()
        self.next_resource = next_resource
        self.end_epsilon = float(end_epsilon)
        self.frame_interval = float(frame_interval)

        self._state = _PlaybackState(volume=sampler.volume, muted=sampler.muted)
        self._timeline: Optional[ParsedTimeline] = None
        # exception behind the current last_error (load, sampler or playback failure)
        self.last_exception: Optional[BaseException] = None

        # bumped by every play_resource()/close(); in-flight loads compare against it
        self._load_token = 0
        self._progress_task: Optional[asyncio.Task] = None
        self._autoplay_task: Optional[asyncio.Task] = None
        self._subscribers: List[SnapshotCallback] = []

    @classmethod
    def from_settings(
        cls,
        settings,
        *,
        loader: ResourceLoader,
        sampler: VoiceSampler,
        activation: Optional[AudioActivation] = None,
        next_resource: Optional[NextResourceFn] = None,
    ) -> "PlaybackController":
        return cls(
            loader=loader,
            sampler=sampler,
            transport=Transport(tick_interval=settings.transport_tick),
            activation=activation,
            next_resource=next_resource,
            end_epsilon=settings.end_of_track_epsilon,
            frame_interval=settings.frame_interval,
        )

    # ----------------------------
    # Read / observe
    # ----------------------------
    @property
    def timeline(self) -> Optional[ParsedTimeline]:
        return self._timeline

    @property
    def status(self) -> PlayerStatus:
        return self._state.status

    def snapshot(self) -> PlaybackSnapshot:
        st = self._state
        return PlaybackSnapshot(
            current_resource_ref=st.current_resource_ref,
            current_resource=st.current_resource,
            status=st.status,
            position=min(st.position, st.duration),
            duration=st.duration,
            looping=st.looping,
            autoplay_next=st.autoplay_next,
            volume=st.volume,
            muted=st.muted,
            last_error=st.last_error,
        )

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Register an observer; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _publish(self) -> None:
        if not self._subscribers:
            return
        snap = self.snapshot()
        for cb in list(self._subscribers):
            try:
                cb(snap)
            except Exception as e:
                logger.warning("Snapshot subscriber failed: %s", e, exc_info=True)

    # ----------------------------
    # Session
    # ----------------------------
    async def prepare(self) -> bool:
        """Load the shared sampler once per session."""
        try:
            await self.sampler.load()
        except Exception as e:
            logger.error("Failed to load sampler: %s", e, exc_info=True)
            self.last_exception = e
            self._state.status = PlayerStatus.error
            self._state.last_error = f"Could not load sampler: {e}"
            self._publish()
            return False

        self.sampler.set_volume(self._state.volume)
        self.sampler.set_muted(self._state.muted)
        return True

    def dispose(self) -> None:
        self.close()
        self.sampler.dispose()

    # ----------------------------
    # Commands
    # ----------------------------
    async def play_resource(self, resource_ref: str, *, descriptor: Optional[MidiDescriptor] = None) -> bool:
        """
        Load + schedule + start. Returns True when the resource is playing.

        Load failures are logged and recorded in last_error (status=error);
        results superseded by close()/another play_resource() are discarded.
        """
        if not self.sampler.ready:
            raise SamplerNotReadyError("Sampler sound is not ready yet. Please wait.")

        ref = str(resource_ref)
        st = self._state

        # same resource, just paused: resume
        if ref == st.current_resource_ref and self._timeline is not None and st.status == PlayerStatus.paused:
            await self.resume()
            return self._state.status == PlayerStatus.playing

        self._load_token += 1
        token = self._load_token
        self._cancel_autoplay()

        # silence the current track but keep it until the new one is known good
        self._stop_audio()
        st.status = PlayerStatus.loading
        self._publish()

        try:
            await self.activation.ensure_ready()
            timeline = await self.loader.load(ref)
        except Exception as e:
            if token != self._load_token:
                logger.debug("Discarding stale failure for %s: %s", ref, e)
                return False
            logger.error("Failed to play %s: %s", ref, e, exc_info=True)
            self.last_exception = e
            self._fail(f"Failed to play MIDI: {e}")
            return False

        if token != self._load_token:
            logger.info("Discarding stale load for %s", ref)
            return False

        self._install(ref, descriptor, timeline)
        return True

    def pause(self) -> None:
        st = self._state
        if st.status != PlayerStatus.playing:
            return
        self.transport.pause()
        if st.status != PlayerStatus.playing:
            # a note failed while flushing
            return
        self.sampler.release_all()
        self._stop_progress_loop()
        st.position = min(self.transport.position, st.duration)
        st.status = PlayerStatus.paused
        self._publish()

    async def resume(self) -> None:
        st = self._state
        if st.status != PlayerStatus.paused or self._timeline is None:
            return

        token = self._load_token
        try:
            await self.activation.ensure_ready()
        except AudioActivationError as e:
            logger.warning("Resume blocked: %s", e)
            st.last_error = str(e)
            self._publish()
            return

        # superseded while waiting for activation
        if token != self._load_token or st.status != PlayerStatus.paused:
            return

        # play after natural completion replays from the start
        if not self._looping_active() and self.transport.position >= st.duration - self.end_epsilon:
            self.transport.seek(0.0)

        self.transport.start()
        st.position = min(self.transport.position, st.duration)
        st.status = PlayerStatus.playing
        self._start_progress_loop()
        self._publish()

    async def toggle_play_pause(self) -> None:
        if self._state.status == PlayerStatus.playing:
            self.pause()
        else:
            await self.resume()

    def seek(self, seconds: float) -> float:
        st = self._state
        if self._timeline is None or st.status not in (PlayerStatus.playing, PlayerStatus.paused):
            return st.position
        self.sampler.release_all()
        st.position = self.transport.seek(seconds)
        self._publish()
        return st.position

    def set_looping(self, enabled: bool) -> None:
        st = self._state
        st.looping = bool(enabled)
        if self._timeline is not None:
            self.transport.set_loop(st.looping, 0.0, st.duration)
        self._publish()

    def set_autoplay_next(self, enabled: bool) -> None:
        self._state.autoplay_next = bool(enabled)
        self._publish()

    def set_volume(self, volume: float) -> None:
        st = self._state
        st.volume = float(min(max(float(volume), 0.0), 1.0))
        # an explicit volume change means the user wants to hear it
        if st.volume > 0 and st.muted:
            st.muted = False
            self.sampler.set_muted(False)
        self.sampler.set_volume(st.volume)
        self._publish()

    def toggle_mute(self) -> None:
        st = self._state
        st.muted = not st.muted
        self.sampler.set_muted(st.muted)
        self._publish()

    def close(self) -> None:
        """Stop audio and drop the current track. Safe from any state."""
        self._load_token += 1
        self._cancel_autoplay()
        self._stop_audio()
        self._clear_track()
        self.last_exception = None
        st = self._state
        st.last_error = None
        st.status = PlayerStatus.idle
        self._publish()

    # ----------------------------
    # Progress
    # ----------------------------
    def poll(self) -> None:
        """One progress sample: publish position, evaluate end-of-track."""
        st = self._state
        if st.status != PlayerStatus.playing or self._timeline is None:
            return
        pos = self.transport.position
        st.position = min(pos, st.duration)
        if not self._looping_active() and pos >= st.duration - self.end_epsilon:
            self._resolve_end_of_track()
        self._publish()

    async def _run_progress_loop(self) -> None:
        while self._state.status == PlayerStatus.playing:
            self.poll()
            if self._state.status != PlayerStatus.playing:
                break
            await asyncio.sleep(self.frame_interval)

    def _start_progress_loop(self) -> None:
        if self._progress_task is not None and not self._progress_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no event loop: caller drives poll() manually
            return
        self._progress_task = loop.create_task(self._run_progress_loop())

    def _stop_progress_loop(self) -> None:
        task, self._progress_task = self._progress_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ----------------------------
    # End of track
    # ----------------------------
    def _resolve_end_of_track(self) -> None:
        st = self._state
        logger.info("End of track: %s", st.current_resource_ref)

        # pause first: it flushes due events, then every voice is cut
        self.transport.pause()
        if st.status != PlayerStatus.playing:
            return
        self.sampler.release_all()
        self.transport.seek(st.duration)
        st.position = st.duration

        if st.autoplay_next and self.next_resource is not None:
            st.status = PlayerStatus.loading
            self._autoplay_task = asyncio.get_running_loop().create_task(
                self._advance_to_next(st.current_resource_ref, self._load_token)
            )
        else:
            st.status = PlayerStatus.paused

    async def _advance_to_next(self, exclude_ref: Optional[str], token: int) -> None:
        try:
            nxt = await self.next_resource(exclude_ref)
        except Exception as e:
            # a failed lookup ends the queue, the finished track is not an error
            logger.warning("Next resource lookup failed: %s", e)
            nxt = None

        if token != self._load_token or self._state.status != PlayerStatus.loading:
            return

        if nxt is None:
            logger.info("No next resource after %s; holding at end", exclude_ref)
            self._state.status = PlayerStatus.paused
            self._publish()
            return

        logger.info("Autoplay next: %s -> %s", exclude_ref, nxt.id)
        try:
            await self.play_resource(nxt.id, descriptor=nxt)
        except SamplerNotReadyError as e:
            logger.warning("Autoplay stopped, sampler not ready: %s", e)
            if token == self._load_token and self._state.status == PlayerStatus.loading:
                self._state.status = PlayerStatus.paused
                self._publish()

    def _cancel_autoplay(self) -> None:
        task, self._autoplay_task = self._autoplay_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ----------------------------
    # Internals
    # ----------------------------
    def _looping_active(self) -> bool:
        # a zero-length track cannot loop
        return self._state.looping and self._state.duration > 0

    def _stop_audio(self) -> None:
        self._stop_progress_loop()
        self.transport.stop(reset_position=True)
        self.sampler.release_all()

    def _clear_track(self) -> None:
        st = self._state
        self._timeline = None
        st.current_resource_ref = None
        st.current_resource = None
        st.position = 0.0
        st.duration = 0.0
        self.transport.duration = 0.0
        self.transport.set_loop(False)

    def _fail(self, message: str) -> None:
        try:
            self._stop_audio()
        except Exception as e:
            # the output that just failed may refuse the release as well
            logger.warning("Could not silence sampler: %s", e)
        self._clear_track()
        self._state.last_error = message
        self._state.status = PlayerStatus.error
        self._publish()

    def _on_playback_error(self, exc: BaseException) -> None:
        """Transport callback: a scheduled note raised (e.g. the MIDI port went away)."""
        logger.error("Playback of %s failed: %s", self._state.current_resource_ref, exc)
        self._cancel_autoplay()
        self.last_exception = exc
        self._fail(f"Playback failed: {exc}")

    def _install(self, ref: str, descriptor: Optional[MidiDescriptor], timeline: ParsedTimeline) -> None:
        st = self._state
        self._timeline = timeline
        st.current_resource_ref = ref
        st.current_resource = descriptor
        st.duration = timeline.duration
        st.position = 0.0
        st.last_error = None
        self.last_exception = None

        t = self.transport
        t.stop(reset_position=True)
        t.duration = st.duration
        t.set_loop(st.looping, 0.0, st.duration)
        self._schedule_notes(timeline)
        t.start()

        st.status = PlayerStatus.playing
        self._start_progress_loop()
        self._publish()
        logger.info("Playing %s (%.2fs, %d notes)", ref, st.duration, timeline.note_count)

    def _schedule_notes(self, timeline: ParsedTimeline) -> None:
        # always start from a clean table; note-offs win ties so re-struck keys sound,
        # except a zero-length note's own off, which must follow its on
        self.transport.cancel()
        commands = []
        for note in timeline.iter_notes():
            commands.append((note.start_time, 1, note))
            commands.append((note.end_time, 0 if note.duration > 0 else 2, note))
        commands.sort(key=lambda c: (c[0], c[1]))

        for at, kind, note in commands:
            fire = self._fire_note_on if kind == 1 else self._fire_note_off
            self.transport.schedule(at, partial(fire, note))

    def _fire_note_on(self, note: NoteEvent, at: float) -> None:
        self.sampler.note_on(note.pitch, at, note.velocity)

    def _fire_note_off(self, note: NoteEvent, at: float) -> None:
        self.sampler.note_off(note.pitch, at)
