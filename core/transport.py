"""
Transport clock.

A monotonically advancing virtual time base with a schedule table:
- start / pause / stop / seek
- optional loop window [loop_start, loop_end)
- dispatch(): fire every armed event whose time <= position

The clock source is injectable so tests can drive time explicitly.
"""
from __future__ import annotations

import asyncio
import bisect
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
EventCallback = Callable[[float], None]
ErrorCallback = Callable[[BaseException], None]


class TransportState(str, Enum):
    stopped = "stopped"
    started = "started"
    paused = "paused"


@dataclass(frozen=True)
class ScheduledEvent:
    event_id: int
    time: float
    callback: EventCallback = field(compare=False)


class Transport:
    def __init__(
        self,
        *,
        clock: Clock = time.monotonic,
        tick_interval: float = 0.005,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._clock = clock
        self.tick_interval = tick_interval
        # told when an event callback raises during an internal dispatch
        self.on_error = on_error

        self.state = TransportState.stopped
        self.duration = 0.0

        self.loop_enabled = False
        self.loop_start = 0.0
        self.loop_end = 0.0

        # position at the anchor; while started, position = _position + (clock() - _anchor)
        self._position = 0.0
        self._anchor = 0.0

        self._ids = itertools.count(1)
        self._events: Dict[int, ScheduledEvent] = {}
        # armed events, sorted by (time, event_id)
        self._pending: List[Tuple[float, int]] = []

        self._pump: Optional[asyncio.Task] = None

    # ----------------------------
    # Read
    # ----------------------------
    @property
    def running(self) -> bool:
        return self.state == TransportState.started

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def scheduled_count(self) -> int:
        return len(self._events)

    def _loop_active(self) -> bool:
        return self.loop_enabled and self.loop_end > self.loop_start

    def _raw_position(self) -> float:
        if self.running:
            return self._position + (self._clock() - self._anchor)
        return self._position

    @property
    def position(self) -> float:
        """Current position in seconds. Pure read: never touches the schedule."""
        pos = self._raw_position()
        if self._loop_active():
            if pos >= self.loop_end:
                length = self.loop_end - self.loop_start
                pos = self.loop_start + (pos - self.loop_end) % length
            return pos
        return max(0.0, min(pos, self.duration))

    # ----------------------------
    # Schedule table
    # ----------------------------
    def schedule(self, at: float, callback: EventCallback) -> int:
        """Arm callback at absolute transport time `at`. Returns an event id."""
        eid = next(self._ids)
        ev = ScheduledEvent(event_id=eid, time=max(0.0, float(at)), callback=callback)
        self._events[eid] = ev
        if ev.time >= self._raw_position():
            bisect.insort(self._pending, (ev.time, eid))
        return eid

    def clear(self, event_id: int) -> bool:
        ev = self._events.pop(event_id, None)
        if ev is None:
            return False
        try:
            self._pending.remove((ev.time, event_id))
        except ValueError:
            pass
        return True

    def cancel(self) -> None:
        """Drop every scheduled event."""
        self._events.clear()
        self._pending.clear()

    def _rearm(self, from_time: float) -> None:
        self._pending = sorted(
            (ev.time, eid) for eid, ev in self._events.items() if ev.time >= from_time
        )

    def set_loop(self, enabled: bool, start: float = 0.0, end: Optional[float] = None) -> None:
        # bring bookkeeping up to date under the old window first
        self._dispatch_guarded()
        self.loop_enabled = bool(enabled)
        self.loop_start = max(0.0, float(start))
        self.loop_end = float(self.duration if end is None else end)

    # ----------------------------
    # Control
    # ----------------------------
    def start(self) -> None:
        if self.running:
            return
        self._anchor = self._clock()
        self.state = TransportState.started
        self._start_pump()

    def pause(self) -> None:
        if not self.running:
            return
        if not self._dispatch_guarded():
            return
        self._position = self._raw_position()
        self.state = TransportState.paused
        self._stop_pump()

    def stop(self, reset_position: bool = True) -> None:
        if self.running:
            self._position = self.position
        self.state = TransportState.stopped
        self._stop_pump()
        self.cancel()
        if reset_position:
            self._position = 0.0

    def seek(self, seconds: float) -> float:
        """
        Reposition and rearm the table relative to the new position.
        Running/paused status is preserved. Returns the clamped position.
        """
        target = max(0.0, min(float(seconds), self.duration))
        self._position = target
        self._anchor = self._clock()
        self._rearm(target)
        return target

    # ----------------------------
    # Firing
    # ----------------------------
    def _fire_until(self, limit: float) -> int:
        fired = 0
        while self._pending and self._pending[0][0] <= limit:
            t, eid = self._pending.pop(0)
            ev = self._events.get(eid)
            if ev is None:
                continue
            fired += 1
            ev.callback(t)
        return fired

    def dispatch(self) -> int:
        """
        Fire every armed event whose time <= current position.
        Handles loop wrap-around: events up to loop_end fire, then the whole table
        is rearmed from loop_start for the next cycle.
        """
        if not self.running:
            return 0

        now = self._clock()
        pos = self._position + (now - self._anchor)
        fired = 0

        if self._loop_active():
            length = self.loop_end - self.loop_start
            while pos >= self.loop_end:
                fired += self._fire_until(self.loop_end)
                pos -= length
                self._rearm(self.loop_start)
                logger.debug("Transport loop wrap -> %.3fs", pos)
        elif pos > self.duration:
            pos = self.duration

        self._position = pos
        self._anchor = now
        fired += self._fire_until(pos)
        return fired

    # ----------------------------
    # Pump task
    # ----------------------------
    def _start_pump(self) -> None:
        if self._pump is not None and not self._pump.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no event loop: caller drives dispatch() manually
            return
        self._pump = loop.create_task(self._run_pump())

    def _stop_pump(self) -> None:
        task, self._pump = self._pump, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _dispatch_guarded(self) -> bool:
        """
        dispatch() for internal callers. A raising callback halts the transport
        (paused at the current position) and is handed to on_error.
        """
        try:
            self.dispatch()
            return True
        except Exception as e:
            logger.error("Scheduled event failed: %s", e, exc_info=True)
            self._position = self._raw_position()
            self.state = TransportState.paused
            self._stop_pump()
            if self.on_error is not None:
                self.on_error(e)
            return False

    async def _run_pump(self) -> None:
        while self.running:
            self._dispatch_guarded()
            await asyncio.sleep(self.tick_interval)
