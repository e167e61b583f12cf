"""
Beat Clock: the single authoritative tick source.

Converts a stream of detected beats into monotonic musical positions,
interpolates sixteenth subdivisions between beats, and notifies tick,
beat and bar subscribers synchronously.
"""

from __future__ import annotations

import math
import numbers
import threading
import time
from collections import deque
from typing import Callable, Optional

import numpy as np
import structlog

from stagebeat.core.config import ClockConfig
from stagebeat.core.exceptions import InvalidTempoError
from stagebeat.core.state import BeatPosition

logger = structlog.get_logger()

PositionListener = Callable[[BeatPosition], None]


def monotonic_ms() -> float:
    """Clock time base shared by beat sources and the run loop."""
    return time.monotonic() * 1000.0


class BeatClock:
    """
    Tracks BPM and musical position from a beat-detection source.

    Every emitted position is a tick. Beats arrive through ``detect_beat``;
    ``advance`` fills in the sixteenth subdivisions of the current beat from
    the current tempo. Tempo changes (manual or estimated) take effect on the
    next subdivision boundary and never touch positions already emitted.
    """

    def __init__(self, config: Optional[ClockConfig] = None):
        self.config = config or ClockConfig()

        self._lock = threading.RLock()
        self._running = False

        # Tempo
        self._bpm: float = self.config.default_bpm
        self._pending_bpm: Optional[float] = None
        self._manual_tempo = False
        self._beat_times: deque = deque(maxlen=self.config.tempo_window)

        # Position
        self._position: Optional[BeatPosition] = None
        self._last_beat_ms: Optional[float] = None
        self._next_subdivision_ms: Optional[float] = None
        self._seek_target: Optional[tuple[int, int]] = None

        # Subscribers
        self._tick_listeners: list[PositionListener] = []
        self._beat_listeners: list[PositionListener] = []
        self._bar_listeners: list[PositionListener] = []

        # Stats
        self._ticks = 0
        self._coalesced = 0
        self._listener_errors = 0

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start accepting beats. No-op when already running."""
        with self._lock:
            if self._running:
                return
            self._running = True
        logger.info("Beat clock started", bpm=self._bpm)

    def stop(self) -> None:
        """Stop emitting ticks; the last position is kept."""
        with self._lock:
            if not self._running:
                return
            self._running = False
        logger.info("Beat clock stopped", position=str(self._position))

    def is_running(self) -> bool:
        return self._running

    def reset(self) -> None:
        """Transport start: clear position and tempo history."""
        with self._lock:
            self._position = None
            self._last_beat_ms = None
            self._next_subdivision_ms = None
            self._seek_target = None
            self._beat_times.clear()
            self._manual_tempo = False
        logger.info("Beat clock reset")

    def seek(self, bar: int, beat: int = 1) -> None:
        """Song position pointer: the next detected beat lands on bar.beat."""
        if bar < 1 or not 1 <= beat <= self.config.beats_per_bar:
            raise ValueError(f"Invalid seek target {bar}.{beat}")

        with self._lock:
            self._seek_target = (bar, beat)
            self._next_subdivision_ms = None
        logger.info("Beat clock seek", target=f"{bar}.{beat}")

    # -------------------------------------------------------------------------
    # Tempo
    # -------------------------------------------------------------------------

    @property
    def bpm(self) -> float:
        return self._bpm

    @property
    def pending_bpm(self) -> Optional[float]:
        return self._pending_bpm

    @property
    def subdivision_ms(self) -> float:
        return 60000.0 / self._bpm / self.config.sixteenths_per_beat

    def set_bpm(self, bpm: float) -> None:
        """
        Set the tempo manually.

        Raises InvalidTempoError for zero, negative or non-finite values.
        Applied at the next subdivision boundary; disables tempo estimation
        until ``reset()``.
        """
        if (
            isinstance(bpm, bool)
            or not isinstance(bpm, numbers.Real)
            or not math.isfinite(bpm)
            or bpm <= 0
        ):
            raise InvalidTempoError(bpm)

        with self._lock:
            self._pending_bpm = float(bpm)
            self._manual_tempo = True
        logger.debug("Tempo change queued", bpm=float(bpm))

    def _estimate_tempo(self) -> None:
        if not self.config.auto_tempo or self._manual_tempo:
            return
        if len(self._beat_times) < 3:
            return

        intervals = np.diff(list(self._beat_times))
        median_interval = float(np.median(intervals))
        if median_interval <= 0:
            return

        estimate = 60000.0 / median_interval
        if self.config.min_bpm <= estimate <= self.config.max_bpm:
            self._pending_bpm = estimate

    # -------------------------------------------------------------------------
    # Beat input
    # -------------------------------------------------------------------------

    def detect_beat(self, timestamp_ms: float, downbeat: bool = False) -> Optional[BeatPosition]:
        """
        Feed one detected beat.

        Returns the emitted position, or None when the clock is stopped or
        the beat was coalesced by the debounce threshold.
        """
        with self._lock:
            if not self._running:
                return None

            timestamp_ms = self._monotonic(timestamp_ms)

            if (
                self._last_beat_ms is not None
                and timestamp_ms - self._last_beat_ms < self.config.min_beat_interval_ms
            ):
                self._coalesced += 1
                logger.debug(
                    "Beat coalesced",
                    interval_ms=timestamp_ms - self._last_beat_ms,
                    threshold_ms=self.config.min_beat_interval_ms,
                )
                return None

            self._last_beat_ms = timestamp_ms
            self._beat_times.append(timestamp_ms)
            self._estimate_tempo()

            position = self._next_beat_position(timestamp_ms, downbeat)
            self._emit(position)
            return position

    def advance(self, now_ms: float) -> list[BeatPosition]:
        """Emit every sixteenth subdivision of the current beat that is due."""
        emitted: list[BeatPosition] = []
        with self._lock:
            if not self._running or self._position is None:
                return emitted

            while (
                self._next_subdivision_ms is not None
                and now_ms >= self._next_subdivision_ms
                and self._position.sixteenth < self.config.sixteenths_per_beat
            ):
                current = self._position
                position = BeatPosition(
                    bar=current.bar,
                    beat=current.beat,
                    sixteenth=current.sixteenth + 1,
                    timestamp_ms=self._monotonic(self._next_subdivision_ms),
                )
                self._emit(position)
                emitted.append(position)

        return emitted

    def _monotonic(self, timestamp_ms: float) -> float:
        if self._position is not None and timestamp_ms < self._position.timestamp_ms:
            return self._position.timestamp_ms
        return timestamp_ms

    def _next_beat_position(self, timestamp_ms: float, downbeat: bool) -> BeatPosition:
        if self._seek_target is not None:
            (bar, beat), self._seek_target = self._seek_target, None
            return BeatPosition(bar, beat, 1, timestamp_ms)

        current = self._position
        if current is None:
            return BeatPosition(1, 1, 1, timestamp_ms)

        bar, beat = current.bar, current.beat + 1
        if beat > self.config.beats_per_bar:
            bar, beat = bar + 1, 1
        if downbeat and beat != 1:
            bar, beat = bar + 1, 1
        return BeatPosition(bar, beat, 1, timestamp_ms)

    def _emit(self, position: BeatPosition) -> None:
        # Subdivision boundary: queued tempo changes apply from here on
        if self._pending_bpm is not None:
            previous, self._bpm = self._bpm, self._pending_bpm
            self._pending_bpm = None
            if abs(previous - self._bpm) >= 0.05:
                logger.info("Tempo changed", bpm=round(self._bpm, 2), previous=round(previous, 2))

        self._position = position
        self._next_subdivision_ms = position.timestamp_ms + self.subdivision_ms
        self._ticks += 1

        self._notify(self._tick_listeners, position, "tick")
        if position.is_beat:
            self._notify(self._beat_listeners, position, "beat")
        if position.is_downbeat:
            self._notify(self._bar_listeners, position, "bar")

    def _notify(self, listeners: list[PositionListener], position: BeatPosition, kind: str) -> None:
        for listener in list(listeners):
            try:
                listener(position)
            except Exception as e:
                self._listener_errors += 1
                logger.error(
                    "Clock listener failed",
                    kind=kind,
                    position=str(position),
                    error=str(e),
                )

    # -------------------------------------------------------------------------
    # Subscribers & queries
    # -------------------------------------------------------------------------

    def on_tick(self, callback: PositionListener) -> None:
        self._tick_listeners.append(callback)

    def on_beat(self, callback: PositionListener) -> None:
        self._beat_listeners.append(callback)

    def on_bar(self, callback: PositionListener) -> None:
        self._bar_listeners.append(callback)

    def get_current_position(self) -> Optional[BeatPosition]:
        """Latest emitted position, None before the first beat."""
        return self._position

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "bpm": self._bpm,
            "ticks": self._ticks,
            "coalesced_beats": self._coalesced,
            "listener_errors": self._listener_errors,
        }
