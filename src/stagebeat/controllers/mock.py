"""
Mock Controllers for Testing.

Provides recording implementations of the light and DMX controller
interfaces plus a metronome beat source, so the engine can run without
real hardware.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Optional, Sequence

import structlog

from stagebeat.core.state import DMXFrame, LightCommand
from stagebeat.dmx.universe import channels_to_payload

if TYPE_CHECKING:
    from stagebeat.engine.clock import BeatClock

logger = structlog.get_logger()


class MockLightController:
    """Records every command batch; keeps the latest state per fixture."""

    def __init__(self, name: str = "mock-lights") -> None:
        self.name = name
        self.batches: list[list[LightCommand]] = []
        self.state: dict[str, LightCommand] = {}
        self.blackouts = 0
        self.fail_with: Optional[Exception] = None
        self._connected = False
        self._lock = threading.Lock()

    def connect(self) -> None:
        self._connected = True
        logger.info("Mock light controller connected", controller=self.name)

    def disconnect(self) -> None:
        self._connected = False
        logger.info("Mock light controller disconnected", controller=self.name, batches=len(self.batches))

    def is_connected(self) -> bool:
        return self._connected

    def blackout(self) -> None:
        with self._lock:
            self.blackouts += 1
            self.state = {
                fixture_id: LightCommand(fixture_id, (0, 0, 0), 0.0, blackout=True, source="blackout")
                for fixture_id in self.state
            }

    def send_commands(self, commands: Sequence[LightCommand]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        with self._lock:
            self.batches.append(list(commands))
            for command in commands:
                self.state[command.fixture_id] = command


class MockDMXController:
    """Keeps a 512-slot payload per universe from the frames it receives."""

    def __init__(self, name: str = "mock-dmx") -> None:
        self.name = name
        self.frames: list[DMXFrame] = []
        self.universes: dict[int, bytes] = {}
        self.blackouts = 0
        self.fail_with: Optional[Exception] = None
        self._connected = False
        self._lock = threading.Lock()

    def connect(self) -> None:
        self._connected = True
        logger.info("Mock DMX controller connected", controller=self.name)

    def disconnect(self) -> None:
        self._connected = False
        logger.info("Mock DMX controller disconnected", controller=self.name, frames=len(self.frames))

    def is_connected(self) -> bool:
        return self._connected

    def blackout(self) -> None:
        with self._lock:
            self.blackouts += 1
            self.universes = {universe: bytes(len(data)) for universe, data in self.universes.items()}

    def send_frame(self, frame: DMXFrame) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        with self._lock:
            self.frames.append(frame)
            self.universes[frame.universe] = channels_to_payload(
                frame.channels, self.universes.get(frame.universe)
            )

    def get_channel(self, channel: int, universe: int = 0) -> int:
        """Get current value of a 1-based channel."""
        data = self.universes.get(universe)
        if data is None or not 1 <= channel <= len(data):
            return 0
        return data[channel - 1]


class MockBeatSource:
    """
    Metronome beat source.

    Calls ``clock.detect_beat`` every 60/bpm seconds from a daemon thread,
    flagging a downbeat every ``beats_per_bar`` beats.
    """

    def __init__(self, clock: "BeatClock", bpm: float = 120.0, beats_per_bar: int = 4) -> None:
        self.clock = clock
        self.bpm = bpm
        self.beats_per_bar = beats_per_bar
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._beats = 0

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="Mock-Beat-Source", daemon=True)
        self._thread.start()
        logger.info("Mock beat source started", bpm=self.bpm)

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
        logger.info("Mock beat source stopped", beats=self._beats)

    def is_running(self) -> bool:
        return self._running

    def set_bpm(self, bpm: float) -> None:
        """Set simulated BPM."""
        self.bpm = bpm

    def _run(self) -> None:
        next_beat = time.monotonic()
        while self._running:
            self.clock.detect_beat(
                time.monotonic() * 1000.0,
                downbeat=self._beats % self.beats_per_bar == 0,
            )
            self._beats += 1
            next_beat += 60.0 / self.bpm
            self._stop_event.wait(max(0.0, next_beat - time.monotonic()))
