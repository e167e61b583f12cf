"""
Command Multiplexer and Output Router.

The multiplexer merges everything issued during one tick into a single
OutputBatch:
- Light commands are grouped by fixture; the last issued wins
- A blackout command for a fixture wins regardless of order
- Commands for patched DMX fixtures are rendered into channel values
- Raw DMX frames merge per (universe, channel), last issued wins

The router hands each batch to a dispatcher thread so controller I/O never
blocks tick processing. Send failures are collected and surfaced on the
next tick; nothing is retried here.
"""

from __future__ import annotations

import queue
import threading
import time
from collections import deque
from typing import Callable, Iterable, Optional, Sequence

import structlog

from stagebeat.controllers.base import DMXController, LightController, controller_name
from stagebeat.core.config import FixtureConfig, OutputConfig
from stagebeat.core.exceptions import OutputDispatchError, OutputsLostError, StageBeatError
from stagebeat.core.state import DMXFrame, LightCommand, OutputBatch, TickState
from stagebeat.dmx.universe import clamp_dmx_value, is_valid_dmx_channel
from stagebeat.engine.patch import ALL_FIXTURES, FixturePatch

logger = structlog.get_logger()

FailureHandler = Callable[[StageBeatError], None]

_STOP = object()


class CommandMultiplexer:
    """Conflict resolution for one tick's worth of commands."""

    def __init__(self, patch: Optional[FixturePatch] = None):
        self.patch = patch or FixturePatch()

    def merge(
        self,
        light_commands: Sequence[LightCommand],
        dmx_frames: Sequence[DMXFrame],
        timestamp_ms: float,
    ) -> OutputBatch:
        merged = self._merge_lights(light_commands)
        global_blackout = ALL_FIXTURES in merged and merged[ALL_FIXTURES].blackout

        if global_blackout:
            merged = {
                fixture_id: _as_blackout(command) for fixture_id, command in merged.items()
            }
            for fixture_id in self.patch.fixture_ids():
                merged.setdefault(
                    fixture_id, _as_blackout(merged[ALL_FIXTURES], fixture_id)
                )

        universes: dict[int, dict[int, int]] = {}
        for frame in dmx_frames:
            channels = universes.setdefault(frame.universe, {})
            for channel, value in frame.channels.items():
                if is_valid_dmx_channel(channel):
                    channels[channel] = 0 if global_blackout else value

        lights: list[LightCommand] = []
        for fixture_id, command in merged.items():
            fixture = self.patch.get(fixture_id)
            if fixture is not None and fixture.kind == "dmx":
                channels = universes.setdefault(fixture.universe, {})
                channels.update(render_fixture_channels(fixture, command))
            else:
                lights.append(command)

        frames = tuple(
            DMXFrame(universe=universe, channels=channels)
            for universe, channels in sorted(universes.items())
            if channels
        )
        return OutputBatch(
            timestamp_ms=timestamp_ms,
            light_commands=tuple(lights),
            dmx_frames=frames,
        )

    @staticmethod
    def _merge_lights(commands: Iterable[LightCommand]) -> dict[str, LightCommand]:
        merged: dict[str, LightCommand] = {}
        for command in commands:
            existing = merged.get(command.fixture_id)
            if existing is not None and existing.blackout and not command.blackout:
                continue
            merged[command.fixture_id] = command
        return merged


def _as_blackout(command: LightCommand, fixture_id: Optional[str] = None) -> LightCommand:
    return LightCommand(
        fixture_id=fixture_id or command.fixture_id,
        color=(0, 0, 0),
        intensity=0.0,
        transition_ms=None,
        blackout=True,
        source=command.source,
    )


def render_fixture_channels(fixture: FixtureConfig, command: LightCommand) -> dict[int, int]:
    """Map a light command onto a DMX fixture's channel layout."""
    r, g, b = command.color
    has_dimmer = "dimmer" in fixture.channels
    # Without a dimmer channel, intensity is folded into the color channels
    scale = 1.0 if has_dimmer else command.intensity
    values = {
        "red": r * scale,
        "green": g * scale,
        "blue": b * scale,
        "dimmer": command.intensity * 255,
    }

    channels: dict[int, int] = {}
    for name, offset in fixture.channels.items():
        if name not in values:
            continue
        channel = fixture.start_address + offset
        value = clamp_dmx_value(values[name])
        if value is not None and is_valid_dmx_channel(channel):
            channels[channel] = value
    return channels


class OutputRouter:
    """
    Forwards merged batches to light and DMX controllers.

    With ``async_dispatch`` a daemon thread performs every send; otherwise
    sends run inline (tests, offline rendering). In both modes failures are
    only observed at the start of the following tick.
    """

    def __init__(
        self,
        multiplexer: CommandMultiplexer,
        light_controllers: Sequence[LightController] = (),
        dmx_controllers: Sequence[DMXController] = (),
        config: Optional[OutputConfig] = None,
    ):
        self.multiplexer = multiplexer
        self.light_controllers = list(light_controllers)
        self.dmx_controllers = list(dmx_controllers)
        self.config = config or OutputConfig()

        self._queue: queue.Queue = queue.Queue(maxsize=self.config.queue_size)
        self._thread: Optional[threading.Thread] = None
        self._running = False

        self._failures: deque = deque()
        self._failure_lock = threading.Lock()
        self._consecutive: dict[str, int] = {}
        self._outputs_lost = False
        self._handlers: list[FailureHandler] = []

        # Stats
        self._batches = 0
        self._dropped = 0
        self._errors = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Connect controllers and start the dispatcher thread."""
        if self._running:
            return

        for controller in self._controllers():
            name = controller_name(controller)
            try:
                controller.connect()
                logger.info("Controller connected", controller=name)
            except Exception as e:
                self._record_failure(OutputDispatchError(name, f"connect failed: {e}"))

        self._running = True
        if self.config.async_dispatch:
            self._thread = threading.Thread(
                target=self._dispatch_loop,
                name="Output-Dispatch",
                daemon=True,
            )
            self._thread.start()

    def stop(self) -> None:
        """Drain the queue, black out and disconnect every controller."""
        if not self._running:
            return
        self._running = False

        if self._thread:
            self._queue.put(_STOP)
            self._thread.join(timeout=1.0)
            self._thread = None

        for controller in self._controllers():
            name = controller_name(controller)
            try:
                controller.blackout()
                controller.disconnect()
            except Exception as e:
                logger.error("Controller shutdown failed", controller=name, error=str(e))

        logger.info(
            "Output router stopped",
            batches=self._batches,
            dropped=self._dropped,
            errors=self._errors,
        )

    def on_failure(self, handler: FailureHandler) -> None:
        self._handlers.append(handler)

    # -------------------------------------------------------------------------
    # Tick processing
    # -------------------------------------------------------------------------

    def __call__(self, state: TickState) -> TickState:
        """Pipeline node: observe earlier failures, merge, dispatch."""
        start_time = time.time()

        for error in self.observe_failures():
            state["errors"].append(error.message)

        batch = self.multiplexer.merge(
            state["light_commands"],
            state["dmx_frames"],
            state["position"].timestamp_ms,
        )
        self.dispatch(batch)
        state["batch"] = batch

        state["processing_times"]["output_router"] = time.time() - start_time
        return state

    def dispatch(self, batch: OutputBatch) -> None:
        if batch.is_empty:
            return
        self._batches += 1

        if not (self.config.async_dispatch and self._thread is not None):
            self._send(batch)
            return

        try:
            self._queue.put_nowait(batch)
        except queue.Full:
            # Live output: the newest batch matters more than a stale one
            try:
                self._queue.get_nowait()
                self._queue.task_done()
            except queue.Empty:
                pass
            self._dropped += 1
            self._queue.put_nowait(batch)
            logger.warning("Output queue full, dropped oldest batch", dropped=self._dropped)

    def flush(self, timeout: float = 1.0) -> bool:
        """Wait for queued batches to be sent. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.002)
        return True

    def observe_failures(self) -> list[StageBeatError]:
        """Drain failures recorded since the last tick and report them."""
        with self._failure_lock:
            failures = list(self._failures)
            self._failures.clear()
            counts = dict(self._consecutive)

        reported: list[StageBeatError] = []
        for failure in failures:
            logger.error(
                "Output dispatch failed",
                controller=failure.controller,
                reason=failure.reason,
            )
            reported.append(failure)

        controllers = [controller_name(c) for c in self._controllers()]
        all_lost = bool(controllers) and all(
            counts.get(name, 0) >= self.config.failure_threshold for name in controllers
        )
        if all_lost and not self._outputs_lost:
            self._outputs_lost = True
            lost = OutputsLostError(controllers)
            logger.critical("All outputs lost", controllers=controllers)
            reported.append(lost)
        elif not all_lost:
            self._outputs_lost = False

        for error in reported:
            self._notify(error)
        return reported

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def _controllers(self) -> list:
        return [*self.light_controllers, *self.dmx_controllers]

    def _dispatch_loop(self) -> None:
        while True:
            batch = self._queue.get()
            try:
                if batch is _STOP:
                    return
                self._send(batch)
            finally:
                self._queue.task_done()

    def _send(self, batch: OutputBatch) -> None:
        if batch.light_commands:
            commands = list(batch.light_commands)
            for controller in self.light_controllers:
                name = controller_name(controller)
                try:
                    controller.send_commands(commands)
                except Exception as e:
                    self._record_failure(OutputDispatchError(name, str(e), batch.timestamp_ms))
                    continue
                self._record_success(name)

        if batch.dmx_frames:
            for controller in self.dmx_controllers:
                name = controller_name(controller)
                try:
                    for frame in batch.dmx_frames:
                        controller.send_frame(frame)
                except Exception as e:
                    self._record_failure(OutputDispatchError(name, str(e), batch.timestamp_ms))
                    continue
                self._record_success(name)

    def _record_success(self, name: str) -> None:
        with self._failure_lock:
            self._consecutive[name] = 0

    def _record_failure(self, error: OutputDispatchError) -> None:
        with self._failure_lock:
            self._errors += 1
            self._consecutive[error.controller] = self._consecutive.get(error.controller, 0) + 1
            self._failures.append(error)

    def _notify(self, error: StageBeatError) -> None:
        for handler in list(self._handlers):
            try:
                handler(error)
            except Exception as e:
                logger.error("Failure handler raised", error=str(e))

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "batches": self._batches,
            "dropped": self._dropped,
            "errors": self._errors,
            "outputs_lost": self._outputs_lost,
        }
