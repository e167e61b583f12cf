"""
Effect Execution Engine: advances triggered effects tick by tick.

Each trigger creates one execution in an arena keyed by execution id. All
structural changes to the arena (start, stop, completion) happen inside
``tick()``; callers on other threads only enqueue requests.

Timing:
- Wall-clock steps run for ``start_ms + duration_ms`` and carry leftover
  elapsed time into the next step, so step boundaries never drift.
- Beat-locked steps ignore wall time and advance exactly once per beat.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import structlog
from pydantic import ValidationError

from stagebeat.core.config import EngineConfig
from stagebeat.core.exceptions import EffectNotFoundError, InvalidEffectParametersError
from stagebeat.core.models import (
    BLACK,
    WHITE,
    Color,
    Effect,
    EffectStep,
    TriggerParameters,
    parameter_values,
    summarize_validation_error,
)
from stagebeat.core.state import (
    BeatPosition,
    EffectExecution,
    ExecutionStatus,
    LightCommand,
    TickState,
)
from stagebeat.engine.catalog import EffectCatalog
from stagebeat.engine.patch import FixturePatch

logger = structlog.get_logger()


@dataclass
class _Level:
    color: Color
    intensity: float


@dataclass
class _Slot:
    """Arena entry: the mutable record plus the effect it references."""

    record: EffectExecution
    effect: Effect
    previous: Optional[_Level] = None


class EffectEngine:
    """
    Runs effect executions against the beat clock.

    Implements:
    - Trigger/stop request queueing
    - Step advancement (wall-clock and beat-locked)
    - Intensity and color scaling per execution
    - Action shaping (hold, fade, pulse, strobe, sweep, blackout)
    """

    def __init__(
        self,
        catalog: EffectCatalog,
        patch: Optional[FixturePatch] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.catalog = catalog
        self.patch = patch or FixturePatch()
        self.config = config or EngineConfig()

        self._arena: dict[str, _Slot] = {}
        self._requests: deque = deque()
        self._pending: dict[str, _Slot] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._tick_number = -1

        # Stats
        self._completed = 0
        self._stopped = 0
        self._failed = 0

    # -------------------------------------------------------------------------
    # Public surface
    # -------------------------------------------------------------------------

    def trigger_effect(
        self,
        effect_id: str,
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> EffectExecution:
        """
        Create an execution for ``effect_id``.

        Raises EffectNotFoundError for unknown ids and
        InvalidEffectParametersError when ``parameters`` do not validate;
        in both cases nothing is queued. The execution starts at step 0 on
        the next tick; the returned record is a snapshot.
        """
        effect = self.catalog.get_effect(effect_id)
        if effect is None:
            raise EffectNotFoundError(effect_id)

        try:
            checked = TriggerParameters.model_validate(
                {**effect.default_parameters, **dict(parameters or {})}
            )
        except ValidationError as e:
            raise InvalidEffectParametersError(effect_id, summarize_validation_error(e)) from e

        merged = checked.values()
        intensity = _clamp01(
            checked.intensity if checked.intensity is not None else self.config.default_intensity
        )
        beat_locked = checked.beat_locked if checked.beat_locked is not None else effect.beat_locked

        record = EffectExecution(
            execution_id=f"{effect_id}-{next(self._ids)}",
            effect_id=effect_id,
            parameters=merged,
            intensity=intensity,
            beat_locked=beat_locked,
        )
        slot = _Slot(record=record, effect=effect)

        with self._lock:
            self._pending[record.execution_id] = slot
            self._requests.append(("trigger", slot))

        logger.debug(
            "Effect triggered",
            effect_id=effect_id,
            execution_id=record.execution_id,
            intensity=intensity,
        )
        return record.snapshot()

    def stop_effect(self, execution_id: str) -> None:
        """Stop an execution at the start of the next tick. Unknown ids are ignored."""
        with self._lock:
            self._requests.append(("stop", execution_id))

    def stop_all(self) -> None:
        with self._lock:
            self._requests.append(("stop_all", None))

    def get_running_effects(self) -> list[EffectExecution]:
        return [slot.record.snapshot() for slot in list(self._arena.values())]

    def get_execution(self, execution_id: str) -> Optional[EffectExecution]:
        slot = self._arena.get(execution_id) or self._pending.get(execution_id)
        return slot.record.snapshot() if slot else None

    def process_intensity(self, step: EffectStep, intensity: float) -> float:
        """Step intensity scaled by the execution multiplier, in [0, 1]."""
        base = step.action.intensity if step.action.intensity is not None else 1.0
        return _clamp01(base * intensity)

    def process_color(
        self,
        step: EffectStep,
        intensity: float,
        override: Optional[Color] = None,
    ) -> Color:
        """Step color scaled by the execution multiplier."""
        if step.action.type == "blackout":
            return BLACK
        color = override or step.action.color or WHITE
        return color.scaled(intensity)

    # -------------------------------------------------------------------------
    # Tick processing
    # -------------------------------------------------------------------------

    def __call__(self, state: TickState) -> TickState:
        """Pipeline node: advance executions and append their commands."""
        start_time = time.time()

        commands = self.tick(state["position"], state["tick_number"], errors=state["errors"])
        state["light_commands"].extend(commands)

        state["processing_times"]["effect_engine"] = time.time() - start_time
        return state

    def tick(
        self,
        position: BeatPosition,
        tick_number: int,
        errors: Optional[list[str]] = None,
    ) -> list[LightCommand]:
        """Process one clock tick and return commands in execution order."""
        self._tick_number = tick_number
        self._apply_requests(position)

        if position.is_beat:
            self.on_beat(position)

        commands: list[LightCommand] = []
        now = position.timestamp_ms

        for execution_id, slot in list(self._arena.items()):
            try:
                commands.extend(self._process(slot, now))
            except Exception as e:
                self._failed += 1
                self._finish(execution_id, ExecutionStatus.STOPPED)
                logger.error(
                    "Effect execution failed",
                    execution_id=execution_id,
                    effect_id=slot.record.effect_id,
                    error=str(e),
                )
                if errors is not None:
                    errors.append(f"effect {execution_id}: {e}")

        return commands

    def on_beat(self, position: BeatPosition) -> None:
        """Advance beat-locked executions by exactly one step."""
        for execution_id, slot in list(self._arena.items()):
            record = slot.record
            if record.started_tick >= self._tick_number:
                continue
            step = slot.effect.steps[record.current_step_index]
            if not self._is_beat_locked(slot, step):
                continue

            slot.previous = self._final_level(slot, step)
            record.current_step_index += 1
            record.step_started_ms = position.timestamp_ms
            if record.current_step_index >= len(slot.effect.steps):
                self._finish(execution_id, ExecutionStatus.COMPLETED)

    def _apply_requests(self, position: BeatPosition) -> None:
        with self._lock:
            requests = list(self._requests)
            self._requests.clear()

        for kind, payload in requests:
            if kind == "trigger":
                self._start(payload, position)
            elif kind == "stop":
                self._stop(payload)
            elif kind == "stop_all":
                for execution_id in list(self._arena):
                    self._stop(execution_id)

    def _start(self, slot: _Slot, position: BeatPosition) -> None:
        record = slot.record
        with self._lock:
            self._pending.pop(record.execution_id, None)

        if len(self._arena) >= self.config.max_executions:
            oldest = next(iter(self._arena))
            logger.warning("Execution limit reached, stopping oldest", execution_id=oldest)
            self._stop(oldest)

        record.status = ExecutionStatus.RUNNING
        record.current_step_index = 0
        record.start_time_ms = position.timestamp_ms
        record.step_started_ms = position.timestamp_ms
        record.started_tick = self._tick_number
        self._arena[record.execution_id] = slot

        logger.info(
            "Effect started",
            effect_id=record.effect_id,
            execution_id=record.execution_id,
            position=str(position),
        )

    def _stop(self, execution_id: str) -> None:
        if execution_id not in self._arena:
            logger.debug("Stop ignored, execution not active", execution_id=execution_id)
            return
        self._stopped += 1
        self._finish(execution_id, ExecutionStatus.STOPPED)
        logger.info("Effect stopped", execution_id=execution_id)

    def _finish(self, execution_id: str, status: ExecutionStatus) -> None:
        slot = self._arena.pop(execution_id, None)
        if slot is None:
            return
        slot.record.status = status
        if status == ExecutionStatus.COMPLETED:
            self._completed += 1
            logger.debug("Effect completed", execution_id=execution_id)

    # -------------------------------------------------------------------------
    # Step advancement & rendering
    # -------------------------------------------------------------------------

    def _is_beat_locked(self, slot: _Slot, step: EffectStep) -> bool:
        return slot.record.beat_locked or step.beat_locked

    def _process(self, slot: _Slot, now: float) -> list[LightCommand]:
        record = slot.record
        steps = slot.effect.steps
        commands: list[LightCommand] = []

        while record.current_step_index < len(steps):
            step = steps[record.current_step_index]
            if self._is_beat_locked(slot, step):
                break

            length = step.duration.length_ms
            if now - record.step_started_ms < length:
                break

            if length == 0:
                # Instantaneous step: fires once, in the tick it is entered
                commands.extend(self._render(slot, step, elapsed=0.0, progress=1.0))

            slot.previous = self._final_level(slot, step)
            record.step_started_ms += length
            record.current_step_index += 1

        if record.current_step_index >= len(steps):
            self._finish(record.execution_id, ExecutionStatus.COMPLETED)
            return commands

        step = steps[record.current_step_index]
        elapsed = now - record.step_started_ms - step.duration.start_ms
        if elapsed < 0:
            return commands

        duration = step.duration.duration_ms
        progress = min(1.0, elapsed / duration) if duration > 0 else 0.0
        commands.extend(self._render(slot, step, elapsed=elapsed, progress=progress))
        return commands

    def _step_parameters(self, slot: _Slot, step: EffectStep) -> dict[str, Any]:
        return {
            **slot.effect.default_parameters,
            **parameter_values(step.parameters),
            **slot.record.parameters,
        }

    def _target_level(self, slot: _Slot, step: EffectStep, params: dict[str, Any]) -> _Level:
        override = params.get("color")
        if override is not None and not isinstance(override, Color):
            override = Color.model_validate(override)
        return _Level(
            color=self.process_color(step, slot.record.intensity, override),
            intensity=self.process_intensity(step, slot.record.intensity)
            if step.action.type != "blackout"
            else 0.0,
        )

    def _final_level(self, slot: _Slot, step: EffectStep) -> _Level:
        level = self._target_level(slot, step, self._step_parameters(slot, step))
        if step.action.type == "pulse":
            return _Level(level.color, 0.0)
        return level

    def _render(
        self,
        slot: _Slot,
        step: EffectStep,
        elapsed: float,
        progress: float,
    ) -> list[LightCommand]:
        params = self._step_parameters(slot, step)
        target = self._target_level(slot, step, params)
        action = step.action.type
        fixtures = self.patch.resolve(step.target)
        transition = params.get("transition")

        levels: list[_Level] = []
        if action == "fade":
            start = slot.previous or _Level(BLACK, 0.0)
            levels = [_lerp(start, target, progress)] * len(fixtures)
        elif action == "pulse":
            levels = [_Level(target.color, target.intensity * (1.0 - progress))] * len(fixtures)
        elif action == "strobe":
            rate_hz = float(params.get("rate_hz", self.config.default_strobe_rate_hz))
            half_period = 500.0 / max(rate_hz, 1e-3)
            on = int(elapsed // half_period) % 2 == 0
            levels = [target if on else _Level(target.color, 0.0)] * len(fixtures)
        elif action == "sweep":
            active = min(len(fixtures) - 1, int(progress * len(fixtures))) if fixtures else 0
            levels = [
                target if index == active else _Level(target.color, 0.0)
                for index in range(len(fixtures))
            ]
        else:
            levels = [target] * len(fixtures)

        return [
            LightCommand(
                fixture_id=fixture_id,
                color=level.color.as_rgb(),
                intensity=_clamp01(level.intensity),
                transition_ms=float(transition) if transition is not None else None,
                blackout=action == "blackout",
                source=slot.record.execution_id,
            )
            for fixture_id, level in zip(fixtures, levels)
        ]

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict:
        return {
            "running": len(self._arena),
            "pending": len(self._pending),
            "completed": self._completed,
            "stopped": self._stopped,
            "failed": self._failed,
        }


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def _lerp(start: _Level, end: _Level, t: float) -> _Level:
    return _Level(
        color=Color(
            r=start.color.r + (end.color.r - start.color.r) * t,
            g=start.color.g + (end.color.g - start.color.g) * t,
            b=start.color.b + (end.color.b - start.color.b) * t,
        ),
        intensity=start.intensity + (end.intensity - start.intensity) * t,
    )
