"""
Cue Scheduler: walks a show's cue list against the beat clock.

Cues are edge-triggered: a musical cue fires on the first tick whose
show-relative position reaches it while the previous tick was still before
it; an absolute cue fires when elapsed show time crosses its ``time``.

Musical and absolute cues are checked independently, each through its own
forward-only cursor, so a bar-positioned cue never waits behind a timed one
listed before it. Every cue fires at most once per playback pass.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional

import structlog

from stagebeat.core.config import ClockConfig
from stagebeat.core.exceptions import EffectNotFoundError, NoShowLoadedError
from stagebeat.core.models import CueAction, Show, ShowCue
from stagebeat.core.state import BeatPosition, DMXFrame, LightCommand, TickState
from stagebeat.dmx.universe import clamp_dmx_value
from stagebeat.engine.executor import EffectEngine
from stagebeat.engine.patch import ALL_FIXTURES, FixturePatch

logger = structlog.get_logger()


@dataclass
class _CueLane:
    """Show indices of the cues on one time base, with a forward-only cursor."""

    indices: list[int]
    cursor: int = 0


class CueScheduler:
    """
    Converts due cues into effect triggers and direct commands.

    Transport calls (start/stop/pause/resume) flip flags immediately; the
    cue index and elapsed counters are only reset or advanced during tick
    processing.
    """

    def __init__(
        self,
        engine: EffectEngine,
        clock_config: Optional[ClockConfig] = None,
        patch: Optional[FixturePatch] = None,
    ):
        self.engine = engine
        self.clock_config = clock_config or ClockConfig()
        self.patch = patch or engine.patch

        self._lock = threading.Lock()
        self._show: Optional[Show] = None
        self._playing = False
        self._paused = False
        self._reset_pending = False

        # Tick-owned playback state
        self._started = False
        self._lanes: tuple[_CueLane, ...] = ()
        self._elapsed_ms = 0.0
        self._musical = 0
        self._prev_elapsed_ms = -1.0
        self._prev_musical = -1
        self._last_timestamp_ms: Optional[float] = None
        self._last_ordinal: Optional[int] = None

        self._fired = 0
        self._skipped = 0

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def load(self, show: Show) -> Show:
        """Make ``show`` current; playback stops and rewinds."""
        with self._lock:
            self._show = show
            self._playing = False
            self._paused = False
            self._reset_pending = True
        logger.info("Show loaded", show=show.name, cues=len(show.cues))
        return show

    def start_show(self) -> None:
        with self._lock:
            if self._show is None:
                raise NoShowLoadedError("start show")
            self._playing = True
            self._paused = False
            self._reset_pending = True
        logger.info("Show starting", show=self._show.name)

    def stop_show(self) -> None:
        with self._lock:
            self._playing = False
            self._paused = False
            self._reset_pending = True
        logger.info("Show stopped")

    def pause_show(self) -> None:
        with self._lock:
            if not self._playing:
                return
            self._paused = True
        logger.info("Show paused", cue_index=self.current_cue_index)

    def resume_show(self) -> None:
        with self._lock:
            if self._show is None:
                raise NoShowLoadedError("resume show")
            if not self._playing:
                return
            self._paused = False
        logger.info("Show resumed", cue_index=self.current_cue_index)

    def is_playing(self) -> bool:
        return self._playing and not self._paused

    def is_paused(self) -> bool:
        return self._playing and self._paused

    def get_current_show(self) -> Optional[Show]:
        return self._show

    @property
    def current_cue_index(self) -> int:
        return sum(lane.cursor for lane in self._lanes)

    @property
    def elapsed_ms(self) -> float:
        return self._elapsed_ms

    # -------------------------------------------------------------------------
    # Tick processing
    # -------------------------------------------------------------------------

    def __call__(self, state: TickState) -> TickState:
        """Pipeline node: fire due cues for this tick."""
        start_time = time.time()

        fired = self.tick(
            state["position"],
            light_commands=state["light_commands"],
            dmx_frames=state["dmx_frames"],
            errors=state["errors"],
        )
        state["fired_cues"].extend(cue.label for cue in fired)

        state["processing_times"]["cue_scheduler"] = time.time() - start_time
        return state

    def tick(
        self,
        position: BeatPosition,
        light_commands: Optional[list[LightCommand]] = None,
        dmx_frames: Optional[list[DMXFrame]] = None,
        errors: Optional[list[str]] = None,
    ) -> list[ShowCue]:
        """Advance show time to ``position`` and dispatch every due cue."""
        with self._lock:
            show = self._show
            playing, paused = self._playing, self._paused
            reset, self._reset_pending = self._reset_pending, False

        if reset:
            self._rewind(show)

        ordinal = position.ordinal(
            self.clock_config.beats_per_bar, self.clock_config.sixteenths_per_beat
        )
        first_tick = self._last_timestamp_ms is None
        delta_ms = 0.0 if first_tick else max(0.0, position.timestamp_ms - self._last_timestamp_ms)
        delta_musical = 0 if first_tick else max(0, ordinal - self._last_ordinal)
        self._last_timestamp_ms = position.timestamp_ms
        self._last_ordinal = ordinal

        if show is None or not playing or paused:
            return []

        if not self._started:
            # Show time starts at zero on the first playing tick
            self._started = True
            self._prev_elapsed_ms, self._prev_musical = -1.0, -1
        else:
            self._prev_elapsed_ms, self._prev_musical = self._elapsed_ms, self._musical
            self._elapsed_ms += delta_ms
            self._musical += delta_musical

        due: list[int] = []
        for lane in self._lanes:
            while lane.cursor < len(lane.indices):
                index = lane.indices[lane.cursor]
                verdict = self._check(show.cues[index])
                if verdict is None:
                    break

                lane.cursor += 1
                if verdict:
                    due.append(index)
                else:
                    self._skipped += 1
                    logger.warning("Cue passed without crossing, skipped", cue=show.cues[index].label)

        # Cues due together dispatch in show order
        fired: list[ShowCue] = []
        for index in sorted(due):
            cue = show.cues[index]
            self._fired += 1
            fired.append(cue)
            self._dispatch(cue, light_commands, dmx_frames, errors)

        return fired

    def _rewind(self, show: Optional[Show]) -> None:
        self._started = False
        cues = show.cues if show is not None else ()
        self._lanes = (
            _CueLane([i for i, cue in enumerate(cues) if not cue.position.is_absolute]),
            _CueLane([i for i, cue in enumerate(cues) if cue.position.is_absolute]),
        )
        self._elapsed_ms = 0.0
        self._musical = 0
        self._prev_elapsed_ms = -1.0
        self._prev_musical = -1
        self._last_timestamp_ms = None
        self._last_ordinal = None

    def _check(self, cue: ShowCue) -> Optional[bool]:
        """
        True when the cue crossed this tick, False when it was already
        behind the previous tick (out of order), None when not yet due.
        """
        position = cue.position
        if position.is_absolute:
            target, now, prev = position.time, self._elapsed_ms, self._prev_elapsed_ms
        else:
            bar, beat, sixteenth = position.musical
            target = (
                ((bar - 1) * self._beats_per_bar() + (beat - 1))
                * self.clock_config.sixteenths_per_beat
                + (sixteenth - 1)
            )
            now, prev = self._musical, self._prev_musical

        if now < target:
            return None
        return prev < target

    def _beats_per_bar(self) -> int:
        if self._show is not None and self._show.beats_per_bar:
            return self._show.beats_per_bar
        return self.clock_config.beats_per_bar

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _dispatch(
        self,
        cue: ShowCue,
        light_commands: Optional[list[LightCommand]],
        dmx_frames: Optional[list[DMXFrame]],
        errors: Optional[list[str]],
    ) -> None:
        logger.info("Cue fired", cue=cue.label, actions=len(cue.actions))

        for action in cue.actions:
            try:
                if action.type == "effect":
                    for effect_id in action.target_ids():
                        self.engine.trigger_effect(effect_id, action.parameters)
                elif action.type == "lighting":
                    commands = self._lighting_commands(cue, action)
                    if light_commands is not None:
                        light_commands.extend(commands)
                elif action.type == "dmx":
                    frame = self._dmx_frame(action)
                    if dmx_frames is not None:
                        dmx_frames.append(frame)
            except EffectNotFoundError as e:
                logger.error("Cue references unknown effect", cue=cue.label, effect_id=e.effect_id)
                if errors is not None:
                    errors.append(f"cue {cue.label}: {e.message}")
            except Exception as e:
                logger.error("Cue action failed", cue=cue.label, action=action.type, error=str(e))
                if errors is not None:
                    errors.append(f"cue {cue.label}: {e}")

    def _lighting_commands(self, cue: ShowCue, action: CueAction) -> list[LightCommand]:
        params = action.lighting_parameters()
        intensity = 0.0 if params.blackout else min(1.0, max(0.0, params.intensity))

        fixture_ids = action.target_ids() or self.patch.fixture_ids() or [ALL_FIXTURES]
        return [
            LightCommand(
                fixture_id=fixture_id,
                color=(0, 0, 0) if params.blackout else params.color.as_rgb(),
                intensity=intensity,
                transition_ms=params.transition_ms,
                blackout=params.blackout,
                source=f"cue:{cue.label}",
            )
            for fixture_id in fixture_ids
        ]

    def _dmx_frame(self, action: CueAction) -> DMXFrame:
        channels: dict[int, int] = {}
        for channel, value in action.parameters["channels"].items():
            clamped = clamp_dmx_value(float(value))
            if clamped is not None:
                channels[int(channel)] = clamped
        return DMXFrame(universe=int(action.parameters.get("universe", 0)), channels=channels)

    def get_stats(self) -> dict:
        return {
            "show": self._show.name if self._show else None,
            "playing": self.is_playing(),
            "cue_index": self.current_cue_index,
            "elapsed_ms": self._elapsed_ms,
            "fired": self._fired,
            "skipped": self._skipped,
        }
