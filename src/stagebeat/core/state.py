"""
Runtime State for StageBeat.

Value objects that flow through a tick: musical positions, output commands,
execution records, and the TickState passed between pipeline nodes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple, TypedDict


@dataclass(frozen=True)
class BeatPosition:
    """Immutable snapshot of musical time, all fields 1-based."""

    bar: int
    beat: int
    sixteenth: int
    timestamp_ms: float

    @property
    def is_beat(self) -> bool:
        return self.sixteenth == 1

    @property
    def is_downbeat(self) -> bool:
        return self.beat == 1 and self.sixteenth == 1

    def ordinal(self, beats_per_bar: int, sixteenths_per_beat: int) -> int:
        """Absolute subdivision count from 1.1.1 (which is 0)."""
        return musical_ordinal(
            self.bar, self.beat, self.sixteenth, beats_per_bar, sixteenths_per_beat
        )

    def __str__(self) -> str:
        return f"{self.bar}.{self.beat}.{self.sixteenth}"


def musical_ordinal(
    bar: int,
    beat: int,
    sixteenth: int,
    beats_per_bar: int,
    sixteenths_per_beat: int,
) -> int:
    return ((bar - 1) * beats_per_bar + (beat - 1)) * sixteenths_per_beat + (sixteenth - 1)


@dataclass(frozen=True)
class LightCommand:
    """Hardware-independent state for one fixture, normalized for output."""

    fixture_id: str
    color: Tuple[int, int, int]
    intensity: float
    transition_ms: Optional[float] = None
    blackout: bool = False
    source: str = ""


@dataclass(frozen=True)
class DMXFrame:
    """Sparse channel values for one universe."""

    universe: int
    channels: Mapping[int, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "channels", MappingProxyType(dict(self.channels)))


@dataclass(frozen=True)
class OutputBatch:
    """Consolidated output of a single tick."""

    timestamp_ms: float
    light_commands: Tuple[LightCommand, ...] = ()
    dmx_frames: Tuple[DMXFrame, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.light_commands and not self.dmx_frames


class ExecutionStatus(Enum):
    """Effect execution lifecycle."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"


@dataclass
class EffectExecution:
    """
    Mutable runtime record for one triggered effect.

    Owned by the EffectEngine; callers get copies via ``snapshot()``.
    """

    execution_id: str
    effect_id: str
    parameters: dict[str, Any]
    intensity: float = 1.0
    beat_locked: bool = False
    status: ExecutionStatus = ExecutionStatus.PENDING
    current_step_index: int = 0
    start_time_ms: Optional[float] = None
    step_started_ms: Optional[float] = None
    started_tick: int = -1

    @property
    def is_running(self) -> bool:
        return self.status == ExecutionStatus.RUNNING

    def snapshot(self) -> "EffectExecution":
        return EffectExecution(
            execution_id=self.execution_id,
            effect_id=self.effect_id,
            parameters=dict(self.parameters),
            intensity=self.intensity,
            beat_locked=self.beat_locked,
            status=self.status,
            current_step_index=self.current_step_index,
            start_time_ms=self.start_time_ms,
            step_started_ms=self.step_started_ms,
            started_tick=self.started_tick,
        )


class TickState(TypedDict):
    """
    State object flowing through the tick pipeline.

    Created fresh for every clock tick; nodes append commands in dispatch
    order and the output router consumes them.
    """

    position: BeatPosition
    tick_number: int
    light_commands: list[LightCommand]
    dmx_frames: list[DMXFrame]
    batch: Optional[OutputBatch]
    fired_cues: list[str]
    errors: list[str]
    processing_times: dict[str, float]


def create_tick_state(position: BeatPosition, tick_number: int) -> TickState:
    """Create a fresh TickState for one clock tick."""
    return TickState(
        position=position,
        tick_number=tick_number,
        light_commands=[],
        dmx_frames=[],
        batch=None,
        fired_cues=[],
        errors=[],
        processing_times={},
    )
