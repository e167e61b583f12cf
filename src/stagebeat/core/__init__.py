"""Core models, state, configuration and errors for StageBeat."""

from stagebeat.core.config import Settings
from stagebeat.core.exceptions import (
    EffectNotFoundError,
    InvalidTempoError,
    MalformedCuePositionError,
    OutputDispatchError,
    StageBeatError,
)
from stagebeat.core.models import Effect, Show
from stagebeat.core.state import BeatPosition, DMXFrame, LightCommand, TickState

__all__ = [
    "BeatPosition",
    "DMXFrame",
    "Effect",
    "EffectNotFoundError",
    "InvalidTempoError",
    "LightCommand",
    "MalformedCuePositionError",
    "OutputDispatchError",
    "Settings",
    "Show",
    "StageBeatError",
    "TickState",
]
