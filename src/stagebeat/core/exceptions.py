"""
Custom Exceptions for StageBeat.

Provides a hierarchy of exceptions for the clock, effect, show and output
layers, enabling targeted error handling and graceful degradation.
"""

from __future__ import annotations

from typing import Optional


class StageBeatError(Exception):
    """Base exception for all StageBeat errors."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


# =============================================================================
# Clock Errors
# =============================================================================


class ClockError(StageBeatError):
    """Base exception for beat clock errors."""
    pass


class InvalidTempoError(ClockError):
    """Rejected BPM value (zero, negative or non-finite)."""

    def __init__(self, bpm: object):
        super().__init__(f"Invalid tempo {bpm!r}: BPM must be a finite number > 0")
        self.bpm = bpm


# =============================================================================
# Effect Errors
# =============================================================================


class EffectError(StageBeatError):
    """Base exception for effect-related errors."""
    pass


class EffectNotFoundError(EffectError):
    """Trigger requested for an effect id that is not in the catalog."""

    def __init__(self, effect_id: str):
        super().__init__(f"Effect not found: {effect_id}")
        self.effect_id = effect_id


class EffectDefinitionError(EffectError):
    """Effect definition could not be parsed or validated."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"Invalid effect definition '{source}': {reason}")
        self.source = source
        self.reason = reason


class InvalidEffectParametersError(EffectError):
    """Trigger parameters failed validation; nothing was queued."""

    def __init__(self, effect_id: str, reason: str):
        super().__init__(f"Invalid parameters for effect '{effect_id}': {reason}")
        self.effect_id = effect_id
        self.reason = reason


# =============================================================================
# Show Errors
# =============================================================================


class ShowError(StageBeatError):
    """Base exception for show and cue errors."""
    pass


class MalformedCuePositionError(ShowError):
    """Cue has neither a musical nor an absolute position."""

    def __init__(self, cue: Optional[str], reason: str):
        cue_str = cue or "<unnamed cue>"
        super().__init__(f"Malformed cue position for {cue_str}: {reason}")
        self.cue = cue
        self.reason = reason


class ShowNotFoundError(ShowError):
    """Requested show definition does not exist."""

    def __init__(self, name: str, available: list[str]):
        shows_str = ", ".join(available) if available else "none"
        super().__init__(f"Show '{name}' not found. Available: {shows_str}")
        self.name = name
        self.available = available


class NoShowLoadedError(ShowError):
    """Show transport used before a show was loaded."""

    def __init__(self, operation: str):
        super().__init__(f"Cannot {operation}: no show loaded")
        self.operation = operation


# =============================================================================
# Output Errors
# =============================================================================


class OutputError(StageBeatError):
    """Base exception for output routing errors."""
    pass


class OutputDispatchError(OutputError):
    """A controller failed to accept a batch."""

    def __init__(self, controller: str, reason: str, timestamp_ms: float = 0.0):
        super().__init__(
            f"Output dispatch to '{controller}' failed: {reason}",
            recoverable=True,
        )
        self.controller = controller
        self.reason = reason
        self.timestamp_ms = timestamp_ms


class OutputsLostError(OutputError):
    """Every registered controller is failing."""

    def __init__(self, controllers: list[str]):
        super().__init__(
            f"All output controllers are failing: {', '.join(controllers)}",
            recoverable=False,
        )
        self.controllers = controllers


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(StageBeatError):
    """Base exception for configuration errors."""
    pass


class FixtureConfigError(ConfigError):
    """Invalid fixture patch entry."""

    def __init__(self, fixture: str, reason: str):
        super().__init__(f"Fixture config error '{fixture}': {reason}")
        self.fixture = fixture
