"""
Controller interfaces consumed by the output router.

Controllers are chosen at startup from configuration; any object with the
right methods satisfies these protocols.
"""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from stagebeat.core.state import DMXFrame, LightCommand


@runtime_checkable
class LightController(Protocol):
    """Fixture-level output (smart lights, bridges, simulators)."""

    name: str

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def is_connected(self) -> bool: ...

    def blackout(self) -> None: ...

    def send_commands(self, commands: Sequence[LightCommand]) -> None: ...


@runtime_checkable
class DMXController(Protocol):
    """Channel-level output for one or more DMX universes."""

    name: str

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def is_connected(self) -> bool: ...

    def blackout(self) -> None: ...

    def send_frame(self, frame: DMXFrame) -> None: ...


def controller_name(controller: object) -> str:
    return getattr(controller, "name", None) or type(controller).__name__
