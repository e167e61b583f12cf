"""Output controllers and beat sources."""

from stagebeat.controllers.base import DMXController, LightController, controller_name
from stagebeat.controllers.mock import MockBeatSource, MockDMXController, MockLightController

__all__ = [
    "DMXController",
    "LightController",
    "controller_name",
    "MockBeatSource",
    "MockDMXController",
    "MockLightController",
]
