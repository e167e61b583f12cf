"""
StageBeat: beat-synchronized lighting show control.

Drives light and DMX fixtures from a musical beat clock and a cue timeline,
with parametric effects layered on top in real time.
"""

__version__ = "0.1.0"

from stagebeat.core.config import Settings
from stagebeat.core.state import BeatPosition, LightCommand

__all__ = [
    "BeatPosition",
    "LightCommand",
    "Settings",
    "__version__",
]
