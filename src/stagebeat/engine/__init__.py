"""Show-control engine: clock, catalog, executor, scheduler and output."""

from stagebeat.engine.builder import ShowEngine, build_show_engine
from stagebeat.engine.catalog import EffectCatalog
from stagebeat.engine.clock import BeatClock
from stagebeat.engine.executor import EffectEngine
from stagebeat.engine.multiplexer import CommandMultiplexer, OutputRouter
from stagebeat.engine.patch import ALL_FIXTURES, FixturePatch
from stagebeat.engine.scheduler import CueScheduler

__all__ = [
    "ALL_FIXTURES",
    "BeatClock",
    "CommandMultiplexer",
    "CueScheduler",
    "EffectCatalog",
    "EffectEngine",
    "FixturePatch",
    "OutputRouter",
    "ShowEngine",
    "build_show_engine",
]
