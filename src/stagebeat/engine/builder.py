"""
LangGraph Builder for StageBeat.

Every tick emitted by the Beat Clock runs one pass of a linear graph:

    cue_scheduler -> effect_engine -> output_router

so cue-triggered effects start in the same tick and the router sees the
complete command list in dispatch order.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, Iterable, Optional, Sequence, Union

import structlog
from langgraph.graph import END, StateGraph

from stagebeat.controllers.base import DMXController, LightController
from stagebeat.core.config import Settings
from stagebeat.core.models import Effect, Show
from stagebeat.core.state import BeatPosition, EffectExecution, OutputBatch, TickState, create_tick_state
from stagebeat.engine.catalog import EffectCatalog
from stagebeat.engine.clock import BeatClock, monotonic_ms
from stagebeat.engine.executor import EffectEngine
from stagebeat.engine.multiplexer import CommandMultiplexer, FailureHandler, OutputRouter
from stagebeat.engine.patch import FixturePatch
from stagebeat.engine.scheduler import CueScheduler
from stagebeat.loaders import ShowLibrary, load_effects_dir

logger = structlog.get_logger()


class ShowEngine:
    """
    Wrapper around the compiled tick graph.

    Owns the clock subscription and the output lifecycle, and exposes the
    show-control surface used by the CLI and embedding applications.
    """

    def __init__(
        self,
        graph: Any,  # Compiled StateGraph
        settings: Settings,
        clock: BeatClock,
        catalog: EffectCatalog,
        engine: EffectEngine,
        scheduler: CueScheduler,
        router: OutputRouter,
        shows: Optional[ShowLibrary] = None,
    ):
        self.graph = graph
        self.settings = settings
        self.clock = clock
        self.catalog = catalog
        self.engine = engine
        self.scheduler = scheduler
        self.router = router
        self.shows = shows or ShowLibrary(settings.library.shows_dir)

        self._running = False
        self._tick_lock = threading.Lock()
        self._tick_number = 0
        self._state: Optional[TickState] = None
        self._tick_errors = 0

        self.clock.on_tick(self._on_tick)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Connect outputs and start accepting beats."""
        if self._running:
            return
        logger.info("Starting show engine", effects=len(self.catalog))
        self._running = True
        self.router.start()
        self.clock.start()

    def stop(self) -> None:
        """Stop the clock, then black out and release outputs."""
        if not self._running:
            return
        logger.info("Stopping show engine", ticks=self._tick_number)
        self._running = False
        self.clock.stop()
        self.router.stop()

    def is_running(self) -> bool:
        return self._running

    def step(self, now_ms: Optional[float] = None) -> list[BeatPosition]:
        """Emit any sixteenth ticks due at ``now_ms``."""
        return self.clock.advance(monotonic_ms() if now_ms is None else now_ms)

    def run_loop(
        self,
        beat_source: Optional[Any] = None,
        target_fps: float = 100.0,
        duration_s: Optional[float] = None,
    ) -> None:
        """
        Run until stopped (or for ``duration_s``), interpolating sixteenths
        at ``target_fps``. ``beat_source`` is started and stopped with the
        engine when given.
        """
        frame_time = 1.0 / target_fps
        deadline = time.monotonic() + duration_s if duration_s is not None else None

        self.start()
        if beat_source is not None:
            beat_source.start()
        try:
            while self._running:
                if deadline is not None and time.monotonic() >= deadline:
                    break
                start = time.time()
                self.step()
                elapsed = time.time() - start

                sleep_time = frame_time - elapsed
                if sleep_time > 0:
                    time.sleep(sleep_time)
                elif self.settings.debug:
                    logger.warning(
                        "Frame overrun",
                        elapsed_ms=elapsed * 1000,
                        target_ms=frame_time * 1000,
                    )
        finally:
            if beat_source is not None:
                beat_source.stop()
            self.stop()

    def _on_tick(self, position: BeatPosition) -> None:
        with self._tick_lock:
            state = create_tick_state(position, self._tick_number)
            self._tick_number += 1
            state = self.graph.invoke(state)
            self._state = state

        if state["errors"]:
            self._tick_errors += len(state["errors"])
            logger.debug("Tick completed with errors", position=str(position), errors=state["errors"])

    # -------------------------------------------------------------------------
    # Clock
    # -------------------------------------------------------------------------

    def set_bpm(self, bpm: float) -> None:
        self.clock.set_bpm(bpm)

    def get_current_position(self) -> Optional[BeatPosition]:
        return self.clock.get_current_position()

    # -------------------------------------------------------------------------
    # Effects
    # -------------------------------------------------------------------------

    def trigger_effect(self, effect_id: str, parameters: Optional[Dict[str, Any]] = None) -> EffectExecution:
        return self.engine.trigger_effect(effect_id, parameters)

    def stop_effect(self, execution_id: str) -> None:
        self.engine.stop_effect(execution_id)

    def get_running_effects(self) -> list[EffectExecution]:
        return self.engine.get_running_effects()

    def reload_effects(self, effects: Optional[Iterable[Effect]] = None) -> int:
        """Swap in a new effect set (from the effects directory by default)."""
        if effects is None:
            effects = load_effects_dir(self.settings.library.effects_dir)
        self.catalog.replace(effects)
        return len(self.catalog)

    # -------------------------------------------------------------------------
    # Shows
    # -------------------------------------------------------------------------

    def load_show(self, show: Union[str, Show]) -> Show:
        """Load a show by name from the show library, or use ``show`` directly."""
        if isinstance(show, str):
            show = self.shows.load(show)
        return self.scheduler.load(show)

    def start_show(self) -> None:
        self.scheduler.start_show()

    def stop_show(self) -> None:
        self.scheduler.stop_show()

    def pause_show(self) -> None:
        self.scheduler.pause_show()

    def resume_show(self) -> None:
        self.scheduler.resume_show()

    def is_playing(self) -> bool:
        return self.scheduler.is_playing()

    def get_current_show(self) -> Optional[Show]:
        return self.scheduler.get_current_show()

    # -------------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------------

    def on_output_failure(self, handler: FailureHandler) -> None:
        self.router.on_failure(handler)

    @property
    def state(self) -> Optional[TickState]:
        """State of the most recent tick."""
        return self._state

    @property
    def last_batch(self) -> Optional[OutputBatch]:
        return self._state["batch"] if self._state else None

    def get_stats(self) -> dict:
        return {
            "ticks": self._tick_number,
            "tick_errors": self._tick_errors,
            "clock": self.clock.get_stats(),
            "engine": self.engine.get_stats(),
            "scheduler": self.scheduler.get_stats(),
            "output": self.router.get_stats(),
        }


def create_controllers(
    settings: Settings,
) -> tuple[list[LightController], list[DMXController]]:
    from stagebeat.controllers.mock import MockDMXController, MockLightController
    from stagebeat.dmx.artnet import ArtNetDMXController

    lights: list[LightController] = []
    dmx: list[DMXController] = []

    if settings.output.light_provider == "mock":
        lights.append(MockLightController())

    if settings.output.dmx_provider == "mock":
        dmx.append(MockDMXController())
    elif settings.output.dmx_provider == "artnet":
        dmx.append(
            ArtNetDMXController(
                host=settings.output.artnet_host,
                broadcast=settings.output.artnet_broadcast,
            )
        )

    return lights, dmx


def build_show_engine(
    settings: Optional[Settings] = None,
    mock_outputs: bool = False,
    effects: Optional[Iterable[Effect]] = None,
    light_controllers: Optional[Sequence[LightController]] = None,
    dmx_controllers: Optional[Sequence[DMXController]] = None,
) -> ShowEngine:
    """
    Build and compile the tick graph.

    Args:
        settings: Configuration settings. Uses defaults if None.
        mock_outputs: If True, use mock controllers regardless of settings.
        effects: Initial effect set. Loaded from the effects directory if None.
        light_controllers: Explicit light controllers (override settings).
        dmx_controllers: Explicit DMX controllers (override settings).

    Returns:
        ShowEngine ready to start.
    """
    if settings is None:
        settings = Settings()

    logger.info("Building show engine", mock_outputs=mock_outputs)

    if light_controllers is None and dmx_controllers is None:
        if mock_outputs:
            from stagebeat.controllers.mock import MockDMXController, MockLightController

            light_controllers, dmx_controllers = [MockLightController()], [MockDMXController()]
        else:
            light_controllers, dmx_controllers = create_controllers(settings)

    if effects is None:
        effects = load_effects_dir(settings.library.effects_dir)

    patch = FixturePatch(settings.fixtures, settings.zones)
    clock = BeatClock(settings.clock)
    catalog = EffectCatalog(effects)
    engine = EffectEngine(catalog, patch, settings.engine)
    scheduler = CueScheduler(engine, settings.clock, patch)
    router = OutputRouter(
        CommandMultiplexer(patch),
        light_controllers or (),
        dmx_controllers or (),
        settings.output,
    )

    graph = StateGraph(TickState)
    graph.add_node("cue_scheduler", scheduler)
    graph.add_node("effect_engine", engine)
    graph.add_node("output_router", router)

    graph.set_entry_point("cue_scheduler")
    graph.add_edge("cue_scheduler", "effect_engine")
    graph.add_edge("effect_engine", "output_router")
    graph.add_edge("output_router", END)

    compiled = graph.compile()

    return ShowEngine(
        compiled,
        settings,
        clock=clock,
        catalog=catalog,
        engine=engine,
        scheduler=scheduler,
        router=router,
        shows=ShowLibrary(settings.library.shows_dir),
    )
