from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from stagebeat.controllers.mock import MockDMXController, MockLightController
from stagebeat.core.config import ClockConfig, FixtureConfig, LibraryConfig, OutputConfig, Settings
from stagebeat.core.exceptions import InvalidTempoError, ShowNotFoundError
from stagebeat.core.models import Effect, Show
from stagebeat.engine.builder import ShowEngine, build_show_engine

RED_PULSE = Effect.model_validate(
    {
        "id": "red-pulse",
        "steps": [{"action": {"type": "hold", "color": "#ff0000"}, "duration": {"duration_ms": 400}}],
    }
)


def _engine(tmp_path: Path, **settings_overrides) -> tuple[ShowEngine, MockLightController, MockDMXController]:
    settings = Settings(
        clock=ClockConfig(auto_tempo=False),
        output=OutputConfig(async_dispatch=False),
        library=LibraryConfig(effects_dir=tmp_path / "effects", shows_dir=tmp_path / "shows"),
        **settings_overrides,
    )
    lights = MockLightController()
    dmx = MockDMXController()
    engine = build_show_engine(
        settings,
        effects=[RED_PULSE],
        light_controllers=[lights],
        dmx_controllers=[dmx],
    )
    return engine, lights, dmx


def test_triggered_effect_reaches_light_controller(tmp_path: Path) -> None:
    engine, lights, _ = _engine(tmp_path)
    engine.start()

    record = engine.trigger_effect("red-pulse", {"intensity": 0.5})
    engine.clock.detect_beat(0.0)

    assert engine.get_current_position().timestamp_ms == 0.0
    assert [e.execution_id for e in engine.get_running_effects()] == [record.execution_id]
    (batch,) = lights.batches
    assert [(c.fixture_id, c.color, c.intensity) for c in batch] == [("*", (128, 0, 0), 0.5)]
    assert engine.last_batch is not None

    engine.stop()
    assert lights.blackouts == 1
    assert engine.get_stats()["ticks"] == 1


def test_tick_runs_scheduler_engine_and_router_in_order(tmp_path: Path) -> None:
    engine, lights, _ = _engine(tmp_path)
    engine.load_show(
        Show.model_validate(
            {
                "name": "demo",
                "cues": [
                    {"id": "go", "position": {"bar": 1}, "actions": [{"type": "effect", "target": "red-pulse"}]},
                ],
            }
        )
    )
    engine.start()
    engine.start_show()

    engine.clock.detect_beat(0.0)

    state = engine.state
    assert state["fired_cues"] == ["go"]
    # Cue-triggered effects render in the tick that fired them
    assert [c.color for c in state["batch"].light_commands] == [(255, 0, 0)]
    assert set(state["processing_times"]) == {"cue_scheduler", "effect_engine", "output_router"}
    assert engine.is_playing() is True
    assert engine.get_current_show().name == "demo"
    engine.stop()


def test_show_dmx_cue_and_patched_fixture_share_universe(tmp_path: Path) -> None:
    engine, _, dmx = _engine(
        tmp_path,
        fixtures=[FixtureConfig(id="par", kind="dmx", start_address=20)],
    )
    engine.load_show(
        Show.model_validate(
            {
                "name": "dmx",
                "cues": [
                    {
                        "position": {"bar": 1},
                        "actions": [
                            {"type": "dmx", "parameters": {"channels": {"1": 255}}},
                            {"type": "lighting", "target": "par", "parameters": {"color": "#00ff00"}},
                        ],
                    }
                ],
            }
        )
    )
    engine.start()
    engine.start_show()

    engine.clock.detect_beat(0.0)

    assert dmx.get_channel(1) == 255
    assert dmx.get_channel(21) == 255
    assert dmx.get_channel(23) == 255
    engine.stop()


def test_load_show_by_name(tmp_path: Path) -> None:
    shows = tmp_path / "shows"
    shows.mkdir()
    (shows / "opener.yaml").write_text(
        yaml.safe_dump({"bpm": 126, "cues": [{"position": {"time": 0}, "actions": [{"type": "effect", "target": "red-pulse"}]}]}),
        encoding="utf-8",
    )
    engine, _, _ = _engine(tmp_path)

    show = engine.load_show("opener")

    assert show.name == "opener"
    assert engine.get_current_show() is show
    with pytest.raises(ShowNotFoundError):
        engine.load_show("closer")


def test_pause_and_resume_through_engine(tmp_path: Path) -> None:
    engine, _, _ = _engine(tmp_path)
    engine.load_show(Show(name="empty"))
    engine.start_show()

    engine.pause_show()
    assert engine.is_playing() is False
    engine.resume_show()
    assert engine.is_playing() is True
    engine.stop_show()
    assert engine.is_playing() is False


def test_set_bpm_validates(tmp_path: Path) -> None:
    engine, _, _ = _engine(tmp_path)

    with pytest.raises(InvalidTempoError):
        engine.set_bpm(-1)
    engine.set_bpm(128)
    assert engine.clock.pending_bpm == 128.0


def test_reload_effects_replaces_catalog(tmp_path: Path) -> None:
    effects_dir = tmp_path / "effects"
    effects_dir.mkdir()
    (effects_dir / "wash.yaml").write_text(
        yaml.safe_dump({"id": "wash", "steps": [{"action": {"type": "hold"}}]}),
        encoding="utf-8",
    )
    engine, _, _ = _engine(tmp_path)

    assert engine.reload_effects() == 1
    assert engine.catalog.effect_ids() == ["wash"]


def test_output_failure_is_reported_without_stopping_ticks(tmp_path: Path) -> None:
    engine, lights, _ = _engine(tmp_path)
    lights.fail_with = RuntimeError("unplugged")
    engine.start()

    engine.trigger_effect("red-pulse")
    engine.clock.detect_beat(0.0)
    engine.clock.detect_beat(500.0)

    assert engine.get_stats()["ticks"] == 2
    assert any("unplugged" in error for error in engine.state["errors"])
    engine.stop()
