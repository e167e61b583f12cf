import pytest

from stagebeat.core.config import FixtureConfig, Settings
from stagebeat.core.exceptions import ConfigError, FixtureConfigError
from stagebeat.core.models import EffectTarget
from stagebeat.engine.builder import build_show_engine
from stagebeat.engine.patch import ALL_FIXTURES, FixturePatch


def test_patch_rejects_fixture_spanning_beyond_512() -> None:
    settings = Settings(fixtures=[FixtureConfig(id="par", kind="dmx", start_address=510)])

    with pytest.raises(ConfigError):
        build_show_engine(settings, effects=[], light_controllers=[], dmx_controllers=[])


def test_patch_rejects_duplicate_ids() -> None:
    with pytest.raises(FixtureConfigError):
        FixturePatch([FixtureConfig(id=1), FixtureConfig(id="1")])


def test_patch_rejects_dmx_fixture_without_channels() -> None:
    with pytest.raises(FixtureConfigError):
        FixturePatch([FixtureConfig(id="par", kind="dmx", channels={})])


def test_all_target_falls_back_to_wildcard_without_patch() -> None:
    assert FixturePatch().resolve(EffectTarget(type="all")) == [ALL_FIXTURES]


def test_specific_target_passes_unpatched_ids_and_dedupes() -> None:
    patch = FixturePatch([FixtureConfig(id="1")])

    assert patch.resolve(EffectTarget(type="specific", selector=[1, "7", 1])) == ["1", "7"]


def test_unknown_zone_resolves_to_nothing() -> None:
    patch = FixturePatch([FixtureConfig(id="1")], zones={"back": ["1"]})

    assert patch.resolve(EffectTarget(type="zone", selector="front")) == []
    assert patch.resolve(EffectTarget(type="zone", selector="back")) == ["1"]


def test_settings_round_trip_through_yaml(tmp_path) -> None:
    settings = Settings(fixtures=[FixtureConfig(id=3, kind="dmx", start_address=40)], zones={"front": ["3"]})
    path = tmp_path / "stagebeat.yaml"

    settings.to_yaml(path)
    loaded = Settings.from_yaml(path)

    assert loaded.fixture("3").start_address == 40
    assert loaded.zones == {"front": ["3"]}
    assert loaded.fixture("missing") is None


def test_settings_read_prefixed_nested_environment(monkeypatch) -> None:
    monkeypatch.setenv("STAGEBEAT_CLOCK__DEFAULT_BPM", "128")
    monkeypatch.setenv("STAGEBEAT_DEBUG", "true")

    settings = Settings()

    assert settings.clock.default_bpm == 128.0
    assert settings.debug is True
