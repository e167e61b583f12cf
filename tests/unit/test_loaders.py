from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from stagebeat.core.exceptions import (
    EffectDefinitionError,
    MalformedCuePositionError,
    ShowError,
    ShowNotFoundError,
)
from stagebeat.core.models import ColorParameter, Effect, NumberParameter
from stagebeat.loaders import (
    ShowLibrary,
    delete_effect,
    load_effect_file,
    load_effects_dir,
    load_show_file,
    parse_effect,
    parse_show,
    save_effect,
)

CHASE = {
    "id": "chase",
    "name": "Chase",
    "description": "Four-step color chase",
    "tags": ["beat", "color"],
    "beatLocked": True,
    "parameters": [
        {"name": "speed", "type": "number", "value": 2},
        {"name": "tint", "type": "color", "value": "#102030"},
    ],
    "metadata": {"author": "ops", "version": "1.2.0"},
    "steps": [
        {
            "action": {"type": "fade", "intensity": {"value": 0.8}, "color": [255, 0, 0]},
            "duration": {"startMs": 0, "durationMs": 250},
            "target": {"type": "zone", "selector": "front"},
            "parameters": [{"name": "transition", "type": "duration", "value": 50}],
        },
        {"action": {"type": "blackout"}, "duration": {"durationMs": 0}},
    ],
}


def _write(path: Path, data: object) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


def test_camel_case_definition_is_parsed() -> None:
    effect = parse_effect(CHASE)

    assert effect.beat_locked is True
    assert effect.steps[0].duration.duration_ms == 250
    assert effect.steps[0].action.intensity == 0.8
    assert isinstance(effect.parameters[0], NumberParameter)
    assert isinstance(effect.parameters[1], ColorParameter)
    assert effect.default_parameters["speed"] == 2.0


def test_saved_effect_loads_back_identical(tmp_path: Path) -> None:
    effect = parse_effect(CHASE)

    path = save_effect(effect, tmp_path)
    (loaded,) = load_effect_file(path)

    assert path.name == "chase.yaml"
    assert loaded == effect


def test_unknown_parameter_type_is_rejected() -> None:
    bad = {**CHASE, "parameters": [{"name": "x", "type": "vector", "value": [1, 2]}]}

    with pytest.raises(EffectDefinitionError) as excinfo:
        parse_effect(bad, "bad.yaml")
    assert excinfo.value.source == "bad.yaml"


def test_effect_without_steps_is_rejected() -> None:
    with pytest.raises(EffectDefinitionError):
        parse_effect({"id": "empty", "steps": []})


def test_bad_step_parameter_is_rejected_at_load() -> None:
    bad = {
        "id": "strobe",
        "steps": [
            {
                "action": {"type": "strobe"},
                "parameters": [{"name": "rate_hz", "type": "string", "value": "fast"}],
            }
        ],
    }

    with pytest.raises(EffectDefinitionError) as excinfo:
        parse_effect(bad, "strobe.yaml")
    assert "step 0" in excinfo.value.reason


def test_effects_dir_skips_invalid_files(tmp_path: Path) -> None:
    _write(tmp_path / "chase.yaml", CHASE)
    _write(tmp_path / "broken.yml", {"id": "broken", "steps": []})
    _write(
        tmp_path / "pack.yaml",
        {"effects": [{"id": "a", "steps": [{"action": {"type": "hold"}}]}, {"id": "b", "steps": [{"action": {"type": "pulse"}}]}]},
    )
    (tmp_path / "notes.txt").write_text("not an effect", encoding="utf-8")

    effects = load_effects_dir(tmp_path)

    assert sorted(e.id for e in effects) == ["a", "b", "chase"]


def test_missing_effects_dir_yields_nothing(tmp_path: Path) -> None:
    assert load_effects_dir(tmp_path / "nope") == []


def test_delete_effect(tmp_path: Path) -> None:
    save_effect(parse_effect(CHASE), tmp_path)

    assert delete_effect("chase", tmp_path) is True
    assert delete_effect("chase", tmp_path) is False


# ---------------------------------------------------------------------------
# Shows
# ---------------------------------------------------------------------------


def test_show_name_defaults_to_file_stem(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "opener.yaml",
        {
            "bpm": 128,
            "beatsPerBar": 4,
            "cues": [
                {"position": {"bar": 1}, "actions": [{"type": "effect", "target": "chase"}]},
                {"position": {"time": 5000, "bar": 3}, "actions": [{"type": "lighting", "parameters": {"blackout": True}}]},
            ],
        },
    )

    show = load_show_file(path)

    assert show.name == "opener"
    assert show.bpm == 128
    assert show.beats_per_bar == 4
    assert show.cues[1].position.is_absolute is True


def test_cue_without_position_is_malformed(tmp_path: Path) -> None:
    path = _write(tmp_path / "bad.yaml", {"cues": [{"id": "c1", "position": {}}]})

    with pytest.raises(MalformedCuePositionError) as excinfo:
        load_show_file(path)
    assert excinfo.value.cue == "c1"


def test_cue_with_beat_but_no_bar_is_malformed(tmp_path: Path) -> None:
    path = _write(tmp_path / "bad.yaml", {"cues": [{"name": "drop", "position": {"beat": 2}}]})

    with pytest.raises(MalformedCuePositionError) as excinfo:
        load_show_file(path)
    assert "bar" in excinfo.value.reason


def test_show_library_lists_and_loads(tmp_path: Path) -> None:
    _write(tmp_path / "b-side.yml", {"name": "B Side", "cues": []})
    _write(tmp_path / "a-side.yaml", {"cues": []})
    library = ShowLibrary(tmp_path)

    assert library.available_shows() == ["a-side", "b-side"]
    assert library.load("b-side").name == "B Side"

    with pytest.raises(ShowNotFoundError) as excinfo:
        library.load("c-side")
    assert excinfo.value.available == ["a-side", "b-side"]


def test_bad_effect_cue_parameters_fail_at_load() -> None:
    data = {
        "cues": [
            {
                "id": "intro",
                "position": {"bar": 1},
                "actions": [{"type": "effect", "target": "chase", "parameters": {"color": "zz", "transition": "slow"}}],
            }
        ]
    }

    with pytest.raises(ShowError) as excinfo:
        parse_show(data, "opener")
    assert "color" in excinfo.value.message
    assert "transition" in excinfo.value.message


def test_bad_lighting_cue_parameters_fail_at_load() -> None:
    data = {
        "cues": [
            {"position": {"time": 0}, "actions": [{"type": "lighting", "parameters": {"intensity": "loud"}}]},
        ]
    }

    with pytest.raises(ShowError):
        parse_show(data, "opener")


def test_mixed_time_bases_load_in_listed_order(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "mixed.yaml",
        {
            "cues": [
                {"id": "bar3", "position": {"bar": 3}, "actions": [{"type": "effect", "target": "chase"}]},
                {"id": "t2000", "position": {"time": 2000}, "actions": [{"type": "effect", "target": "chase"}]},
            ]
        },
    )

    show = load_show_file(path)

    assert [cue.label for cue in show.cues] == ["bar3", "t2000"]
