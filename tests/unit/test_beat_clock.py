from __future__ import annotations

import math

import pytest

from stagebeat.core.config import ClockConfig
from stagebeat.core.exceptions import InvalidTempoError
from stagebeat.core.state import BeatPosition
from stagebeat.engine.clock import BeatClock


def _clock(**overrides) -> BeatClock:
    config = ClockConfig(auto_tempo=False, **overrides)
    clock = BeatClock(config)
    clock.start()
    return clock


class _Recorder:
    def __init__(self) -> None:
        self.positions: list[BeatPosition] = []

    def __call__(self, position: BeatPosition) -> None:
        self.positions.append(position)


def test_position_is_none_before_first_beat() -> None:
    clock = _clock()
    assert clock.get_current_position() is None

    position = clock.detect_beat(0.0)
    assert position == BeatPosition(1, 1, 1, 0.0)
    assert clock.get_current_position() == position


def test_start_is_idempotent_and_keeps_position() -> None:
    clock = _clock()
    clock.detect_beat(0.0)
    clock.start()

    position = clock.detect_beat(500.0)
    assert (position.bar, position.beat) == (1, 2)


def test_stop_halts_ticks_but_keeps_last_position() -> None:
    clock = _clock()
    clock.detect_beat(0.0)
    clock.stop()
    clock.stop()

    assert clock.detect_beat(500.0) is None
    assert clock.get_current_position().timestamp_ms == 0.0


@pytest.mark.parametrize("bpm", [0, -120, math.nan, math.inf, True, "120"])
def test_set_bpm_rejects_invalid_tempo(bpm: object) -> None:
    clock = _clock()
    with pytest.raises(InvalidTempoError):
        clock.set_bpm(bpm)  # type: ignore[arg-type]
    assert clock.bpm == 120.0
    assert clock.pending_bpm is None


def test_set_bpm_applies_at_next_subdivision_boundary() -> None:
    clock = _clock()
    first = clock.detect_beat(0.0)

    clock.set_bpm(60)
    assert clock.bpm == 120.0

    emitted = clock.advance(125.0)
    assert [str(p) for p in emitted] == ["1.1.2"]
    assert clock.bpm == 60.0
    # Already-emitted positions are untouched
    assert first == BeatPosition(1, 1, 1, 0.0)

    # 60 BPM: 250 ms per sixteenth from the boundary at 125 ms
    assert clock.advance(374.0) == []
    assert [str(p) for p in clock.advance(375.0)] == ["1.1.3"]


def test_advance_never_passes_last_sixteenth_of_beat() -> None:
    clock = _clock()
    clock.detect_beat(0.0)

    emitted = clock.advance(10_000.0)
    assert [str(p) for p in emitted] == ["1.1.2", "1.1.3", "1.1.4"]
    assert [p.timestamp_ms for p in emitted] == [125.0, 250.0, 375.0]


def test_beats_closer_than_threshold_are_coalesced() -> None:
    clock = _clock(min_beat_interval_ms=150.0)
    ticks = _Recorder()
    clock.on_tick(ticks)

    clock.detect_beat(0.0)
    assert clock.detect_beat(100.0) is None
    clock.detect_beat(500.0)

    assert [str(p) for p in ticks.positions] == ["1.1.1", "1.2.1"]
    assert clock.get_stats()["coalesced_beats"] == 1


def test_failing_listener_does_not_block_others() -> None:
    clock = _clock()
    calls = _Recorder()

    def broken(position: BeatPosition) -> None:
        raise RuntimeError("listener exploded")

    clock.on_beat(broken)
    clock.on_beat(calls)

    clock.detect_beat(0.0)

    assert len(calls.positions) == 1
    assert clock.get_stats()["listener_errors"] == 1


def test_bar_listeners_fire_on_downbeats_only() -> None:
    clock = _clock()
    bars = _Recorder()
    clock.on_bar(bars)

    for i in range(5):
        clock.detect_beat(i * 500.0)

    assert [str(p) for p in bars.positions] == ["1.1.1", "2.1.1"]


def test_downbeat_flag_realigns_to_next_bar() -> None:
    clock = _clock()
    clock.detect_beat(0.0)
    clock.detect_beat(500.0)

    position = clock.detect_beat(1000.0, downbeat=True)
    assert (position.bar, position.beat) == (2, 1)


def test_seek_places_next_beat() -> None:
    clock = _clock()
    clock.detect_beat(0.0)
    clock.seek(5, 3)

    assert str(clock.detect_beat(500.0)) == "5.3.1"
    assert str(clock.detect_beat(1000.0)) == "5.4.1"


def test_timestamps_never_go_backwards() -> None:
    clock = _clock(min_beat_interval_ms=0.0)
    clock.detect_beat(1000.0)

    position = clock.detect_beat(900.0)
    assert position.timestamp_ms == 1000.0


def test_tempo_is_estimated_from_beat_intervals() -> None:
    clock = BeatClock(ClockConfig(auto_tempo=True))
    clock.start()

    for i in range(4):
        clock.detect_beat(i * 400.0)

    assert clock.bpm == pytest.approx(150.0)


def test_manual_tempo_disables_estimation_until_reset() -> None:
    clock = BeatClock(ClockConfig(auto_tempo=True))
    clock.start()
    clock.set_bpm(100)

    for i in range(4):
        clock.detect_beat(i * 400.0)
    assert clock.bpm == 100.0

    clock.reset()
    assert clock.get_current_position() is None
    for i in range(4):
        clock.detect_beat(10_000 + i * 400.0)
    assert clock.bpm == pytest.approx(150.0)
