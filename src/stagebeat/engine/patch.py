"""Fixture patch: resolves effect targets to fixture ids and DMX addresses."""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Dict, Iterable, List, Mapping, Optional

import structlog

from stagebeat.core.config import FixtureConfig
from stagebeat.core.exceptions import FixtureConfigError
from stagebeat.core.models import EffectTarget
from stagebeat.dmx.universe import DMX_CHANNEL_MAX

logger = structlog.get_logger()

# Wildcard fixture id: "every fixture the controller knows"
ALL_FIXTURES = "*"


class FixturePatch:
    """
    Patched fixtures and named zones.

    ``specific`` targets naming an unpatched fixture are passed through as
    plain light fixtures so a light controller that knows them still
    receives the command.
    """

    def __init__(
        self,
        fixtures: Iterable[FixtureConfig] = (),
        zones: Optional[Mapping[str, List[str]]] = None,
    ):
        self._fixtures: Dict[str, FixtureConfig] = {}
        for fixture in fixtures:
            self._validate(fixture)
            self._fixtures[fixture.id] = fixture
        self._zones = {name: [str(item) for item in ids] for name, ids in (zones or {}).items()}

    def _validate(self, fixture: FixtureConfig) -> None:
        if fixture.id in self._fixtures:
            raise FixtureConfigError(fixture.id, "duplicate fixture id")
        if fixture.kind != "dmx":
            return
        if not fixture.channels:
            raise FixtureConfigError(fixture.id, "dmx fixture has no channel map")
        last_channel = fixture.start_address + max(fixture.channels.values())
        if last_channel > DMX_CHANNEL_MAX:
            raise FixtureConfigError(
                fixture.id,
                f"channels span beyond {DMX_CHANNEL_MAX} (last channel {last_channel})",
            )

    def get(self, fixture_id: str) -> Optional[FixtureConfig]:
        return self._fixtures.get(fixture_id)

    def fixture_ids(self) -> List[str]:
        return [fid for fid, fixture in self._fixtures.items() if fixture.enabled]

    def resolve(self, target: EffectTarget) -> List[str]:
        """Expand a target into an ordered, de-duplicated fixture id list."""
        if target.type == "all":
            resolved = self.fixture_ids() or [ALL_FIXTURES]
        elif target.type == "zone":
            resolved = []
            for zone in target.selector_ids():
                if zone not in self._zones:
                    logger.warning("Unknown zone", zone=zone)
                    continue
                resolved.extend(self._zones[zone])
        elif target.type == "pattern":
            patterns = target.selector_ids()
            resolved = [
                fid for fid in self.fixture_ids()
                if any(fnmatchcase(fid, pattern) for pattern in patterns)
            ]
        else:
            resolved = target.selector_ids()

        seen: set[str] = set()
        ordered: List[str] = []
        for fixture_id in resolved:
            fixture = self._fixtures.get(fixture_id)
            if fixture is not None and not fixture.enabled:
                continue
            if fixture_id not in seen:
                seen.add(fixture_id)
                ordered.append(fixture_id)
        return ordered

    def __len__(self) -> int:
        return len(self._fixtures)
