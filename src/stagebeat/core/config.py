"""
Configuration Management for StageBeat.

Uses Pydantic Settings for type-safe configuration with environment
variable support and YAML file loading.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CHANNEL_MAP = {"red": 0, "green": 1, "blue": 2, "dimmer": 3}


class ClockConfig(BaseModel):
    """Beat clock and meter configuration."""
    beats_per_bar: int = Field(default=4, ge=1, le=32)
    sixteenths_per_beat: int = Field(default=4, ge=1, le=16)
    default_bpm: float = Field(default=120.0, gt=0)
    min_beat_interval_ms: float = Field(default=150.0, ge=0)  # debounce threshold
    auto_tempo: bool = True
    tempo_window: int = Field(default=8, ge=2)
    min_bpm: float = 30.0
    max_bpm: float = 300.0


class EngineConfig(BaseModel):
    """Effect execution configuration."""
    default_intensity: float = Field(default=1.0, ge=0.0, le=1.0)
    default_strobe_rate_hz: float = Field(default=10.0, gt=0)
    max_executions: int = Field(default=64, ge=1)


class OutputConfig(BaseModel):
    """Output routing and controller selection."""
    light_provider: Literal["mock", "none"] = "mock"
    dmx_provider: Literal["mock", "artnet", "none"] = "mock"
    async_dispatch: bool = True
    queue_size: int = Field(default=32, ge=1)
    failure_threshold: int = Field(default=5, ge=1)
    artnet_host: str = "255.255.255.255"
    artnet_broadcast: bool = True


class LibraryConfig(BaseModel):
    """Effect and show definition directories."""
    effects_dir: Path = Path("effects")
    shows_dir: Path = Path("shows")


class FixtureConfig(BaseModel):
    """Individual fixture patch entry."""
    id: str
    name: str = ""
    kind: Literal["light", "dmx"] = "light"
    universe: int = Field(default=0, ge=0)
    start_address: int = Field(default=1, ge=1, le=512)
    channels: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_CHANNEL_MAP))
    enabled: bool = True

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> str:
        # YAML patches often use bare integers for fixture numbers
        return str(value)


class Settings(BaseSettings):
    """
    Main application settings.

    Can be configured via:
    - Environment variables (prefixed with STAGEBEAT_)
    - YAML config file
    - Direct instantiation
    """

    clock: ClockConfig = Field(default_factory=ClockConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    library: LibraryConfig = Field(default_factory=LibraryConfig)

    # Patch
    fixtures: List[FixtureConfig] = Field(default_factory=list)
    zones: Dict[str, List[str]] = Field(default_factory=dict)

    # Debug
    debug: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="STAGEBEAT_",
        env_nested_delimiter="__",
    )

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load settings from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save settings to a YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)

    def fixture(self, fixture_id: str) -> Optional[FixtureConfig]:
        for fixture in self.fixtures:
            if fixture.id == fixture_id:
                return fixture
        return None
