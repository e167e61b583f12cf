"""
Definition Models for effects and shows.

Effects and shows are immutable once loaded. Parameter bags are a tagged
union on ``type`` and are validated when a definition is parsed, so the
engine never has to second-guess a value at tick time.

Field names are snake_case in Python; definition files may use either
snake_case or camelCase keys (``durationMs``, ``beatsPerBar``).
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from stagebeat.core.exceptions import MalformedCuePositionError
from stagebeat.dmx.universe import DMX_CHANNEL_MAX, DMX_CHANNEL_MIN, DMX_VALUE_MAX


class DefinitionModel(BaseModel):
    """Frozen base for everything a loader hands to the engine."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )


class Color(DefinitionModel):
    """RGB color; channels are kept as floats until they leave the engine."""

    r: float = Field(default=0.0, ge=0.0, le=255.0)
    g: float = Field(default=0.0, ge=0.0, le=255.0)
    b: float = Field(default=0.0, ge=0.0, le=255.0)

    @model_validator(mode="before")
    @classmethod
    def _accept_shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            hex_str = data.lstrip("#")
            if len(hex_str) != 6:
                raise ValueError(f"expected #rrggbb color, got {data!r}")
            return {
                "r": int(hex_str[0:2], 16),
                "g": int(hex_str[2:4], 16),
                "b": int(hex_str[4:6], 16),
            }
        if isinstance(data, (list, tuple)):
            if len(data) != 3:
                raise ValueError(f"expected [r, g, b], got {data!r}")
            return {"r": data[0], "g": data[1], "b": data[2]}
        return data

    def scaled(self, factor: float) -> "Color":
        factor = max(0.0, factor)
        return Color(
            r=min(255.0, self.r * factor),
            g=min(255.0, self.g * factor),
            b=min(255.0, self.b * factor),
        )

    def as_rgb(self) -> Tuple[int, int, int]:
        """Normalize to integer channels in [0, 255]."""
        return (
            _to_byte(self.r),
            _to_byte(self.g),
            _to_byte(self.b),
        )


WHITE = Color(r=255, g=255, b=255)
BLACK = Color(r=0, g=0, b=0)


def _to_byte(value: float) -> int:
    return int(min(DMX_VALUE_MAX, max(0, round(value))))


# =============================================================================
# Effect parameters (tagged union)
# =============================================================================


class ColorParameter(DefinitionModel):
    name: str
    type: Literal["color"] = "color"
    value: Color


class NumberParameter(DefinitionModel):
    name: str
    type: Literal["number"] = "number"
    value: float


class BooleanParameter(DefinitionModel):
    name: str
    type: Literal["boolean"] = "boolean"
    value: bool


class StringParameter(DefinitionModel):
    name: str
    type: Literal["string"] = "string"
    value: str


class DurationParameter(DefinitionModel):
    name: str
    type: Literal["duration"] = "duration"
    value: float = Field(ge=0.0)  # milliseconds


EffectParameter = Annotated[
    Union[
        ColorParameter,
        NumberParameter,
        BooleanParameter,
        StringParameter,
        DurationParameter,
    ],
    Field(discriminator="type"),
]


def parameter_values(parameters: Tuple[Any, ...]) -> Dict[str, Any]:
    """Flatten typed parameters into a name -> value mapping."""
    return {param.name: param.value for param in parameters}


class TriggerParameters(DefinitionModel):
    """
    Runtime parameters passed to an effect trigger.

    The keys the engine interprets are typed here; anything else is kept
    as-is so effects can carry their own values.
    """

    model_config = ConfigDict(extra="allow")

    intensity: Optional[float] = Field(default=None, allow_inf_nan=False)
    color: Optional[Color] = None
    transition: Optional[float] = Field(default=None, ge=0.0, allow_inf_nan=False)
    rate_hz: Optional[float] = Field(default=None, ge=0.0, allow_inf_nan=False)
    beat_locked: Optional[bool] = None

    def values(self) -> Dict[str, Any]:
        """Validated values for the keys that were actually given."""
        values = dict(self.model_extra or {})
        for name in self.model_fields_set & set(type(self).model_fields):
            values[name] = getattr(self, name)
        return values


class LightingParameters(DefinitionModel):
    """Parameters of a one-shot ``lighting`` cue action."""

    color: Color = Field(default_factory=lambda: WHITE)
    intensity: float = Field(default=1.0, allow_inf_nan=False)
    blackout: bool = False
    transition_ms: Optional[float] = Field(default=None, ge=0.0, allow_inf_nan=False)


def summarize_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


# =============================================================================
# Effects
# =============================================================================


ActionType = Literal["fade", "pulse", "sweep", "strobe", "hold", "blackout"]
TargetType = Literal["all", "zone", "specific", "pattern"]


class TimeRange(DefinitionModel):
    """Step timing, relative to the step's own start."""

    start_ms: float = Field(default=0.0, ge=0.0)
    duration_ms: float = Field(default=0.0, ge=0.0)

    @property
    def length_ms(self) -> float:
        return self.start_ms + self.duration_ms


class EffectAction(DefinitionModel):
    type: ActionType
    intensity: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    color: Optional[Color] = None

    @field_validator("intensity", mode="before")
    @classmethod
    def _unwrap_intensity(cls, value: Any) -> Any:
        # Older definitions wrap scalar values as {"value": x}
        if isinstance(value, dict) and "value" in value:
            return value["value"]
        return value


class EffectTarget(DefinitionModel):
    type: TargetType = "all"
    selector: Union[int, str, List[Union[int, str]]] = "all"

    def selector_ids(self) -> List[str]:
        if isinstance(self.selector, list):
            return [str(item) for item in self.selector]
        return [str(self.selector)]


class EffectStep(DefinitionModel):
    action: EffectAction
    duration: TimeRange = Field(default_factory=TimeRange)
    parameters: Tuple[EffectParameter, ...] = ()
    target: EffectTarget = Field(default_factory=EffectTarget)
    beat_locked: bool = False


class EffectMetadata(DefinitionModel):
    author: Optional[str] = None
    version: str = "1.0.0"
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    requirements: Tuple[str, ...] = ()


class Effect(DefinitionModel):
    """Reusable, parametric sequence of lighting steps."""

    id: str
    name: str = ""
    description: Optional[str] = None
    tags: Tuple[str, ...] = ()
    steps: Tuple[EffectStep, ...] = Field(min_length=1)
    parameters: Tuple[EffectParameter, ...] = ()
    metadata: EffectMetadata = Field(default_factory=EffectMetadata)
    beat_locked: bool = False

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: Any) -> Any:
        if isinstance(data, dict):
            effect_id = data.get("id")
            if isinstance(effect_id, dict):
                effect_id = effect_id.get("value")
            if effect_id is None:
                effect_id = data.get("name")
            data = {**data, "id": effect_id}
            if not data.get("name"):
                data["name"] = effect_id
        return data

    @model_validator(mode="after")
    def _check_step_parameters(self) -> "Effect":
        defaults = parameter_values(self.parameters)
        for index, step in enumerate(self.steps):
            try:
                TriggerParameters.model_validate({**defaults, **parameter_values(step.parameters)})
            except ValidationError as e:
                raise ValueError(
                    f"step {index} parameters: {summarize_validation_error(e)}"
                ) from None
        return self

    @property
    def default_parameters(self) -> Dict[str, Any]:
        return parameter_values(self.parameters)

    def to_definition(self) -> Dict[str, Any]:
        """Serialize back to the loader schema."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Shows
# =============================================================================


class CuePosition(DefinitionModel):
    """
    Where a cue fires.

    A musical position (bar, beat, sixteenth) relative to show start, or an
    absolute ``time`` in milliseconds since show start. When both are given,
    absolute time takes precedence.
    """

    bar: Optional[int] = Field(default=None, ge=1)
    beat: Optional[int] = Field(default=None, ge=1)
    sixteenth: Optional[int] = Field(default=None, ge=1)
    time: Optional[float] = Field(default=None, ge=0.0)

    @model_validator(mode="after")
    def _require_resolvable(self) -> "CuePosition":
        if self.time is None and self.bar is None:
            if self.beat is None and self.sixteenth is None:
                reason = "neither a musical position nor a time is set"
            else:
                reason = "musical position needs a bar"
            raise MalformedCuePositionError(None, reason)
        return self

    @property
    def is_absolute(self) -> bool:
        return self.time is not None

    @property
    def musical(self) -> Tuple[int, int, int]:
        return (self.bar or 1, self.beat or 1, self.sixteenth or 1)


CueActionType = Literal["effect", "lighting", "dmx"]


class CueAction(DefinitionModel):
    type: CueActionType = "effect"
    target: Optional[Union[int, str, List[Union[int, str]]]] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_payload(self) -> "CueAction":
        if self.type == "effect" and not self.target:
            raise ValueError("effect actions need a target effect id")
        if self.type in ("effect", "lighting"):
            schema = TriggerParameters if self.type == "effect" else LightingParameters
            try:
                schema.model_validate(self.parameters)
            except ValidationError as e:
                raise ValueError(
                    f"invalid {self.type} parameters: {summarize_validation_error(e)}"
                ) from None
        if self.type == "dmx":
            channels = self.parameters.get("channels")
            if not isinstance(channels, dict) or not channels:
                raise ValueError("dmx actions need a non-empty 'channels' mapping")
            for channel, value in channels.items():
                if not DMX_CHANNEL_MIN <= int(channel) <= DMX_CHANNEL_MAX:
                    raise ValueError(f"dmx channel out of range: {channel}")
                if not 0 <= int(value) <= DMX_VALUE_MAX:
                    raise ValueError(f"dmx value out of range on {channel}: {value}")
        return self

    def target_ids(self) -> List[str]:
        if self.target is None:
            return []
        if isinstance(self.target, list):
            return [str(item) for item in self.target]
        return [str(self.target)]

    def lighting_parameters(self) -> LightingParameters:
        return LightingParameters.model_validate(self.parameters)


class ShowCue(DefinitionModel):
    id: Optional[str] = None
    name: Optional[str] = None
    position: CuePosition
    actions: Tuple[CueAction, ...] = ()

    @property
    def label(self) -> str:
        return self.id or self.name or repr(self.position.model_dump(exclude_none=True))


class Show(DefinitionModel):
    """Ordered, immutable cue timeline."""

    name: str
    description: Optional[str] = None
    bpm: Optional[float] = Field(default=None, gt=0)
    beats_per_bar: Optional[int] = Field(default=None, ge=1)
    cues: Tuple[ShowCue, ...] = ()
