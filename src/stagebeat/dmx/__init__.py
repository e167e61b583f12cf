"""DMX transport helpers."""

from stagebeat.dmx.artnet import ArtNetDMXController, build_artdmx_packet
from stagebeat.dmx.universe import (
    DMX_CHANNEL_COUNT,
    DMX_CHANNEL_MAX,
    DMX_CHANNEL_MIN,
    DMX_VALUE_MAX,
    channels_to_payload,
    clamp_dmx_value,
    is_valid_dmx_channel,
)

__all__ = [
    "ArtNetDMXController",
    "build_artdmx_packet",
    "DMX_CHANNEL_COUNT",
    "DMX_CHANNEL_MIN",
    "DMX_CHANNEL_MAX",
    "DMX_VALUE_MAX",
    "channels_to_payload",
    "clamp_dmx_value",
    "is_valid_dmx_channel",
]
