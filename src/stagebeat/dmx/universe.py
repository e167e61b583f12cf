"""Canonical DMX universe sizing, value clamping and payload helpers."""

from __future__ import annotations

import math
from typing import Mapping

DMX_START_CODE = 0x00
DMX_CHANNEL_COUNT = 512
DMX_CHANNEL_MIN = 1
DMX_CHANNEL_MAX = DMX_CHANNEL_COUNT
DMX_VALUE_MAX = 255


def is_valid_dmx_channel(channel: int) -> bool:
    """Return True when a channel index is a valid 1-based DMX slot."""
    return DMX_CHANNEL_MIN <= channel <= DMX_CHANNEL_MAX


def clamp_dmx_value(value: float) -> int | None:
    """Round and clamp a channel value to 0-255; None for NaN/Inf."""
    if not math.isfinite(value):
        return None
    return int(min(DMX_VALUE_MAX, max(0, round(value))))


def channels_to_payload(channels: Mapping[int, int], base: bytes | None = None) -> bytes:
    """
    Render sparse channel values into a 512-slot payload (no start code).

    Channels outside 1-512 are ignored. ``base`` supplies the previous
    payload so unspecified slots keep their last value.
    """
    payload = bytearray(base) if base is not None else bytearray(DMX_CHANNEL_COUNT)
    payload = payload.ljust(DMX_CHANNEL_COUNT, b"\x00")[:DMX_CHANNEL_COUNT]
    for channel, value in channels.items():
        if is_valid_dmx_channel(channel):
            payload[channel - 1] = value
    return bytes(payload)
