from __future__ import annotations

import pytest

from stagebeat.core.state import DMXFrame
from stagebeat.dmx.artnet import ARTNET_PORT, ArtNetDMXController, build_artdmx_packet


class _SocketProbe:
    def __init__(self) -> None:
        self.sent: list[tuple[bytes, tuple[str, int]]] = []
        self.closed = False

    def sendto(self, packet: bytes, address: tuple[str, int]) -> None:
        self.sent.append((packet, address))

    def close(self) -> None:
        self.closed = True


def _connected_controller() -> tuple[ArtNetDMXController, _SocketProbe]:
    controller = ArtNetDMXController(host="10.0.0.50", broadcast=False)
    probe = _SocketProbe()
    controller._socket = probe  # type: ignore[assignment]
    return controller, probe


def test_build_artdmx_packet_layout() -> None:
    data = bytes([7] * 512)
    packet = build_artdmx_packet(universe=0x0123, dmx_data=data, sequence=5)

    assert packet[:8] == b"Art-Net\x00"
    assert packet[8:10] == b"\x00\x50"  # OpOutput / ArtDMX
    assert packet[10:12] == b"\x00\x0e"  # Protocol version 14
    assert packet[12] == 5
    assert packet[13] == 0
    assert packet[14:16] == b"\x23\x01"  # little-endian universe address
    assert packet[16:18] == b"\x02\x00"  # 512 slots
    assert packet[-512:] == data


def test_short_payload_is_padded_and_oversized_rejected() -> None:
    packet = build_artdmx_packet(universe=0, dmx_data=b"\x01\x02")
    assert len(packet) == 18 + 512
    assert packet[18:20] == b"\x01\x02"

    with pytest.raises(ValueError):
        build_artdmx_packet(universe=0, dmx_data=bytes(513))


def test_controller_keeps_untouched_channels() -> None:
    controller, probe = _connected_controller()

    controller.send_frame(DMXFrame(universe=1, channels={1: 10, 2: 20}))
    controller.send_frame(DMXFrame(universe=1, channels={2: 99}))

    payload = controller.payload(1)
    assert payload[0] == 10
    assert payload[1] == 99
    assert len(probe.sent) == 2
    assert probe.sent[-1][1] == ("10.0.0.50", ARTNET_PORT)
    assert probe.sent[-1][0][-512:] == payload


def test_sequence_skips_zero_when_wrapping() -> None:
    controller, probe = _connected_controller()

    for _ in range(256):
        controller.send_frame(DMXFrame(universe=0, channels={1: 1}))

    sequences = [packet[12] for packet, _ in probe.sent]
    assert sequences[0] == 1
    assert sequences[254] == 255
    assert sequences[255] == 1
    assert 0 not in sequences


def test_blackout_zeroes_every_known_universe() -> None:
    controller, probe = _connected_controller()
    controller.send_frame(DMXFrame(universe=0, channels={1: 255}))
    controller.send_frame(DMXFrame(universe=3, channels={512: 255}))

    controller.blackout()

    assert controller.payload(0) == bytes(512)
    assert controller.payload(3) == bytes(512)
    assert len(probe.sent) == 4


def test_send_without_connection_raises() -> None:
    controller = ArtNetDMXController()

    with pytest.raises(RuntimeError):
        controller.send_frame(DMXFrame(universe=0, channels={1: 1}))
    assert controller.is_connected() is False
