"""Art-Net DMX output: packet building, UDP transport and controller."""

from __future__ import annotations

import socket
import struct
import threading

import structlog

from stagebeat.core.state import DMXFrame
from stagebeat.dmx.universe import DMX_CHANNEL_COUNT, channels_to_payload

logger = structlog.get_logger()

ARTNET_PORT = 6454
ARTNET_HEADER = b"Art-Net\x00"
ARTNET_OPCODE_DMX = 0x5000
ARTNET_PROTOCOL_VERSION = 14


def build_artdmx_packet(
    universe: int,
    dmx_data: bytes,
    sequence: int = 0,
    physical: int = 0,
) -> bytes:
    """
    Build an ArtDMX packet.

    ``dmx_data`` holds up to 512 slots without the start code; short
    payloads are zero-padded.
    """
    if len(dmx_data) > DMX_CHANNEL_COUNT:
        raise ValueError(f"ArtDMX payload too large: {len(dmx_data)} bytes")

    payload = dmx_data.ljust(DMX_CHANNEL_COUNT, b"\x00")

    return b"".join(
        (
            ARTNET_HEADER,
            struct.pack("<H", ARTNET_OPCODE_DMX),
            struct.pack(">H", ARTNET_PROTOCOL_VERSION),
            bytes([sequence & 0xFF, physical & 0xFF]),
            struct.pack("<H", universe & 0x7FFF),
            # Slot count is big-endian, unlike the opcode and port address
            struct.pack(">H", len(payload)),
            payload,
        )
    )


class ArtNetDMXController:
    """
    DMX controller that sends every frame as an ArtDMX packet.

    Frames are sparse, so the last full payload per universe is kept and
    updated; untouched channels hold their previous value.
    """

    def __init__(
        self,
        host: str = "255.255.255.255",
        port: int = ARTNET_PORT,
        broadcast: bool = True,
        name: str = "artnet",
    ):
        self.name = name
        self.host = host
        self.port = port
        self.broadcast = broadcast

        self._socket: socket.socket | None = None
        self._payloads: dict[int, bytes] = {}
        self._sequence = 0
        self._lock = threading.Lock()
        self._packets_sent = 0

    def connect(self) -> None:
        if self._socket is not None:
            return
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        if self.broadcast:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        self._socket = sock
        logger.info("Art-Net output opened", host=self.host, port=self.port)

    def disconnect(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
            logger.info("Art-Net output closed", packets=self._packets_sent)

    def is_connected(self) -> bool:
        return self._socket is not None

    def send_frame(self, frame: DMXFrame) -> None:
        with self._lock:
            payload = channels_to_payload(frame.channels, self._payloads.get(frame.universe))
            self._payloads[frame.universe] = payload
            self._transmit(frame.universe, payload)

    def blackout(self) -> None:
        with self._lock:
            for universe in list(self._payloads):
                self._payloads[universe] = bytes(DMX_CHANNEL_COUNT)
                self._transmit(universe, self._payloads[universe])

    def payload(self, universe: int) -> bytes:
        return self._payloads.get(universe, bytes(DMX_CHANNEL_COUNT))

    def _transmit(self, universe: int, payload: bytes) -> None:
        if self._socket is None:
            raise RuntimeError("Art-Net output is not connected")
        # Sequence 0 disables reordering on receivers, so wrap 255 -> 1
        self._sequence = self._sequence % 255 + 1
        packet = build_artdmx_packet(universe=universe, dmx_data=payload, sequence=self._sequence)
        self._socket.sendto(packet, (self.host, self.port))
        self._packets_sent += 1
