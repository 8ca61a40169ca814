"""VITA-49 packet layout and the constants used by Flex radios.

All multi-byte fields are big-endian on the wire, and the constants below
are the values as read in that byte order.
"""

from __future__ import annotations

import itertools
import struct
from dataclasses import dataclass
from typing import Iterable

PACKET_TYPE_EXT_DATA_WITH_STREAM_ID = 0x38
PACKET_TYPE_IF_DATA_WITH_STREAM_ID = 0x18

VITA_OUI_MASK = 0x00FFFFFF
FLEX_OUI = 0x001C2D
DISCOVERY_CLASS_ID = 0x00001C2D534CFFFF
DISCOVERY_STREAM_ID = 0x00000800
STREAM_BITS_IN = 0x80000000
STREAM_BITS_OUT = 0x00000000
STREAM_BITS_METER = 0x08000000
STREAM_BITS_WAVEFORM = 0x01000000
STREAM_BITS_MASK = (
    STREAM_BITS_IN | STREAM_BITS_OUT | STREAM_BITS_METER | STREAM_BITS_WAVEFORM
)
METER_STREAM_ID = 0x88000000
METER_CLASS_ID = 0x00001C2D534C8002
AUDIO_CLASS_ID = 0x00001C2D534C03E3

_HEADER = struct.Struct(">BBHIQIQ")
HEADER_SIZE = _HEADER.size
MAX_PAYLOAD_SIZE = 1440
MAX_PACKET_SIZE = HEADER_SIZE + MAX_PAYLOAD_SIZE


@dataclass
class VitaPacket:
    """A single VITA-49 packet with a stream id and class id.

    ``length`` is the packet length in 32-bit words as carried in the
    header; when left as ``None`` it is computed from the payload.
    """

    packet_type: int = PACKET_TYPE_IF_DATA_WITH_STREAM_ID
    timestamp_type: int = 0
    stream_id: int = 0
    class_id: int = 0
    timestamp_int: int = 0
    timestamp_frac: int = 0
    payload: bytes = b""
    length: int | None = None

    def to_bytes(self) -> bytes:
        """Serialise the packet, padding the payload to whole words."""
        if len(self.payload) > MAX_PAYLOAD_SIZE:
            raise ValueError(
                f"payload of {len(self.payload)} bytes exceeds {MAX_PAYLOAD_SIZE}"
            )
        padded = bytes(self.payload) + b"\x00" * (-len(self.payload) % 4)
        length = (
            self.length
            if self.length is not None
            else (HEADER_SIZE + len(padded)) // 4
        )
        try:
            header = _HEADER.pack(
                self.packet_type,
                self.timestamp_type,
                length,
                self.stream_id,
                self.class_id,
                self.timestamp_int,
                self.timestamp_frac,
            )
        except struct.error as exc:
            raise ValueError(f"header field out of range: {exc}") from exc
        return header + padded

    @classmethod
    def from_bytes(cls, data: bytes) -> "VitaPacket":
        """Parse a datagram; anything beyond the largest packet is dropped."""
        if len(data) < HEADER_SIZE:
            raise ValueError(
                f"datagram of {len(data)} bytes is shorter than the VITA header"
            )
        data = bytes(data[:MAX_PACKET_SIZE])
        (
            packet_type,
            timestamp_type,
            length,
            stream_id,
            class_id,
            timestamp_int,
            timestamp_frac,
        ) = _HEADER.unpack_from(data)
        return cls(
            packet_type=packet_type,
            timestamp_type=timestamp_type,
            stream_id=stream_id,
            class_id=class_id,
            timestamp_int=timestamp_int,
            timestamp_frac=timestamp_frac,
            payload=data[HEADER_SIZE:],
            length=length,
        )

    def is_from_flex(self) -> bool:
        """True if the class id carries the Flex OUI."""
        return ((self.class_id >> 32) & VITA_OUI_MASK) == FLEX_OUI

    def is_discovery(self) -> bool:
        """True for a radio discovery broadcast."""
        return (
            self.stream_id == DISCOVERY_STREAM_ID
            and self.class_id == DISCOVERY_CLASS_ID
        )

    def payload_text(self) -> str:
        """The payload read as a NUL-terminated string."""
        raw = self.payload.split(b"\x00", 1)[0]
        return raw.decode("utf-8", errors="replace")

    def float_samples(self) -> list[float]:
        """Decode the payload as big-endian 32-bit floats.

        Only as many whole words as the header length announces are read.
        """
        size = len(self.payload)
        if self.length is not None:
            size = min(size, max(0, self.length * 4 - HEADER_SIZE))
        count = size // 4
        return list(struct.unpack(f">{count}f", self.payload[: count * 4]))


def encode_float_samples(samples: Iterable[float]) -> bytes:
    """Encode mono samples as big-endian stereo floats, each copied to both channels."""
    doubled = list(itertools.chain.from_iterable((s, s) for s in samples))
    return struct.pack(f">{len(doubled)}f", *doubled)