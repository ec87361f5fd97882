"""Framing for the ESC/POS ``GS v 0`` raster print session.

A session is a 10-byte header, the packed rows split into small packets and a
3-byte terminator. The printer has no way to resume a half-sent session.
"""
from dataclasses import dataclass
from typing import Iterator

import numpy as np

from ditherlabel.printer.packing import pack_bits

# ESC @ (initialise) followed by GS v 0 with mode 0
HEADER_PREFIX = bytes([0x1B, 0x40, 0x1D, 0x76, 0x30, 0x00])
# ESC d 0
END_DATA = bytes([0x1B, 0x64, 0x00])

PACKET_SIZE_BYTES = 128
PACKET_DELAY_S = 0.01


def _u16le(name: str, value: int) -> bytes:
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"{name} {value} does not fit in 16 bits")
    return bytes([value & 0xFF, value >> 8])


def header_data(width_bytes: int, rows: int) -> bytes:
    """Session header for an image ``width_bytes`` bytes wide and ``rows`` tall."""
    return HEADER_PREFIX + _u16le("width", width_bytes) + _u16le("rows", rows)


@dataclass(frozen=True)
class PrintJob:
    width_bytes: int
    rows: int
    payload: bytes

    def __post_init__(self):
        if self.width_bytes <= 0:
            raise ValueError("width_bytes must be positive")
        if len(self.payload) != self.width_bytes * self.rows:
            raise ValueError(
                f"Payload of {len(self.payload)} bytes does not match "
                f"{self.width_bytes} x {self.rows}"
            )

    @classmethod
    def from_image(cls, bw: np.ndarray) -> "PrintJob":
        payload = pack_bits(bw)
        width_bytes = bw.shape[1] // 8
        if width_bytes <= 0:
            raise ValueError("Image must be at least 8 pixels wide")
        return cls(width_bytes=width_bytes, rows=len(payload) // width_bytes, payload=payload)

    @property
    def header(self) -> bytes:
        return header_data(self.width_bytes, self.rows)

    def packets(self, size: int = PACKET_SIZE_BYTES) -> Iterator[bytes]:
        if size <= 0:
            raise ValueError("Packet size must be positive")
        offset = 0
        while True:
            chunk = self.payload[offset:offset + size]
            if not chunk:
                break
            yield chunk
            offset += size

    def packet_count(self, size: int = PACKET_SIZE_BYTES) -> int:
        return -(-len(self.payload) // size)
