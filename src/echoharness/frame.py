from __future__ import annotations

import struct
from dataclasses import dataclass

from .address import HIERARCHICAL_SIZE, HierarchicalAddress
from .constants import OVERLAY_VERSION

HEADER_FORMAT = "!BH"  # version, source address length
HEADER_LEN = struct.calcsize(HEADER_FORMAT)
FRAME_OVERHEAD = HEADER_LEN + HIERARCHICAL_SIZE


@dataclass(frozen=True, slots=True)
class OverlayFrame:
    """One hierarchical-family datagram as carried over IPv4."""

    source: HierarchicalAddress
    payload: bytes = b""
    version: int = OVERLAY_VERSION

    def to_bytes(self) -> bytes:
        src = self.source.to_bytes()
        return struct.pack(HEADER_FORMAT, self.version, len(src)) + src + self.payload

    @staticmethod
    def from_bytes(raw: bytes) -> "OverlayFrame":
        if len(raw) < HEADER_LEN:
            raise ValueError("datagram too small to be an overlay frame")

        version, src_len = struct.unpack_from(HEADER_FORMAT, raw)
        if version != OVERLAY_VERSION:
            raise ValueError(f"version mismatch: expected {OVERLAY_VERSION}, got {version}")
        if src_len != HIERARCHICAL_SIZE or len(raw) < HEADER_LEN + src_len:
            raise ValueError("truncated source address")

        source = HierarchicalAddress.from_bytes(raw[HEADER_LEN : HEADER_LEN + src_len])
        return OverlayFrame(source=source, payload=raw[HEADER_LEN + src_len :], version=version)
