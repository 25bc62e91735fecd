"""Address values for the two families the harness speaks.

A flat address is an IPv4 endpoint and compares byte for byte. A
hierarchical address is an ordered list of typed entry identifiers (rows);
peers are identified by the last effective row alone, so two addresses that
reach the same sink through different paths still match.
"""
from __future__ import annotations

import enum
import re
import socket
import struct
from dataclasses import dataclass
from typing import Tuple, Union

from .constants import ADDR_FILE_MAX, XIA_NODES_MAX, XID_LEN, XIDTYPE_NAT
from .errors import FatalError, FormatError, SemanticError
from .principals import PrincipalMap

AF_XIA = 41

_FAMILY_STRUCT = struct.Struct("=H")
_FLAT_STRUCT = struct.Struct("!H4s8x")  # port, address, zero padding
_ROW_STRUCT = struct.Struct(f"!I{XID_LEN}s")  # type, id
_ATOI_RE = re.compile(r"\s*([+-]?\d+)")


class Family(enum.Enum):
    IP = "ip"
    XIP = "xip"


@dataclass(frozen=True, slots=True)
class FlatAddress:
    host: bytes
    port: int

    @property
    def family(self) -> Family:
        return Family.IP

    @property
    def host_text(self) -> str:
        return socket.inet_ntoa(self.host)

    def to_sockaddr(self) -> Tuple[str, int]:
        return (self.host_text, self.port)

    @staticmethod
    def from_sockaddr(sockaddr: Tuple[str, int]) -> "FlatAddress":
        return FlatAddress(socket.inet_aton(sockaddr[0]), sockaddr[1])

    def to_bytes(self) -> bytes:
        return _FAMILY_STRUCT.pack(socket.AF_INET) + _FLAT_STRUCT.pack(self.port, self.host)

    @staticmethod
    def from_bytes(raw: bytes) -> "FlatAddress":
        if len(raw) != _FAMILY_STRUCT.size + _FLAT_STRUCT.size:
            raise ValueError(f"flat address must be {_FAMILY_STRUCT.size + _FLAT_STRUCT.size} bytes")
        (af,) = _FAMILY_STRUCT.unpack_from(raw)
        if af != socket.AF_INET:
            raise ValueError(f"not a flat address (family {af})")
        port, host = _FLAT_STRUCT.unpack_from(raw, _FAMILY_STRUCT.size)
        return FlatAddress(host, port)

    def __str__(self) -> str:
        return f"{self.host_text}:{self.port}"


@dataclass(frozen=True, slots=True)
class Xid:
    type: int
    id: bytes

    @property
    def is_nat(self) -> bool:
        return self.type == XIDTYPE_NAT


NAT_ROW = Xid(XIDTYPE_NAT, b"\x00" * XID_LEN)


@dataclass(frozen=True, slots=True)
class HierarchicalAddress:
    """Up to XIA_NODES_MAX rows; everything from the first sentinel row on is ignored."""

    rows: Tuple[Xid, ...]

    @property
    def family(self) -> Family:
        return Family.XIP

    @property
    def effective_rows(self) -> Tuple[Xid, ...]:
        return self.rows[: self.effective_len]

    @property
    def effective_len(self) -> int:
        for i, row in enumerate(self.rows[:XIA_NODES_MAX]):
            if row.is_nat:
                return i
        return min(len(self.rows), XIA_NODES_MAX)

    def last_row(self) -> Xid:
        n = self.effective_len
        if n <= 0:
            raise FatalError("hierarchical address has no effective rows")
        return self.rows[n - 1]

    def to_bytes(self) -> bytes:
        rows = list(self.rows[:XIA_NODES_MAX])
        rows += [NAT_ROW] * (XIA_NODES_MAX - len(rows))
        return _FAMILY_STRUCT.pack(AF_XIA) + b"".join(_ROW_STRUCT.pack(r.type, r.id) for r in rows)

    @staticmethod
    def from_bytes(raw: bytes) -> "HierarchicalAddress":
        if len(raw) != HIERARCHICAL_SIZE:
            raise ValueError(f"hierarchical address must be {HIERARCHICAL_SIZE} bytes")
        (af,) = _FAMILY_STRUCT.unpack_from(raw)
        if af != AF_XIA:
            raise ValueError(f"not a hierarchical address (family {af})")
        rows = tuple(
            Xid(*_ROW_STRUCT.unpack_from(raw, _FAMILY_STRUCT.size + i * _ROW_STRUCT.size))
            for i in range(XIA_NODES_MAX)
        )
        return HierarchicalAddress(rows)


HIERARCHICAL_SIZE = _FAMILY_STRUCT.size + XIA_NODES_MAX * _ROW_STRUCT.size

AddressValue = Union[FlatAddress, HierarchicalAddress]


def _atoi(text: str) -> int:
    m = _ATOI_RE.match(text)
    return int(m.group(1)) if m else 0


def parse_flat(text_address: str, text_port: str) -> FlatAddress:
    try:
        host = socket.inet_aton(text_address)
    except OSError as e:
        raise FormatError(f"invalid IPv4 address: {text_address!r}") from e
    return FlatAddress(host, _atoi(text_port) & 0xFFFF)


def any_flat(port: int = 0) -> FlatAddress:
    return FlatAddress(b"\x00" * 4, port)


def parse_hierarchical(raw: Union[bytes, str], principals: PrincipalMap) -> HierarchicalAddress:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("ascii")
        except UnicodeDecodeError as e:
            raise FormatError("address text is not ASCII") from e

    tokens = raw.split()
    if not tokens:
        raise FormatError("empty address")
    if tokens[0].upper() == "RE":
        tokens = tokens[1:]

    rows = []
    invalid_flag = False
    for tok in tokens:
        if tok.startswith("!"):
            invalid_flag = True
            tok = tok[1:]
        name, sep, hexid = tok.partition("-")
        if not sep:
            raise FormatError(f"row {tok!r} is not <principal>-<id>")
        ty = principals.name_to_type(name)
        if ty is None:
            raise FormatError(f"unknown principal {name!r}")
        if len(hexid) != 2 * XID_LEN:
            raise FormatError(f"id of row {tok!r} must have {2 * XID_LEN} hex digits")
        try:
            xid = bytes.fromhex(hexid)
        except ValueError as e:
            raise FormatError(f"id of row {tok!r} is not hexadecimal") from e
        rows.append(Xid(ty, xid))

    addr = HierarchicalAddress(tuple(rows))
    _test_addr(addr)
    if invalid_flag:
        raise SemanticError(f"although valid, address has invalid flag: {raw.strip()!r}")
    return addr


def _test_addr(addr: HierarchicalAddress) -> None:
    if not addr.rows:
        raise SemanticError("address has no rows")
    if len(addr.rows) > XIA_NODES_MAX:
        raise SemanticError(f"address has {len(addr.rows)} rows; at most {XIA_NODES_MAX} allowed")
    if len(set(addr.rows)) != len(addr.rows):
        raise SemanticError("address repeats an entry identifier")


def load_hierarchical(path: str, principals: PrincipalMap) -> HierarchicalAddress:
    try:
        with open(path, "rb") as f:
            raw = f.read(ADDR_FILE_MAX)
    except OSError as e:
        raise FatalError(f"cannot read address file {path}: {e}") from e
    if len(raw) >= ADDR_FILE_MAX:
        raise FormatError(f"address file {path} is not smaller than {ADDR_FILE_MAX} bytes")
    return parse_hierarchical(raw, principals)


def format_hierarchical(addr: HierarchicalAddress, principals: PrincipalMap) -> str:
    parts = ["RE"]
    for row in addr.effective_rows:
        name = principals.type_to_name(row.type) or f"{row.type:#x}"
        parts.append(f"{name}-{row.id.hex()}")
    return " ".join(parts)


def matches(a: AddressValue, b: AddressValue) -> bool:
    if a.family is not b.family:
        raise FatalError(f"cannot compare a {a.family.value} address with a {b.family.value} address")
    if isinstance(a, FlatAddress):
        return a.to_bytes() == b.to_bytes()
    return a.last_row() == b.last_row()  # type: ignore[union-attr]
