"""Endpoint construction for both transports and both address families.

Flat-family endpoints are plain IPv4 sockets. The hierarchical family has
no native socket support here, so its endpoints run as an overlay: every
datagram is an OverlayFrame sent to the IPv4 locator found in the peer
address's u4id row, and a stream opens with one frame naming the connector.
"""
from __future__ import annotations

import enum
import logging
import random
import select
import socket
import struct
import time
from dataclasses import dataclass
from typing import Optional, Tuple

from .address import (
    AddressValue,
    Family,
    FlatAddress,
    HierarchicalAddress,
)
from .constants import XID_LEN
from .errors import FatalError
from .frame import FRAME_OVERHEAD, OverlayFrame
from .principals import PrincipalMap, get_principals

log = logging.getLogger(__name__)

_U4ID_STRUCT = struct.Struct(f"!4sH{XID_LEN - 6}x")


class Transport(enum.Enum):
    DATAGRAM = "datagram"
    STREAM = "stream"

    @property
    def sock_type(self) -> int:
        return socket.SOCK_DGRAM if self is Transport.DATAGRAM else socket.SOCK_STREAM


@dataclass(frozen=True, slots=True)
class Impairment:
    loss_rate: float = 0.0
    delay_ms: int = 0

    def should_drop(self) -> bool:
        return random.random() < self.loss_rate

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


def locator(addr: HierarchicalAddress, principals: PrincipalMap) -> Tuple[str, int]:
    """IPv4 endpoint carrying the overlay for `addr`."""
    ty = principals.name_to_type("u4id")
    for row in addr.effective_rows:
        if row.type == ty:
            host, port = _U4ID_STRUCT.unpack(row.id)
            return socket.inet_ntoa(host), port
    raise FatalError("hierarchical address has no u4id row to reach it through")


class Endpoint:
    def __init__(
        self,
        sock: socket.socket,
        family: Family,
        transport: Transport,
        protocol: int = 0,
        principals: PrincipalMap | None = None,
        impairment: Impairment | None = None,
        local: HierarchicalAddress | None = None,
    ):
        self.sock = sock
        self.family = family
        self.transport = transport
        self.protocol = protocol
        self.principals = principals
        self.impairment = impairment or Impairment()
        self.local = local
        self.peer: AddressValue | None = None

    def _carrier(self, addr: AddressValue) -> Tuple[str, int]:
        if addr.family is not self.family:
            raise FatalError(f"{addr.family.value} address used on a {self.family.value} endpoint")
        if isinstance(addr, FlatAddress):
            return addr.to_sockaddr()
        if self.principals is None:
            raise FatalError("hierarchical endpoint has no principal table")
        return locator(addr, self.principals)

    def _frame(self, payload: bytes) -> bytes:
        if self.local is None:
            raise FatalError("hierarchical endpoint used before it was bound")
        return OverlayFrame(self.local, payload).to_bytes()

    def bind(self, addr: AddressValue) -> None:
        self.sock.bind(self._carrier(addr))
        if isinstance(addr, HierarchicalAddress):
            self.local = addr

    def local_address(self) -> AddressValue:
        if self.family is Family.XIP:
            if self.local is None:
                raise FatalError("hierarchical endpoint has no local address")
            return self.local
        return FlatAddress.from_sockaddr(self.sock.getsockname())

    def sendto(self, data: bytes, addr: AddressValue) -> None:
        if self.impairment.should_drop():
            log.debug("DROPPED outbound %d bytes", len(data))
            return
        self.impairment.sleep_if_needed()
        dest = self._carrier(addr)
        if self.family is Family.XIP:
            data = self._frame(data)
        self.sock.sendto(data, dest)

    def recvfrom(self, bufsize: int) -> Optional[Tuple[bytes, AddressValue]]:
        """One datagram and its source, or None if the impairment dropped it."""
        if self.family is Family.IP:
            data, sockaddr = self.sock.recvfrom(bufsize)
            src: AddressValue = FlatAddress.from_sockaddr(sockaddr)
        else:
            raw, _ = self.sock.recvfrom(bufsize + FRAME_OVERHEAD)
            try:
                frame = OverlayFrame.from_bytes(raw)
            except ValueError as e:
                raise FatalError(f"malformed overlay frame: {e}") from e
            data, src = frame.payload[:bufsize], frame.source
        if self.impairment.should_drop():
            log.debug("DROPPED inbound %d bytes", len(data))
            return None
        self.impairment.sleep_if_needed()
        return data, src

    def send(self, data: bytes) -> int:
        return self.sock.send(data)

    def recv(self, bufsize: int) -> bytes:
        return self.sock.recv(bufsize)

    def wait_readable(self, timeout: float) -> bool:
        readable, _, _ = select.select([self.sock], [], [], timeout)
        return bool(readable)

    def connect(self, addr: AddressValue) -> None:
        self.sock.connect(self._carrier(addr))
        if self.family is Family.XIP:
            self.sock.sendall(self._frame(b""))

    def listen(self, backlog: int = 5) -> None:
        self.sock.listen(backlog)

    def accept(self) -> "Endpoint":
        conn, sockaddr = self.sock.accept()
        ep = Endpoint(
            conn,
            self.family,
            self.transport,
            protocol=self.protocol,
            principals=self.principals,
            impairment=self.impairment,
            local=self.local,
        )
        if self.family is Family.IP:
            ep.peer = FlatAddress.from_sockaddr(sockaddr)
        return ep

    def peer_address(self) -> AddressValue:
        """Connected peer; a hierarchical peer names itself in its first frame."""
        if self.peer is not None:
            return self.peer
        if self.family is Family.IP:
            self.peer = FlatAddress.from_sockaddr(self.sock.getpeername())
            return self.peer

        hello = b""
        while len(hello) < FRAME_OVERHEAD:
            part = self.sock.recv(FRAME_OVERHEAD - len(hello))
            if not part:
                raise FatalError("connection closed before the peer named itself")
            hello += part
        try:
            self.peer = OverlayFrame.from_bytes(hello).source
        except ValueError as e:
            raise FatalError(f"malformed overlay hello: {e}") from e
        return self.peer

    def fileno(self) -> int:
        return self.sock.fileno()

    def close(self) -> None:
        self.sock.close()

    def __enter__(self) -> "Endpoint":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def create_endpoint(
    family: Family,
    transport: Transport,
    principals: PrincipalMap | None = None,
    impairment: Impairment | None = None,
) -> Endpoint:
    if family is Family.IP:
        protocol = socket.IPPROTO_UDP if transport is Transport.DATAGRAM else socket.IPPROTO_TCP
    else:
        principals = principals or get_principals()
        protocol = principals.xdp_type() if transport is Transport.DATAGRAM else principals.serval_type()

    try:
        if family is Family.IP:
            sock = socket.socket(socket.AF_INET, transport.sock_type, protocol)
            # Lets the harness run twice in a row without waiting for the
            # (address, port) pair to time out.
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        else:
            sock = socket.socket(socket.AF_INET, transport.sock_type)
    except OSError as e:
        raise FatalError(f"cannot create {transport.value} socket: {e}") from e

    log.debug("created %s %s endpoint; protocol=%d", family.value, transport.value, protocol)
    return Endpoint(sock, family, transport, protocol=protocol, principals=principals, impairment=impairment)


def bind_if_required(endpoint: Endpoint, addr: AddressValue, force: bool) -> None:
    # Hierarchical endpoints always need an explicit bind; flat ones only
    # when the caller asks for it.
    if endpoint.family is not Family.XIP and not force:
        return
    try:
        endpoint.bind(addr)
    except OSError as e:
        raise FatalError(f"cannot bind to {addr}: {e}") from e
    log.debug("bound %s endpoint to %s", endpoint.family.value, addr)
