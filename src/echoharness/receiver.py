from __future__ import annotations

import logging
import sys
from typing import BinaryIO, Optional

from .address import AddressValue, matches
from .constants import RECV_TIMEOUT_S
from .errors import FatalError
from .net import Endpoint

log = logging.getLogger(__name__)


def mark_lost(reason: str, expected_bytes: int) -> None:
    """Report a lost checkpoint; the transfer carries on."""
    sys.stderr.write(".")
    sys.stderr.flush()
    log.warning("checkpoint lost (%s); expected_bytes=%d", reason, expected_bytes)


def receive_verified(
    endpoint: Endpoint,
    expected_peer: AddressValue,
    mirror: BinaryIO,
    expected_bytes: int,
    timeout: float = RECV_TIMEOUT_S,
) -> Optional[int]:
    """Receive one echoed datagram from `expected_peer` and append it to `mirror`.

    Returns the number of bytes written, or None when nothing usable arrived
    within `timeout` seconds. A reply from any other peer is fatal.
    """
    if not endpoint.wait_readable(timeout):
        mark_lost("timeout", expected_bytes)
        return None

    got = endpoint.recvfrom(expected_bytes)
    if got is None:
        mark_lost("dropped", expected_bytes)
        return None
    data, src = got
    if not matches(src, expected_peer):
        raise FatalError(f"reply came from {src}, expected {expected_peer}")

    mirror.write(data)
    return len(data)


def receive_exact(endpoint: Endpoint, mirror: BinaryIO, expected_bytes: int) -> Optional[int]:
    """Read exactly `expected_bytes` from a stream and append them to `mirror`.

    Returns the number of bytes written, or None, writing nothing, if the
    connection closes or fails first.
    """
    buf = bytearray()
    while len(buf) < expected_bytes:
        try:
            part = endpoint.recv(expected_bytes - len(buf))
        except OSError as e:
            mark_lost(f"read failed: {e}", expected_bytes)
            return None
        if not part:
            mark_lost("connection closed", expected_bytes)
            return None
        buf += part

    mirror.write(bytes(buf))
    return len(buf)
