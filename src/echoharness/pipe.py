from __future__ import annotations

import logging
import os
import socket
from typing import Union

from .constants import COPY_BUFFER_SIZE
from .errors import FatalError
from .net import Endpoint

log = logging.getLogger(__name__)

Channel = Union[int, socket.socket, Endpoint]


def _read(src: Channel, n: int) -> bytes:
    if isinstance(src, int):
        return os.read(src, n)
    return src.recv(n)


def _write(dst: Channel, data: bytes) -> int:
    if isinstance(dst, int):
        return os.write(dst, data)
    return dst.send(data)


def copy_until_closed(src: Channel, dst: Channel, bufsize: int = COPY_BUFFER_SIZE) -> int:
    """Relay bytes from `src` to `dst` until `src` reaches end of stream.

    Both ends may be raw file descriptors or objects with blocking
    recv()/send() (sockets, endpoints). Returns the number of bytes copied.
    """
    total = 0
    while True:
        try:
            data = _read(src, bufsize)
        except OSError as e:
            raise FatalError(f"pipe read failed: {e}") from e
        if not data:
            break
        try:
            n = _write(dst, data)
        except OSError as e:
            raise FatalError(f"pipe write failed: {e}") from e
        if n != len(data):
            raise FatalError(f"short pipe write: {n} of {len(data)} bytes")
        total += n

    log.debug("pipe closed; copied=%d bytes", total)
    return total
