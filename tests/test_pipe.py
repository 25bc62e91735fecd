from __future__ import annotations

import os
import socket
import threading

import pytest

from echoharness.errors import FatalError
from echoharness.pipe import copy_until_closed


def test_copy_between_descriptors():
    data = os.urandom(10_000)
    r1, w1 = os.pipe()
    r2, w2 = os.pipe()

    def feed():
        os.write(w1, data)
        os.close(w1)

    t = threading.Thread(target=feed)
    t.start()
    out = bytearray()
    reader = threading.Thread(target=lambda: out.extend(b"".join(iter_read(r2))))
    reader.start()
    try:
        assert copy_until_closed(r1, w2) == len(data)
    finally:
        os.close(w2)
        t.join()
        reader.join()
        os.close(r1)
        os.close(r2)
    assert bytes(out) == data


def iter_read(fd):
    while True:
        chunk = os.read(fd, 4096)
        if not chunk:
            return
        yield chunk


def test_copy_between_sockets():
    a, b = socket.socketpair()
    c, d = socket.socketpair()
    try:
        a.sendall(b"relay me")
        a.shutdown(socket.SHUT_WR)
        assert copy_until_closed(b, c, bufsize=3) == 8
        c.close()
        assert d.recv(100) == b"relay me"
    finally:
        for s in (a, b, d):
            s.close()


class ShortWriter:
    def send(self, data):
        return len(data) - 1


def test_short_write_is_fatal():
    a, b = socket.socketpair()
    try:
        a.sendall(b"abc")
        with pytest.raises(FatalError):
            copy_until_closed(b, ShortWriter())
    finally:
        a.close()
        b.close()


def test_read_error_is_fatal(tmp_path):
    fd = os.open(tmp_path, os.O_RDONLY)
    try:
        with pytest.raises(FatalError):
            copy_until_closed(fd, ShortWriter())
    finally:
        os.close(fd)
