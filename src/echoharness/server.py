from __future__ import annotations

import logging
import threading
from typing import TextIO

from .commands import read_command
from .errors import FatalError
from .net import Endpoint
from .pipe import copy_until_closed

log = logging.getLogger(__name__)

MAX_DATAGRAM = 65535
POLL_INTERVAL_S = 0.5


class _EchoServer(threading.Thread):
    def __init__(self, endpoint: Endpoint):
        super().__init__(daemon=True)
        self.endpoint = endpoint
        self.running = True
        self.ready = threading.Event()
        self.messages = 0
        self.bytes_echoed = 0
        self.dropped = 0

    def stop(self) -> None:
        self.running = False
        self.join(timeout=2 * POLL_INTERVAL_S + 1)
        self.endpoint.close()

    def status(self) -> str:
        return f"messages={self.messages} bytes={self.bytes_echoed} dropped={self.dropped}"


class DatagramEchoServer(_EchoServer):
    """Sends every datagram back to whoever sent it."""

    def run(self) -> None:
        self.ready.set()
        while self.running:
            try:
                if not self.endpoint.wait_readable(POLL_INTERVAL_S):
                    continue
                got = self.endpoint.recvfrom(MAX_DATAGRAM)
                if got is None:
                    self.dropped += 1
                    continue
                data, src = got
                self.endpoint.sendto(data, src)
            except OSError as e:
                if self.running:
                    log.error("datagram echo failed: %s", e)
                break
            except FatalError as e:
                log.error("%s", e)
                continue
            self.messages += 1
            self.bytes_echoed += len(data)


class StreamEchoServer(_EchoServer):
    """Relays each accepted connection back onto itself until the client closes it."""

    def __init__(self, endpoint: Endpoint, backlog: int = 5):
        super().__init__(endpoint)
        self.backlog = backlog
        self._lock = threading.Lock()

    def run(self) -> None:
        self.endpoint.listen(self.backlog)
        self.ready.set()
        while self.running:
            try:
                if not self.endpoint.wait_readable(POLL_INTERVAL_S):
                    continue
                conn = self.endpoint.accept()
            except OSError as e:
                if self.running:
                    log.error("accept failed: %s", e)
                break
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn: Endpoint) -> None:
        with conn:
            try:
                log.info("connection from %s", conn.peer_address())
                n = copy_until_closed(conn, conn)
            except (FatalError, OSError) as e:
                log.error("connection aborted: %s", e)
                return
        with self._lock:
            self.messages += 1
            self.bytes_echoed += n


def serve(server: _EchoServer, commands: TextIO | None = None) -> None:
    """Run `server` while reading operator commands until quit or end of input."""
    server.start()
    server.ready.wait()
    log.info("echo server ready; commands: status, quit")
    try:
        while True:
            cmd = read_command(commands)
            if cmd in ("", "quit", "exit"):
                break
            if cmd == "status":
                log.info("status: %s", server.status())
            else:
                log.warning("unknown command: %r", cmd)
    finally:
        server.stop()
    log.info("echo server stopped; %s", server.status())
