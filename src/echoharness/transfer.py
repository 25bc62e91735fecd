from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Optional

from .address import AddressValue
from .constants import DEFAULT_CHECKPOINT_INTERVAL, DEFAULT_CHUNK_SIZE, FILE_SUFFIX, RECV_TIMEOUT_S
from .errors import FatalError
from .net import Endpoint
from .receiver import receive_exact, receive_verified

log = logging.getLogger(__name__)

PreReceiveHook = Callable[[Endpoint], None]


@dataclass(slots=True)
class TransferMetrics:
    chunks_sent: int = 0
    bytes_sent: int = 0
    checkpoints: int = 0
    lost_checkpoints: int = 0
    bytes_mirrored: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.bytes_sent * 8 / 1_000_000) / self.duration_s


@dataclass(slots=True)
class TransferSession:
    """Counters for the batch in flight; reset after every receive."""

    source: BinaryIO
    mirror: BinaryIO
    chunk_size: int
    checkpoint_interval: int
    count: int = 0
    bytes_pending: int = 0

    def record_send(self, n: int) -> None:
        self.count += 1
        self.bytes_pending += n

    def reset(self) -> None:
        self.count = 0
        self.bytes_pending = 0


def mirror_path(source_path: str) -> str:
    return f"{source_path}{FILE_SUFFIX}"


def _process_file(
    endpoint: Endpoint,
    source_path: str,
    chunk_size: int,
    checkpoint_interval: int,
    send: Callable[[bytes], None],
    receive: Callable[[BinaryIO, int], Optional[int]],
    pre_receive: Optional[PreReceiveHook],
) -> TransferMetrics:
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if checkpoint_interval < 1:
        raise ValueError(f"checkpoint_interval must be positive, got {checkpoint_interval}")

    try:
        orig = open(source_path, "rb")
    except OSError as e:
        raise FatalError(f"cannot open {source_path}: {e}") from e
    try:
        copy = open(mirror_path(source_path), "wb")
    except OSError as e:
        orig.close()
        raise FatalError(f"cannot create {mirror_path(source_path)}: {e}") from e

    metrics = TransferMetrics()
    session = TransferSession(orig, copy, chunk_size, checkpoint_interval)

    def checkpoint() -> None:
        if pre_receive is not None:
            pre_receive(endpoint)
        written = receive(copy, session.bytes_pending)
        if written is None:
            metrics.lost_checkpoints += 1
        else:
            metrics.bytes_mirrored += written
        metrics.checkpoints += 1
        session.reset()

    log.info(
        "transfer start; file=%s chunk_size=%d checkpoint=%d",
        source_path,
        chunk_size,
        checkpoint_interval,
    )
    with orig, copy:
        while True:
            try:
                chunk = orig.read(chunk_size)
            except OSError as e:
                raise FatalError(f"cannot read {source_path}: {e}") from e
            if chunk:
                send(chunk)
                session.record_send(len(chunk))
                metrics.chunks_sent += 1
                metrics.bytes_sent += len(chunk)
            if session.count == checkpoint_interval:
                checkpoint()
            if not chunk:
                break

        # Partial final batch.
        if session.count:
            checkpoint()

        for f in (copy, orig):
            try:
                f.close()
            except OSError as e:
                raise FatalError(f"cannot close {f.name}: {e}") from e

    metrics.end_ts = time.monotonic()
    log.info(
        "transfer done; sent=%d mirrored=%d checkpoints=%d lost=%d",
        metrics.bytes_sent,
        metrics.bytes_mirrored,
        metrics.checkpoints,
        metrics.lost_checkpoints,
    )
    return metrics


def datagram_transfer_file(
    endpoint: Endpoint,
    peer: AddressValue,
    source_path: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
    pre_receive: Optional[PreReceiveHook] = None,
    timeout: float = RECV_TIMEOUT_S,
) -> TransferMetrics:
    def send(chunk: bytes) -> None:
        try:
            endpoint.sendto(chunk, peer)
        except OSError as e:
            raise FatalError(f"sendto {peer} failed: {e}") from e

    def receive(mirror: BinaryIO, n: int) -> Optional[int]:
        return receive_verified(endpoint, peer, mirror, n, timeout=timeout)

    return _process_file(endpoint, source_path, chunk_size, checkpoint_interval, send, receive, pre_receive)


def stream_transfer_file(
    endpoint: Endpoint,
    source_path: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
    pre_receive: Optional[PreReceiveHook] = None,
) -> TransferMetrics:
    def send(chunk: bytes) -> None:
        try:
            n = endpoint.send(chunk)
        except OSError as e:
            raise FatalError(f"write failed: {e}") from e
        if n != len(chunk):
            raise FatalError(f"partial write: {n} of {len(chunk)} bytes")

    def receive(mirror: BinaryIO, n: int) -> Optional[int]:
        return receive_exact(endpoint, mirror, n)

    return _process_file(endpoint, source_path, chunk_size, checkpoint_interval, send, receive, pre_receive)
