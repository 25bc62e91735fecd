from __future__ import annotations

import argparse
import json
import logging
from typing import Tuple

from .address import AddressValue, Family, any_flat, format_hierarchical, load_hierarchical, parse_flat
from .constants import DEFAULT_CHECKPOINT_INTERVAL, DEFAULT_CHUNK_SIZE, RECV_TIMEOUT_S
from .errors import AddressError, FatalError
from .net import Impairment, Transport, bind_if_required, create_endpoint
from .principals import get_principals, load_principals
from .server import DatagramEchoServer, StreamEchoServer, serve
from .transfer import datagram_transfer_file, stream_transfer_file

log = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def build_parser(prog: str) -> argparse.ArgumentParser:
    usage = (
        f"\t{prog} <'datagram' | 'stream'> 'ip' srvip_addr port\n"
        f"\t{prog} <'datagram' | 'stream'> 'xip' cli_addr_file srv_addr_file"
    )
    p = argparse.ArgumentParser(prog=prog, usage=usage)
    p.add_argument("transport", choices=[t.value for t in Transport])
    p.add_argument("family", choices=[f.value for f in Family])
    p.add_argument("addr1", help="server address (ip) or client address file (xip)")
    p.add_argument("addr2", help="server port (ip) or server address file (xip)")
    p.add_argument("--principals", default=None, help="principal table file (xip only)")
    p.add_argument("--log-level", default="INFO", choices=LOG_LEVELS)
    return p


def resolve_addresses(args: argparse.Namespace) -> Tuple[AddressValue, AddressValue]:
    """Return (client address, server address) for the parsed arguments."""
    try:
        if args.family == Family.IP.value:
            return any_flat(0), parse_flat(args.addr1, args.addr2)
        principals = load_principals(args.principals)
        return load_hierarchical(args.addr1, principals), load_hierarchical(args.addr2, principals)
    except AddressError as e:
        raise FatalError(f"invalid address: {e}") from e


def _setup_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level), format="%(asctime)s [%(levelname)s] %(message)s")


def client_main(argv: list[str] | None = None) -> int:
    p = build_parser("echo-client")
    p.add_argument("--file", required=True, help="file to send; the echo lands in <file>_echo")
    p.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
    p.add_argument("--checkpoint", type=int, default=DEFAULT_CHECKPOINT_INTERVAL,
                   help="chunks sent before the echo is read back")
    p.add_argument("--timeout", type=float, default=RECV_TIMEOUT_S, help="datagram echo timeout (seconds)")
    p.add_argument("--json", action="store_true")
    args = p.parse_args(argv)
    _setup_logging(args.log_level)

    transport = Transport(args.transport)
    family = Family(args.family)
    cli_addr, srv_addr = resolve_addresses(args)

    endpoint = create_endpoint(family, transport)
    with endpoint:
        if transport is Transport.DATAGRAM:
            bind_if_required(endpoint, cli_addr, force=True)
            metrics = datagram_transfer_file(
                endpoint,
                srv_addr,
                args.file,
                chunk_size=args.chunk_size,
                checkpoint_interval=args.checkpoint,
                timeout=args.timeout,
            )
        else:
            bind_if_required(endpoint, cli_addr, force=False)
            try:
                endpoint.connect(srv_addr)
            except OSError as e:
                raise FatalError(f"cannot connect to {srv_addr}: {e}") from e
            metrics = stream_transfer_file(
                endpoint,
                args.file,
                chunk_size=args.chunk_size,
                checkpoint_interval=args.checkpoint,
            )

    payload = {
        "role": "client",
        "bytes": metrics.bytes_sent,
        "mirrored": metrics.bytes_mirrored,
        "checkpoints": metrics.checkpoints,
        "lost": metrics.lost_checkpoints,
        "seconds": metrics.duration_s,
        "mbps": metrics.throughput_mbps,
    }
    print(json.dumps(payload, indent=2) if args.json else payload)
    return 0


def server_main(argv: list[str] | None = None) -> int:
    p = build_parser("echo-server")
    p.add_argument("--loss-rate", type=float, default=0.0, help="simulate echo loss")
    p.add_argument("--delay-ms", type=int, default=0)
    args = p.parse_args(argv)
    _setup_logging(args.log_level)

    transport = Transport(args.transport)
    family = Family(args.family)
    _, srv_addr = resolve_addresses(args)

    endpoint = create_endpoint(family, transport, impairment=Impairment(args.loss_rate, args.delay_ms))
    bind_if_required(endpoint, srv_addr, force=True)
    where = srv_addr if family is Family.IP else format_hierarchical(srv_addr, get_principals())
    log.info("listening on %s (%s/%s)", where, transport.value, family.value)

    if transport is Transport.DATAGRAM:
        serve(DatagramEchoServer(endpoint))
    else:
        serve(StreamEchoServer(endpoint))
    return 0


if __name__ == "__main__":
    raise SystemExit(client_main())
