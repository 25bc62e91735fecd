from __future__ import annotations

import io
import json
import os

import pytest

from conftest import free_port, u4id_hex, xid_hex
from echoharness import cli
from echoharness.address import Family, FlatAddress
from echoharness.errors import FatalError
from echoharness.net import Transport, bind_if_required, create_endpoint
from echoharness.server import DatagramEchoServer, StreamEchoServer
from echoharness.transfer import mirror_path


def test_usage_on_bad_transport(capsys):
    with pytest.raises(SystemExit) as e:
        cli.client_main(["carrier-pigeon", "ip", "127.0.0.1", "1", "--file", "x"])
    assert e.value.code != 0
    err = capsys.readouterr().err
    assert "'datagram' | 'stream'> 'ip' srvip_addr port" in err
    assert "'xip' cli_addr_file srv_addr_file" in err


def test_usage_on_missing_arguments():
    with pytest.raises(SystemExit) as e:
        cli.server_main(["stream", "ip"])
    assert e.value.code != 0


def test_bad_address_is_fatal(tmp_path):
    with pytest.raises(FatalError):
        cli.client_main(["datagram", "ip", "300.1.1.1", "80", "--file", str(tmp_path / "f")])


@pytest.mark.parametrize("transport,server_cls", [("datagram", DatagramEchoServer), ("stream", StreamEchoServer)])
def test_client_against_echo_server(tmp_path, capsys, transport, server_cls):
    src = tmp_path / "data"
    src.write_bytes(os.urandom(3000))

    srv_ep = create_endpoint(Family.IP, Transport(transport))
    bind_if_required(srv_ep, FlatAddress.from_sockaddr(("127.0.0.1", 0)), force=True)
    server = server_cls(srv_ep)
    server.start()
    assert server.ready.wait(5)
    try:
        port = str(srv_ep.local_address().port)
        assert cli.client_main([transport, "ip", "127.0.0.1", port, "--file", str(src),
                                "--chunk-size", "1000", "--json"]) == 0
    finally:
        server.stop()

    payload = json.loads(capsys.readouterr().out)
    assert payload["role"] == "client"
    assert payload["mirrored"] == 3000
    assert (tmp_path / "data_echo").read_bytes() == src.read_bytes()
    assert mirror_path(str(src)).endswith("_echo")


def test_xip_client_reads_address_files(tmp_path, capsys):
    src = tmp_path / "data"
    src.write_bytes(b"hierarchical" * 50)
    srv_port, cli_port = free_port(), free_port()
    srv_file = tmp_path / "srv.addr"
    cli_file = tmp_path / "cli.addr"
    srv_file.write_text(f"RE ad-{xid_hex(1)} u4id-{u4id_hex('127.0.0.1', srv_port)} xdp-{xid_hex(7)}\n")
    cli_file.write_text(f"RE ad-{xid_hex(1)} u4id-{u4id_hex('127.0.0.1', cli_port)} xdp-{xid_hex(8)}\n")

    args = ["datagram", "xip", str(cli_file), str(srv_file)]
    _, srv_addr = cli.resolve_addresses(cli.build_parser("t").parse_args(args))
    srv_ep = create_endpoint(Family.XIP, Transport.DATAGRAM)
    bind_if_required(srv_ep, srv_addr, force=True)
    server = DatagramEchoServer(srv_ep)
    server.start()
    assert server.ready.wait(5)
    try:
        assert cli.client_main(args + ["--file", str(src), "--chunk-size", "200"]) == 0
    finally:
        server.stop()
    assert (tmp_path / "data_echo").read_bytes() == src.read_bytes()


def test_server_stops_on_quit(monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO("status\nquit\n"))
    assert cli.server_main(["stream", "ip", "127.0.0.1", "0", "--log-level", "DEBUG"]) == 0
