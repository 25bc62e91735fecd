from __future__ import annotations

import socket

import pytest

from echoharness.principals import PrincipalMap


@pytest.fixture
def principals() -> PrincipalMap:
    return PrincipalMap.default()


def free_port(kind: int = socket.SOCK_DGRAM) -> int:
    with socket.socket(socket.AF_INET, kind) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def u4id_hex(host: str, port: int) -> str:
    return (socket.inet_aton(host) + port.to_bytes(2, "big")).hex().ljust(40, "0")


def xid_hex(byte: int) -> str:
    return f"{byte:02x}" * 20


class ScriptedImpairment:
    """Drop decisions taken in order from `script`; nothing is dropped once it runs out."""

    def __init__(self, script):
        self.script = list(script)

    def should_drop(self) -> bool:
        return self.script.pop(0) if self.script else False

    def sleep_if_needed(self) -> None:
        pass
