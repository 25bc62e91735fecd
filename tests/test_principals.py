from __future__ import annotations

import pytest

from echoharness import principals as ppal
from echoharness.errors import FatalError
from echoharness.principals import PrincipalMap


def test_default_table():
    m = PrincipalMap.default()
    assert m.name_to_type("HID") == m.name_to_type("hid")
    assert m.type_to_name(m.xdp_type()) == "xdp"
    assert m.serval_type() != m.xdp_type()
    assert m.name_to_type("bogus") is None


def test_from_file(tmp_path):
    p = tmp_path / "principals"
    p.write_text("# name type\nhid 0x11\nxdp 0x20  # datagrams\n\nserval 33\n")
    m = PrincipalMap.from_file(str(p))
    assert len(m) == 3
    assert m.xdp_type() == 0x20
    assert m.serval_type() == 33


def test_missing_entry_is_fatal():
    m = PrincipalMap([("hid", 0x11)])
    with pytest.raises(FatalError):
        m.xdp_type()


def test_rejects_reserved_and_duplicates():
    with pytest.raises(ValueError):
        PrincipalMap([("nat", 0)])
    with pytest.raises(ValueError):
        PrincipalMap([("hid", 1), ("hid", 2)])


def test_process_wide_table(tmp_path, monkeypatch):
    monkeypatch.setattr(ppal, "_principals", None)
    with pytest.raises(FatalError):
        ppal.get_principals()
    table = ppal.load_principals()
    assert ppal.get_principals() is table

    with pytest.raises(FatalError):
        ppal.load_principals(str(tmp_path / "missing"))
