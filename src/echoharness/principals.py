from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Tuple

from .constants import XIDTYPE_NAT
from .errors import FatalError

log = logging.getLogger(__name__)

DEFAULT_PRINCIPALS: Tuple[Tuple[str, int], ...] = (
    ("ad", 0x10),
    ("hid", 0x11),
    ("cid", 0x12),
    ("sid", 0x13),
    ("u4id", 0x14),
    ("xdp", 0x15),
    ("serval", 0x16),
    ("zf", 0x17),
)


class PrincipalMap:
    """Bidirectional table of principal names and their numeric types."""

    def __init__(self, entries: Iterable[Tuple[str, int]]):
        self._by_name: Dict[str, int] = {}
        self._by_type: Dict[int, str] = {}
        for name, ty in entries:
            name = name.lower()
            if ty == XIDTYPE_NAT:
                raise ValueError(f"principal {name!r} uses the reserved type {XIDTYPE_NAT}")
            if name in self._by_name or ty in self._by_type:
                raise ValueError(f"duplicate principal entry: {name} {ty:#x}")
            self._by_name[name] = ty
            self._by_type[ty] = name

    @classmethod
    def default(cls) -> "PrincipalMap":
        return cls(DEFAULT_PRINCIPALS)

    @classmethod
    def from_file(cls, path: str) -> "PrincipalMap":
        """Load `name type` lines; `#` starts a comment, types may be hex."""
        entries = []
        with open(path, "r", encoding="ascii") as f:
            for lineno, line in enumerate(f, 1):
                line = line.split("#", 1)[0].strip()
                if not line:
                    continue
                parts = line.split()
                if len(parts) != 2:
                    raise ValueError(f"{path}:{lineno}: expected 'name type'")
                entries.append((parts[0], int(parts[1], 0)))
        return cls(entries)

    def name_to_type(self, name: str) -> Optional[int]:
        return self._by_name.get(name.lower())

    def type_to_name(self, ty: int) -> Optional[str]:
        return self._by_type.get(ty)

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._by_name

    def xdp_type(self) -> int:
        return self._require("xdp")

    def serval_type(self) -> int:
        return self._require("serval")

    def _require(self, name: str) -> int:
        ty = self.name_to_type(name)
        if ty is None:
            raise FatalError(f"principal table has no entry for {name!r}")
        return ty


_principals: Optional[PrincipalMap] = None


def load_principals(path: str | None = None) -> PrincipalMap:
    """Initialise the process-wide principal table; call once at startup."""
    global _principals
    if path is None:
        table = PrincipalMap.default()
    else:
        try:
            table = PrincipalMap.from_file(path)
        except (OSError, ValueError) as e:
            raise FatalError(f"cannot load principal table {path}: {e}") from e
    log.debug("principal table loaded; entries=%d source=%s", len(table), path or "builtin")
    _principals = table
    return table


def get_principals() -> PrincipalMap:
    if _principals is None:
        raise FatalError("principal table used before load_principals()")
    return _principals
