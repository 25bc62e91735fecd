from __future__ import annotations

import sys
from typing import TextIO

from .errors import FatalError


def read_command(stream: TextIO | None = None) -> str:
    """Next non-empty line from `stream` without its newline; "" at end of input."""
    stream = stream or sys.stdin
    while True:
        try:
            line = stream.readline()
        except OSError as e:
            raise FatalError(f"cannot read command: {e}") from e
        if not line:
            return ""
        if line == "\n":
            continue
        return line[:-1] if line.endswith("\n") else line
