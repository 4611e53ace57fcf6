"""Events kept as raw bytes because they are not decoded further."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TextIO

from binlogkit.util import hex_dump


@dataclass
class GenericEvent:
    """An event whose body is kept undecoded."""

    data: bytes = b""

    def decode(self, data: bytes) -> None:
        self.data = bytes(data)

    def dump(self, out: TextIO) -> None:
        out.write(f"Event data: \n{hex_dump(self.data)}")
        out.write("\n")