"""Integer and string codecs shared by event decoders."""

from __future__ import annotations


def fixed_length_int(data: bytes) -> int:
    """Decode an unsigned little-endian integer of any width."""
    return int.from_bytes(data, "little")


def big_fixed_length_int(data: bytes) -> int:
    """Decode an unsigned big-endian integer of any width."""
    return int.from_bytes(data, "big")


_WIDE_PREFIXES = {0xFC: 2, 0xFD: 3, 0xFE: 8}


def length_encoded_int(data: bytes) -> tuple[int, bool, int]:
    """Decode a length-encoded integer.

    Returns ``(value, is_null, consumed)``. Empty input yields ``(0, True, 0)``.
    """
    if not data:
        return 0, True, 0
    first = data[0]
    if first == 0xFB:
        return 0, True, 1
    width = _WIDE_PREFIXES.get(first)
    if width is None:
        return first, False, 1
    if len(data) < 1 + width:
        raise EOFError(f"length-encoded integer needs {1 + width} bytes, got {len(data)}")
    return int.from_bytes(data[1 : 1 + width], "little"), False, 1 + width


def length_encoded_string(data: bytes) -> tuple[bytes, bool, int]:
    """Decode a length-prefixed string.

    Returns ``(value, is_null, consumed)``; raises ``EOFError`` when truncated.
    """
    length, is_null, consumed = length_encoded_int(data)
    if length < 1:
        return b"", is_null, consumed
    end = consumed + length
    if len(data) < end:
        raise EOFError(f"length-encoded string needs {end} bytes, got {len(data)}")
    return bytes(data[consumed:end]), False, end


def hex_dump(data: bytes) -> str:
    """Render bytes as offset, hex and printable columns, 16 bytes per line."""
    lines = []
    for offset in range(0, len(data), 16):
        chunk = data[offset : offset + 16]
        cells = []
        for index in range(16):
            cell = f"{chunk[index]:02x} " if index < len(chunk) else "   "
            if index == 7:
                cell += " "
            cells.append(cell)
        printable = "".join(chr(b) if 32 <= b <= 126 else "." for b in chunk)
        lines.append(f"{offset:08x}  {''.join(cells)} |{printable}|\n")
    return "".join(lines)