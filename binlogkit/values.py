"""Decoders for single column values stored in row events."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from decimal import Decimal

from binlogkit.fractime import FracTime, format_before_unix_zero_time, format_zero_time

DIGITS_PER_INTEGER = 9
COMPRESSED_BYTES = (0, 1, 1, 2, 2, 3, 3, 4, 4, 4)

DATETIMEF_INT_OFS = 0x8000000000
TIMEF_OFS = 0x800000000000
TIMEF_INT_OFS = 0x800000

# Packed integer part of 1970-01-01 00:00:00 in the DATETIME2 encoding.
UNIX_EPOCH_DATETIME_INT = 107420450816


def _need(data: bytes, end: int) -> None:
    if len(data) < end:
        raise ValueError(f"data too short: need {end} bytes, got {len(data)}")


def _be(data: bytes, start: int, end: int) -> int:
    _need(data, end)
    return int.from_bytes(data[start:end], "big")


def _signed64(value: int) -> int:
    return value - (1 << 64) if value >= 1 << 63 else value


def decode_string(data: bytes, length: int) -> tuple[str, int]:
    """Decode a length-prefixed string column.

    Columns declared shorter than 256 bytes carry a one-byte prefix, longer
    ones a two-byte prefix. Undecodable bytes are kept as surrogate escapes.
    Returns ``(value, consumed)``.
    """
    if length < 256:
        _need(data, 1)
        start = 1
        size = data[0]
    else:
        _need(data, 2)
        start = 2
        size = int.from_bytes(data[0:2], "little")
    end = start + size
    _need(data, end)
    return bytes(data[start:end]).decode("utf-8", "surrogateescape"), end


def _decompress(index: int, data: bytes, mask: int) -> tuple[int, int]:
    size = COMPRESSED_BYTES[index]
    _need(data, size)
    value = int.from_bytes(bytes(b ^ mask for b in data[:size]), "big")
    return size, value


def decode_decimal(
    data: bytes, precision: int, decimals: int, use_decimal: bool
) -> tuple[str | Decimal, int]:
    """Decode a packed DECIMAL value.

    Returns ``(value, consumed)`` where value is a ``Decimal`` if
    ``use_decimal`` is set and its text otherwise.
    """
    integral = precision - decimals
    uncomp_integral = integral // DIGITS_PER_INTEGER
    uncomp_fractional = decimals // DIGITS_PER_INTEGER
    comp_integral = integral - uncomp_integral * DIGITS_PER_INTEGER
    comp_fractional = decimals - uncomp_fractional * DIGITS_PER_INTEGER

    bin_size = (
        uncomp_integral * 4
        + COMPRESSED_BYTES[comp_integral]
        + uncomp_fractional * 4
        + COMPRESSED_BYTES[comp_fractional]
    )
    _need(data, max(bin_size, 1))
    buf = bytearray(data[:bin_size])

    # The sign lives in the high bit of the first byte; negative values are
    # stored with every bit inverted.
    parts: list[str] = []
    mask = 0
    if buf[0] & 0x80 == 0:
        mask = 0xFFFFFFFF
        parts.append("-")
    buf[0] ^= 0x80
    byte_mask = mask & 0xFF

    zero_leading = True
    pos, value = _decompress(comp_integral, buf, byte_mask)
    if value != 0:
        zero_leading = False
        parts.append(str(value))

    for _ in range(uncomp_integral):
        value = int.from_bytes(buf[pos : pos + 4], "big") ^ mask
        pos += 4
        if zero_leading:
            if value != 0:
                zero_leading = False
                parts.append(str(value))
        else:
            parts.append(str(value).zfill(DIGITS_PER_INTEGER))

    if zero_leading:
        parts.append("0")

    if pos < len(buf):
        parts.append(".")
        for _ in range(uncomp_fractional):
            value = int.from_bytes(buf[pos : pos + 4], "big") ^ mask
            pos += 4
            parts.append(str(value).zfill(DIGITS_PER_INTEGER))

        size, value = _decompress(comp_fractional, buf[pos:], byte_mask)
        if size > 0:
            parts.append(str(value).zfill(comp_fractional))
            pos += size

    text = "".join(parts)
    if use_decimal:
        return Decimal(text), pos
    return text, pos


def _decode_bits(data: bytes, nbits: int, length: int, order: str) -> int:
    if nbits > 1:
        if not 1 <= length <= 8:
            raise ValueError(f"invalid bit length {length}")
    elif length != 1:
        raise ValueError(f"invalid bit length {length}")
    _need(data, length)
    return _signed64(int.from_bytes(data[:length], order))


def decode_bit(data: bytes, nbits: int, length: int) -> int:
    """Decode a BIT column stored big-endian in ``length`` bytes."""
    return _decode_bits(data, nbits, length, "big")


def little_decode_bit(data: bytes, nbits: int, length: int) -> int:
    """Decode a bit field stored little-endian in ``length`` bytes (SET columns)."""
    return _decode_bits(data, nbits, length, "little")


def _fraction(data: bytes, start: int, dec: int) -> int:
    if dec in (1, 2):
        return _be(data, start, start + 1) * 10000
    if dec in (3, 4):
        return _be(data, start, start + 2) * 100
    if dec in (5, 6):
        return _be(data, start, start + 3)
    return 0


def decode_timestamp2(
    data: bytes, dec: int, location: tzinfo | None
) -> tuple[FracTime | str, int]:
    """Decode a TIMESTAMP2 column; all-zero values come back as text."""
    n = 4 + (dec + 1) // 2
    _need(data, n)
    sec = _be(data, 0, 4)
    usec = _fraction(data, 4, dec)
    if sec == 0:
        return format_zero_time(usec, dec), n
    moment = datetime.fromtimestamp(sec, timezone.utc) + timedelta(microseconds=usec)
    return FracTime(moment.astimezone(), dec, location), n


def decode_datetime2(data: bytes, dec: int) -> tuple[FracTime | str, int]:
    """Decode a DATETIME2 column.

    Zero dates and dates before the Unix epoch come back as text, others as
    a ``FracTime`` in UTC.
    """
    n = 5 + (dec + 1) // 2
    _need(data, n)
    int_part = _be(data, 0, 5) - DATETIMEF_INT_OFS
    frac = _fraction(data, 5, dec)

    if int_part == 0:
        return format_zero_time(frac, dec), n

    tmp = (int_part << 24) + frac
    if tmp < 0:
        tmp = -tmp

    ymdhms = tmp >> 24
    ymd = ymdhms >> 17
    ym = ymd >> 5
    hms = ymdhms % (1 << 17)

    day = ymd % (1 << 5)
    month = ym % 13
    year = ym // 13
    second = hms % (1 << 6)
    minute = (hms >> 6) % (1 << 6)
    hour = hms >> 12

    if int_part < UNIX_EPOCH_DATETIME_INT:
        return format_before_unix_zero_time(year, month, day, hour, minute, second, frac, dec), n

    try:
        moment = datetime(year, month, day, hour, minute, second, frac, tzinfo=timezone.utc)
    except ValueError:
        return format_before_unix_zero_time(year, month, day, hour, minute, second, frac, dec), n
    return FracTime(moment, dec), n


def _time_format(tmp: int, dec: int) -> str:
    sign = ""
    if tmp < 0:
        tmp = -tmp
        sign = "-"
    hms = tmp >> 24
    hour = (hms >> 12) % (1 << 10)
    minute = (hms >> 6) % (1 << 6)
    second = hms % (1 << 6)
    sec_part = tmp % (1 << 24)
    if sec_part != 0:
        text = f"{sign}{hour:02d}:{minute:02d}:{second:02d}.{sec_part:06d}"
        return text[: len(text) - (6 - dec)]
    return f"{sign}{hour:02d}:{minute:02d}:{second:02d}"


def decode_time2(data: bytes, dec: int) -> tuple[str, int]:
    """Decode a TIME2 column into ``[-]HH:MM:SS[.frac]`` text."""
    n = 3 + (dec + 1) // 2
    _need(data, n)
    frac = 0
    if dec in (1, 2):
        int_part = _be(data, 0, 3) - TIMEF_INT_OFS
        frac = data[3]
        if int_part < 0 and frac != 0:
            # Negative values keep their fraction in reverse order.
            int_part += 1
            frac -= 0x100
        tmp = (int_part << 24) + frac * 10000
    elif dec in (3, 4):
        int_part = _be(data, 0, 3) - TIMEF_INT_OFS
        frac = _be(data, 3, 5)
        if int_part < 0 and frac != 0:
            int_part += 1
            frac -= 0x10000
        tmp = (int_part << 24) + frac * 100
    elif dec in (5, 6):
        return _time_format(_be(data, 0, 6) - TIMEF_OFS, dec), n
    else:
        int_part = _be(data, 0, 3) - TIMEF_INT_OFS
        tmp = int_part << 24

    if int_part == 0 and frac == 0:
        return "00:00:00", n
    return _time_format(tmp, dec), n


def decode_blob(data: bytes, meta: int) -> tuple[bytes, int]:
    """Decode a BLOB/GEOMETRY column whose length prefix is ``meta`` bytes wide."""
    if meta not in (1, 2, 3, 4):
        raise ValueError(f"invalid blob packlen = {meta}")
    _need(data, meta)
    length = int.from_bytes(data[:meta], "little")
    end = meta + length
    _need(data, end)
    return bytes(data[meta:end]), end


__all__ = [
    "decode_bit",
    "decode_blob",
    "decode_datetime2",
    "decode_decimal",
    "decode_string",
    "decode_time2",
    "decode_timestamp2",
    "little_decode_bit",
]