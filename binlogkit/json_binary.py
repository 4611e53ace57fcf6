"""Decoder for the binary JSON column encoding into JSON text."""

from __future__ import annotations

import json
import math
import struct
from decimal import Decimal
from typing import Any

from binlogkit.constants import FieldType
from binlogkit.values import decode_decimal

JSONB_SMALL_OBJECT = 0x00
JSONB_LARGE_OBJECT = 0x01
JSONB_SMALL_ARRAY = 0x02
JSONB_LARGE_ARRAY = 0x03
JSONB_LITERAL = 0x04
JSONB_INT16 = 0x05
JSONB_UINT16 = 0x06
JSONB_INT32 = 0x07
JSONB_UINT32 = 0x08
JSONB_INT64 = 0x09
JSONB_UINT64 = 0x0A
JSONB_DOUBLE = 0x0B
JSONB_STRING = 0x0C
JSONB_OPAQUE = 0x0F

JSONB_NULL_LITERAL = 0x00
JSONB_TRUE_LITERAL = 0x01
JSONB_FALSE_LITERAL = 0x02

_SMALL_OFFSET_SIZE = 2
_LARGE_OFFSET_SIZE = 4
_MAX_UINT32 = 0xFFFFFFFF

_INTEGERS = {
    JSONB_INT16: (2, True),
    JSONB_UINT16: (2, False),
    JSONB_INT32: (4, True),
    JSONB_UINT32: (4, False),
    JSONB_INT64: (8, True),
    JSONB_UINT64: (8, False),
}


class JsonDecodeError(ValueError):
    """The binary JSON value is malformed."""


class _Decoder:
    def __init__(self, use_decimal: bool, ignore_decode_err: bool):
        self.use_decimal = use_decimal
        self.ignore_decode_err = ignore_decode_err

    @staticmethod
    def _short(data: bytes, expected: int) -> None:
        if len(data) < expected:
            raise JsonDecodeError(f"data len {len(data)} < expected {expected}")

    def _int(self, data: bytes, size: int, signed: bool) -> int:
        self._short(data, size)
        return int.from_bytes(data[:size], "little", signed=signed)

    def _count(self, data: bytes, small: bool) -> int:
        return self._int(data, _SMALL_OFFSET_SIZE if small else _LARGE_OFFSET_SIZE, False)

    def value(self, tp: int, data: bytes) -> Any:
        if tp in (JSONB_SMALL_OBJECT, JSONB_LARGE_OBJECT, JSONB_SMALL_ARRAY, JSONB_LARGE_ARRAY):
            small = tp in (JSONB_SMALL_OBJECT, JSONB_SMALL_ARRAY)
            is_object = tp in (JSONB_SMALL_OBJECT, JSONB_LARGE_OBJECT)
            return self.object_or_array(data, small, is_object)
        if tp == JSONB_LITERAL:
            return self.literal(data)
        if tp in _INTEGERS:
            size, signed = _INTEGERS[tp]
            return self._int(data, size, signed)
        if tp == JSONB_DOUBLE:
            self._short(data, 8)
            return struct.unpack("<d", data[:8])[0]
        if tp == JSONB_STRING:
            return self.string(data)
        if tp == JSONB_OPAQUE:
            return self.opaque(data)
        raise JsonDecodeError(f"invalid json type {tp}")

    def object_or_array(self, data: bytes, small: bool, is_object: bool) -> Any:
        offset_size = _SMALL_OFFSET_SIZE if small else _LARGE_OFFSET_SIZE
        self._short(data, 2 * offset_size)
        count = self._count(data, small)
        size = self._count(data[offset_size:], small)

        if len(data) < size:
            # Generated JSON columns before 5.7.22 may hold invalid values;
            # they are not used in replication, so they may be skipped.
            if self.ignore_decode_err:
                return None
            raise JsonDecodeError(f"data len {len(data)} < expected {size}")

        key_entry_size = 2 + offset_size
        value_entry_size = 1 + offset_size
        header_size = 2 * offset_size + count * value_entry_size
        if is_object:
            header_size += count * key_entry_size
        if header_size > size:
            raise JsonDecodeError(f"header size {header_size} > size {size}")

        keys: list[str] = []
        if is_object:
            for i in range(count):
                entry = 2 * offset_size + key_entry_size * i
                key_offset = self._count(data[entry:], small)
                key_length = self._int(data[entry + offset_size :], 2, False)
                if key_offset < header_size:
                    raise JsonDecodeError(
                        f"invalid key offset {key_offset}, must > {header_size}"
                    )
                self._short(data, key_offset + key_length)
                key = bytes(data[key_offset : key_offset + key_length])
                keys.append(key.decode("utf-8", "replace"))

        values = []
        for i in range(count):
            entry = 2 * offset_size + value_entry_size * i
            if is_object:
                entry += key_entry_size * count
            tp = data[entry]
            if _is_inline(tp, small):
                values.append(self.value(tp, data[entry + 1 : entry + value_entry_size]))
                continue
            value_offset = self._count(data[entry + 1 :], small)
            self._short(data, value_offset)
            values.append(self.value(tp, data[value_offset:]))

        if not is_object:
            return values
        return dict(zip(keys, values))

    def literal(self, data: bytes) -> bool | None:
        self._short(data, 1)
        tp = data[0]
        if tp == JSONB_NULL_LITERAL:
            return None
        if tp == JSONB_TRUE_LITERAL:
            return True
        if tp == JSONB_FALSE_LITERAL:
            return False
        raise JsonDecodeError(f"invalid literal {chr(tp)}")

    def variable_length(self, data: bytes) -> tuple[int, int]:
        length = 0
        for pos, byte in enumerate(data[:5]):
            length |= (byte & 0x7F) << (7 * pos)
            if byte & 0x80 == 0:
                if length > _MAX_UINT32:
                    raise JsonDecodeError(f"variable length {length} must <= {_MAX_UINT32}")
                return length, pos + 1
        raise JsonDecodeError("decode variable length failed")

    def string(self, data: bytes) -> str:
        length, consumed = self.variable_length(data)
        self._short(data, length + consumed)
        return bytes(data[consumed : consumed + length]).decode("utf-8", "replace")

    def opaque(self, data: bytes) -> Any:
        self._short(data, 1)
        tp = data[0]
        data = data[1:]
        length, consumed = self.variable_length(data)
        self._short(data, length + consumed)
        payload = data[consumed : consumed + length]

        if tp == FieldType.NEWDECIMAL:
            return self.decimal(payload)
        if tp == FieldType.TIME:
            return self.time(payload)
        if tp in (FieldType.DATE, FieldType.DATETIME, FieldType.TIMESTAMP):
            return self.datetime(payload)
        return bytes(payload).decode("utf-8", "replace")

    def decimal(self, data: bytes) -> str | Decimal:
        self._short(data, 2)
        try:
            value, _ = decode_decimal(data[2:], data[0], data[1], self.use_decimal)
        except (ValueError, IndexError) as exc:
            raise JsonDecodeError(str(exc)) from exc
        return value

    def time(self, data: bytes) -> str:
        v = self._int(data, 8, True)
        if v == 0:
            return "00:00:00"
        sign = ""
        if v < 0:
            sign = "-"
            v = -v
        int_part = v >> 24
        hour = (int_part >> 12) % (1 << 10)
        minute = (int_part >> 6) % (1 << 6)
        second = int_part % (1 << 6)
        frac = v % (1 << 24)
        return f"{sign}{hour:02d}:{minute:02d}:{second:02d}.{frac:06d}"

    def datetime(self, data: bytes) -> str:
        v = self._int(data, 8, True)
        if v == 0:
            return "0000-00-00 00:00:00"
        if v < 0:
            v = -v
        int_part = v >> 24
        ymd = int_part >> 17
        ym = ymd >> 5
        hms = int_part % (1 << 17)
        year = ym // 13
        month = ym % 13
        day = ymd % (1 << 5)
        hour = hms >> 12
        minute = (hms >> 6) % (1 << 6)
        second = hms % (1 << 6)
        frac = v % (1 << 24)
        return (
            f"{year:04d}-{month:02d}-{day:02d} "
            f"{hour:02d}:{minute:02d}:{second:02d}.{frac:06d}"
        )


def _is_inline(tp: int, small: bool) -> bool:
    if tp in (JSONB_INT16, JSONB_UINT16, JSONB_LITERAL):
        return True
    if tp in (JSONB_INT32, JSONB_UINT32):
        return not small
    return False


_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026", "\u2028": "\\u2028", "\u2029": "\\u2029"}


def _string(text: str) -> str:
    encoded = json.dumps(text, ensure_ascii=False)
    for char, escape in _ESCAPES.items():
        encoded = encoded.replace(char, escape)
    return encoded


def _float(value: float) -> str:
    if not math.isfinite(value):
        raise JsonDecodeError(f"json: unsupported value: {value}")
    magnitude = abs(value)
    if magnitude != 0 and (magnitude < 1e-6 or magnitude >= 1e21):
        text = repr(value)
        if len(text) >= 4 and text[-4] == "e" and text[-3] == "-" and text[-2] == "0":
            text = text[:-2] + text[-1]
        return text
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") and value == 0 and not math.copysign(1, value) < 0 else text


def _dump(value: Any) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _float(value)
    if isinstance(value, Decimal):
        return _string(str(value))
    if isinstance(value, str):
        return _string(value)
    if isinstance(value, list):
        return "[" + ",".join(_dump(item) for item in value) + "]"
    return "{" + ",".join(f"{_string(key)}:{_dump(value[key])}" for key in sorted(value)) + "}"


def decode_json_binary(
    data: bytes, use_decimal: bool = False, ignore_decode_err: bool = False
) -> str:
    """Convert a binary JSON column value into compact JSON text.

    Empty input, which the server may log for a NULL value, gives ``""``.
    Object keys are sorted. Raises ``JsonDecodeError`` on malformed input.
    """
    data = bytes(data)
    if not data:
        return ""
    decoder = _Decoder(use_decimal, ignore_decode_err)
    return _dump(decoder.value(data[0], data[1:]))


__all__ = ["JsonDecodeError", "decode_json_binary"]