"""Decoders for row events (WRITE/UPDATE/DELETE rows) and ROWS_QUERY events."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Any, TextIO

from binlogkit.constants import FieldType
from binlogkit.fractime import FracTime, format_before_unix_zero_time, format_zero_time
from binlogkit.json_binary import decode_json_binary
from binlogkit.table_map import TableMapEvent, bitmap_byte_size
from binlogkit.util import fixed_length_int, length_encoded_int
from binlogkit.values import (
    decode_bit,
    decode_blob,
    decode_datetime2,
    decode_decimal,
    decode_string,
    decode_time2,
    decode_timestamp2,
    little_decode_bit,
)

# Set on the last rows event of a statement.
ROWS_EVENT_STMT_END_FLAG = 0x01

_TYPE_NULL = 0x06
_TYPE_YEAR = 0x0D


class MissingTableMapEventError(ValueError):
    """A rows event refers to a table id for which no table map has been seen."""


def _need(data: bytes, end: int) -> None:
    if len(data) < end:
        raise ValueError(f"data too short: need {end} bytes, got {len(data)}")


def _le(data: bytes, size: int, signed: bool = False) -> int:
    _need(data, size)
    return int.from_bytes(data[:size], "little", signed=signed)


def _is_bit_set(bitmap: bytes, i: int) -> bool:
    return bool(bitmap[i >> 3] & (1 << (i & 7)))


def _go_quote(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    escaped = escaped.replace("\n", "\\n").replace("\t", "\\t").replace("\r", "\\r")
    return f'"{escaped}"'


def _dump_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, (bytes, bytearray)):
        return _go_quote(bytes(value).decode("utf-8", "backslashreplace"))
    if isinstance(value, str):
        return _go_quote(value)
    return str(value)


@dataclass
class RowsEvent:
    """Rows inserted, updated or deleted in one table."""

    version: int = 0
    table_id_size: int = 6
    tables: dict[int, TableMapEvent] = field(default_factory=dict)
    need_bitmap2: bool = False
    table: TableMapEvent | None = None
    table_id: int = 0
    flags: int = 0
    extra_data: bytes = b""
    column_count: int = 0
    column_bitmap1: bytes = b""
    column_bitmap2: bytes = b""
    rows: list[list[Any]] = field(default_factory=list)
    skipped_columns: list[list[int]] = field(default_factory=list)
    parse_time: bool = False
    timestamp_string_location: tzinfo | None = None
    use_decimal: bool = False
    ignore_json_decode_err: bool = False

    def decode(self, data: bytes) -> None:
        data = bytes(data)
        size = self.table_id_size
        _need(data, size + 2)
        self.table_id = fixed_length_int(data[:size])
        pos = size
        self.flags = int.from_bytes(data[pos : pos + 2], "little")
        pos += 2

        if self.version == 2:
            _need(data, pos + 2)
            extra_length = int.from_bytes(data[pos : pos + 2], "little") - 2
            pos += 2
            if extra_length < 0:
                raise ValueError(f"invalid extra data length {extra_length + 2}")
            _need(data, pos + extra_length)
            self.extra_data = data[pos : pos + extra_length]
            pos += extra_length

        _need(data, pos + 1)
        self.column_count, _, consumed = length_encoded_int(data[pos:])
        pos += consumed

        bit_count = bitmap_byte_size(self.column_count)
        _need(data, pos + bit_count)
        self.column_bitmap1 = data[pos : pos + bit_count]
        pos += bit_count
        if self.need_bitmap2:
            _need(data, pos + bit_count)
            self.column_bitmap2 = data[pos : pos + bit_count]
            pos += bit_count

        table = self.tables.get(self.table_id)
        if table is None:
            if self.tables:
                raise ValueError(
                    f"invalid table id {self.table_id}, no corresponding table map event"
                )
            raise MissingTableMapEventError(
                f"table id {self.table_id}: invalid table id, "
                "no corresponding table map event"
            )
        self.table = table

        self.rows = []
        self.skipped_columns = []
        try:
            while pos < len(data):
                pos += self._decode_rows(data[pos:], table, self.column_bitmap1)
                if self.need_bitmap2:
                    pos += self._decode_rows(data[pos:], table, self.column_bitmap2)
        except (IndexError, struct.error) as exc:
            raise ValueError(
                f"parse rows event failed: {exc}, data {data!r}, table id {self.table_id}"
            ) from exc

    def _decode_rows(self, data: bytes, table: TableMapEvent, bitmap: bytes) -> int:
        columns = range(self.column_count)
        present = sum(1 for i in columns if _is_bit_set(bitmap, i))
        null_size = (present + 7) // 8
        _need(data, null_size)
        null_bitmap = data[:null_size]
        pos = null_size

        row: list[Any] = [None] * self.column_count
        skips: list[int] = []
        null_index = 0
        for i in columns:
            if not _is_bit_set(bitmap, i):
                skips.append(i)
                continue
            is_null = (null_bitmap[null_index // 8] >> (null_index % 8)) & 0x01
            null_index += 1
            if is_null:
                continue
            row[i], consumed = self._decode_value(
                data[pos:], table.column_type[i], table.column_meta[i]
            )
            pos += consumed

        self.rows.append(row)
        self.skipped_columns.append(skips)
        return pos

    def _parse_frac_time(self, value: Any) -> Any:
        if not isinstance(value, FracTime):
            return value
        if not self.parse_time:
            return str(value)
        return value.time

    def _decode_value(self, data: bytes, tp: int, meta: int) -> tuple[Any, int]:
        length = 0
        if tp == FieldType.STRING:
            if meta >= 256:
                b0 = meta >> 8
                b1 = meta & 0xFF
                if b0 & 0x30 != 0x30:
                    length = b1 | (((b0 & 0x30) ^ 0x30) << 4)
                    tp = b0 | 0x30
                else:
                    length = meta & 0xFF
                    tp = b0
            else:
                length = meta

        if tp == _TYPE_NULL:
            return None, 0
        if tp == FieldType.LONG:
            return _le(data, 4, True), 4
        if tp == FieldType.TINY:
            return _le(data, 1, True), 1
        if tp == FieldType.SHORT:
            return _le(data, 2, True), 2
        if tp == FieldType.INT24:
            return _le(data, 3, True), 3
        if tp == FieldType.LONGLONG:
            return _le(data, 8, True), 8
        if tp == FieldType.NEWDECIMAL:
            return decode_decimal(data, meta >> 8, meta & 0xFF, self.use_decimal)
        if tp == FieldType.FLOAT:
            _need(data, 4)
            return struct.unpack("<f", data[:4])[0], 4
        if tp == FieldType.DOUBLE:
            _need(data, 8)
            return struct.unpack("<d", data[:8])[0], 8
        if tp == FieldType.BIT:
            nbits = (meta >> 8) * 8 + (meta & 0xFF)
            n = (nbits + 7) // 8
            return decode_bit(data, nbits, n), n
        if tp == FieldType.TIMESTAMP:
            seconds = _le(data, 4)
            if seconds == 0:
                return format_zero_time(0, 0), 4
            moment = datetime.fromtimestamp(seconds, timezone.utc).astimezone()
            return self._parse_frac_time(
                FracTime(moment, 0, self.timestamp_string_location)
            ), 4
        if tp == FieldType.TIMESTAMP2:
            value, n = decode_timestamp2(data, meta, self.timestamp_string_location)
            return self._parse_frac_time(value), n
        if tp == FieldType.DATETIME:
            return self._decode_datetime(data), 8
        if tp == FieldType.DATETIME2:
            value, n = decode_datetime2(data, meta)
            return self._parse_frac_time(value), n
        if tp == FieldType.TIME:
            packed = fixed_length_int(data[:3]) if len(data) >= 3 else _le(data, 3)
            if packed == 0:
                return "00:00:00", 3
            return (
                f"{packed // 10000:02d}:{(packed % 10000) // 100:02d}:{packed % 100:02d}",
                3,
            )
        if tp == FieldType.TIME2:
            return decode_time2(data, meta)
        if tp == FieldType.DATE:
            packed = _le(data, 3)
            if packed == 0:
                return "0000-00-00", 3
            return f"{packed // (16 * 32):04d}-{packed // 32 % 16:02d}-{packed % 32:02d}", 3
        if tp == _TYPE_YEAR:
            year = _le(data, 1)
            return (year if year == 0 else year + 1900), 1
        if tp == FieldType.ENUM:
            pack_length = meta & 0xFF
            if pack_length not in (1, 2):
                raise ValueError(f"Unknown ENUM packlen={pack_length}")
            return _le(data, pack_length), pack_length
        if tp == FieldType.SET:
            n = meta & 0xFF
            return little_decode_bit(data, n * 8, n), n
        if tp in (FieldType.BLOB, FieldType.GEOMETRY):
            # GEOMETRY is logged as a blob holding SRID (4 bytes) + WKB.
            return decode_blob(data, meta)
        if tp in (FieldType.VARCHAR, FieldType.VAR_STRING):
            return decode_string(data, meta)
        if tp == FieldType.STRING:
            return decode_string(data, length)
        if tp == FieldType.JSON:
            size = _le(data, meta)
            end = meta + size
            _need(data, end)
            text = decode_json_binary(
                data[meta:end], self.use_decimal, self.ignore_json_decode_err
            )
            return text, end
        raise ValueError(f"unsupport type {tp} in binlog and don't know how to handle")

    def _decode_datetime(self, data: bytes) -> Any:
        packed = _le(data, 8)
        if packed == 0:
            return format_zero_time(0, 0)
        d, t = divmod(packed, 1_000_000)
        parts = (d // 10000, (d % 10000) // 100, d % 100, t // 10000, (t % 10000) // 100, t % 100)
        try:
            moment = datetime(*parts, tzinfo=timezone.utc)
        except ValueError:
            return format_before_unix_zero_time(*parts, 0, 0)
        return self._parse_frac_time(FracTime(moment, 0))

    def dump(self, out: TextIO) -> None:
        out.write(f"TableID: {self.table_id}\n")
        out.write(f"Flags: {self.flags}\n")
        out.write(f"Column count: {self.column_count}\n")
        out.write("Values:\n")
        for row in self.rows:
            out.write("--\n")
            for j, value in enumerate(row):
                out.write(f"{j}:{_dump_value(value)}\n")
        out.write("\n")


@dataclass
class RowsQueryEvent:
    """The original statement text that produced the following rows events."""

    query: bytes = b""

    def decode(self, data: bytes) -> None:
        # The first byte is a length that is ignored.
        self.query = bytes(data[1:])

    def dump(self, out: TextIO) -> None:
        out.write(f"Query: {self.query.decode('utf-8', 'replace')}\n")
        out.write("\n")


__all__ = [
    "ROWS_EVENT_STMT_END_FLAG",
    "MissingTableMapEventError",
    "RowsEvent",
    "RowsQueryEvent",
]