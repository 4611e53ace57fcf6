"""Decoder for TABLE_MAP events, which describe the columns of a table."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterator, TextIO

from binlogkit.constants import (
    MARIADB_FLAVOR,
    TABLE_MAP_OPT_META_COLUMN_CHARSET,
    TABLE_MAP_OPT_META_COLUMN_NAME,
    TABLE_MAP_OPT_META_DEFAULT_CHARSET,
    TABLE_MAP_OPT_META_ENUM_AND_SET_COLUMN_CHARSET,
    TABLE_MAP_OPT_META_ENUM_AND_SET_DEFAULT_CHARSET,
    TABLE_MAP_OPT_META_ENUM_STR_VALUE,
    TABLE_MAP_OPT_META_GEOMETRY_TYPE,
    TABLE_MAP_OPT_META_PRIMARY_KEY_WITH_PREFIX,
    TABLE_MAP_OPT_META_SET_STR_VALUE,
    TABLE_MAP_OPT_META_SIGNEDNESS,
    TABLE_MAP_OPT_META_SIMPLE_PRIMARY_KEY,
    FieldType,
)
from binlogkit.util import (
    fixed_length_int,
    hex_dump,
    length_encoded_int,
    length_encoded_string,
)

_TWO_BYTE_BIG = {FieldType.STRING, FieldType.NEWDECIMAL}
_TWO_BYTE_LITTLE = {FieldType.VAR_STRING, FieldType.VARCHAR, FieldType.BIT}
_ONE_BYTE = {
    FieldType.BLOB,
    FieldType.DOUBLE,
    FieldType.FLOAT,
    FieldType.GEOMETRY,
    FieldType.JSON,
    FieldType.TIME2,
    FieldType.DATETIME2,
    FieldType.TIMESTAMP2,
}
_UNSUPPORTED = {
    FieldType.NEWDATE,
    FieldType.ENUM,
    FieldType.SET,
    FieldType.TINY_BLOB,
    FieldType.MEDIUM_BLOB,
    FieldType.LONG_BLOB,
}
_NUMERIC = {
    FieldType.TINY,
    FieldType.SHORT,
    FieldType.INT24,
    FieldType.LONG,
    FieldType.LONGLONG,
    FieldType.NEWDECIMAL,
    FieldType.FLOAT,
    FieldType.DOUBLE,
}
_CHARACTER = {FieldType.STRING, FieldType.VAR_STRING, FieldType.VARCHAR, FieldType.BLOB}
_TIME = {FieldType.TIMESTAMP2, FieldType.DATETIME2, FieldType.TIME2}


def bitmap_byte_size(column_count: int) -> int:
    """Number of bytes a bitmap with one bit per column takes."""
    return (column_count + 7) // 8


def _need(data: bytes, end: int) -> None:
    if len(data) < end:
        raise ValueError(f"data too short: need {end} bytes, got {len(data)}")


def _int_seq(value: bytes) -> list[int]:
    result = []
    pos = 0
    while pos < len(value):
        number, _, consumed = length_encoded_int(value[pos:])
        pos += consumed
        result.append(number)
    return result


def _default_charset(value: bytes) -> list[int]:
    result = _int_seq(value)
    if len(result) % 2 != 1:
        raise ValueError(f"Expect odd item in DefaultCharset but got {len(result)}")
    return result


def _str_values(value: bytes) -> list[list[bytes]]:
    result = []
    pos = 0
    while pos < len(value):
        count, _, consumed = length_encoded_int(value[pos:])
        pos += consumed
        items = []
        for _ in range(count):
            item, _, consumed = length_encoded_string(value[pos:])
            pos += consumed
            items.append(item)
        result.append(items)
    return result


def _go_list(values) -> str:
    if values is None:
        return "[]"
    return "[" + " ".join(_go_list(v) if isinstance(v, list) else str(v) for v in values) + "]"


def _go_map(type_name: str, mapping: dict | None, value_fmt: Callable = str) -> str:
    if mapping is None:
        return f"{type_name}(nil)"
    items = ", ".join(f"{key}:{value_fmt(mapping[key])}" for key in sorted(mapping))
    return f"{type_name}{{{items}}}"


def _go_string_slice(values: list[str]) -> str:
    return "[]string{" + ", ".join(f'"{v}"' for v in values) + "}"


@dataclass
class TableMapEvent:
    """Schema, table and per-column type information for following row events."""

    flavor: str = ""
    table_id_size: int = 6
    table_id: int = 0
    flags: int = 0
    schema: bytes = b""
    table: bytes = b""
    column_count: int = 0
    column_type: bytes = b""
    column_meta: list[int] = field(default_factory=list)
    null_bitmap: bytes = b""
    # Optional metadata, logged only with full row metadata enabled.
    signedness_bitmap: bytes = b""
    default_charset: list[int] = field(default_factory=list)
    column_charset: list[int] = field(default_factory=list)
    set_str_value: list[list[bytes]] = field(default_factory=list)
    enum_str_value: list[list[bytes]] = field(default_factory=list)
    column_name: list[bytes] = field(default_factory=list)
    geometry_type: list[int] = field(default_factory=list)
    primary_key: list[int] = field(default_factory=list)
    primary_key_prefix: list[int] = field(default_factory=list)
    enum_set_default_charset: list[int] = field(default_factory=list)
    enum_set_column_charset: list[int] = field(default_factory=list)

    def decode(self, data: bytes) -> None:
        data = bytes(data)
        size = self.table_id_size
        _need(data, size + 3)
        self.table_id = fixed_length_int(data[:size])
        pos = size
        self.flags = int.from_bytes(data[pos : pos + 2], "little")
        pos += 2

        schema_length = data[pos]
        pos += 1
        _need(data, pos + schema_length + 2)
        self.schema = data[pos : pos + schema_length]
        pos += schema_length + 1  # skip the 0x00 terminator

        table_length = data[pos]
        pos += 1
        _need(data, pos + table_length + 1)
        self.table = data[pos : pos + table_length]
        pos += table_length + 1

        self.column_count, _, consumed = length_encoded_int(data[pos:])
        pos += consumed
        _need(data, pos + self.column_count)
        self.column_type = data[pos : pos + self.column_count]
        pos += self.column_count

        meta, _, consumed = length_encoded_string(data[pos:])
        self._decode_meta(meta)
        pos += consumed

        null_size = bitmap_byte_size(self.column_count)
        if len(data) - pos < null_size:
            raise EOFError("data too short for the NULL bitmap")
        self.null_bitmap = data[pos : pos + null_size]
        pos += null_size

        self._decode_optional_meta(data[pos:])

    def _decode_meta(self, data: bytes) -> None:
        metas = []
        pos = 0
        for column_type in self.column_type:
            if column_type in _TWO_BYTE_BIG:
                _need(data, pos + 2)
                metas.append((data[pos] << 8) | data[pos + 1])
                pos += 2
            elif column_type in _TWO_BYTE_LITTLE:
                _need(data, pos + 2)
                metas.append(int.from_bytes(data[pos : pos + 2], "little"))
                pos += 2
            elif column_type in _ONE_BYTE:
                _need(data, pos + 1)
                metas.append(data[pos])
                pos += 1
            elif column_type in _UNSUPPORTED:
                raise ValueError(f"unsupport type in binlog {column_type}")
            else:
                metas.append(0)
        self.column_meta = metas

    def _decode_optional_meta(self, data: bytes) -> None:
        self.primary_key = []
        self.primary_key_prefix = []
        pos = 0
        while pos < len(data):
            kind = data[pos]
            pos += 1
            length, _, consumed = length_encoded_int(data[pos:])
            pos += consumed
            _need(data, pos + length)
            value = data[pos : pos + length]
            pos += length

            if kind == TABLE_MAP_OPT_META_SIGNEDNESS:
                self.signedness_bitmap = value
            elif kind == TABLE_MAP_OPT_META_DEFAULT_CHARSET:
                self.default_charset = _default_charset(value)
            elif kind == TABLE_MAP_OPT_META_COLUMN_CHARSET:
                self.column_charset = _int_seq(value)
            elif kind == TABLE_MAP_OPT_META_COLUMN_NAME:
                self._decode_column_names(value)
            elif kind == TABLE_MAP_OPT_META_SET_STR_VALUE:
                self.set_str_value = _str_values(value)
            elif kind == TABLE_MAP_OPT_META_ENUM_STR_VALUE:
                self.enum_str_value = _str_values(value)
            elif kind == TABLE_MAP_OPT_META_GEOMETRY_TYPE:
                self.geometry_type = _int_seq(value)
            elif kind == TABLE_MAP_OPT_META_SIMPLE_PRIMARY_KEY:
                for column in _int_seq(value):
                    self.primary_key.append(column)
                    self.primary_key_prefix.append(0)
            elif kind == TABLE_MAP_OPT_META_PRIMARY_KEY_WITH_PREFIX:
                numbers = _int_seq(value)
                if len(numbers) % 2:
                    raise ValueError("primary key with prefix needs column/prefix pairs")
                self.primary_key.extend(numbers[0::2])
                self.primary_key_prefix.extend(numbers[1::2])
            elif kind == TABLE_MAP_OPT_META_ENUM_AND_SET_DEFAULT_CHARSET:
                self.enum_set_default_charset = _default_charset(value)
            elif kind == TABLE_MAP_OPT_META_ENUM_AND_SET_COLUMN_CHARSET:
                self.enum_set_column_charset = _int_seq(value)
            # Other kinds are reserved for future extensions and ignored.

    def _decode_column_names(self, value: bytes) -> None:
        names = []
        pos = 0
        while pos < len(value):
            length = value[pos]
            pos += 1
            _need(value, pos + length)
            names.append(value[pos : pos + length])
            pos += length
        if len(names) != self.column_count:
            raise ValueError(
                f"Expect {self.column_count} column names but got {len(names)}"
            )
        self.column_name = names

    def nullable(self, i: int) -> tuple[bool, bool]:
        """Return ``(available, nullable)`` for column ``i``."""
        if not self.null_bitmap:
            return False, False
        return True, bool(self.null_bitmap[i // 8] & (1 << (i % 8)))

    def nullable_map(self) -> dict[int, int] | None:
        """Map column index to 1 if nullable else 0; ``None`` if unknown."""
        result = {}
        for i in range(self.column_count):
            available, nullable = self.nullable(i)
            if not available:
                return None
            result[i] = 1 if nullable else 0
        return result

    def set_str_value_string(self) -> list[list[str]] | None:
        """Values of set columns as strings, or ``None`` if unavailable."""
        if not self.set_str_value:
            return None
        return [[item.decode("utf-8", "replace") for item in vals] for vals in self.set_str_value]

    def enum_str_value_string(self) -> list[list[str]] | None:
        """Values of enum columns as strings, or ``None`` if unavailable."""
        if not self.enum_str_value:
            return None
        return [[item.decode("utf-8", "replace") for item in vals] for vals in self.enum_str_value]

    def column_name_string(self) -> list[str] | None:
        """Column names as strings, or ``None`` if unavailable."""
        if not self.column_name:
            return None
        return [name.decode("utf-8", "replace") for name in self.column_name]

    def _columns(self, include: Callable[[int], bool]) -> Iterator[int]:
        return (i for i in range(self.column_count) if include(i))

    def unsigned_map(self) -> dict[int, int] | None:
        """Map numeric column index to 1 if unsigned else 0; ``None`` if unknown."""
        if not self.signedness_bitmap:
            return None
        result = {}
        for p, i in enumerate(self._columns(self.is_numeric_column)):
            bit = self.signedness_bitmap[p // 8] & (1 << (7 - p % 8))
            result[i] = 1 if bit else 0
        return result

    def collation_map(self) -> dict[int, int] | None:
        """Map character column index to collation id; ``None`` if unknown."""
        return self._collations(self.is_character_column, self.default_charset, self.column_charset)

    def enum_set_collation_map(self) -> dict[int, int] | None:
        """Map enum/set column index to collation id; ``None`` if unknown."""
        return self._collations(
            self.is_enum_or_set_column,
            self.enum_set_default_charset,
            self.enum_set_column_charset,
        )

    def _collations(
        self,
        include: Callable[[int], bool],
        default_charset: list[int],
        column_charset: list[int],
    ) -> dict[int, int] | None:
        if default_charset:
            default = default_charset[0]
            overrides = dict(zip(default_charset[1::2], default_charset[2::2]))
            return {
                i: overrides.get(p, default) for p, i in enumerate(self._columns(include))
            }
        if column_charset:
            return {i: column_charset[p] for p, i in enumerate(self._columns(include))}
        return None

    def enum_str_value_map(self) -> dict[int, list[str]] | None:
        """Map enum column index to its values; ``None`` if unknown."""
        return self._str_value_map(self.is_enum_column, self.enum_str_value_string())

    def set_str_value_map(self) -> dict[int, list[str]] | None:
        """Map set column index to its values; ``None`` if unknown."""
        return self._str_value_map(self.is_set_column, self.set_str_value_string())

    def _str_value_map(
        self, include: Callable[[int], bool], values: list[list[str]] | None
    ) -> dict[int, list[str]] | None:
        if not values:
            return None
        return {i: values[p] for p, i in enumerate(self._columns(include))}

    def geometry_type_map(self) -> dict[int, int] | None:
        """Map geometry column index to its geometry type; ``None`` if unknown."""
        if not self.geometry_type:
            return None
        return {
            i: self.geometry_type[p]
            for p, i in enumerate(self._columns(self.is_geometry_column))
        }

    def _real_type(self, i: int) -> int:
        column_type = self.column_type[i]
        if column_type == FieldType.STRING:
            real = self.column_meta[i] >> 8
            if real in (FieldType.ENUM, FieldType.SET):
                return real
        elif column_type == FieldType.DATE:
            return FieldType.NEWDATE
        return column_type

    def is_numeric_column(self, i: int) -> bool:
        return self._real_type(i) in _NUMERIC

    def is_character_column(self, i: int) -> bool:
        """True for character columns; GEOMETRY counts as one in MariaDB."""
        real = self._real_type(i)
        if real in _CHARACTER:
            return True
        return real == FieldType.GEOMETRY and self.flavor == MARIADB_FLAVOR

    def is_enum_column(self, i: int) -> bool:
        return self._real_type(i) == FieldType.ENUM

    def is_set_column(self, i: int) -> bool:
        return self._real_type(i) == FieldType.SET

    def is_geometry_column(self, i: int) -> bool:
        return self._real_type(i) == FieldType.GEOMETRY

    def is_time_column(self, i: int) -> bool:
        return self._real_type(i) in _TIME

    def is_enum_or_set_column(self, i: int) -> bool:
        return self._real_type(i) in (FieldType.ENUM, FieldType.SET)

    def dump(self, out: TextIO) -> None:
        text = lambda b: bytes(b).decode("utf-8", "replace")  # noqa: E731
        out.write(f"TableID: {self.table_id}\n")
        out.write(f"TableID size: {self.table_id_size}\n")
        out.write(f"Flags: {self.flags}\n")
        out.write(f"Schema: {text(self.schema)}\n")
        out.write(f"Table: {text(self.table)}\n")
        out.write(f"Column count: {self.column_count}\n")
        out.write(f"Column type: \n{hex_dump(self.column_type)}")
        out.write(f"NULL bitmap: \n{hex_dump(self.null_bitmap)}")
        out.write(f"Signedness bitmap: \n{hex_dump(self.signedness_bitmap)}")
        out.write(f"Default charset: {_go_list(self.default_charset)}\n")
        out.write(f"Column charset: {_go_list(self.column_charset)}\n")
        out.write(f"Set str value: {_go_list(self.set_str_value_string())}\n")
        out.write(f"Enum str value: {_go_list(self.enum_str_value_string())}\n")
        out.write(f"Column name: {_go_list(self.column_name_string())}\n")
        out.write(f"Geometry type: {_go_list(self.geometry_type)}\n")
        out.write(f"Primary key: {_go_list(self.primary_key)}\n")
        out.write(f"Primary key prefix: {_go_list(self.primary_key_prefix)}\n")
        out.write(f"Enum/set default charset: {_go_list(self.enum_set_default_charset)}\n")
        out.write(f"Enum/set column charset: {_go_list(self.enum_set_column_charset)}\n")

        unsigned = self.unsigned_map()
        collations = self.collation_map()
        enum_set_collations = self.enum_set_collation_map()
        enum_values = self.enum_str_value_map()
        set_values = self.set_str_value_map()
        geometry = self.geometry_type_map()
        out.write(f"UnsignedMap: {_go_map('map[int]int32', unsigned)}\n")
        out.write(f"CollationMap: {_go_map('map[int]uint64', collations, hex)}\n")
        out.write(
            f"EnumSetCollationMap: {_go_map('map[int]uint64', enum_set_collations, hex)}\n"
        )
        out.write(
            f"EnumStrValueMap: {_go_map('map[int][]string', enum_values, _go_string_slice)}\n"
        )
        out.write(
            f"SetStrValueMap: {_go_map('map[int][]string', set_values, _go_string_slice)}\n"
        )
        out.write(f"GeometryTypeMap: {_go_map('map[int]uint64', geometry, hex)}\n")

        width = max((len(name) for name in self.column_name), default=0)
        primary = set(self.primary_key)

        out.write("Columns: \n")
        for i in range(self.column_count):
            name = text(self.column_name[i]) if self.column_name else "<n/a>"
            out.write(f"  {name:<{width}}" if width else f"  {name}")
            out.write(f"  type={self._real_type(i):<3d}")

            if self.is_numeric_column(i):
                if not unsigned:
                    out.write("  unsigned=<n/a>")
                elif unsigned.get(i) == 1:
                    out.write("  unsigned=yes")
                else:
                    out.write("  unsigned=no ")
            if self.is_character_column(i):
                if not collations:
                    out.write("  collation=<n/a>")
                else:
                    out.write(f"  collation={collations.get(i, 0)} ")
            if self.is_enum_column(i):
                if not enum_set_collations:
                    out.write("  enum_collation=<n/a>")
                else:
                    out.write(f"  enum_collation={enum_set_collations.get(i, 0)}")
                if not enum_values:
                    out.write("  enum=<n/a>")
                else:
                    out.write(f"  enum={_go_list(enum_values.get(i))}")
            if self.is_set_column(i):
                if not enum_set_collations:
                    out.write("  set_collation=<n/a>")
                else:
                    out.write(f"  set_collation={enum_set_collations.get(i, 0)}")
                if not set_values:
                    out.write("  set=<n/a>")
                else:
                    out.write(f"  set={_go_list(set_values.get(i))}")
            if self.is_geometry_column(i):
                if not geometry:
                    out.write("  geometry_type=<n/a>")
                else:
                    out.write(f"  geometry_type={geometry.get(i, 0)}")

            available, nullable = self.nullable(i)
            if not available:
                out.write("  null=<n/a>")
            elif nullable:
                out.write("  null=yes")
            else:
                out.write("  null=no ")

            if i in primary:
                out.write("  pri")
            out.write("\n")
        out.write("\n")


__all__ = ["TableMapEvent", "bitmap_byte_size"]