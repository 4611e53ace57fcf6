"""Decoders for the non-row binlog events and the common event header."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol, TextIO

from binlogkit.constants import (
    BINLOG_CHECKSUM_ALG_UNDEF,
    BINLOG_MARIADB_FL_DDL,
    BINLOG_MARIADB_FL_GROUP_COMMIT_ID,
    BINLOG_MARIADB_FL_STANDALONE,
    EVENT_HEADER_SIZE,
    LOGICAL_TIMESTAMP_TYPE_CODE,
    PART_LOGICAL_TIMESTAMP_LENGTH,
    SID_LENGTH,
    UNDEFINED_SERVER_VER,
    EventType,
    IntVarEventType,
)
from binlogkit.fractime import micro_sec_timestamp_to_time
from binlogkit.util import fixed_length_int, length_encoded_int

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_INT_RE = re.compile(r"[+-]?[0-9]+")

CHECKSUM_VERSION_PRODUCT_MYSQL = (5 * 256 + 6) * 256 + 1
CHECKSUM_VERSION_PRODUCT_MARIADB = (5 * 256 + 3) * 256 + 0


class Event(Protocol):
    """What every decoded event body provides."""

    def decode(self, data: bytes) -> None: ...

    def dump(self, out: TextIO) -> None: ...


def _le(data: bytes, pos: int, size: int) -> int:
    end = pos + size
    if len(data) < end:
        raise ValueError(f"data too short: need {end} bytes, got {len(data)}")
    return int.from_bytes(data[pos:end], "little")


def _signed64(value: int) -> int:
    return value - (1 << 64) if value >= 1 << 63 else value


def _text(data: bytes) -> str:
    return bytes(data).decode("utf-8", "replace")


def _atoi(text: str) -> int:
    return int(text) if _INT_RE.fullmatch(text) else 0


def _sid_string(sid: bytes) -> str:
    try:
        return str(uuid.UUID(bytes=bytes(sid)))
    except ValueError:
        return str(uuid.UUID(int=0))


def _rfc3339_nano(moment: datetime) -> str:
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    frac = f"{moment.microsecond:06d}".rstrip("0")
    if frac:
        text += "." + frac
    offset = moment.utcoffset()
    if not offset:
        return text + "Z"
    sign = "+" if offset >= timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


class EventError(Exception):
    """An event body could not be decoded."""

    def __init__(self, header: EventHeader | None, err: str, data: bytes):
        super().__init__(err)
        self.header = header
        self.err = err
        self.data = bytes(data)

    def __str__(self) -> str:
        return f"Header {self.header!r}, Data {self.data!r}, Err: {self.err}"


@dataclass
class EventHeader:
    """The 19-byte header that precedes every binlog event."""

    timestamp: int = 0
    event_type: EventType = EventType.UNKNOWN_EVENT
    server_id: int = 0
    event_size: int = 0
    log_pos: int = 0
    flags: int = 0

    def decode(self, data: bytes) -> None:
        if len(data) < EVENT_HEADER_SIZE:
            raise ValueError(f"header size too short {len(data)}, must 19")
        self.timestamp = _le(data, 0, 4)
        self.event_type = EventType(data[4])
        self.server_id = _le(data, 5, 4)
        self.event_size = _le(data, 9, 4)
        self.log_pos = _le(data, 13, 4)
        self.flags = _le(data, 17, 2)
        if self.event_size < EVENT_HEADER_SIZE:
            raise ValueError(f"invalid event size {self.event_size}, must >= 19")

    def dump(self, out: TextIO) -> None:
        out.write(f"=== {self.event_type} ===\n")
        out.write(f"Date: {datetime.fromtimestamp(self.timestamp).strftime(TIME_FORMAT)}\n")
        out.write(f"Log position: {self.log_pos}\n")
        out.write(f"Event size: {self.event_size}\n")


@dataclass
class BinlogEvent:
    """A whole event: raw bytes (header, body and checksum), header and body."""

    raw_data: bytes
    header: EventHeader
    event: Any

    def dump(self, out: TextIO) -> None:
        self.header.dump(out)
        self.event.dump(out)


def split_server_version(server: str) -> list[int]:
    """Split a version string of the form ``X.Y.Zabc`` into three integers."""
    parts = server.split(".")
    if len(parts) < 3:
        return [0, 0, 0]
    major = _atoi(parts[0])
    minor = _atoi(parts[1])
    index = 0
    for position, char in enumerate(parts[2]):
        if not char.isnumeric():
            index = position
            break
    patch = _atoi(parts[2][:index])
    return [major, minor, patch]


def calc_version_product(server: str) -> int:
    """Combine a server version into one comparable integer."""
    major, minor, patch = split_server_version(server)
    return (major * 256 + minor) * 256 + patch


@dataclass
class FormatDescriptionEvent:
    version: int = 0
    server_version: bytes = b""
    create_timestamp: int = 0
    event_header_length: int = 0
    event_type_header_lengths: bytes = b""
    # 0 is off, 1 is CRC32, 255 is undefined
    checksum_algorithm: int = 0

    def decode(self, data: bytes) -> None:
        self.version = _le(data, 0, 2)
        self.server_version = bytes(data[2:52]).ljust(50, b"\x00")
        self.create_timestamp = _le(data, 52, 4)
        if len(data) < 57:
            raise ValueError(f"data too short: need 57 bytes, got {len(data)}")
        self.event_header_length = data[56]
        pos = 57
        if self.event_header_length != EVENT_HEADER_SIZE:
            raise ValueError(
                f"invalid event header length {self.event_header_length}, must 19"
            )

        server = _text(self.server_version)
        product = CHECKSUM_VERSION_PRODUCT_MYSQL
        if "mariadb" in server.lower():
            product = CHECKSUM_VERSION_PRODUCT_MARIADB

        if calc_version_product(server) >= product:
            # The last five bytes hold the checksum algorithm and the checksum.
            if len(data) < pos + 5:
                raise ValueError("data too short for checksum algorithm")
            self.checksum_algorithm = data[len(data) - 5]
            self.event_type_header_lengths = bytes(data[pos : len(data) - 5])
        else:
            self.checksum_algorithm = BINLOG_CHECKSUM_ALG_UNDEF
            self.event_type_header_lengths = bytes(data[pos:])

    def dump(self, out: TextIO) -> None:
        out.write(f"Version: {self.version}\n")
        out.write(f"Server version: {_text(self.server_version)}\n")
        out.write(f"Checksum algorithm: {self.checksum_algorithm}\n")
        out.write("\n")


@dataclass
class RotateEvent:
    position: int = 0
    next_log_name: bytes = b""

    def decode(self, data: bytes) -> None:
        self.position = _le(data, 0, 8)
        self.next_log_name = bytes(data[8:])

    def dump(self, out: TextIO) -> None:
        out.write(f"Position: {self.position}\n")
        out.write(f"Next log name: {_text(self.next_log_name)}\n")
        out.write("\n")


@dataclass
class PreviousGTIDsEvent:
    gtid_sets: str = ""

    def decode(self, data: bytes) -> None:
        sets = []
        # Counts are stored in 8 bytes, of which only the low 2 are read.
        uuid_count = _le(data, 0, 2)
        pos = 8
        for _ in range(uuid_count):
            if len(data) < pos + 16:
                raise ValueError("data too short for GTID source id")
            sid = self._decode_uuid(data[pos : pos + 16])
            pos += 16
            slice_count = _le(data, pos, 2)
            pos += 8
            intervals = []
            for _ in range(slice_count):
                start = _le(data, pos, 8)
                stop = _le(data, pos + 8, 8)
                pos += 16
                intervals.append(f"{start}" if stop == start + 1 else f"{start}-{stop - 1}")
            sets.append(f"{sid}:{':'.join(intervals)}")
        self.gtid_sets = ",".join(sets)

    @staticmethod
    def _decode_uuid(data: bytes) -> str:
        raw = bytes(data)
        return "-".join(
            raw[a:b].hex() for a, b in ((0, 4), (4, 6), (6, 8), (8, 10), (10, len(raw)))
        )

    def dump(self, out: TextIO) -> None:
        out.write(f"Previous GTID Event: {self.gtid_sets}\n")
        out.write("\n")


@dataclass
class XIDEvent:
    xid: int = 0
    # Not carried by the event itself; filled in by the syncer for convenience.
    gset: Any = None

    def decode(self, data: bytes) -> None:
        self.xid = _le(data, 0, 8)

    def dump(self, out: TextIO) -> None:
        out.write(f"XID: {self.xid}\n")
        if self.gset is not None:
            out.write(f"GTIDSet: {self.gset}\n")
        out.write("\n")


@dataclass
class QueryEvent:
    slave_proxy_id: int = 0
    execution_time: int = 0
    error_code: int = 0
    status_vars: bytes = b""
    schema: bytes = b""
    query: bytes = b""
    # Not carried by the event itself; filled in by the syncer for convenience.
    gset: Any = None

    def decode(self, data: bytes) -> None:
        self.slave_proxy_id = _le(data, 0, 4)
        self.execution_time = _le(data, 4, 4)
        schema_length = _le(data, 8, 1)
        self.error_code = _le(data, 9, 2)
        status_vars_length = _le(data, 11, 2)
        pos = 13
        self.status_vars = bytes(data[pos : pos + status_vars_length])
        pos += status_vars_length
        self.schema = bytes(data[pos : pos + schema_length])
        pos += schema_length
        pos += 1  # skip the 0x00 terminator
        self.query = bytes(data[pos:])

    def dump(self, out: TextIO) -> None:
        out.write(f"Slave proxy ID: {self.slave_proxy_id}\n")
        out.write(f"Execution time: {self.execution_time}\n")
        out.write(f"Error code: {self.error_code}\n")
        out.write(f"Schema: {_text(self.schema)}\n")
        out.write(f"Query: {_text(self.query)}\n")
        if self.gset is not None:
            out.write(f"GTIDSet: {self.gset}\n")
        out.write("\n")


@dataclass
class GTIDEvent:
    commit_flag: int = 0
    sid: bytes = b""
    gno: int = 0
    last_committed: int = 0
    sequence_number: int = 0
    immediate_commit_timestamp: int = 0
    original_commit_timestamp: int = 0
    transaction_length: int = 0
    immediate_server_version: int = 0
    original_server_version: int = 0

    def decode(self, data: bytes) -> None:
        if not data:
            raise ValueError("empty GTID event")
        self.commit_flag = data[0]
        pos = 1
        if len(data) < pos + SID_LENGTH:
            raise ValueError("data too short for GTID source id")
        self.sid = bytes(data[pos : pos + SID_LENGTH])
        pos += SID_LENGTH
        self.gno = _signed64(_le(data, pos, 8))
        pos += 8

        if len(data) < 42 or data[pos] != LOGICAL_TIMESTAMP_TYPE_CODE:
            return
        pos += 1
        self.last_committed = _signed64(_le(data, pos, 8))
        pos += PART_LOGICAL_TIMESTAMP_LENGTH
        self.sequence_number = _signed64(_le(data, pos, 8))
        pos += 8

        if len(data) - pos < 7:
            return
        self.immediate_commit_timestamp = _le(data, pos, 7)
        pos += 7
        if self.immediate_commit_timestamp & (1 << 55):
            # The top bit announces a separate original commit timestamp.
            self.immediate_commit_timestamp &= ~(1 << 55)
            self.original_commit_timestamp = _le(data, pos, 7)
            pos += 7
        else:
            self.original_commit_timestamp = self.immediate_commit_timestamp

        if len(data) - pos < 1:
            return
        self.transaction_length, _, consumed = length_encoded_int(data[pos:])
        pos += consumed

        self.immediate_server_version = UNDEFINED_SERVER_VER
        self.original_server_version = UNDEFINED_SERVER_VER
        if len(data) - pos < 4:
            return
        self.immediate_server_version = _le(data, pos, 4)
        pos += 4
        if self.immediate_server_version & (1 << 31):
            # The top bit announces a separate original server version.
            self.immediate_server_version &= ~(1 << 31)
            self.original_server_version = _le(data, pos, 4)
        else:
            self.original_server_version = self.immediate_server_version

    def immediate_commit_time(self) -> datetime | None:
        """Commit time on the immediate server, or ``None`` if unknown."""
        return micro_sec_timestamp_to_time(self.immediate_commit_timestamp)

    def original_commit_time(self) -> datetime | None:
        """Commit time on the original server, or ``None`` if unknown."""
        return micro_sec_timestamp_to_time(self.original_commit_timestamp)

    def dump(self, out: TextIO) -> None:
        def fmt_time(moment: datetime | None) -> str:
            return "<n/a>" if moment is None else _rfc3339_nano(moment)

        out.write(f"Commit flag: {self.commit_flag}\n")
        out.write(f"GTID_NEXT: {_sid_string(self.sid)}:{self.gno}\n")
        out.write(f"LAST_COMMITTED: {self.last_committed}\n")
        out.write(f"SEQUENCE_NUMBER: {self.sequence_number}\n")
        out.write(
            f"Immediate commmit timestamp: {self.immediate_commit_timestamp} "
            f"({fmt_time(self.immediate_commit_time())})\n"
        )
        out.write(
            f"Orignal commmit timestamp: {self.original_commit_timestamp} "
            f"({fmt_time(self.original_commit_time())})\n"
        )
        out.write(f"Transaction length: {self.transaction_length}\n")
        out.write(f"Immediate server version: {self.immediate_server_version}\n")
        out.write(f"Orignal server version: {self.original_server_version}\n")
        out.write("\n")


@dataclass
class BeginLoadQueryEvent:
    file_id: int = 0
    block_data: bytes = b""

    def decode(self, data: bytes) -> None:
        self.file_id = _le(data, 0, 4)
        self.block_data = bytes(data[4:])

    def dump(self, out: TextIO) -> None:
        out.write(f"File ID: {self.file_id}\n")
        out.write(f"Block data: {_text(self.block_data)}\n")
        out.write("\n")


@dataclass
class ExecuteLoadQueryEvent:
    slave_proxy_id: int = 0
    execution_time: int = 0
    schema_length: int = 0
    error_code: int = 0
    status_vars: int = 0
    file_id: int = 0
    start_pos: int = 0
    end_pos: int = 0
    dup_handling_flags: int = 0

    def decode(self, data: bytes) -> None:
        self.slave_proxy_id = _le(data, 0, 4)
        self.execution_time = _le(data, 4, 4)
        self.schema_length = _le(data, 8, 1)
        self.error_code = _le(data, 9, 2)
        self.status_vars = _le(data, 11, 2)
        self.file_id = _le(data, 13, 4)
        self.start_pos = _le(data, 17, 4)
        self.end_pos = _le(data, 21, 4)
        self.dup_handling_flags = _le(data, 25, 1)

    def dump(self, out: TextIO) -> None:
        out.write(f"Slave proxy ID: {self.slave_proxy_id}\n")
        out.write(f"Execution time: {self.execution_time}\n")
        out.write(f"Schame length: {self.schema_length}\n")
        out.write(f"Error code: {self.error_code}\n")
        out.write(f"Status vars length: {self.status_vars}\n")
        out.write(f"File ID: {self.file_id}\n")
        out.write(f"Start pos: {self.start_pos}\n")
        out.write(f"End pos: {self.end_pos}\n")
        out.write(f"Dup handling flags: {self.dup_handling_flags}\n")
        out.write("\n")


@dataclass
class MariadbAnnotateRowsEvent:
    query: bytes = b""

    def decode(self, data: bytes) -> None:
        self.query = bytes(data)

    def dump(self, out: TextIO) -> None:
        out.write(f"Query: {_text(self.query)}\n")
        out.write("\n")


@dataclass
class MariadbBinlogCheckPointEvent:
    info: bytes = b""

    def decode(self, data: bytes) -> None:
        self.info = bytes(data)

    def dump(self, out: TextIO) -> None:
        out.write(f"Info: {_text(self.info)}\n")
        out.write("\n")


@dataclass
class MariadbGTID:
    """A MariaDB GTID: domain, server and sequence number."""

    domain_id: int = 0
    server_id: int = 0
    sequence_number: int = 0

    def __str__(self) -> str:
        return f"{self.domain_id}-{self.server_id}-{self.sequence_number}"


@dataclass
class MariadbGTIDEvent:
    gtid: MariadbGTID = field(default_factory=MariadbGTID)
    flags: int = 0
    commit_id: int = 0

    def is_ddl(self) -> bool:
        return bool(self.flags & BINLOG_MARIADB_FL_DDL)

    def is_standalone(self) -> bool:
        return bool(self.flags & BINLOG_MARIADB_FL_STANDALONE)

    def is_group_commit(self) -> bool:
        return bool(self.flags & BINLOG_MARIADB_FL_GROUP_COMMIT_ID)

    def decode(self, data: bytes) -> None:
        self.gtid.sequence_number = _le(data, 0, 8)
        self.gtid.domain_id = _le(data, 8, 4)
        self.flags = _le(data, 12, 1)
        if self.flags & BINLOG_MARIADB_FL_GROUP_COMMIT_ID:
            self.commit_id = _le(data, 13, 8)

    def dump(self, out: TextIO) -> None:
        out.write(f"GTID: {self.gtid}\n")
        out.write(f"Flags: {self.flags}\n")
        out.write(f"CommitID: {self.commit_id}\n")
        out.write("\n")


@dataclass
class MariadbGTIDListEvent:
    gtids: list[MariadbGTID] = field(default_factory=list)

    def decode(self, data: bytes) -> None:
        count = _le(data, 0, 4) & ((1 << 28) - 1)
        pos = 4
        gtids = []
        for _ in range(count):
            gtids.append(
                MariadbGTID(
                    domain_id=_le(data, pos, 4),
                    server_id=_le(data, pos + 4, 4),
                    sequence_number=_le(data, pos + 8, 8),
                )
            )
            pos += 16
        self.gtids = gtids

    def dump(self, out: TextIO) -> None:
        out.write(f"Lists: [{' '.join(str(g) for g in self.gtids)}]\n")
        out.write("\n")


@dataclass
class IntVarEvent:
    type: IntVarEventType | int = IntVarEventType.INVALID
    value: int = 0

    def decode(self, data: bytes) -> None:
        code = _le(data, 0, 1)
        try:
            self.type = IntVarEventType(code)
        except ValueError:
            self.type = code
        self.value = _le(data, 1, 8)

    def dump(self, out: TextIO) -> None:
        out.write(f"Type: {int(self.type)}\n")
        out.write(f"Value: {self.value}\n")


__all__ = [
    "BeginLoadQueryEvent",
    "BinlogEvent",
    "Event",
    "EventError",
    "EventHeader",
    "ExecuteLoadQueryEvent",
    "FormatDescriptionEvent",
    "GTIDEvent",
    "IntVarEvent",
    "MariadbAnnotateRowsEvent",
    "MariadbBinlogCheckPointEvent",
    "MariadbGTID",
    "MariadbGTIDEvent",
    "MariadbGTIDListEvent",
    "PreviousGTIDsEvent",
    "QueryEvent",
    "RotateEvent",
    "XIDEvent",
    "calc_version_product",
    "fixed_length_int",
    "split_server_version",
]