"""Binlog event parser for files, streams and single raw events."""

from __future__ import annotations

import threading
import zlib
from datetime import tzinfo
from os import PathLike
from typing import BinaryIO, Callable

from binlogkit.constants import (
    BINLOG_CHECKSUM_ALG_CRC32,
    BINLOG_CHECKSUM_LENGTH,
    BINLOG_FILE_HEADER,
    EVENT_HEADER_SIZE,
    EventType,
)
from binlogkit.events import (
    BeginLoadQueryEvent,
    BinlogEvent,
    EventError,
    EventHeader,
    ExecuteLoadQueryEvent,
    FormatDescriptionEvent,
    GTIDEvent,
    IntVarEvent,
    MariadbAnnotateRowsEvent,
    MariadbBinlogCheckPointEvent,
    MariadbGTIDEvent,
    MariadbGTIDListEvent,
    PreviousGTIDsEvent,
    QueryEvent,
    RotateEvent,
    XIDEvent,
)
from binlogkit.generic import GenericEvent
from binlogkit.rows import ROWS_EVENT_STMT_END_FLAG, RowsEvent, RowsQueryEvent
from binlogkit.table_map import TableMapEvent

OnEvent = Callable[[BinlogEvent], None]


class ChecksumMismatchError(ValueError):
    """The CRC32 checksum of an event does not match its contents."""

    def __init__(self) -> None:
        super().__init__("binlog checksum mismatch, data may be corrupted")


_SIMPLE_EVENTS = {
    EventType.QUERY_EVENT: QueryEvent,
    EventType.XID_EVENT: XIDEvent,
    EventType.ROWS_QUERY_EVENT: RowsQueryEvent,
    EventType.GTID_EVENT: GTIDEvent,
    EventType.ANONYMOUS_GTID_EVENT: GTIDEvent,
    EventType.BEGIN_LOAD_QUERY_EVENT: BeginLoadQueryEvent,
    EventType.EXECUTE_LOAD_QUERY_EVENT: ExecuteLoadQueryEvent,
    EventType.MARIADB_ANNOTATE_ROWS_EVENT: MariadbAnnotateRowsEvent,
    EventType.MARIADB_BINLOG_CHECKPOINT_EVENT: MariadbBinlogCheckPointEvent,
    EventType.MARIADB_GTID_LIST_EVENT: MariadbGTIDListEvent,
    EventType.PREVIOUS_GTIDS_EVENT: PreviousGTIDsEvent,
    EventType.INTVAR_EVENT: IntVarEvent,
}

# Rows event type -> (format version, carries an after-image bitmap).
_ROWS_EVENTS = {
    EventType.WRITE_ROWS_EVENTv0: (0, False),
    EventType.UPDATE_ROWS_EVENTv0: (0, False),
    EventType.DELETE_ROWS_EVENTv0: (0, False),
    EventType.WRITE_ROWS_EVENTv1: (1, False),
    EventType.UPDATE_ROWS_EVENTv1: (1, True),
    EventType.DELETE_ROWS_EVENTv1: (1, False),
    EventType.WRITE_ROWS_EVENTv2: (2, False),
    EventType.UPDATE_ROWS_EVENTv2: (2, True),
    EventType.DELETE_ROWS_EVENTv2: (2, False),
}

_DECODE_ERRORS = (ValueError, IndexError, EOFError, OverflowError)


class BinlogParser:
    """Decodes binlog events, tracking the format description and table maps.

    Every event but a FORMAT_DESCRIPTION event needs a format description
    event to have been parsed first; a new one replaces the old.
    """

    def __init__(
        self,
        flavor: str = "",
        raw_mode: bool = False,
        parse_time: bool = False,
        timestamp_string_location: tzinfo | None = None,
        use_decimal: bool = False,
        ignore_json_decode_err: bool = False,
        verify_checksum: bool = False,
    ) -> None:
        self.flavor = flavor
        # In raw mode only FORMAT_DESCRIPTION and ROTATE events are decoded.
        self.raw_mode = raw_mode
        self.parse_time = parse_time
        self.timestamp_string_location = timestamp_string_location
        self.use_decimal = use_decimal
        self.ignore_json_decode_err = ignore_json_decode_err
        self.verify_checksum = verify_checksum
        self.format: FormatDescriptionEvent | None = None
        self.tables: dict[int, TableMapEvent] = {}
        self._stopped = threading.Event()

    def stop(self) -> None:
        """Make :meth:`parse_reader` return before its next event."""
        self._stopped.set()

    def resume(self) -> None:
        """Undo :meth:`stop`."""
        self._stopped.clear()

    def reset(self) -> None:
        """Forget the current format description event."""
        self.format = None

    def parse_file(self, name: str | PathLike, offset: int, on_event: OnEvent) -> None:
        """Parse a binlog file from ``offset``, passing each event to ``on_event``.

        The format description event at the start of the file is always read,
        even when ``offset`` lies past it.
        """
        with open(name, "rb") as f:
            head = f.read(len(BINLOG_FILE_HEADER))
            if head != BINLOG_FILE_HEADER:
                raise ValueError(
                    f"{name} is not a valid binlog file, head 4 bytes must fe'bin' "
                )
            if offset < 4:
                offset = 4
            elif offset > 4:
                f.seek(4)
                try:
                    self._parse_single_event(f, on_event)
                except ValueError as exc:
                    raise ValueError(f"parse FormatDescriptionEvent: {exc}") from exc
            f.seek(offset)
            self.parse_reader(f, on_event)

    def parse_single_event(self, reader: BinaryIO, on_event: OnEvent) -> bool:
        """Parse one event from ``reader``; return True at end of input."""
        return self._parse_single_event(reader, on_event)

    def _parse_single_event(self, reader: BinaryIO, on_event: OnEvent) -> bool:
        head = reader.read(EVENT_HEADER_SIZE)
        if len(head) < EVENT_HEADER_SIZE:
            return True

        header = EventHeader()
        header.decode(head)
        if header.event_size < EVENT_HEADER_SIZE:
            raise ValueError(
                f"invalid event header, event size is {header.event_size}, too small"
            )

        body_len = header.event_size - EVENT_HEADER_SIZE
        body = reader.read(body_len)
        if len(body) != body_len:
            raise ValueError(
                f"get event err EOF, need {header.event_size} "
                f"but got {EVENT_HEADER_SIZE + len(body)}"
            )

        raw = bytes(head) + bytes(body)
        event = self._parse_event(header, raw[EVENT_HEADER_SIZE:], raw)
        on_event(BinlogEvent(raw_data=raw, header=header, event=event))
        return False

    def parse_reader(self, reader: BinaryIO, on_event: OnEvent) -> None:
        """Parse events from ``reader`` until its end or until stopped."""
        while not self._stopped.is_set():
            if self._parse_single_event(reader, on_event):
                break

    def parse(self, data: bytes) -> BinlogEvent:
        """Decode the bytes of one whole event, header included."""
        data = bytes(data)
        header = EventHeader()
        header.decode(data)
        body = data[EVENT_HEADER_SIZE:]
        event_len = header.event_size - EVENT_HEADER_SIZE
        if len(body) != event_len:
            raise ValueError(
                f"invalid data size {len(body)} in event {EventType(header.event_type)}, "
                f"less event length {event_len}"
            )
        event = self._parse_event(header, body, data)
        return BinlogEvent(raw_data=data, header=header, event=event)

    def _require_format(self) -> FormatDescriptionEvent:
        if self.format is None:
            raise ValueError("no format description event has been parsed")
        return self.format

    def _table_id_size(self, event_type: int) -> int:
        lengths = self._require_format().event_type_header_lengths
        return 4 if lengths[event_type - 1] == 6 else 6

    def _new_event(self, header: EventHeader, event_type: EventType):
        if event_type == EventType.ROTATE_EVENT:
            return RotateEvent()
        if self.raw_mode:
            return GenericEvent()
        if event_type == EventType.TABLE_MAP_EVENT:
            return TableMapEvent(
                flavor=self.flavor, table_id_size=self._table_id_size(event_type)
            )
        if event_type in _ROWS_EVENTS:
            version, need_bitmap2 = _ROWS_EVENTS[event_type]
            return RowsEvent(
                version=version,
                table_id_size=self._table_id_size(event_type),
                tables=self.tables,
                need_bitmap2=need_bitmap2,
                parse_time=self.parse_time,
                timestamp_string_location=self.timestamp_string_location,
                use_decimal=self.use_decimal,
                ignore_json_decode_err=self.ignore_json_decode_err,
            )
        if event_type == EventType.MARIADB_GTID_EVENT:
            event = MariadbGTIDEvent()
            event.gtid.server_id = header.server_id
            return event
        factory = _SIMPLE_EVENTS.get(event_type, GenericEvent)
        return factory()

    def _parse_event(self, header: EventHeader, data: bytes, raw: bytes):
        event_type = EventType(header.event_type)
        if event_type == EventType.FORMAT_DESCRIPTION_EVENT:
            self.format = FormatDescriptionEvent()
            event = self.format
        else:
            if (
                self.format is not None
                and self.format.checksum_algorithm == BINLOG_CHECKSUM_ALG_CRC32
            ):
                self._verify_crc32_checksum(raw)
                data = data[: len(data) - BINLOG_CHECKSUM_LENGTH]
            event = self._new_event(header, event_type)

        try:
            event.decode(data)
        except _DECODE_ERRORS as exc:
            raise EventError(header, str(exc), data) from exc

        if isinstance(event, TableMapEvent):
            self.tables[event.table_id] = event
        elif isinstance(event, RowsEvent) and event.flags & ROWS_EVENT_STMT_END_FLAG:
            # Table ids are only valid within a statement.
            self.tables = {}
        return event

    def _verify_crc32_checksum(self, raw: bytes) -> None:
        if not self.verify_checksum:
            return
        body = raw[: len(raw) - BINLOG_CHECKSUM_LENGTH]
        expected = raw[len(raw) - BINLOG_CHECKSUM_LENGTH :]
        computed = zlib.crc32(body).to_bytes(BINLOG_CHECKSUM_LENGTH, "little")
        if expected != computed:
            raise ChecksumMismatchError()


__all__ = ["BinlogParser", "ChecksumMismatchError"]