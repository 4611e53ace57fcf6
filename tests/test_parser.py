import io
import struct
import zlib

import pytest

from binlogkit.constants import BINLOG_FILE_HEADER, EventType
from binlogkit.events import EventError, RotateEvent
from binlogkit.generic import GenericEvent
from binlogkit.parser import BinlogParser, ChecksumMismatchError
from binlogkit.rows import RowsEvent
from binlogkit.table_map import TableMapEvent

HEADER_LENGTHS = bytes(
    [
        0x38, 0xD, 0x0, 0x8, 0x0, 0x12, 0x0, 0x4, 0x4, 0x4, 0x4, 0x12, 0x0, 0x0,
        0x5C, 0x0, 0x4, 0x1A, 0x8, 0x0, 0x0, 0x0, 0x8, 0x8, 0x8, 0x2, 0x0, 0x0,
        0x0, 0xA, 0xA, 0xA, 0x19, 0x19, 0x0,
    ]
)

STOP_EVENTS = [
    (
        bytes([0x86, 0x4C, 0x9C, 0x5D, 0x03, 0x65, 0x00, 0x00, 0x00, 0x13, 0x00,
               0x00, 0x00, 0x4D, 0x01, 0x00, 0x00, 0x00, 0x00]),
        19,
    ),
    (
        bytes([0x15, 0x50, 0x9C, 0x5D, 0x03, 0x65, 0x00, 0x00, 0x00, 0x17, 0x00,
               0x00, 0x00, 0x59, 0x01, 0x00, 0x00, 0x00, 0x00, 0x7D, 0x82, 0xA8,
               0x50]),
        23,
    ),
]

ROWS_EVENT = bytes(
    [
        0xC1, 0x86, 0x8E, 0x55, 0x1E, 0xA5, 0x14, 0x80, 0xA, 0x55, 0x0, 0x0, 0x0, 0x7, 0xC,
        0xBF, 0xE, 0x0, 0x0, 0x5F, 0x6, 0x3, 0x0, 0x0, 0x0, 0x1, 0x0, 0x2, 0x0, 0xD, 0xFF,
        0x0, 0x0, 0x19, 0x63, 0x7, 0x0, 0xCA, 0x61, 0x5, 0x0, 0x5E, 0xF7, 0xC, 0x0, 0xF5, 0x7,
        0x0, 0x0, 0x1, 0x99, 0x96, 0x76, 0x74, 0xDD, 0x10, 0x0, 0x73, 0x69, 0x67, 0x6E, 0x75, 0x70,
        0x5F, 0x64, 0x62, 0x5F, 0x73, 0x63, 0x72, 0x69, 0x70, 0x74, 0x6, 0x0, 0x73, 0x79, 0x73, 0x74,
        0x65, 0x6D, 0xB1, 0x3C, 0x38, 0xCB,
    ]
)


def _header(event_type, body_len, log_pos=0):
    return struct.pack("<IBIIIH", 0, event_type, 1, 19 + body_len, log_pos, 0)


def _fde(checksum_alg):
    server_version = b"5.6.20-log".ljust(50, b"\0")
    body = (
        struct.pack("<H", 4)
        + server_version
        + struct.pack("<I", 0)
        + bytes([0x13])
        + HEADER_LENGTHS
        + bytes([checksum_alg])
        + b"\0\0\0\0"
    )
    return _header(EventType.FORMAT_DESCRIPTION_EVENT, len(body)) + body


def _parser_with_format(checksum_alg, **kwargs):
    parser = BinlogParser(**kwargs)
    event = parser.parse(_fde(checksum_alg))
    assert event.header.event_type == EventType.FORMAT_DESCRIPTION_EVENT
    return parser


def _tables():
    return {
        0x3065F: TableMapEvent(
            table_id_size=6,
            table_id=0x3065F,
            flags=0x1,
            schema=b"seiumaster",
            table=b"cons_action_speakout_letter",
            column_count=0xD,
            column_type=bytes([0x3, 0x3, 0x3, 0x3, 0x1, 0x12, 0xF, 0xF, 0x12, 0xF, 0xF, 0x3, 0xF]),
            column_meta=[0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x180, 0x180, 0x0, 0x180, 0x180, 0x0, 0x2FD],
            null_bitmap=bytes([0xE0, 0x17]),
        ),
        0x16C36B: TableMapEvent(
            table_id_size=6,
            table_id=0x16C36B,
            flags=0x1,
            schema=b"acp",
            table=b"stg_mailing_recipient_click2",
            column_count=0xE,
            column_type=bytes([0x8, 0x8, 0x3, 0x3, 0x2, 0x2, 0xF, 0x12, 0xF, 0xF, 0x12, 0xF, 0xF, 0xF]),
            column_meta=[0x0, 0x0, 0x0, 0x0, 0x0, 0x0, 0x2D, 0x0, 0x180, 0x180, 0x0, 0x180, 0x180, 0x2FD],
            null_bitmap=bytes([0xBA, 0x3F]),
        ),
    }


def test_index_out_of_range_rows_event_parses():
    parser = _parser_with_format(1)
    parser.tables = _tables()
    event = parser.parse(ROWS_EVENT)
    assert isinstance(event.event, RowsEvent)
    assert event.event.table_id == 0x3065F
    assert event.event.rows[0][6] == "signup_db_script"
    assert event.event.rows[0][7] == "system"
    # The statement-end flag clears the table map cache.
    assert parser.tables == {}


@pytest.mark.parametrize("data,size", STOP_EVENTS)
def test_parse_single_event_stop(data, size):
    parser = _parser_with_format(0)
    seen = []
    done = parser.parse_single_event(io.BytesIO(data), seen.append)
    assert done is False
    assert len(seen) == 1
    assert seen[0].header.event_type == EventType.STOP_EVENT
    assert seen[0].header.event_size == size


@pytest.mark.parametrize("data,size", STOP_EVENTS)
def test_parse_stop(data, size):
    parser = _parser_with_format(0)
    event = parser.parse(data)
    assert event.header.event_type == EventType.STOP_EVENT
    assert event.header.event_size == size
    assert event.raw_data == data
    assert isinstance(event.event, GenericEvent)


def test_parse_single_event_at_end_of_input():
    parser = _parser_with_format(0)
    seen = []
    assert parser.parse_single_event(io.BytesIO(b""), seen.append) is True
    assert seen == []


def test_parse_truncated_body_raises():
    parser = _parser_with_format(0)
    with pytest.raises(ValueError):
        parser.parse_single_event(io.BytesIO(STOP_EVENTS[1][0][:21]), lambda e: None)


def test_parse_size_mismatch_raises():
    parser = _parser_with_format(0)
    with pytest.raises(ValueError):
        parser.parse(STOP_EVENTS[1][0][:-1])


def test_parse_reader_reads_all_events():
    parser = BinlogParser()
    stream = io.BytesIO(_fde(0) + STOP_EVENTS[0][0] + STOP_EVENTS[1][0])
    seen = []
    parser.parse_reader(stream, seen.append)
    assert [e.header.event_type for e in seen] == [
        EventType.FORMAT_DESCRIPTION_EVENT,
        EventType.STOP_EVENT,
        EventType.STOP_EVENT,
    ]


def test_stop_and_resume():
    parser = BinlogParser()
    seen = []
    parser.stop()
    parser.parse_reader(io.BytesIO(_fde(0) + STOP_EVENTS[0][0]), seen.append)
    assert seen == []
    parser.resume()
    parser.parse_reader(io.BytesIO(_fde(0) + STOP_EVENTS[0][0]), seen.append)
    assert len(seen) == 2


def test_checksum_verification():
    parser = _parser_with_format(1, verify_checksum=True)
    body = b"\x01\x02\x03"
    head = _header(EventType.STOP_EVENT, len(body) + 4)
    good = head + body + zlib.crc32(head + body).to_bytes(4, "little")
    event = parser.parse(good)
    assert event.event.data == body

    bad = head + body + b"\0\0\0\0"
    with pytest.raises(ChecksumMismatchError):
        parser.parse(bad)


def test_raw_mode_keeps_rotate_and_generic():
    parser = _parser_with_format(0, raw_mode=True)
    rotate_body = struct.pack("<Q", 4) + b"mysql-bin.000002"
    rotate = parser.parse(_header(EventType.ROTATE_EVENT, len(rotate_body)) + rotate_body)
    assert isinstance(rotate.event, RotateEvent)
    assert rotate.header.event_type == EventType.ROTATE_EVENT

    xid_body = struct.pack("<Q", 7)
    xid = parser.parse(_header(EventType.XID_EVENT, len(xid_body)) + xid_body)
    assert isinstance(xid.event, GenericEvent)
    assert xid.event.data == xid_body


def test_rows_event_without_table_map_fails():
    parser = _parser_with_format(1)
    with pytest.raises(EventError):
        parser.parse(ROWS_EVENT)


def test_reset_forgets_format():
    parser = _parser_with_format(1)
    parser.tables = _tables()
    parser.reset()
    assert parser.format is None


def test_parse_file(tmp_path):
    path = tmp_path / "binlog.000001"
    fde = _fde(0)
    path.write_bytes(BINLOG_FILE_HEADER + fde + STOP_EVENTS[0][0] + STOP_EVENTS[1][0])
    parser = BinlogParser()
    seen = []
    parser.parse_file(path, 0, seen.append)
    assert [e.header.event_size for e in seen] == [len(fde), 19, 23]

    offset = 4 + len(fde) + len(STOP_EVENTS[0][0])
    seen = []
    BinlogParser().parse_file(path, offset, seen.append)
    assert [e.header.event_type for e in seen] == [
        EventType.FORMAT_DESCRIPTION_EVENT,
        EventType.STOP_EVENT,
    ]
    assert seen[1].header.event_size == 23


def test_parse_file_rejects_bad_magic(tmp_path):
    path = tmp_path / "bad"
    path.write_bytes(b"nope" + STOP_EVENTS[0][0])
    with pytest.raises(ValueError):
        BinlogParser().parse_file(path, 0, lambda e: None)