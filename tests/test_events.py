import io
import struct

import pytest

from binlogkit.constants import (
    BINLOG_CHECKSUM_ALG_CRC32,
    BINLOG_CHECKSUM_ALG_UNDEF,
    EventType,
    IntVarEventType,
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
    MariadbGTID,
    MariadbGTIDEvent,
    MariadbGTIDListEvent,
    PreviousGTIDsEvent,
    QueryEvent,
    RotateEvent,
    XIDEvent,
    calc_version_product,
    split_server_version,
)

SID = bytes.fromhex("00112233445566778899aabbccddeeff")
SID_TEXT = "00112233-4455-6677-8899-aabbccddeeff"

GTID_CASES = [
    (
        b"\x00" + SID
        + b"\x02\x01\x00\x00\x00\x00\x00\x00\x02v\x00\x00\x00\x00\x00\x00\x00w\x00\x00\x00"
        b"\x00\x00\x00\x00\xc1G\x81\x16x\xa0\x85\x00\x00\x00\x00\x00\x00\x00\xfc\xc5\x03"
        b"\x938\x01\x80\x00\x00\x00\x00",
        1583812517644225, 0, 965, 80019, 0,
    ),
    (
        b"\x00" + SID
        + b"\x03\x01\x00\x00\x00\x00\x00\x00\x025\x00\x00\x00\x00\x00\x00\x006\x00\x00\x00"
        b"\x00\x00\x00\x00",
        0, 0, 0, 0, 0,
    ),
    (
        b"\x00" + SID
        + b"w\x00\x00\x00\x00\x00\x00\x00\x02x\x00\x00\x00\x00\x00\x00\x00y\x00\x00\x00\x00"
        b"\x00\x00\x00j0\xb1>x\xa0\x05\xfc\xc3\x03\x938\x01\x00",
        1583813191872618, 1583813191872618, 963, 80019, 80019,
    ),
]


def _dump(obj):
    out = io.StringIO()
    obj.dump(out)
    return out.getvalue()


def test_mariadb_gtid_list_single():
    data = bytes([1, 0, 0, 0, 1, 0, 0, 0, 2, 0, 0, 0, 3, 0, 0, 0, 0, 0, 0, 0])
    ev = MariadbGTIDListEvent()
    ev.decode(data)
    assert len(ev.gtids) == 1
    assert ev.gtids[0] == MariadbGTID(domain_id=1, server_id=2, sequence_number=3)


def test_mariadb_gtid_list_multi():
    data = bytes(
        [3, 0, 0, 0, 1, 0, 0, 0, 2, 0, 0, 0, 3, 0, 0, 0, 0, 0, 0, 0, 4, 0, 0, 0, 5, 0, 0, 0,
         6, 0, 0, 0, 0, 0, 0, 0, 7, 0, 0, 0, 8, 0, 0, 0, 9, 0, 0, 0, 0, 0, 0, 0]
    )
    ev = MariadbGTIDListEvent()
    ev.decode(data)
    assert len(ev.gtids) == 3
    for i, gtid in enumerate(ev.gtids):
        assert gtid.domain_id == 1 + 3 * i
        assert gtid.server_id == 2 + 3 * i
        assert gtid.sequence_number == 3 + 3 * i
    assert "Lists: [1-2-3 4-5-6 7-8-9]" in _dump(ev)


def test_mariadb_gtid_event():
    data = bytes(
        [1, 2, 3, 4, 5, 6, 7, 8, 0x2A, 1, 0x3B, 4, 0xFF,
         0x10, 0x11, 0x12, 0x13, 0x14, 0x15, 0x16, 0x17]
    )
    ev = MariadbGTIDEvent()
    ev.decode(data)
    assert ev.gtid.sequence_number == 0x0807060504030201
    assert ev.gtid.domain_id == 0x043B012A
    assert ev.flags == 0xFF
    assert ev.is_ddl() is True
    assert ev.is_standalone() is True
    assert ev.is_group_commit() is True
    assert ev.commit_id == 0x1716151413121110


def test_mariadb_gtid_event_without_group_commit_keeps_server_id():
    ev = MariadbGTIDEvent()
    ev.gtid.server_id = 7
    ev.decode(struct.pack("<QIB", 9, 2, 0x01))
    assert ev.gtid == MariadbGTID(domain_id=2, server_id=7, sequence_number=9)
    assert ev.commit_id == 0
    assert ev.is_group_commit() is False
    assert ev.is_ddl() is False
    assert "GTID: 2-7-9" in _dump(ev)


@pytest.mark.parametrize("data,imm_ts,orig_ts,tx_len,imm_ver,orig_ver", GTID_CASES)
def test_gtid_event_mysql8_fields(data, imm_ts, orig_ts, tx_len, imm_ver, orig_ver):
    ev = GTIDEvent()
    ev.decode(data)
    assert ev.immediate_commit_timestamp == imm_ts
    assert ev.original_commit_timestamp == orig_ts
    assert ev.transaction_length == tx_len
    assert ev.immediate_server_version == imm_ver
    assert ev.original_server_version == orig_ver
    assert ev.sid == SID


def test_gtid_event_logical_clock():
    ev = GTIDEvent()
    ev.decode(GTID_CASES[1][0])
    assert ev.gno == 259
    assert ev.last_committed == 0x35
    assert ev.sequence_number == 0x36
    assert ev.immediate_commit_time() is None


def test_gtid_event_commit_time_round_trip():
    ev = GTIDEvent()
    ev.decode(GTID_CASES[2][0])
    moment = ev.immediate_commit_time()
    assert round(moment.timestamp() * 1_000_000) == 1583813191872618
    assert ev.original_commit_time() == moment


def test_gtid_event_dump():
    ev = GTIDEvent()
    ev.decode(GTID_CASES[1][0])
    text = _dump(ev)
    assert f"GTID_NEXT: {SID_TEXT}:259\n" in text
    assert "Immediate commmit timestamp: 0 (<n/a>)\n" in text
    assert text.endswith("\n\n")


def test_int_var_event():
    ev = IntVarEvent()
    ev.decode(bytes([1, 13, 0, 0, 0, 0, 0, 0, 0]))
    assert ev.type == IntVarEventType.LAST_INSERT_ID
    assert ev.value == 13

    ev = IntVarEvent()
    ev.decode(bytes([2, 23, 0, 0, 0, 0, 0, 0, 0]))
    assert ev.type == IntVarEventType.INSERT_ID
    assert ev.value == 23
    assert _dump(ev) == "Type: 2\nValue: 23\n"


def _header_bytes(event_type, size, log_pos=120):
    return struct.pack("<IBIIIH", 1600000000, event_type, 5, size, log_pos, 0)


def test_event_header_decode():
    header = EventHeader()
    header.decode(_header_bytes(2, 40))
    assert header.timestamp == 1600000000
    assert header.event_type == EventType.QUERY_EVENT
    assert header.server_id == 5
    assert header.event_size == 40
    assert header.log_pos == 120
    text = _dump(header)
    assert text.startswith("=== QueryEvent ===\n")
    assert "Log position: 120\n" in text
    assert "Event size: 40\n" in text


def test_event_header_too_short():
    with pytest.raises(ValueError):
        EventHeader().decode(b"\x00" * 18)


def test_event_header_event_size_too_small():
    with pytest.raises(ValueError):
        EventHeader().decode(_header_bytes(3, 18))


def test_split_server_version():
    assert split_server_version("5.6.20-log") == [5, 6, 20]
    assert split_server_version("5.6") == [0, 0, 0]
    # A patch part with no trailing suffix yields zero.
    assert split_server_version("5.6.20") == [5, 6, 0]


def test_calc_version_product_orders_versions():
    assert calc_version_product("5.6.20-log") > calc_version_product("5.6.1-log")
    assert calc_version_product("8.0.19-x") > calc_version_product("5.7.30-x")
    assert calc_version_product("bad") == 0


def _fde_body(server, tail):
    return (
        struct.pack("<H", 4)
        + server.encode().ljust(50, b"\x00")
        + struct.pack("<I", 0)
        + bytes([19])
        + tail
    )


def test_format_description_with_checksum():
    ev = FormatDescriptionEvent()
    ev.decode(_fde_body("5.6.20-log", b"\x38\x0d\x00" + b"\x01" + b"\xaa\xbb\xcc\xdd"))
    assert ev.version == 4
    assert ev.checksum_algorithm == BINLOG_CHECKSUM_ALG_CRC32
    assert ev.event_type_header_lengths == b"\x38\x0d\x00"
    assert len(ev.server_version) == 50
    assert "Checksum algorithm: 1\n" in _dump(ev)


def test_format_description_old_server():
    ev = FormatDescriptionEvent()
    ev.decode(_fde_body("5.5.30-log", b"\x38\x0d\x00\x08"))
    assert ev.checksum_algorithm == BINLOG_CHECKSUM_ALG_UNDEF
    assert ev.event_type_header_lengths == b"\x38\x0d\x00\x08"


def test_format_description_mariadb_threshold():
    ev = FormatDescriptionEvent()
    ev.decode(_fde_body("5.3.12-MariaDB", b"\x38\x0d" + b"\x01" + b"\x00" * 4))
    assert ev.checksum_algorithm == BINLOG_CHECKSUM_ALG_CRC32
    assert ev.event_type_header_lengths == b"\x38\x0d"


def test_format_description_bad_header_length():
    body = bytearray(_fde_body("5.6.20-log", b"\x00" * 5))
    body[56] = 13
    with pytest.raises(ValueError):
        FormatDescriptionEvent().decode(bytes(body))


def test_rotate_event():
    ev = RotateEvent()
    ev.decode(struct.pack("<Q", 4) + b"mysql-bin.000002")
    assert ev.position == 4
    assert ev.next_log_name == b"mysql-bin.000002"
    assert "Next log name: mysql-bin.000002\n" in _dump(ev)


def test_previous_gtids_event():
    data = (
        struct.pack("<Q", 1)
        + SID
        + struct.pack("<Q", 2)
        + struct.pack("<QQ", 1, 6)
        + struct.pack("<QQ", 10, 11)
    )
    ev = PreviousGTIDsEvent()
    ev.decode(data)
    assert ev.gtid_sets == f"{SID_TEXT}:1-5:10"
    assert _dump(ev) == f"Previous GTID Event: {SID_TEXT}:1-5:10\n\n"


def test_previous_gtids_event_truncated():
    with pytest.raises(ValueError):
        PreviousGTIDsEvent().decode(struct.pack("<Q", 1) + SID[:4])


def test_xid_event():
    ev = XIDEvent()
    ev.decode(struct.pack("<Q", 77))
    assert ev.xid == 77
    assert _dump(ev) == "XID: 77\n\n"
    ev.gset = "a-b-c"
    assert "GTIDSet: a-b-c\n" in _dump(ev)


def test_query_event():
    data = struct.pack("<IIBHH", 1, 2, 4, 0, 2) + b"\x01\x02" + b"test" + b"\x00" + b"BEGIN"
    ev = QueryEvent()
    ev.decode(data)
    assert ev.slave_proxy_id == 1
    assert ev.execution_time == 2
    assert ev.error_code == 0
    assert ev.status_vars == b"\x01\x02"
    assert ev.schema == b"test"
    assert ev.query == b"BEGIN"
    text = _dump(ev)
    assert "Schema: test\n" in text
    assert "Query: BEGIN\n" in text


def test_begin_load_query_event():
    ev = BeginLoadQueryEvent()
    ev.decode(struct.pack("<I", 9) + b"a,b\n")
    assert ev.file_id == 9
    assert ev.block_data == b"a,b\n"


def test_execute_load_query_event():
    data = struct.pack("<IIBHHIIIB", 1, 2, 3, 4, 5, 6, 7, 8, 9)
    ev = ExecuteLoadQueryEvent()
    ev.decode(data)
    assert (ev.slave_proxy_id, ev.execution_time, ev.schema_length, ev.error_code) == (1, 2, 3, 4)
    assert (ev.status_vars, ev.file_id, ev.start_pos, ev.end_pos) == (5, 6, 7, 8)
    assert ev.dup_handling_flags == 9
    assert "Dup handling flags: 9\n" in _dump(ev)


def test_execute_load_query_event_truncated():
    with pytest.raises(ValueError):
        ExecuteLoadQueryEvent().decode(b"\x00" * 10)


def test_mariadb_annotate_and_checkpoint():
    annotate = MariadbAnnotateRowsEvent()
    annotate.decode(b"INSERT INTO t VALUES (1)")
    assert annotate.query == b"INSERT INTO t VALUES (1)"
    checkpoint = MariadbBinlogCheckPointEvent()
    checkpoint.decode(b"mysql-bin.000001")
    assert _dump(checkpoint) == "Info: mysql-bin.000001\n\n"


def test_binlog_event_dump_combines_header_and_body():
    header = EventHeader()
    header.decode(_header_bytes(16, 27))
    body = XIDEvent(xid=5)
    event = BinlogEvent(raw_data=b"", header=header, event=body)
    text = _dump(event)
    assert text.startswith("=== XIDEvent ===\n")
    assert text.endswith("XID: 5\n\n")


def test_event_error_message():
    err = EventError(None, "boom", b"\x01")
    assert err.err == "boom"
    assert str(err) == "Header None, Data b'\\x01', Err: boom"