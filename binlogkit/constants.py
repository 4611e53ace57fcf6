"""Protocol constants for the binary log format and replication stream."""

from __future__ import annotations

from enum import IntEnum

MIN_BINLOG_VERSION = 4

# Every binlog file starts with these four bytes: 0xfe 'b' 'i' 'n'.
BINLOG_FILE_HEADER = b"\xfebin"

SEMI_SYNC_INDICATOR = 0xEF

MYSQL_FLAVOR = "mysql"
MARIADB_FLAVOR = "mariadb"

MAX_PAYLOAD_LEN = (1 << 24) - 1

EVENT_HEADER_SIZE = 19
SID_LENGTH = 16
LOGICAL_TIMESTAMP_TYPE_CODE = 2
PART_LOGICAL_TIMESTAMP_LENGTH = 8
BINLOG_CHECKSUM_LENGTH = 4
UNDEFINED_SERVER_VER = 999999

LOG_EVENT_BINLOG_IN_USE_F = 0x0001
LOG_EVENT_FORCED_ROTATE_F = 0x0002
LOG_EVENT_THREAD_SPECIFIC_F = 0x0004
LOG_EVENT_SUPPRESS_USE_F = 0x0008
LOG_EVENT_UPDATE_TABLE_MAP_VERSION_F = 0x0010
LOG_EVENT_ARTIFICIAL_F = 0x0020
LOG_EVENT_RELAY_LOG_F = 0x0040
LOG_EVENT_IGNORABLE_F = 0x0080
LOG_EVENT_NO_FILTER_F = 0x0100
LOG_EVENT_MTS_ISOLATE_F = 0x0200

BINLOG_DUMP_NEVER_STOP = 0x00
BINLOG_DUMP_NON_BLOCK = 0x01
BINLOG_SEND_ANNOTATE_ROWS_EVENT = 0x02
BINLOG_THROUGH_POSITION = 0x02
BINLOG_THROUGH_GTID = 0x04

BINLOG_ROW_IMAGE_FULL = "FULL"
BINLOG_ROW_IMAGE_MINIMAL = "MINIMAL"
BINLOG_ROW_IMAGE_NOBLOB = "NOBLOB"

BINLOG_MARIADB_FL_STANDALONE = 1 << 0
BINLOG_MARIADB_FL_GROUP_COMMIT_ID = 1 << 1
BINLOG_MARIADB_FL_TRANSACTIONAL = 1 << 2
BINLOG_MARIADB_FL_ALLOW_PARALLEL = 1 << 3
BINLOG_MARIADB_FL_WAITED = 1 << 4
BINLOG_MARIADB_FL_DDL = 1 << 5

BINLOG_CHECKSUM_ALG_OFF = 0
BINLOG_CHECKSUM_ALG_CRC32 = 1
BINLOG_CHECKSUM_ALG_UNDEF = 255

TABLE_MAP_OPT_META_SIGNEDNESS = 1
TABLE_MAP_OPT_META_DEFAULT_CHARSET = 2
TABLE_MAP_OPT_META_COLUMN_CHARSET = 3
TABLE_MAP_OPT_META_COLUMN_NAME = 4
TABLE_MAP_OPT_META_SET_STR_VALUE = 5
TABLE_MAP_OPT_META_ENUM_STR_VALUE = 6
TABLE_MAP_OPT_META_GEOMETRY_TYPE = 7
TABLE_MAP_OPT_META_SIMPLE_PRIMARY_KEY = 8
TABLE_MAP_OPT_META_PRIMARY_KEY_WITH_PREFIX = 9
TABLE_MAP_OPT_META_ENUM_AND_SET_DEFAULT_CHARSET = 10
TABLE_MAP_OPT_META_ENUM_AND_SET_COLUMN_CHARSET = 11

EXISTING = 1

VAL_BYTES = 1
VAL_INT32 = 2
VAL_INT64 = 3
VAL_INT8 = 4
VAL_INT16 = 5
VAL_STRING = 6
VAL_FLOAT32 = 7
VAL_FLOAT64 = 8
VAL_UINT32 = 9
VAL_UINT64 = 10
VAL_TIME = 11
VAL_INT = 12


class EventType(IntEnum):
    """Binlog event type codes; unknown codes become pseudo-members."""

    UNKNOWN_EVENT = 0
    START_EVENT_V3 = 1
    QUERY_EVENT = 2
    STOP_EVENT = 3
    ROTATE_EVENT = 4
    INTVAR_EVENT = 5
    LOAD_EVENT = 6
    SLAVE_EVENT = 7
    CREATE_FILE_EVENT = 8
    APPEND_BLOCK_EVENT = 9
    EXEC_LOAD_EVENT = 10
    DELETE_FILE_EVENT = 11
    NEW_LOAD_EVENT = 12
    RAND_EVENT = 13
    USER_VAR_EVENT = 14
    FORMAT_DESCRIPTION_EVENT = 15
    XID_EVENT = 16
    BEGIN_LOAD_QUERY_EVENT = 17
    EXECUTE_LOAD_QUERY_EVENT = 18
    TABLE_MAP_EVENT = 19
    WRITE_ROWS_EVENTv0 = 20
    UPDATE_ROWS_EVENTv0 = 21
    DELETE_ROWS_EVENTv0 = 22
    WRITE_ROWS_EVENTv1 = 23
    UPDATE_ROWS_EVENTv1 = 24
    DELETE_ROWS_EVENTv1 = 25
    INCIDENT_EVENT = 26
    HEARTBEAT_EVENT = 27
    IGNORABLE_EVENT = 28
    ROWS_QUERY_EVENT = 29
    WRITE_ROWS_EVENTv2 = 30
    UPDATE_ROWS_EVENTv2 = 31
    DELETE_ROWS_EVENTv2 = 32
    GTID_EVENT = 33
    ANONYMOUS_GTID_EVENT = 34
    PREVIOUS_GTIDS_EVENT = 35
    TRANSACTION_CONTEXT_EVENT = 36
    VIEW_CHANGE_EVENT = 37
    XA_PREPARE_LOG_EVENT = 38

    MARIADB_ANNOTATE_ROWS_EVENT = 160
    MARIADB_BINLOG_CHECKPOINT_EVENT = 161
    MARIADB_GTID_EVENT = 162
    MARIADB_GTID_LIST_EVENT = 163

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, int) and 0 <= value <= 0xFF:
            member = int.__new__(cls, value)
            member._name_ = f"EVENT_{value}"
            member._value_ = value
            return member
        return None

    def __str__(self) -> str:
        return _EVENT_NAMES.get(int(self), "UnknownEvent")

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)


_EVENT_NAMES = {
    0: "UnknownEvent",
    1: "StartEventV3",
    2: "QueryEvent",
    3: "StopEvent",
    4: "RotateEvent",
    5: "IntVarEvent",
    6: "LoadEvent",
    7: "SlaveEvent",
    8: "CreateFileEvent",
    9: "AppendBlockEvent",
    10: "ExecLoadEvent",
    11: "DeleteFileEvent",
    12: "NewLoadEvent",
    13: "RandEvent",
    14: "UserVarEvent",
    15: "FormatDescriptionEvent",
    16: "XIDEvent",
    17: "BeginLoadQueryEvent",
    18: "ExectueLoadQueryEvent",
    19: "TableMapEvent",
    20: "WriteRowsEventV0",
    21: "UpdateRowsEventV0",
    22: "DeleteRowsEventV0",
    23: "WriteRowsEventV1",
    24: "UpdateRowsEventV1",
    25: "DeleteRowsEventV1",
    26: "IncidentEvent",
    27: "HeartbeatEvent",
    28: "IgnorableEvent",
    29: "RowsQueryEvent",
    30: "WriteRowsEventV2",
    31: "UpdateRowsEventV2",
    32: "DeleteRowsEventV2",
    33: "GTIDEvent",
    34: "AnonymousGTIDEvent",
    35: "PreviousGTIDsEvent",
    36: "TransactionContextEvent",
    37: "ViewChangeEvent",
    38: "XAPrepareLogEvent",
    160: "MariadbAnnotateRowsEvent",
    161: "MariadbBinLogCheckPointEvent",
    162: "MariadbGTIDEvent",
    163: "MariadbGTIDListEvent",
}


class IntVarEventType(IntEnum):
    """Kinds of value carried by an INTVAR event."""

    INVALID = 0
    LAST_INSERT_ID = 1
    INSERT_ID = 2


class FieldType(IntEnum):
    """Column type codes as they appear in table map events."""

    DECIMAL = 0
    TINY = 1
    SHORT = 2
    LONG = 3
    FLOAT = 4
    DOUBLE = 5
    NULL = 6
    TIMESTAMP = 7
    LONGLONG = 8
    INT24 = 9
    DATE = 10
    TIME = 11
    DATETIME = 12
    YEAR = 13
    NEWDATE = 14
    VARCHAR = 15
    BIT = 16
    TIMESTAMP2 = 17
    DATETIME2 = 18
    TIME2 = 19
    JSON = 245
    NEWDECIMAL = 246
    ENUM = 247
    SET = 248
    TINY_BLOB = 249
    MEDIUM_BLOB = 250
    LONG_BLOB = 251
    BLOB = 252
    VAR_STRING = 253
    STRING = 254
    GEOMETRY = 255