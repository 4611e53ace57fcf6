# binlogkit

binlogkit decodes MySQL and MariaDB binary log events. It turns raw event
bytes into Python objects: format descriptions, rotations, queries,
transaction IDs, GTIDs, table maps and decoded row images, including JSON
columns. It also frames MySQL client/server protocol packets over a socket.

## Installation

```
pip install binlogkit
```

To run the test suite:

```
pip install "binlogkit[test]"
pytest
```

## Parsing a binlog file

`binlogkit.parser.BinlogParser.parse_file` checks the four-byte `\xfebin`
file header and then hands each decoded event to a callback:

```python
import sys

from binlogkit.parser import BinlogParser


def on_event(event):
    event.dump(sys.stdout)


parser = BinlogParser()
parser.parse_file("mysql-bin.000001", 4, on_event)
```

When the offset lies past the start of the file, the format description
event at position 4 is read first, so the events after it can be decoded.

Every event the callback receives is a `BinlogEvent` with three parts:

- `raw_data`: the exact bytes read, header and checksum included.
- `header`: an `EventHeader` with the timestamp, event type, server id,
  event size, log position and flags.
- `event`: the decoded body, such as a `QueryEvent`, `RotateEvent`,
  `GTIDEvent`, `TableMapEvent` or `RowsEvent`.

Event types without a decoder come back as a `GenericEvent` holding the body
bytes.

`BinlogParser` takes these keyword options:

- `flavor`: `"mysql"` or `"mariadb"`; affects which table map columns count
  as character columns.
- `raw_mode`: decode only format description and rotate events; everything
  else becomes a `GenericEvent`.
- `parse_time`: return `datetime` objects for `TIMESTAMP` and `DATETIME`
  columns instead of text.
- `timestamp_string_location`: a `tzinfo` used when `TIMESTAMP` values are
  turned into text.
- `use_decimal`: return `DECIMAL` columns as `decimal.Decimal` instead of text.
- `ignore_json_decode_err`: return `null` for JSON values whose declared size
  is larger than the data, instead of raising.
- `verify_checksum`: check the CRC32 of each event when the format
  description announces CRC32; a mismatch raises `ChecksumMismatchError`.

## Parsing single events

`BinlogParser.parse` decodes one whole event from bytes you already hold.
Feed it the `FORMAT_DESCRIPTION_EVENT` first: that event sets the checksum
algorithm and the header lengths that table map and row events depend on,
and a new one replaces the old. `reset()` forgets it.

`parse_single_event` reads one event from a binary file object and returns
`True` at the end of the input. `parse_reader` keeps reading events until the
input ends or `stop()` is called; `resume()` undoes `stop()`.

A body that cannot be decoded raises `binlogkit.events.EventError`, which
carries the header, the message and the body bytes.

## Row events

Table map events are remembered by table id, and the row events that follow
are decoded against them, column by column. A row event for a table id that
was never mapped raises `MissingTableMapEventError` when no tables are known
at all. The table map list is cleared after the last row event of a
statement.

The value decoders handle integers, `DECIMAL`, `FLOAT`/`DOUBLE`, `BIT`,
`ENUM`/`SET`, `YEAR`, `DATE`, old and fractional `TIME`, `DATETIME` and
`TIMESTAMP`, strings, blobs, geometry (as raw bytes) and binary JSON, which
comes back as compact JSON text with sorted keys. Zero dates and dates before
the Unix epoch come back as text. The decoders are also usable on their own,
in `binlogkit.values` and `binlogkit.json_binary.decode_json_binary`.

`TableMapEvent` reads the optional metadata written by newer servers: column
names, signedness, collations, enum and set values, geometry types and
primary keys. Helpers such as `unsigned_map()`, `collation_map()`,
`enum_str_value_map()` and `nullable_map()` map column indexes to that
information, or return `None` when it was not logged.

## Handing events between threads

`binlogkit.streamer.BinlogStreamer` is a bounded, thread-safe queue between
a thread that produces events and one that consumes them:

```python
from binlogkit.streamer import BinlogStreamer

streamer = BinlogStreamer()
streamer.put("first event")
print(streamer.get_event(timeout=2.0))
streamer.close()
```

`get_event` raises `TimeoutError` if nothing arrives in time. After `close()`
it raises `SyncClosedError` (or the error passed to `close`) once; every
later call raises `NeedSyncAgainError`. `get_event_with_start_time` returns
`None` for events whose header timestamp is older than the given time, and
`dump_events` empties the queue.

## Packet framing

`binlogkit.packet.Conn` wraps a connected socket and implements the MySQL
packet layer:

- 3-byte little-endian length headers and 1-byte sequence numbers.
- Splitting and joining of payloads of `2**24 - 1` bytes or more.
- Clear-text, auth-switch and RSA public-key (OAEP with SHA-1) authentication
  packets.

A broken connection or a short read raises `BadConnectionError`; a packet
with an unexpected sequence number raises `ValueError`.

## What binlogkit does not do

binlogkit does not connect to a server as a replica: it has no
handshake or login, does not register itself or request a binlog dump, and
has no reconnect logic or semi-sync acknowledgements. It does not back up
binlog files and has no command-line tool. Feed it binlog files, or event
bytes you have obtained yourself.