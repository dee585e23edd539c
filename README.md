# wire

Building blocks for a replicated, Raft-style cluster node, usable on their own:

- **`wire.snapshot`** – an on-disk snapshot store.
  - `wire.snapshot.store.Store` keeps snapshots in a directory. `create()` returns a
    `LockingSink` that holds the store's write lock until it is closed or cancelled;
    `open()` returns the metadata and a `LockingSnapshot` that holds a read lock
    until closed. A conflicting read or write raises `StoreLockedError` instead of
    blocking. `list()`, `stats()`, `full_needed()`, `set_full_needed()` and `reap()`
    report on and tidy the directory. Opening a non-empty directory removes data
    left behind by interrupted writes.
  - `wire.snapshot.sink.Sink` writes data into a temporary directory and renames it
    into place on `close()`; an incoming snapshot must come later (by term, index,
    then ID) than the newest one already stored, or `ValueError` is raised.
  - `wire.snapshot.meta` holds `SnapshotMeta` (stored as `meta.json`), directory
    helpers such as `get_snapshots()`, `latest_index_term()` and
    `remove_all_tmp_snapshot_data()`, and module counters via `get_stats()` /
    `reset_stats()`.
  - `wire.snapshot.upgrader.upgrade_7_to_8(old, new, logger)` converts a legacy
    snapshot directory (whose `state.bin` holds a 16-byte header followed by gzip
    data) into the current layout and removes the old directory; failures raise
    `UpgradeError`.
- **`wire.tcp`** – inter-node networking:
  - `wire.tcp.dialer.Dialer` connects to `"host:port"`, optionally over TLS, and
    sends a one-byte header first.
  - `wire.tcp.mux.Mux` accepts connections on one listening socket, reads the
    header byte and hands each connection to the `MuxListener` registered for it
    with `listen()`. `new_tls_mux()` and `new_mutual_tls_mux()` build TLS variants.
    `Layer` pairs a listener with a `Dialer`.
  - `wire.tcp.transport.Transport` dials and accepts through a layer.
  - `wire.tcp.network.NetworkReporter` describes the host's interfaces (using
    `psutil`).
- **`wire.gzipstream`** – streaming `Compressor` and `Decompressor` that wrap any
  object with a `read()` method.
- **`wire.humanize`** – byte counts to and from human-readable text, and
  `dir_size()` for the total size of a directory tree.
- **`wire.name_address`** – `NameAddress`, a plain `"host:port"` string presented as
  a TCP address.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Examples

Human-readable sizes:

```python
from wire.humanize import format_bytes, format_ibytes, parse_bytes

format_bytes(82854982)    # '83 MB'
format_ibytes(82854982)   # '79 MiB'
parse_bytes("42 MB")      # 42000000
parse_bytes("42 mib")     # 44040192
```

Streaming compression:

```python
import gzip
import io

from wire.gzipstream import Compressor, Decompressor

data = b"This is a test string, xxxxx -- xxxxxx -- test should compress"
compressor = Compressor(io.BytesIO(data), 65536)
compressed = compressor.read(65536)
assert gzip.decompress(compressed) == data

decompressor = Decompressor(io.BytesIO(compressed))
assert decompressor.read(1024) == data
assert decompressor.read(1024) == b""
```

Routing connections by header byte:

```python
import socket
import threading

from wire.tcp.dialer import Dialer
from wire.tcp.mux import Mux

server = socket.create_server(("127.0.0.1", 0))
mux = Mux(server)
consensus = mux.listen(1)
threading.Thread(target=mux.serve, daemon=True).start()

client = Dialer(1).dial(mux.stats()["addr"], 5.0)
conn = consensus.accept()     # the connection, with the header byte already read
client.sendall(b"hello")
assert conn.recv(5) == b"hello"

server.close()                # serve() then stops and its listeners are closed
```

Reading a snapshot store:

```python
from wire.snapshot.store import Store

store = Store("/var/lib/node/wsnapshots")
for meta in store.list():                  # at most the newest snapshot
    print(meta.id, meta.index, meta.term)
    meta, reader = store.open(meta.id)     # reads "<dir>/<id>.db"
    with reader:
        data = reader.read()
print(store.stats())                       # {'dir': ..., 'snapshots': [...], 'db_path': ...}
```

Upgrading a legacy snapshot directory:

```python
import logging

from wire.snapshot.upgrader import upgrade_7_to_8

upgrade_7_to_8("/var/lib/node/snapshots", "/var/lib/node/wsnapshots",
               logging.getLogger("upgrade"))
```

## What it does not do

- There is no consensus engine, no cluster node and no command-line program: the
  package supplies parts such a node is built from.
- Snapshot data is stored as opaque bytes; nothing here opens, checks or replays a
  database. Closing a sink records the size of the newest snapshot's database file,
  `<store dir>/<snapshot id>.db`, in its metadata, so that file must already exist
  there, put in place by the caller.