import os

import pytest

from wire.snapshot.meta import (
    SNAPSHOT_CREATE_MRSW_FAIL,
    get_stats,
    read_meta,
    reset_stats,
)
from wire.snapshot.store import Store, StoreLockedError


def _write_snapshot(store, term, index, db_data=b"database"):
    sink = store.create(1, index, term, None, 0, None)
    sink.write(b"")
    with open(os.path.join(store.dir(), sink.id() + ".db"), "wb") as fh:
        fh.write(db_data)
    sink.close()
    return sink.id()


def test_new_store_is_empty(tmp_path):
    path = str(tmp_path / "snaps")
    store = Store(path)
    assert os.path.isdir(path)
    assert store.dir() == path
    assert store.list() == []
    assert store.full_needed() is True
    assert store.stats() == {"dir": path, "snapshots": [], "db_path": ""}


def test_create_and_close_snapshot(tmp_path):
    store = Store(str(tmp_path))
    snap_id = _write_snapshot(store, 2, 18, b"hello db")
    listed = store.list()
    assert [m.id for m in listed] == [snap_id]
    assert listed[0].term == 2
    assert listed[0].index == 18
    assert listed[0].size == len(b"hello db")
    assert store.full_needed() is False
    stats = store.stats()
    assert stats["snapshots"] == [snap_id]
    assert stats["db_path"] == os.path.join(str(tmp_path), snap_id + ".db")


def test_snapshot_id_starts_with_term_and_index(tmp_path):
    store = Store(str(tmp_path))
    sink = store.create(1, 18, 2, None, 0, None)
    try:
        assert sink.id().startswith("2-18-")
    finally:
        sink.cancel()


def test_open_reads_db_data(tmp_path):
    store = Store(str(tmp_path))
    snap_id = _write_snapshot(store, 1, 5, b"some db bytes")
    meta, reader = store.open(snap_id)
    with reader:
        assert reader.read() == b"some db bytes"
    assert meta.id == snap_id


def test_only_one_sink_at_a_time(tmp_path):
    reset_stats()
    store = Store(str(tmp_path))
    sink = store.create(1, 1, 1, None, 0, None)
    with pytest.raises(StoreLockedError):
        store.create(1, 2, 1, None, 0, None)
    assert get_stats()[SNAPSHOT_CREATE_MRSW_FAIL] == 1
    sink.cancel()
    second = store.create(1, 2, 1, None, 0, None)
    second.cancel()
    assert store.list() == []


def test_open_blocked_while_writing_and_create_blocked_while_reading(tmp_path):
    store = Store(str(tmp_path))
    snap_id = _write_snapshot(store, 1, 1)
    sink = store.create(1, 2, 1, None, 0, None)
    with pytest.raises(StoreLockedError):
        store.open(snap_id)
    sink.cancel()

    _, reader = store.open(snap_id)
    with pytest.raises(StoreLockedError):
        store.create(1, 3, 1, None, 0, None)
    reader.close()
    reader.close()
    store.create(1, 3, 1, None, 0, None).cancel()
    assert [m.id for m in store.list()] == [snap_id]


def test_cancel_removes_temporary_data(tmp_path):
    store = Store(str(tmp_path))
    sink = store.create(1, 1, 1, None, 0, None)
    sink.write(b"data")
    sink.cancel()
    assert os.listdir(str(tmp_path)) == []


def test_close_without_db_fails_but_releases_lock(tmp_path):
    store = Store(str(tmp_path))
    sink = store.create(1, 1, 1, None, 0, None)
    with pytest.raises(FileNotFoundError):
        sink.close()
    sink.close()
    other = store.create(1, 2, 1, None, 0, None)
    assert other.id() != sink.id()
    other.cancel()


def test_newer_snapshot_reaps_older(tmp_path):
    store = Store(str(tmp_path))
    first = _write_snapshot(store, 1, 1, b"first")
    second = _write_snapshot(store, 2, 1, b"second")
    assert [m.id for m in store.list()] == [second]
    assert store.stats()["snapshots"] == [second]
    assert not any(name.startswith(first) for name in os.listdir(str(tmp_path)))
    _, reader = store.open(second)
    with reader:
        assert reader.read() == b"second"


def test_older_snapshot_rejected(tmp_path):
    store = Store(str(tmp_path))
    newest = _write_snapshot(store, 5, 5)
    sink = store.create(1, 1, 1, None, 0, None)
    with pytest.raises(ValueError):
        sink.close()
    assert [m.id for m in store.list()] == [newest]
    assert not any(name.endswith(".tmp") for name in os.listdir(str(tmp_path)))


def test_reap_with_single_snapshot_is_noop(tmp_path):
    store = Store(str(tmp_path))
    snap_id = _write_snapshot(store, 1, 1)
    assert store.reap() == 0
    assert [m.id for m in store.list()] == [snap_id]


def test_set_full_needed(tmp_path):
    store = Store(str(tmp_path))
    _write_snapshot(store, 1, 1)
    assert store.full_needed() is False
    store.set_full_needed()
    assert store.full_needed() is True
    _write_snapshot(store, 2, 2)
    assert store.full_needed() is False


def test_reopen_cleans_temporary_data(tmp_path):
    store = Store(str(tmp_path))
    snap_id = _write_snapshot(store, 1, 1)
    os.mkdir(tmp_path / "9-9-9.tmp")
    (tmp_path / "9-9-9.data").write_bytes(b"junk")
    reopened = Store(str(tmp_path))
    names = os.listdir(str(tmp_path))
    assert "9-9-9.tmp" not in names
    assert "9-9-9.data" not in names
    assert [m.id for m in reopened.list()] == [snap_id]
    assert read_meta(os.path.join(str(tmp_path), snap_id)).id == snap_id


def test_bad_meta_fails_check(tmp_path):
    os.mkdir(tmp_path / "broken")
    (tmp_path / "broken" / "meta.json").write_text("not json")
    with pytest.raises(OSError, match="check failed"):
        Store(str(tmp_path))