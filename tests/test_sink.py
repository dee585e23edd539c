import pytest

from wire.snapshot.meta import (
    FULL_NEEDED_FILE,
    META_FILE_NAME,
    SnapshotMeta,
    read_meta,
    tmp_name,
)
from wire.snapshot.sink import Sink


class _FakeStore:
    def __init__(self, path):
        self.path = path
        self.reap_calls = 0

    def dir(self):
        return str(self.path)

    def reap(self):
        self.reap_calls += 1
        return 0


@pytest.fixture
def store(tmp_path):
    root = tmp_path / "snapshots"
    root.mkdir()
    return _FakeStore(root)


def _meta(snap_id, index, term):
    return SnapshotMeta(id=snap_id, index=index, term=term)


def test_id_returns_meta_id(store):
    sink = Sink(store, _meta("1-2-3", 2, 1))
    assert sink.id() == "1-2-3"


def test_open_creates_tmp_dir_and_data_file(store):
    sink = Sink(store, _meta("1-2-3", 2, 1))
    sink.open()
    sink.open()
    tmp_dir = store.path / tmp_name("1-2-3")
    assert tmp_dir.is_dir()
    assert (tmp_dir / "1-2-3.data").exists()
    assert sink.write(b"hello") == 5
    sink.cancel()


def test_cancel_removes_tmp_data(store):
    sink = Sink(store, _meta("1-2-3", 2, 1))
    sink.open()
    sink.write(b"partial")
    sink.cancel()
    assert list(store.path.iterdir()) == []


def test_close_and_cancel_without_open_do_nothing(store):
    sink = Sink(store, _meta("1-2-3", 2, 1))
    sink.close()
    sink.cancel()
    assert list(store.path.iterdir()) == []
    assert store.reap_calls == 0


def test_write_before_open_raises(store):
    sink = Sink(store, _meta("1-2-3", 2, 1))
    with pytest.raises(ValueError):
        sink.write(b"x")


def test_close_puts_snapshot_in_place(store):
    (store.path / FULL_NEEDED_FILE).write_text("")
    db_bytes = b"database contents"
    (store.path / "1-2-3.db").write_bytes(db_bytes)

    sink = Sink(store, _meta("1-2-3", 2, 1))
    sink.open()
    sink.write(b"")
    sink.close()

    snap_dir = store.path / "1-2-3"
    assert snap_dir.is_dir()
    assert not (store.path / tmp_name("1-2-3")).exists()
    assert (snap_dir / META_FILE_NAME).exists()
    meta = read_meta(str(snap_dir))
    assert meta.id == "1-2-3"
    assert meta.size == len(db_bytes)
    assert not (store.path / FULL_NEEDED_FILE).exists()
    assert store.reap_calls == 1


def test_close_without_database_file_raises(store):
    sink = Sink(store, _meta("1-2-3", 2, 1))
    sink.open()
    sink.write(b"some data")
    with pytest.raises(FileNotFoundError):
        sink.close()
    assert (store.path / "1-2-3").is_dir()
    assert store.reap_calls == 0


def test_close_moves_named_file_into_data(store, tmp_path):
    source = tmp_path / "incoming.bin"
    payload = b"payload from another file"
    source.write_bytes(payload)
    (store.path / "1-2-3.db").write_bytes(b"db")

    sink = Sink(store, _meta("1-2-3", 2, 1))
    sink.open()
    sink.write(str(source).encode())
    sink.close()

    assert not source.exists()
    assert (store.path / "1-2-3" / "1-2-3.data").read_bytes() == payload


def test_close_rejects_older_snapshot(store):
    (store.path / "2-10-1.db").write_bytes(b"db")
    first = Sink(store, _meta("2-10-1", 10, 2))
    first.open()
    first.close()

    older = Sink(store, _meta("1-20-1", 20, 1))
    older.open()
    older.write(b"data")
    with pytest.raises(ValueError, match="is not later than most recent existing snapshot 2-10-1"):
        older.close()

    names = sorted(p.name for p in store.path.iterdir())
    assert names == ["2-10-1", "2-10-1.db"]


def test_newer_snapshot_accepted_after_existing(store):
    (store.path / "1-5-1.db").write_bytes(b"db")
    first = Sink(store, _meta("1-5-1", 5, 1))
    first.open()
    first.close()

    (store.path / "1-9-1.db").write_bytes(b"newer db")
    second = Sink(store, _meta("1-9-1", 9, 1))
    second.open()
    second.close()

    assert read_meta(str(store.path / "1-9-1")).size == len(b"newer db")
    assert store.reap_calls == 2