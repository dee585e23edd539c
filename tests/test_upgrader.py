import gzip
import json
import logging
import os

import pytest

from wire.snapshot.meta import UPGRADE_FAIL, UPGRADE_OK, get_stats, reset_stats
from wire.snapshot.store import Store
from wire.snapshot.upgrader import UpgradeError, upgrade_7_to_8

V7_SNAPSHOT_ID = "2-18-1686659761026"
LOGGER = logging.getLogger("snapshot-store-upgrader")


def _make_v7(path, state):
    snap_dir = path / V7_SNAPSHOT_ID
    snap_dir.mkdir(parents=True)
    meta = {
        "Version": 1,
        "ID": V7_SNAPSHOT_ID,
        "Index": 18,
        "Term": 2,
        "Peers": None,
        "Configuration": {"Servers": None},
        "ConfigurationIndex": 1,
        "Size": 0,
    }
    (snap_dir / "meta.json").write_text(json.dumps(meta))
    (snap_dir / "state.bin").write_bytes(state)
    return str(path)


def test_upgrade_nothing_to_do(tmp_path):
    upgrade_7_to_8("/does/not/exist", "/does/not/exist/either", LOGGER)
    assert not os.path.exists("/does/not/exist/either")

    old_empty = tmp_path / "old"
    new_empty = tmp_path / "new"
    old_empty.mkdir()
    new_empty.mkdir()
    upgrade_7_to_8(str(old_empty), str(new_empty), LOGGER)
    assert not old_empty.exists()
    assert os.listdir(new_empty) == []


def test_upgrade_ok(tmp_path):
    reset_stats()
    db_data = b"SQLite format 3\x00 pretend database"
    old = _make_v7(tmp_path / "snapshots", b"\x00" * 16 + gzip.compress(db_data))
    new = str(tmp_path / "rsnapshots")

    upgrade_7_to_8(old, new, LOGGER)
    assert not os.path.exists(old)
    assert get_stats()[UPGRADE_OK] == 1

    store = Store(new)
    snapshots = store.list()
    assert len(snapshots) == 1
    assert snapshots[0].id == V7_SNAPSHOT_ID

    meta, reader = store.open(snapshots[0].id)
    with reader:
        assert reader.read() == db_data
    assert meta.id == V7_SNAPSHOT_ID


def test_upgrade_empty_ok(tmp_path):
    old = _make_v7(tmp_path / "snapshots", b"\x00" * 16)
    new = str(tmp_path / "rsnapshots")

    upgrade_7_to_8(old, new, LOGGER)

    store = Store(new)
    snapshots = store.list()
    assert len(snapshots) == 1
    assert snapshots[0].id == V7_SNAPSHOT_ID
    meta, reader = store.open(snapshots[0].id)
    with reader:
        assert reader.read() == b""
    assert meta.id == V7_SNAPSHOT_ID


def test_upgrade_state_too_small(tmp_path):
    reset_stats()
    old = _make_v7(tmp_path / "snapshots", b"\x00" * 4)
    new = str(tmp_path / "rsnapshots")
    with pytest.raises(UpgradeError, match="too small"):
        upgrade_7_to_8(old, new, LOGGER)
    assert os.path.isdir(old)
    assert not os.path.exists(new)
    assert not os.path.exists(new + ".tmp")
    assert get_stats()[UPGRADE_FAIL] == 1


def test_upgrade_new_exists_removes_old(tmp_path):
    old = _make_v7(tmp_path / "snapshots", b"\x00" * 16)
    new = tmp_path / "rsnapshots"
    new.mkdir()
    upgrade_7_to_8(old, str(new), LOGGER)
    assert not os.path.exists(old)
    assert os.listdir(new) == []


def test_upgrade_removes_interrupted_tmp(tmp_path):
    old = _make_v7(tmp_path / "snapshots", b"\x00" * 16 + gzip.compress(b"db"))
    new = str(tmp_path / "rsnapshots")
    os.mkdir(new + ".tmp")
    with open(os.path.join(new + ".tmp", "leftover"), "wb") as fh:
        fh.write(b"x")
    upgrade_7_to_8(old, new, LOGGER)
    assert not os.path.exists(new + ".tmp")
    assert sorted(os.listdir(new)) == [V7_SNAPSHOT_ID, V7_SNAPSHOT_ID + ".db"]


def test_upgrade_without_meta_fails(tmp_path):
    old = tmp_path / "snapshots"
    (old / "somedir").mkdir(parents=True)
    new = str(tmp_path / "rsnapshots")
    with pytest.raises(UpgradeError, match="no snapshot to upgrade"):
        upgrade_7_to_8(str(old), new, LOGGER)
    assert not os.path.exists(new + ".tmp")