"""A directory-backed store of snapshots guarded by a reader/writer lock."""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, BinaryIO

from wire.snapshot.meta import (
    FULL_NEEDED_FILE,
    SNAPSHOT_CREATE_MRSW_FAIL,
    SNAPSHOT_OPEN_MRSW_FAIL,
    SNAPSHOTS_REAPED,
    SNAPSHOTS_REAPED_FAIL,
    SnapshotMeta,
    _add_stat,
    _default_configuration,
    _file_exists,
    dir_is_empty,
    get_snapshots,
    read_meta,
    remove_all_prefix,
    remove_all_tmp_snapshot_data,
    snapshot_name,
    sync_dir_maybe,
)
from wire.snapshot.sink import Sink

_logger = logging.getLogger("wire.snapshot.store")


class StoreLockedError(Exception):
    """Raised when the store is busy with a conflicting read or write."""


class _MultiRSW:
    """Non-blocking lock allowing many readers or a single writer."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._readers = 0
        self._writing = False

    def begin_read(self) -> None:
        with self._lock:
            if self._writing:
                raise StoreLockedError("MRSW conflict: write in progress")
            self._readers += 1

    def end_read(self) -> None:
        with self._lock:
            if self._readers <= 0:
                raise RuntimeError("MRSW end_read without matching begin_read")
            self._readers -= 1

    def begin_write(self) -> None:
        with self._lock:
            if self._writing:
                raise StoreLockedError("MRSW conflict: write in progress")
            if self._readers > 0:
                raise StoreLockedError("MRSW conflict: reads in progress")
            self._writing = True

    def end_write(self) -> None:
        with self._lock:
            if not self._writing:
                raise RuntimeError("MRSW end_write without matching begin_write")
            self._writing = False


class LockingSink:
    """A sink that holds the store's write lock until closed or cancelled."""

    def __init__(self, sink: Sink, store: Store) -> None:
        self._sink = sink
        self._store = store
        self._lock = threading.Lock()
        self._closed = False

    def write(self, data: bytes) -> int:
        """Write snapshot data to the underlying sink."""
        return self._sink.write(data)

    def id(self) -> str:
        """Return the ID of the snapshot being written."""
        return self._sink.id()

    def close(self) -> None:
        """Finalize the snapshot and release the store for new sinks."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._sink.close()
            finally:
                self._store._mrsw.end_write()

    def cancel(self) -> None:
        """Abandon the snapshot and release the store for new sinks."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._sink.cancel()
            finally:
                self._store._mrsw.end_write()

    def __enter__(self) -> LockingSink:
        return self

    def __exit__(self, exc_type: object, *rest: object) -> None:
        if exc_type is None:
            self.close()
        else:
            self.cancel()


class LockingSnapshot:
    """An open snapshot file that holds the store's read lock until closed."""

    def __init__(self, fd: BinaryIO, store: Store) -> None:
        self._fd = fd
        self._store = store
        self._lock = threading.Lock()
        self._closed = False

    def read(self, size: int = -1) -> bytes:
        """Read snapshot data."""
        return self._fd.read(size)

    def close(self) -> None:
        """Close the file and release the store's read lock."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._fd.close()
            finally:
                self._store._mrsw.end_read()

    def __enter__(self) -> LockingSnapshot:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class Store:
    """Stores snapshots in a directory, keeping only the newest after each write."""

    def __init__(self, dir: str) -> None:
        os.makedirs(dir, mode=0o755, exist_ok=True)
        self._dir = dir
        self._full_needed_path = os.path.join(dir, FULL_NEEDED_FILE)
        self._mrsw = _MultiRSW()
        self.log_reaping = False
        self._reap_disabled = False
        _logger.info("store initialized using %s", dir)

        if not dir_is_empty(dir):
            try:
                self._check()
            except (OSError, ValueError) as exc:
                raise OSError(f"check failed: {exc}") from exc

    def create(
        self,
        version: int,
        index: int,
        term: int,
        configuration: dict[str, Any] | None,
        configuration_index: int,
        trans: object = None,
    ) -> LockingSink:
        """Return a sink for a new snapshot; only one sink may exist at a time."""
        try:
            self._mrsw.begin_write()
        except StoreLockedError:
            _add_stat(SNAPSHOT_CREATE_MRSW_FAIL)
            raise
        try:
            meta = SnapshotMeta(
                id=snapshot_name(term, index),
                index=index,
                term=term,
                version=version,
                configuration=(
                    configuration if configuration is not None else _default_configuration()
                ),
                configuration_index=configuration_index,
            )
            sink = Sink(self, meta)
            sink.open()
        except BaseException:
            self._mrsw.end_write()
            raise
        return LockingSink(sink, self)

    def list(self) -> list[SnapshotMeta]:
        """Return metadata of the newest snapshot, as a list of at most one."""
        snapshots = self._get_snapshots()
        if not snapshots:
            return []
        return [read_meta(os.path.join(self._dir, snapshots[-1].id))]

    def open(self, id: str) -> tuple[SnapshotMeta, LockingSnapshot]:
        """Open the snapshot with the given ID; close the reader when done."""
        try:
            self._mrsw.begin_read()
        except StoreLockedError:
            _add_stat(SNAPSHOT_OPEN_MRSW_FAIL)
            raise
        try:
            meta = read_meta(os.path.join(self._dir, id))
            fd = open(os.path.join(self._dir, id + ".db"), "rb")
        except BaseException:
            self._mrsw.end_read()
            raise
        return meta, LockingSnapshot(fd, self)

    def full_needed(self) -> bool:
        """Return whether the next snapshot must be a full one."""
        if _file_exists(self._full_needed_path):
            return True
        return not self._get_snapshots()

    def set_full_needed(self) -> None:
        """Flag that a full snapshot is needed; cleared by the next snapshot."""
        with open(self._full_needed_path, "wb"):
            pass

    def stats(self) -> dict[str, Any]:
        """Return the directory, snapshot IDs and current database path."""
        snapshots = self._get_snapshots()
        return {
            "dir": self._dir,
            "snapshots": [snap.id for snap in snapshots],
            "db_path": self._get_db_path(),
        }

    def reap(self) -> int:
        """Remove all snapshots but the newest; return how many were removed."""
        if self._reap_disabled:
            _add_stat(SNAPSHOTS_REAPED, 0)
            return 0
        reaped = 0
        try:
            snapshots = self._get_snapshots()
            for snap in snapshots[:-1]:
                remove_all_prefix(self._dir, snap.id)
                if self.log_reaping:
                    _logger.info("reaped snapshot %s", snap.id)
                reaped += 1
        except BaseException:
            _add_stat(SNAPSHOTS_REAPED_FAIL)
            raise
        _add_stat(SNAPSHOTS_REAPED, reaped)
        return reaped

    def dir(self) -> str:
        """Return the directory holding the snapshots."""
        return self._dir

    def _check(self) -> None:
        _logger.info("checking consistency of snapshot store at %s", self._dir)
        try:
            remove_all_tmp_snapshot_data(self._dir)
            self._get_snapshots()
        except BaseException:
            try:
                sync_dir_maybe(self._dir)
            except OSError:
                pass
            raise
        finally:
            _logger.info("check complete")
        sync_dir_maybe(self._dir)

    def _get_snapshots(self) -> list[SnapshotMeta]:
        return get_snapshots(self._dir)

    def _get_db_path(self) -> str:
        snapshots = self._get_snapshots()
        if not snapshots:
            return ""
        return os.path.join(self._dir, snapshots[-1].id + ".db")