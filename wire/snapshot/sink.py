"""Writing a new snapshot into a snapshot store directory."""

from __future__ import annotations

import logging
import os
from typing import BinaryIO, Protocol

from wire.snapshot.meta import (
    FULL_NEEDED_FILE,
    SnapshotMeta,
    _file_exists,
    get_snapshots,
    remove_all_tmp_snapshot_data,
    sync_dir_maybe,
    tmp_name,
    update_meta_size,
    write_meta,
)

MAX_FILENAME_LEN = 255

_logger = logging.getLogger("wire.snapshot.sink")


class _SnapshotStore(Protocol):
    def dir(self) -> str: ...

    def reap(self) -> int: ...


class Sink:
    """Receives snapshot data; the snapshot is in place only once closed."""

    def __init__(self, store: _SnapshotStore, meta: SnapshotMeta) -> None:
        self._store = store
        self._meta = meta
        self._snap_dir = ""
        self._snap_tmp_dir = ""
        self._data: BinaryIO | None = None
        self._opened = False

    def open(self) -> None:
        """Create the temporary snapshot directory and data file."""
        if self._opened:
            return
        self._opened = True
        self._snap_dir = os.path.join(self._store.dir(), self._meta.id)
        self._snap_tmp_dir = tmp_name(self._snap_dir)
        os.makedirs(self._snap_tmp_dir, mode=0o755, exist_ok=True)
        data_path = os.path.join(self._snap_tmp_dir, self._meta.id + ".data")
        self._data = open(data_path, "wb")

    def write(self, data: bytes) -> int:
        """Write snapshot data, returning the number of bytes written."""
        if self._data is None:
            raise ValueError("sink is not open")
        return self._data.write(data)

    def id(self) -> str:
        """Return the ID of the snapshot being written."""
        return self._meta.id

    def cancel(self) -> None:
        """Abandon the snapshot and remove its temporary data."""
        if not self._opened:
            return
        self._opened = False
        data, self._data = self._data, None
        if data is not None:
            data.close()
        remove_all_tmp_snapshot_data(self._store.dir())

    def close(self) -> None:
        """Finalize the snapshot, moving it into place and reaping older ones."""
        if not self._opened:
            return
        self._opened = False
        data, self._data = self._data, None
        assert data is not None
        data.close()

        write_meta(self._snap_tmp_dir, self._meta)
        self._process_snapshot_data(data.name)

        size = os.stat(self._db_path()).st_size
        try:
            update_meta_size(self._snap_dir, size)
        except (OSError, ValueError) as exc:
            raise OSError(f"failed to update snapshot meta size: {exc}") from exc

        self._unset_full_needed()
        self._store.reap()

    def _db_path(self) -> str:
        store_dir = self._store.dir()
        snapshots = get_snapshots(store_dir)
        if not snapshots:
            return ""
        return os.path.join(store_dir, snapshots[-1].id + ".db")

    def _unset_full_needed(self) -> None:
        try:
            os.remove(os.path.join(self._store.dir(), FULL_NEEDED_FILE))
        except FileNotFoundError:
            pass

    def _process_snapshot_data(self, data_path: str) -> None:
        try:
            self._move_into_place(data_path)
        except BaseException:
            try:
                remove_all_tmp_snapshot_data(self._store.dir())
            except OSError as exc:
                _logger.warning("failed to remove temporary snapshot data: %s", exc)
            raise

    def _move_into_place(self, data_path: str) -> None:
        store_dir = self._store.dir()

        # The incoming snapshot must come later in the log than any existing one.
        snapshots = get_snapshots(store_dir)
        if snapshots:
            previous = snapshots[-1]
            if not previous.sort_key() < self._meta.sort_key():
                raise ValueError(
                    f"incoming snapshot {self._meta.id} is not later than "
                    f"most recent existing snapshot {previous.id}"
                )

        # Short data may instead name a file that is to be moved here.
        size = os.stat(data_path).st_size
        if 0 < size <= MAX_FILENAME_LEN:
            with open(data_path, "rb") as fh:
                source = os.fsdecode(fh.read())
            if _file_exists(source):
                os.replace(source, data_path)

        # Renaming the temporary directory marks the snapshot as persisted.
        os.rename(self._snap_tmp_dir, self._snap_dir)
        sync_dir_maybe(store_dir)

        get_snapshots(store_dir)
        sync_dir_maybe(store_dir)