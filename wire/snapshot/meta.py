"""Snapshot metadata and helpers for the on-disk snapshot directory layout."""

from __future__ import annotations

import base64
import glob
import json
import os
import shutil
import threading
import time
from dataclasses import dataclass, field
from typing import Any

META_FILE_NAME = "meta.json"
TMP_SUFFIX = ".tmp"
FULL_NEEDED_FILE = "FULL_NEEDED"

PERSIST_SIZE = "latest_persist_size"
PERSIST_DURATION = "latest_persist_duration"
UPGRADE_OK = "upgrade_ok"
UPGRADE_FAIL = "upgrade_fail"
SNAPSHOTS_REAPED = "snapshots_reaped"
SNAPSHOTS_REAPED_FAIL = "snapshots_reaped_failed"
SNAPSHOT_CREATE_MRSW_FAIL = "snapshot_create_mrsw_fail"
SNAPSHOT_OPEN_MRSW_FAIL = "snapshot_open_mrsw_fail"

STAT_NAMES = (
    PERSIST_SIZE,
    PERSIST_DURATION,
    UPGRADE_OK,
    UPGRADE_FAIL,
    SNAPSHOTS_REAPED,
    SNAPSHOTS_REAPED_FAIL,
    SNAPSHOT_CREATE_MRSW_FAIL,
    SNAPSHOT_OPEN_MRSW_FAIL,
)

_stats_lock = threading.Lock()
_stats: dict[str, int] = {}


def reset_stats() -> None:
    """Reset all snapshot counters to zero."""
    with _stats_lock:
        _stats.clear()
        _stats.update({name: 0 for name in STAT_NAMES})


def get_stats() -> dict[str, int]:
    """Return a copy of the snapshot counters."""
    with _stats_lock:
        return dict(_stats)


def _add_stat(name: str, delta: int = 1) -> None:
    with _stats_lock:
        _stats[name] = _stats.get(name, 0) + delta


def _set_stat(name: str, value: int) -> None:
    with _stats_lock:
        _stats[name] = value


reset_stats()


def _default_configuration() -> dict[str, Any]:
    return {"Servers": None}


@dataclass
class SnapshotMeta:
    """Metadata describing one snapshot of the replicated log."""

    id: str = ""
    index: int = 0
    term: int = 0
    version: int = 0
    configuration: dict[str, Any] = field(default_factory=_default_configuration)
    configuration_index: int = 0
    size: int = 0
    peers: bytes | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form stored in a meta file."""
        peers = None
        if self.peers is not None:
            peers = base64.b64encode(self.peers).decode("ascii")
        return {
            "Version": self.version,
            "ID": self.id,
            "Index": self.index,
            "Term": self.term,
            "Peers": peers,
            "Configuration": self.configuration,
            "ConfigurationIndex": self.configuration_index,
            "Size": self.size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SnapshotMeta:
        """Build metadata from the JSON form stored in a meta file."""
        peers = data.get("Peers")
        configuration = data.get("Configuration")
        return cls(
            id=str(data.get("ID") or ""),
            index=int(data.get("Index") or 0),
            term=int(data.get("Term") or 0),
            version=int(data.get("Version") or 0),
            configuration=(
                configuration if isinstance(configuration, dict) else _default_configuration()
            ),
            configuration_index=int(data.get("ConfigurationIndex") or 0),
            size=int(data.get("Size") or 0),
            peers=base64.b64decode(peers) if isinstance(peers, str) else None,
        )

    def sort_key(self) -> tuple[int, int, str]:
        """Key ordering snapshots from oldest to newest: term, index, then ID."""
        return (self.term, self.index, self.id)


def _meta_path(dir: str) -> str:
    return os.path.join(dir, META_FILE_NAME)


def read_meta(dir: str) -> SnapshotMeta:
    """Read the metadata file in the given snapshot directory."""
    with open(_meta_path(dir), encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"invalid snapshot meta in {dir}")
    return SnapshotMeta.from_dict(data)


def write_meta(dir: str, meta: SnapshotMeta) -> None:
    """Write and sync the metadata file in the given snapshot directory."""
    with open(_meta_path(dir), "w", encoding="utf-8") as fh:
        json.dump(meta.to_dict(), fh, separators=(",", ":"))
        fh.write("\n")
        fh.flush()
        os.fsync(fh.fileno())


def update_meta_size(dir: str, size: int) -> None:
    """Rewrite the metadata in dir with the given size."""
    meta = read_meta(dir)
    meta.size = size
    write_meta(dir, meta)


def get_snapshots(dir: str) -> list[SnapshotMeta]:
    """Return metadata of every non-temporary snapshot in dir, oldest first."""
    metas = []
    for entry in os.scandir(dir):
        if not entry.is_dir(follow_symlinks=False) or is_tmp_name(entry.name):
            continue
        try:
            metas.append(read_meta(os.path.join(dir, entry.name)))
        except (OSError, ValueError) as exc:
            raise OSError(f"failed to read meta for snapshot {entry.name}: {exc}") from exc
    metas.sort(key=SnapshotMeta.sort_key)
    return metas


def latest_index_term(dir: str) -> tuple[int, int]:
    """Return (index, term) of the newest snapshot in dir, or (0, 0)."""
    metas = get_snapshots(dir)
    if not metas:
        return 0, 0
    return metas[-1].index, metas[-1].term


def _remove_all(path: str) -> None:
    try:
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
    except FileNotFoundError:
        pass


def remove_all_tmp_snapshot_data(dir: str) -> None:
    """Remove every temporary snapshot directory in dir and files sharing its name.

    The temporary directory itself is removed last, as a sign that the
    cleanup is complete. A directory that cannot be listed is ignored.
    """
    try:
        entries = list(os.scandir(dir))
    except OSError:
        return
    for entry in entries:
        if not (entry.is_dir(follow_symlinks=False) and is_tmp_name(entry.name)):
            continue
        tmp_path = os.path.join(dir, entry.name)
        pattern = glob.escape(os.path.join(dir, non_tmp_name(entry.name))) + "*"
        for path in glob.glob(pattern):
            if path == tmp_path:
                continue
            if os.path.isdir(path) and not os.path.islink(path):
                os.rmdir(path)
            else:
                os.remove(path)
        _remove_all(tmp_path)


def remove_all_prefix(path: str, prefix: str) -> None:
    """Remove every file and directory in path whose name starts with prefix."""
    for match in glob.glob(glob.escape(os.path.join(path, prefix)) + "*"):
        _remove_all(match)


def snapshot_name(term: int, index: int) -> str:
    """Return a new snapshot name built from term, index and the current time."""
    return f"{term}-{index}-{time.time_ns() // 1_000_000}"


def tmp_name(path: str) -> str:
    """Return the temporary form of a path."""
    return path + TMP_SUFFIX


def non_tmp_name(path: str) -> str:
    """Return path without the temporary suffix."""
    return path.removesuffix(TMP_SUFFIX)


def _extension(name: str) -> str:
    tail = name.replace(os.sep, "/").rsplit("/", 1)[-1]
    dot = tail.rfind(".")
    return tail[dot:] if dot >= 0 else ""


def is_tmp_name(name: str) -> bool:
    """Return whether name carries the temporary suffix as its extension."""
    return _extension(name) == TMP_SUFFIX


def _file_exists(path: str) -> bool:
    try:
        os.stat(path)
    except (FileNotFoundError, ValueError):
        return False
    except OSError:
        return True
    return True


def _dir_exists(path: str) -> bool:
    return os.path.isdir(path)


def dir_is_empty(dir: str) -> bool:
    """Return whether dir has no entries."""
    with os.scandir(dir) as entries:
        return next(entries, None) is None


def _sync_dir(dir: str) -> None:
    fd = os.open(dir, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def sync_dir_maybe(dir: str) -> None:
    """Sync the directory, except on Windows."""
    if os.name == "nt":
        return
    _sync_dir(dir)


def sync_dir_parent_maybe(dir: str) -> None:
    """Sync the parent of the directory, except on Windows."""
    if os.name == "nt":
        return
    _sync_dir(os.path.dirname(os.path.abspath(dir)))


def remove_dir_sync(dir: str) -> None:
    """Remove the directory tree and sync its parent."""
    _remove_all(dir)
    sync_dir_parent_maybe(dir)