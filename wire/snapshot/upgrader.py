"""Upgrading an old-format snapshot directory to the current layout."""

from __future__ import annotations

import gzip
import logging
import os
import shutil

from wire.snapshot.meta import (
    META_FILE_NAME,
    UPGRADE_FAIL,
    UPGRADE_OK,
    SnapshotMeta,
    _add_stat,
    _dir_exists,
    _file_exists,
    dir_is_empty,
    read_meta,
    remove_dir_sync,
    sync_dir_parent_maybe,
    tmp_name,
    write_meta,
)

V7_STATE_FILE = "state.bin"
_HEADER_LENGTH = 16


class UpgradeError(Exception):
    """Raised when a snapshot directory cannot be upgraded."""


def _newest_v7_snapshot(dir: str) -> SnapshotMeta | None:
    metas = [
        read_meta(os.path.join(dir, entry.name))
        for entry in os.scandir(dir)
        if entry.is_dir() and _file_exists(os.path.join(dir, entry.name, META_FILE_NAME))
    ]
    if not metas:
        return None
    return max(metas, key=SnapshotMeta.sort_key)


def upgrade_7_to_8(old: str, new: str, logger: logging.Logger) -> None:
    """Copy the old-format snapshot directory old into a new one at new.

    On success the old directory is removed.
    """
    new_tmp = tmp_name(new)
    try:
        _upgrade(old, new, new_tmp, logger)
    except BaseException as exc:
        _add_stat(UPGRADE_FAIL)
        try:
            shutil.rmtree(new_tmp)
        except FileNotFoundError:
            pass
        except OSError as cleanup_exc:
            logger.warning(
                "failed to remove temporary upgraded snapshot directory at %s "
                "due to outer error (%s) cleanup: %s",
                new_tmp,
                exc,
                cleanup_exc,
            )
        raise


def _upgrade(old: str, new: str, new_tmp: str, logger: logging.Logger) -> None:
    # A leftover temporary directory means an earlier attempt was interrupted.
    if _dir_exists(new_tmp):
        logger.info("detected temporary upgraded snapshot directory at %s, removing it", new_tmp)
        try:
            shutil.rmtree(new_tmp)
        except OSError as exc:
            raise UpgradeError(
                f"failed to remove temporary upgraded snapshot directory {new_tmp}: {exc}"
            ) from exc

    if not _dir_exists(old):
        logger.info("old v7 snapshot directory does not exist at %s, nothing to upgrade", old)
        return

    try:
        old_is_empty = dir_is_empty(old)
    except OSError as exc:
        raise UpgradeError(
            f"failed to check if old snapshot directory {old} is empty: {exc}"
        ) from exc

    if old_is_empty:
        logger.info("old snapshot directory %s is empty, nothing to upgrade", old)
        try:
            shutil.rmtree(old)
        except OSError as exc:
            raise UpgradeError(
                f"failed to remove empty old snapshot directory {old}: {exc}"
            ) from exc
        return

    if _dir_exists(new):
        logger.info("new snapshot directory %s exists", new)
        try:
            shutil.rmtree(old)
        except OSError as exc:
            raise UpgradeError(f"failed to remove old snapshot directory {old}: {exc}") from exc
        logger.info("removed old snapshot directory %s as no upgrade is needed", old)
        return

    try:
        os.makedirs(new_tmp, mode=0o755, exist_ok=True)
    except OSError as exc:
        raise UpgradeError(
            f"failed to create temporary snapshot directory {new_tmp}: {exc}"
        ) from exc

    try:
        old_meta = _newest_v7_snapshot(old)
    except (OSError, ValueError) as exc:
        raise UpgradeError(
            f"failed to get newest snapshot from old snapshots directory {old}: {exc}"
        ) from exc
    if old_meta is None:
        raise UpgradeError(f"no snapshot to upgrade in old snapshots directory {old}")

    new_snapshot_path = os.path.join(new_tmp, old_meta.id)
    try:
        os.makedirs(new_snapshot_path, mode=0o755, exist_ok=True)
    except OSError as exc:
        raise UpgradeError(
            f"failed to create new snapshot directory {new_snapshot_path}: {exc}"
        ) from exc
    try:
        write_meta(new_snapshot_path, old_meta)
    except OSError as exc:
        raise UpgradeError(
            f"failed to write new snapshot meta file to {new_snapshot_path}: {exc}"
        ) from exc

    _convert_state(old, new_tmp, old_meta.id, logger)

    try:
        os.rename(new_tmp, new)
    except OSError as exc:
        raise UpgradeError(
            f"failed to move temporary snapshot directory {new_tmp} to {new}: {exc}"
        ) from exc
    try:
        sync_dir_parent_maybe(new)
    except OSError as exc:
        raise UpgradeError(
            f"failed to sync parent directory of new snapshot directory {new}: {exc}"
        ) from exc

    try:
        remove_dir_sync(old)
    except OSError as exc:
        raise UpgradeError(f"failed to remove old snapshot directory {old}: {exc}") from exc
    logger.info("upgraded snapshot directory %s to %s", old, new)
    _add_stat(UPGRADE_OK)


def _convert_state(old: str, new_tmp: str, snap_id: str, logger: logging.Logger) -> None:
    new_db_path = os.path.join(new_tmp, snap_id + ".db")
    old_state_path = os.path.join(old, snap_id, V7_STATE_FILE)
    try:
        db_file = open(new_db_path, "wb")
    except OSError as exc:
        raise UpgradeError(f"failed to create new SQLite file {new_db_path}: {exc}") from exc
    with db_file:
        try:
            state_file = open(old_state_path, "rb")
        except OSError as exc:
            raise UpgradeError(
                f"failed to open old state file {old_state_path}: {exc}"
            ) from exc
        with state_file:
            size = os.fstat(state_file.fileno()).st_size
            logger.info(
                "successfully opened old state file at %s (%d bytes in size)",
                old_state_path,
                size,
            )
            if size < _HEADER_LENGTH:
                raise UpgradeError(f"old state file {old_state_path} is too small to be valid")
            if size == _HEADER_LENGTH:
                logger.info(
                    "old state file %s contains no database data, no data to upgrade",
                    old_state_path,
                )
                return
            state_file.seek(_HEADER_LENGTH)
            try:
                with gzip.GzipFile(fileobj=state_file, mode="rb") as gz:
                    shutil.copyfileobj(gz, db_file)
            except (OSError, EOFError) as exc:
                raise UpgradeError(
                    f"failed to copy old SQLite file {old_state_path} to new SQLite file "
                    f"{new_db_path}: {exc}"
                ) from exc