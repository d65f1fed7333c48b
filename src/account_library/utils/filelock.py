# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Cross-platform advisory file lock.

- Unix/Linux/macOS: fcntl.flock
- Windows: msvcrt.locking

The OS releases the lock when the holding process exits, so a crashed
holder never leaves the file locked.

Usage:
    handle = open(lock_path, "a+", encoding="utf-8")
    try:
        acquire_lock(handle)
        # ... critical section ...
    finally:
        release_lock(handle)
"""

import logging
import platform
from typing import IO

lib_logger = logging.getLogger("account_library")


class FileLockError(Exception):
    """A lock operation failed for a reason other than contention."""


class LockAcquisitionError(FileLockError):
    """The lock is held by another open handle or process."""


def acquire_lock(file_handle: IO, non_blocking: bool = True) -> None:
    """
    Take an exclusive lock on an open file.

    Args:
        file_handle: Open file object
        non_blocking: Fail immediately instead of waiting when held elsewhere

    Raises:
        LockAcquisitionError: Lock already held (non_blocking only)
        FileLockError: Any other locking failure
    """
    if platform.system() == "Windows":
        _acquire_lock_windows(file_handle, non_blocking)
    else:
        _acquire_lock_unix(file_handle, non_blocking)
    lib_logger.debug(f"Acquired lock on {file_handle.name}")


def release_lock(file_handle: IO) -> None:
    """
    Release a lock taken with acquire_lock.

    Raises:
        FileLockError: Unlock failed
    """
    if platform.system() == "Windows":
        _release_lock_windows(file_handle)
    else:
        _release_lock_unix(file_handle)
    lib_logger.debug(f"Released lock on {file_handle.name}")


# =============================================================================
# UNIX
# =============================================================================


def _acquire_lock_unix(file_handle: IO, non_blocking: bool) -> None:
    import fcntl

    flags = fcntl.LOCK_EX
    if non_blocking:
        flags |= fcntl.LOCK_NB
    try:
        fcntl.flock(file_handle.fileno(), flags)
    except BlockingIOError as e:
        raise LockAcquisitionError(
            f"Lock is held by another process: {file_handle.name}"
        ) from e
    except OSError as e:
        raise FileLockError(f"fcntl.flock failed: {e}") from e


def _release_lock_unix(file_handle: IO) -> None:
    import fcntl

    try:
        fcntl.flock(file_handle.fileno(), fcntl.LOCK_UN)
    except OSError as e:
        raise FileLockError(f"fcntl.flock unlock failed: {e}") from e


# =============================================================================
# WINDOWS
# =============================================================================


def _acquire_lock_windows(file_handle: IO, non_blocking: bool) -> None:
    import msvcrt

    mode = msvcrt.LK_NBLCK if non_blocking else msvcrt.LK_LOCK
    try:
        # Lock the first byte; the pid text is written after it is held
        file_handle.seek(0)
        msvcrt.locking(file_handle.fileno(), mode, 1)
    except OSError as e:
        # errno 13 (EACCES) / 36 (EDEADLOCK) mean the region is taken
        if e.errno in (13, 36):
            raise LockAcquisitionError(
                f"Lock is held by another process: {file_handle.name}"
            ) from e
        raise FileLockError(f"msvcrt.locking failed: {e}") from e


def _release_lock_windows(file_handle: IO) -> None:
    import msvcrt

    try:
        file_handle.seek(0)
        msvcrt.locking(file_handle.fileno(), msvcrt.LK_UNLCK, 1)
    except OSError as e:
        raise FileLockError(f"msvcrt.locking unlock failed: {e}") from e
