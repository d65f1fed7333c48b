# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Writer election for a credential store file.

Per store path:

    UNINITIALIZED --acquire()--> OWNED(pid)
    OWNED(pid)    --read-only opens--> OWNED(pid)
    OWNED(pid)    --release()--> UNINITIALIZED
    OWNED(pid)    --acquire() from anyone else--> WriterConflict

Ownership is an advisory exclusive lock on "<store>.lock" that records
the writer's pid. The OS drops the lock with the process, so a crashed
writer never leaves the store owned.
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import IO, Optional, Tuple

from ..config.defaults import LOCK_FILE_SUFFIX
from ..core.errors import StoreUnavailable, WriterConflict
from ..utils.filelock import (
    FileLockError,
    LockAcquisitionError,
    acquire_lock,
    release_lock,
)
from ..utils.paths import sibling_path

lib_logger = logging.getLogger("account_library")


class ArbiterState(str, Enum):
    UNINITIALIZED = "uninitialized"
    OWNED = "owned"


class WriterLease:
    """Held write access; release() or leave the with-block to give it up."""

    def __init__(self, arbiter: "WriterArbiter", handle: IO, pid: int):
        self._arbiter = arbiter
        self._handle: Optional[IO] = handle
        self.pid = pid

    @property
    def active(self) -> bool:
        return self._handle is not None

    def release(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        try:
            handle.seek(0)
            handle.truncate()
            handle.flush()
            release_lock(handle)
        except (OSError, FileLockError) as e:
            lib_logger.warning(f"Error releasing writer lock {self._arbiter.lock_path}: {e}")
        finally:
            handle.close()
        lib_logger.info(f"Released write access to {self._arbiter.store_path}")

    def __enter__(self) -> "WriterLease":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


class WriterArbiter:
    """
    Decides which process may write a store file.

    Example:
        arbiter = WriterArbiter(Path("data/accounts.db"))
        with arbiter.acquire():
            ...  # single writer section
    """

    def __init__(self, store_path: Path):
        self.store_path = Path(store_path)
        self.lock_path = sibling_path(self.store_path, LOCK_FILE_SUFFIX)

    def acquire(self) -> WriterLease:
        """
        Become the writer.

        Raises:
            WriterConflict: Another handle or process owns the store
            StoreUnavailable: The lock file cannot be created or locked
        """
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.lock_path, "a+", encoding="utf-8")
        except OSError as e:
            raise StoreUnavailable(f"Cannot open lock file {self.lock_path}: {e}") from e

        try:
            acquire_lock(handle, non_blocking=True)
        except LockAcquisitionError as e:
            handle.close()
            owner = self._read_owner_pid()
            lib_logger.error(
                f"Write access to {self.store_path} refused: already owned"
                + (f" by pid {owner}" if owner else "")
            )
            raise WriterConflict(str(self.store_path), owner) from e
        except FileLockError as e:
            handle.close()
            raise StoreUnavailable(f"Cannot lock {self.lock_path}: {e}") from e

        pid = os.getpid()
        try:
            handle.seek(0)
            handle.truncate()
            handle.write(str(pid))
            handle.flush()
        except OSError as e:
            release_lock(handle)
            handle.close()
            raise StoreUnavailable(f"Cannot record writer pid in {self.lock_path}: {e}") from e

        lib_logger.info(f"Acquired write access to {self.store_path} (pid {pid})")
        return WriterLease(self, handle, pid)

    def state(self) -> Tuple[ArbiterState, Optional[int]]:
        """
        Inspect ownership without keeping it.

        Returns:
            (UNINITIALIZED, None) or (OWNED, writer_pid or None if unreadable)
        """
        if not self.lock_path.exists():
            return ArbiterState.UNINITIALIZED, None
        try:
            handle = open(self.lock_path, "a+", encoding="utf-8")
        except OSError:
            return ArbiterState.UNINITIALIZED, None
        try:
            try:
                acquire_lock(handle, non_blocking=True)
            except LockAcquisitionError:
                return ArbiterState.OWNED, self._read_owner_pid()
            release_lock(handle)
            return ArbiterState.UNINITIALIZED, None
        finally:
            handle.close()

    def _read_owner_pid(self) -> Optional[int]:
        try:
            text = self.lock_path.read_text(encoding="utf-8").strip()
            return int(text) if text else None
        except (OSError, ValueError):
            return None
