# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/account_library/utils/__init__.py

from .filelock import (
    FileLockError,
    LockAcquisitionError,
    acquire_lock,
    release_lock,
)
from .paths import get_data_dir, get_default_root, get_logs_dir, sibling_path

__all__ = [
    "FileLockError",
    "LockAcquisitionError",
    "acquire_lock",
    "release_lock",
    "get_data_dir",
    "get_default_root",
    "get_logs_dir",
    "sibling_path",
]
