# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/account_library/utils/paths.py

import sys
from pathlib import Path
from typing import Optional


def get_default_root() -> Path:
    """
    Get the application root directory.

    EXE directory when running frozen, current working directory otherwise.
    """
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    return Path.cwd()


def get_data_dir(root: Optional[Path] = None) -> Path:
    """Get the data directory holding the store, key and visibility files."""
    return (root or get_default_root()) / "data"


def get_logs_dir(root: Optional[Path] = None) -> Path:
    """Get the logs directory, creating it if needed."""
    logs_dir = (root or get_default_root()) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def sibling_path(path: Path, suffix: str) -> Path:
    """Path of a companion file next to `path` (accounts.db -> accounts.db.lock)."""
    return path.with_name(path.name + suffix)
