# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Runtime settings resolved from environment variables.

Every value falls back to its default in defaults.py; malformed numbers
are logged and ignored rather than aborting startup.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from .defaults import (
    DEFAULT_APPLICATION_EXECUTABLE,
    DEFAULT_CLOSE_TIMEOUT,
    DEFAULT_EXTRA_HELPER_PATTERNS,
    DEFAULT_LIVENESS_CACHE_TTL,
    DEFAULT_LIVENESS_MIN_CALL_INTERVAL,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_QUOTA_CACHE_TTL,
    DEFAULT_QUOTA_MIN_CALL_INTERVAL,
    DEFAULT_STORE_TIMEOUT,
    DEFAULT_TARGET_PROCESS_NAME,
    STORE_FILENAME,
    VISIBILITY_FILENAME,
)
from ..utils.paths import get_data_dir

lib_logger = logging.getLogger("account_library")


def _env_float(name: str, default: float) -> float:
    """Parse a non-negative float from environment variable with fallback to default."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        lib_logger.warning(f"Invalid {name} value '{raw}', using default {default}")
        return default
    if value < 0:
        lib_logger.warning(f"Negative {name} value '{raw}', using default {default}")
        return default
    return value


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    """Parse a comma-separated list from environment variable."""
    raw = os.environ.get(name)
    if not raw:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass
class SyncSettings:
    """Tunable thresholds and paths for one process."""

    liveness_min_call_interval: float = DEFAULT_LIVENESS_MIN_CALL_INTERVAL
    liveness_cache_ttl: float = DEFAULT_LIVENESS_CACHE_TTL
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    quota_min_call_interval: float = DEFAULT_QUOTA_MIN_CALL_INTERVAL
    quota_cache_ttl: float = DEFAULT_QUOTA_CACHE_TTL
    store_timeout: float = DEFAULT_STORE_TIMEOUT
    target_process_name: str = DEFAULT_TARGET_PROCESS_NAME
    extra_helper_patterns: Tuple[str, ...] = field(
        default_factory=lambda: DEFAULT_EXTRA_HELPER_PATTERNS
    )
    close_timeout: float = DEFAULT_CLOSE_TIMEOUT
    application_executable: Optional[str] = DEFAULT_APPLICATION_EXECUTABLE
    store_path: Optional[Path] = None
    visibility_path: Optional[Path] = None

    def __post_init__(self):
        if self.liveness_min_call_interval > self.liveness_cache_ttl:
            lib_logger.warning(
                f"Liveness min call interval ({self.liveness_min_call_interval}s) "
                f"exceeds cache TTL ({self.liveness_cache_ttl}s); "
                f"results will be served stale between probes"
            )

    @classmethod
    def from_env(cls, root: Optional[Path] = None) -> "SyncSettings":
        """
        Build settings from the current environment.

        Args:
            root: Application root used to derive default file locations

        Returns:
            SyncSettings with env overrides applied
        """
        data_dir = get_data_dir(root)

        store_env = os.environ.get("ACCOUNT_STORE_PATH")
        visibility_env = os.environ.get("MODEL_VISIBILITY_PATH")

        return cls(
            liveness_min_call_interval=_env_float(
                "LIVENESS_MIN_CALL_INTERVAL", DEFAULT_LIVENESS_MIN_CALL_INTERVAL
            ),
            liveness_cache_ttl=_env_float(
                "LIVENESS_CACHE_TTL", DEFAULT_LIVENESS_CACHE_TTL
            ),
            probe_timeout=_env_float("LIVENESS_PROBE_TIMEOUT", DEFAULT_PROBE_TIMEOUT),
            quota_min_call_interval=_env_float(
                "QUOTA_MIN_CALL_INTERVAL", DEFAULT_QUOTA_MIN_CALL_INTERVAL
            ),
            quota_cache_ttl=_env_float("QUOTA_CACHE_TTL", DEFAULT_QUOTA_CACHE_TTL),
            store_timeout=_env_float("STORE_TIMEOUT", DEFAULT_STORE_TIMEOUT),
            target_process_name=(
                os.environ.get("LIVENESS_TARGET_NAME") or DEFAULT_TARGET_PROCESS_NAME
            ),
            extra_helper_patterns=_env_list(
                "LIVENESS_HELPER_PATTERNS", DEFAULT_EXTRA_HELPER_PATTERNS
            ),
            close_timeout=_env_float("APPLICATION_CLOSE_TIMEOUT", DEFAULT_CLOSE_TIMEOUT),
            application_executable=(
                os.environ.get("APPLICATION_EXECUTABLE") or DEFAULT_APPLICATION_EXECUTABLE
            ),
            store_path=Path(store_env) if store_env else data_dir / STORE_FILENAME,
            visibility_path=(
                Path(visibility_env)
                if visibility_env
                else data_dir / VISIBILITY_FILENAME
            ),
        )
