# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Centralized defaults for the account library.

This file contains all tunable default values for:
- Liveness probing (rate limit, cache TTL, timeout, target process)
- Closing and starting the managed application
- Account/quota snapshot caching
- Credential store file layout

Environment variables can override at runtime (see settings.py).
"""

from typing import Optional, Tuple

# =============================================================================
# LIVENESS DEFAULTS
# =============================================================================

# Minimum seconds between two attempted process-table enumerations.
# Absorbs callers that poll far faster than intended.
# Override: LIVENESS_MIN_CALL_INTERVAL=<seconds>
DEFAULT_LIVENESS_MIN_CALL_INTERVAL: float = 5.0

# Seconds a liveness result stays fresh.
# Override: LIVENESS_CACHE_TTL=<seconds>
DEFAULT_LIVENESS_CACHE_TTL: float = 60.0

# Seconds a single enumeration may take before it counts as failed.
# Override: LIVENESS_PROBE_TIMEOUT=<seconds>
DEFAULT_PROBE_TIMEOUT: float = 10.0

# Process name of the managed application (matched case-insensitively).
# Override: LIVENESS_TARGET_NAME=<name>
DEFAULT_TARGET_PROCESS_NAME: str = "antigravity"

# Extra helper-process name patterns, appended to the built-in matchers.
# Override: LIVENESS_HELPER_PATTERNS=pattern1,pattern2
DEFAULT_EXTRA_HELPER_PATTERNS: Tuple[str, ...] = ()

# Seconds to wait for the application to exit after SIGTERM, and again
# after SIGKILL, when closing it.
# Override: APPLICATION_CLOSE_TIMEOUT=<seconds>
DEFAULT_CLOSE_TIMEOUT: float = 5.0

# Executable launched by start requests; unset disables starting.
# Override: APPLICATION_EXECUTABLE=<path>
DEFAULT_APPLICATION_EXECUTABLE: Optional[str] = None

# =============================================================================
# QUOTA SNAPSHOT DEFAULTS
# =============================================================================
# Same shape of policy as liveness, configured independently.

# Override: QUOTA_MIN_CALL_INTERVAL=<seconds>
DEFAULT_QUOTA_MIN_CALL_INTERVAL: float = 5.0

# Override: QUOTA_CACHE_TTL=<seconds>
DEFAULT_QUOTA_CACHE_TTL: float = 60.0

# =============================================================================
# STORE DEFAULTS
# =============================================================================

# Seconds a store call may wait on SQLite locks or run before failing.
# Override: STORE_TIMEOUT=<seconds>
DEFAULT_STORE_TIMEOUT: float = 5.0

# File names inside the data directory
STORE_FILENAME: str = "accounts.db"
VISIBILITY_FILENAME: str = "model_visibility.json"

# Suffixes of the files that live beside the store
KEY_FILE_SUFFIX: str = ".key"
LOCK_FILE_SUFFIX: str = ".lock"
