# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Shared core of the account manager: process liveness, the encrypted
credential store with its single-writer arbitration, and quota rollups.
"""

import logging

from .config import SyncSettings
from .core import (
    Account,
    AccountNotFound,
    ApplicationControlError,
    AccountQuotaSummary,
    KeyUnavailable,
    LivenessStatus,
    ModelQuota,
    OpenMode,
    ProbeError,
    ProcessRecord,
    ProviderGroupStats,
    StoreError,
    StoreUnavailable,
    WriteRejected,
    WriterConflict,
)
from .liveness import LivenessMonitor, LivenessProber, ProbeGate, create_liveness_monitor
from .quota import ModelVisibility, ProviderRegistry, QuotaAggregator
from .store import (
    AccountSnapshot,
    AccountSnapshotCache,
    StoreHandle,
    WriterArbiter,
    open_store,
)

# Library code logs through this logger; applications attach handlers.
logging.getLogger("account_library").addHandler(logging.NullHandler())

__all__ = [
    "Account",
    "AccountNotFound",
    "ApplicationControlError",
    "AccountQuotaSummary",
    "AccountSnapshot",
    "AccountSnapshotCache",
    "KeyUnavailable",
    "LivenessMonitor",
    "LivenessProber",
    "LivenessStatus",
    "ModelQuota",
    "ModelVisibility",
    "OpenMode",
    "ProbeError",
    "ProbeGate",
    "ProcessRecord",
    "ProviderGroupStats",
    "ProviderRegistry",
    "QuotaAggregator",
    "StoreError",
    "StoreHandle",
    "StoreUnavailable",
    "SyncSettings",
    "WriteRejected",
    "WriterArbiter",
    "WriterConflict",
    "create_liveness_monitor",
    "open_store",
]
