# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .errors import (
    AccountNotFound,
    ApplicationControlError,
    KeyUnavailable,
    ProbeError,
    StoreError,
    StoreUnavailable,
    WriteRejected,
    WriterConflict,
)
from .types import (
    Account,
    AccountQuotaSummary,
    LivenessStatus,
    ModelQuota,
    OpenMode,
    ProcessRecord,
    ProviderGroupStats,
)

__all__ = [
    "Account",
    "AccountNotFound",
    "ApplicationControlError",
    "AccountQuotaSummary",
    "KeyUnavailable",
    "LivenessStatus",
    "ModelQuota",
    "OpenMode",
    "ProbeError",
    "ProcessRecord",
    "ProviderGroupStats",
    "StoreError",
    "StoreUnavailable",
    "WriteRejected",
    "WriterConflict",
]
