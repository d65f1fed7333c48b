# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .arbiter import ArbiterState, WriterArbiter, WriterLease
from .credential_store import SCHEMA_VERSION, StoreHandle, open_store
from .crypto import KeyMaterial
from .snapshot import AccountSnapshot, AccountSnapshotCache

__all__ = [
    "AccountSnapshot",
    "AccountSnapshotCache",
    "ArbiterState",
    "KeyMaterial",
    "SCHEMA_VERSION",
    "StoreHandle",
    "WriterArbiter",
    "WriterLease",
    "open_store",
]
