# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Error taxonomy for the account library.

ProbeError is recovered inside the liveness monitor and never reaches
callers. Store errors share the StoreError base so HTTP handlers and the
CLI can catch them in one place.
"""

from typing import Optional


class ProbeError(Exception):
    """The OS process table could not be enumerated."""


class StoreError(Exception):
    """Base class for credential store failures."""


class StoreUnavailable(StoreError):
    """The store file is missing, corrupt, locked or uninitialized."""


class WriteRejected(StoreError):
    """A writer-only operation was invoked on a read-only handle."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            f"'{operation}' rejected: store handle is opened read-only"
        )


class WriterConflict(StoreError):
    """Another process already holds write access to the store."""

    def __init__(self, store_path: str, owner_pid: Optional[int] = None):
        self.store_path = store_path
        self.owner_pid = owner_pid
        owner = f"pid {owner_pid}" if owner_pid else "another process"
        super().__init__(
            f"Store '{store_path}' is already opened read-write by {owner}"
        )


class KeyUnavailable(StoreError):
    """Encrypted fields cannot be decrypted without the shared key."""


class AccountNotFound(StoreError):
    """No account exists with the requested id."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account '{account_id}' not found")


class ApplicationControlError(Exception):
    """The managed application could not be stopped or started."""
