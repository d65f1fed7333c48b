# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Cached view of accounts and quota for polling readers.

Uses its own ProbeGate, so quota refresh thresholds are configured
independently of liveness.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..core.errors import AccountNotFound, StoreError
from ..core.types import Account, ModelQuota
from ..liveness.cache import ProbeGate
from .credential_store import StoreHandle

lib_logger = logging.getLogger("account_library")


@dataclass
class AccountSnapshot:
    """Accounts and their quota rows as read in one refresh."""

    accounts: List[Account]
    quota: Dict[str, List[ModelQuota]] = field(default_factory=dict)
    taken_at: float = 0.0

    def find_account(self, account_id: str) -> Optional[Account]:
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None

    def quota_for(self, account_id: str) -> List[ModelQuota]:
        """
        Raises:
            AccountNotFound: The account is not part of this snapshot
        """
        if self.find_account(account_id) is None:
            raise AccountNotFound(account_id)
        return list(self.quota.get(account_id, []))


class AccountSnapshotCache:
    """
    Serves AccountSnapshot through the gate's fresh / throttled / stale policy.

    Unlike liveness there is no safe default value: a failed first refresh
    raises the StoreError to the caller.
    """

    def __init__(
        self,
        handle: StoreHandle,
        gate: ProbeGate[AccountSnapshot],
        timeout: float,
        clock: Callable[[], float] = time.time,
    ):
        self._handle = handle
        self._gate = gate
        self._timeout = timeout
        self._clock = clock

    @property
    def gate(self) -> ProbeGate[AccountSnapshot]:
        return self._gate

    async def snapshot(self) -> AccountSnapshot:
        """
        Raises:
            StoreError: Refresh failed and no previous snapshot exists
        """
        now = self._clock()
        cached, fresh = self._gate.get(now)
        if cached is not None and fresh:
            return cached

        if cached is not None and not self._gate.try_begin_attempt(now):
            lib_logger.debug("Account snapshot refresh throttled, serving cached copy")
            return cached
        if cached is None:
            # Nothing to serve yet, so a throttled first call still reads.
            self._gate.try_begin_attempt(now)

        try:
            snapshot = await asyncio.wait_for(
                asyncio.to_thread(self._read, now), timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            if cached is None:
                raise StoreError(
                    f"Reading {self._handle.path} timed out after {self._timeout}s"
                ) from e
            lib_logger.warning(
                f"Account snapshot refresh timed out after {self._timeout}s, serving stale copy"
            )
            return cached
        except StoreError as e:
            if cached is None:
                raise
            lib_logger.warning(f"Account snapshot refresh failed ({e}), serving stale copy")
            return cached

        self._gate.record(snapshot, now)
        return snapshot

    def invalidate(self) -> None:
        """Drop the cached snapshot; called after local writes."""
        self._gate.reset()

    def _read(self, now: float) -> AccountSnapshot:
        accounts, rows = self._handle.read_snapshot()
        quota: Dict[str, List[ModelQuota]] = {account.id: [] for account in accounts}
        for row in rows:
            quota.setdefault(row.account_id, []).append(row)
        lib_logger.debug(
            f"Account snapshot refreshed: {len(accounts)} account(s), "
            f"{sum(len(rows) for rows in quota.values())} quota row(s)"
        )
        return AccountSnapshot(accounts=accounts, quota=quota, taken_at=now)
