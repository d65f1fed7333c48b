# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Shared type definitions for the account library.

This module contains dataclasses and type definitions used across
the liveness, store and quota packages.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


# =============================================================================
# LIVENESS TYPES
# =============================================================================


@dataclass(frozen=True)
class LivenessStatus:
    """
    Result of a liveness check.

    Recomputed on every probe and never persisted.
    """

    running: bool
    observed_at: float  # Unix timestamp of the probe that produced it


@dataclass(frozen=True)
class ProcessRecord:
    """
    One row of the OS process table.

    Produced by a process lister and consumed once per probe.
    """

    pid: int
    name: str
    command_line: str = ""


# =============================================================================
# STORE TYPES
# =============================================================================


class OpenMode(str, Enum):
    """Access mode a store handle is opened with."""

    READ_WRITE = "rw"
    READ_ONLY = "ro"


@dataclass
class Account:
    """
    An account row from the credential store.

    The token is kept in its encrypted form; decrypting it requires the
    shared key material.
    """

    id: str
    provider: str
    encrypted_token: Optional[str]
    created_at: float
    last_refreshed_at: Optional[float] = None
    email: Optional[str] = None  # Display label, not a secret


@dataclass
class ModelQuota:
    """
    Quota snapshot for one model on one account.

    Many-to-one with Account; removed together with its account.
    """

    account_id: str
    model_name: str
    used: int
    limit: int
    reset_at: Optional[float] = None  # Unix timestamp, None if unknown

    @property
    def remaining(self) -> int:
        """Requests left in the current window, never negative."""
        return max(0, self.limit - self.used)


# =============================================================================
# AGGREGATION TYPES
# =============================================================================


@dataclass
class ProviderGroupStats:
    """
    Provider-level rollup of visible quota rows.

    avg_percent_remaining is None when the group has no visible rows with a
    usable limit ("no data"), never 0.
    """

    provider: str
    avg_percent_remaining: Optional[float]
    earliest_reset: Optional[float]
    visible_model_count: int


@dataclass
class AccountQuotaSummary:
    """
    Account-level rollup across all providers.

    The average is weighted by each row's limit, so providers with many
    models count proportionally.
    """

    account_id: str
    avg_percent_remaining: Optional[float]
    earliest_reset: Optional[float]
    visible_model_count: int
    providers: List[ProviderGroupStats] = field(default_factory=list)
