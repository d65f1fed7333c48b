# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Provider- and account-level quota rollups.

Pure functions of the quota rows and the visibility map; nothing here
touches the store. Hidden models are removed before any statistic is
computed, so a hidden model's reset time never becomes a group's
earliest reset.
"""

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from ..core.types import AccountQuotaSummary, ModelQuota, ProviderGroupStats
from .registry import ProviderRegistry
from .visibility import ModelVisibility


def percent_remaining(row: ModelQuota) -> Optional[float]:
    """Remaining share of one row in percent, or None if it has no usable limit."""
    if row.limit <= 0:
        return None
    return row.remaining / row.limit * 100.0


def _earliest_reset(rows: Iterable[ModelQuota]) -> Optional[float]:
    resets = [row.reset_at for row in rows if row.reset_at is not None]
    return min(resets) if resets else None


class QuotaAggregator:
    """
    Groups quota rows by provider and computes rollups.

    Usage:
        aggregator = QuotaAggregator()
        groups = aggregator.provider_groups(rows, visibility)
        summary = aggregator.account_summary(account_id, rows, visibility)
    """

    def __init__(self, registry: Optional[ProviderRegistry] = None):
        self.registry = registry or ProviderRegistry()

    def provider_groups(
        self,
        rows: Iterable[ModelQuota],
        visibility: Optional[ModelVisibility] = None,
    ) -> List[ProviderGroupStats]:
        """
        Per-provider statistics over visible rows.

        avg_percent_remaining is the unweighted mean of each visible row's
        percentage. A provider whose rows are all hidden is still listed,
        with no data and a count of 0.
        """
        grouped: Dict[str, List[ModelQuota]] = OrderedDict()
        for row in rows:
            bucket = grouped.setdefault(self.registry.resolve(row.model_name), [])
            if visibility is None or visibility.is_visible(row.model_name):
                bucket.append(row)

        result: List[ProviderGroupStats] = []
        for provider in self.registry.sorted_providers(list(grouped)):
            visible = grouped[provider]
            percents = [p for p in (percent_remaining(r) for r in visible) if p is not None]
            result.append(
                ProviderGroupStats(
                    provider=provider,
                    avg_percent_remaining=(
                        sum(percents) / len(percents) if percents else None
                    ),
                    earliest_reset=_earliest_reset(visible),
                    visible_model_count=len(visible),
                )
            )
        return result

    def account_summary(
        self,
        account_id: str,
        rows: Iterable[ModelQuota],
        visibility: Optional[ModelVisibility] = None,
    ) -> AccountQuotaSummary:
        """
        Account rollup weighted by quota size:
        sum(remaining) / sum(limit) over visible rows with a usable limit.
        """
        rows = [row for row in rows if row.account_id == account_id]
        visible = [
            row
            for row in rows
            if visibility is None or visibility.is_visible(row.model_name)
        ]
        sized = [row for row in visible if row.limit > 0]
        total_limit = sum(row.limit for row in sized)
        avg = (
            sum(row.remaining for row in sized) / total_limit * 100.0
            if total_limit > 0
            else None
        )
        return AccountQuotaSummary(
            account_id=account_id,
            avg_percent_remaining=avg,
            earliest_reset=_earliest_reset(visible),
            visible_model_count=len(visible),
            providers=self.provider_groups(rows, visibility),
        )
