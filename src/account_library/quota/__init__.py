# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .aggregator import QuotaAggregator, percent_remaining
from .registry import DEFAULT_PROVIDER_PREFIXES, OTHER_PROVIDER, ProviderRegistry
from .visibility import ModelVisibility

__all__ = [
    "DEFAULT_PROVIDER_PREFIXES",
    "ModelVisibility",
    "OTHER_PROVIDER",
    "ProviderRegistry",
    "QuotaAggregator",
    "percent_remaining",
]
