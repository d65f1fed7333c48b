# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from typing import Iterable, Optional

from .cache import ProbeGate
from .control import ProcessLauncher, close_application, start_application
from .matchers import (
    DEFAULT_HELPER_MATCHERS,
    ProcessMatcher,
    build_helper_matchers,
)
from .monitor import LivenessMonitor
from .prober import LivenessProber, ProcessLister, classify_processes, list_processes


def create_liveness_monitor(
    target_name: str,
    min_call_interval: float,
    cache_ttl: float,
    probe_timeout: float,
    extra_helper_patterns: Iterable[str] = (),
    process_lister: Optional[ProcessLister] = None,
    process_launcher: Optional[ProcessLauncher] = None,
) -> LivenessMonitor:
    """Wire a prober, its gate and the monitor from plain settings."""
    prober = LivenessProber(
        target_name,
        helper_matchers=build_helper_matchers(extra_helper_patterns),
        process_lister=process_lister,
    )
    return LivenessMonitor(
        prober,
        ProbeGate(min_call_interval, cache_ttl),
        probe_timeout,
        launcher=process_launcher,
    )


__all__ = [
    "DEFAULT_HELPER_MATCHERS",
    "LivenessMonitor",
    "LivenessProber",
    "ProbeGate",
    "ProcessLauncher",
    "ProcessLister",
    "ProcessMatcher",
    "build_helper_matchers",
    "classify_processes",
    "close_application",
    "create_liveness_monitor",
    "list_processes",
    "start_application",
]
