# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Best-effort liveness with caching, rate limiting and stale fallback.

Liveness is a display signal, not a correctness one: every failure path
resolves to the last known value, or to "not running" when nothing has
been observed yet.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional, Sequence

from ..config.defaults import DEFAULT_CLOSE_TIMEOUT
from ..core.errors import ProbeError
from ..core.types import LivenessStatus
from .cache import ProbeGate
from .control import ProcessLauncher, close_application, start_application
from .prober import LivenessProber

lib_logger = logging.getLogger("account_library")


class LivenessMonitor:
    """
    Serves liveness from a ProbeGate, probing only when needed.

    Decision order per call:
    1. cached value within TTL -> return it
    2. last attempt within the minimum interval -> return cached (or False)
    3. probe in a worker thread, bounded by probe_timeout
    4. on ProbeError/timeout -> return cached (or False)

    Usage:
        monitor = LivenessMonitor(prober, ProbeGate(5, 60), probe_timeout=10)
        running = await monitor.is_running()
    """

    def __init__(
        self,
        prober: LivenessProber,
        gate: ProbeGate[bool],
        probe_timeout: float,
        clock: Callable[[], float] = time.time,
        launcher: Optional[ProcessLauncher] = None,
    ):
        self._prober = prober
        self._gate = gate
        self._probe_timeout = probe_timeout
        self._clock = clock
        self._launcher = launcher

    @property
    def gate(self) -> ProbeGate[bool]:
        return self._gate

    async def status(self) -> LivenessStatus:
        now = self._clock()
        cached, fresh = self._gate.get(now)
        if cached is not None and fresh:
            return self._cached_status(cached)

        if not self._gate.try_begin_attempt(now):
            lib_logger.debug("Liveness probe throttled, serving last known value")
            return self._fallback(cached, now)

        try:
            running = await asyncio.wait_for(
                asyncio.to_thread(self._prober.probe), timeout=self._probe_timeout
            )
        except ProbeError as e:
            lib_logger.warning(f"Liveness probe failed: {e}")
            return self._fallback(cached, now)
        except asyncio.TimeoutError:
            lib_logger.warning(
                f"Liveness probe timed out after {self._probe_timeout}s"
            )
            return self._fallback(cached, now)

        observed_at = self._gate.record(running, now)
        return LivenessStatus(running=running, observed_at=observed_at)

    async def is_running(self) -> bool:
        return (await self.status()).running

    def reset(self) -> None:
        """Drop cached state so the next call probes immediately."""
        self._gate.reset()

    async def close_application(self, timeout: float = DEFAULT_CLOSE_TIMEOUT) -> List[int]:
        """
        Stop the application and drop cached liveness.

        Raises:
            ProbeError: The process table could not be read
            ApplicationControlError: Some processes could not be stopped
        """
        return await asyncio.to_thread(close_application, self._prober, self._gate, timeout)

    async def start_application(self, executable: str, args: Sequence[str] = ()) -> int:
        """
        Launch the application and drop cached liveness.

        Raises:
            ApplicationControlError: The launch failed
        """
        return await asyncio.to_thread(
            start_application, executable, args, self._gate, self._launcher
        )

    def _cached_status(self, value: bool) -> LivenessStatus:
        observed_at = self._gate.last_recorded_at()
        return LivenessStatus(running=value, observed_at=observed_at or 0.0)

    def _fallback(self, cached: Optional[bool], now: float) -> LivenessStatus:
        if cached is not None:
            return self._cached_status(cached)
        return LivenessStatus(running=False, observed_at=now)
