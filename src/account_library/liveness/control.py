# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Stopping and starting the managed application.

The manager closes the application before switching accounts and starts
it again afterwards. Both operations change what the process table shows,
so each one resets the liveness gate it is given before returning.
"""

import logging
import subprocess
import sys
from typing import Callable, List, Optional, Sequence

import psutil

from ..config.defaults import DEFAULT_CLOSE_TIMEOUT
from ..core.errors import ApplicationControlError
from .cache import ProbeGate
from .prober import LivenessProber

lib_logger = logging.getLogger("account_library")

# Takes the full argv, returns the new process id
ProcessLauncher = Callable[[Sequence[str]], int]


# =============================================================================
# CLOSE
# =============================================================================


def _stop_process(pid: int, timeout: float) -> bool:
    """
    SIGTERM, then SIGKILL if the process outlives `timeout`.

    Returns:
        True once the process is gone
    """
    try:
        proc = psutil.Process(pid)
        proc.terminate()
        try:
            proc.wait(timeout=timeout)
            lib_logger.info(f"Process {pid} terminated gracefully")
            return True
        except psutil.TimeoutExpired:
            pass

        lib_logger.warning(f"Process {pid} still running after {timeout}s, sending SIGKILL")
        proc.kill()
        try:
            proc.wait(timeout=timeout)
            lib_logger.info(f"Process {pid} killed")
            return True
        except psutil.TimeoutExpired:
            lib_logger.error(f"Process {pid} survived SIGKILL")
            return False
    except psutil.NoSuchProcess:
        return True
    except psutil.AccessDenied as e:
        lib_logger.error(f"Not permitted to stop process {pid}: {e}")
        return False


def close_application(
    prober: LivenessProber,
    gate: Optional[ProbeGate] = None,
    timeout: float = DEFAULT_CLOSE_TIMEOUT,
) -> List[int]:
    """
    Stop every process that counts as the running application.

    Helper processes and the caller itself are never targeted.

    Args:
        prober: Selects the processes to stop
        gate: Liveness gate to reset afterwards
        timeout: Seconds to wait after SIGTERM, and again after SIGKILL

    Returns:
        PIDs that were stopped (empty when nothing was running)

    Raises:
        ProbeError: The process table could not be read
        ApplicationControlError: Some processes could not be stopped
    """
    try:
        targets = prober.find_processes()
        stopped: List[int] = []
        survivors: List[int] = []
        for record in targets:
            if _stop_process(record.pid, timeout):
                stopped.append(record.pid)
            else:
                survivors.append(record.pid)
    finally:
        if gate is not None:
            gate.reset()

    if survivors:
        raise ApplicationControlError(
            f"Could not stop '{prober.target_name}' (pids: {', '.join(map(str, survivors))})"
        )
    if stopped:
        lib_logger.info(
            f"Closed '{prober.target_name}' (pids: {', '.join(map(str, stopped))})"
        )
    else:
        lib_logger.debug(f"Close requested but '{prober.target_name}' is not running")
    return stopped


# =============================================================================
# START
# =============================================================================


def _launch_detached(argv: Sequence[str]) -> int:
    kwargs = {
        "stdin": subprocess.DEVNULL,
        "stdout": subprocess.DEVNULL,
        "stderr": subprocess.DEVNULL,
    }
    if sys.platform == "win32":
        kwargs["creationflags"] = (
            subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
        )
    else:
        # Keep the application alive when the manager exits
        kwargs["start_new_session"] = True
    return psutil.Popen(list(argv), **kwargs).pid


def start_application(
    executable: str,
    args: Sequence[str] = (),
    gate: Optional[ProbeGate] = None,
    launcher: Optional[ProcessLauncher] = None,
) -> int:
    """
    Launch the application detached from this process.

    Returns:
        PID of the launched process

    Raises:
        ApplicationControlError: Empty executable, or the launch failed
    """
    if not executable or not executable.strip():
        raise ApplicationControlError("No application executable configured")
    argv = [executable.strip(), *args]
    launch = launcher or _launch_detached
    try:
        pid = launch(argv)
    except (OSError, psutil.Error) as e:
        raise ApplicationControlError(f"Failed to start {argv[0]}: {e}") from e
    finally:
        if gate is not None:
            gate.reset()
    lib_logger.info(f"Started {argv[0]} (pid {pid})")
    return pid
