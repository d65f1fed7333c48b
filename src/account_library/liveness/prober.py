# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Process-table liveness probe for the managed application.

Enumeration is delegated to a process lister (psutil by default) that is
called once per probe with a single lower-cased needle. Classification of
the returned rows is platform-independent and lives in classify_processes().
"""

import logging
import os
import re
from typing import Callable, Iterable, List, Optional, Sequence

import psutil

from ..core.errors import ProbeError
from ..core.types import ProcessRecord
from .matchers import ProcessMatcher, build_helper_matchers, is_helper_process

lib_logger = logging.getLogger("account_library")

ProcessLister = Callable[[str], List[ProcessRecord]]

_PATH_SEPARATORS = re.compile(r"[\\/]")


# =============================================================================
# ENUMERATION
# =============================================================================


def list_processes(needle: str) -> List[ProcessRecord]:
    """
    Snapshot the OS process table, keeping rows that mention `needle`.

    The match is a case-insensitive substring test on the process name and
    command line, so one pass covers every capitalisation.

    Raises:
        ProbeError: The process table could not be read
    """
    needle = needle.lower()
    records: List[ProcessRecord] = []
    try:
        for proc in psutil.process_iter(["pid", "name", "cmdline"]):
            try:
                info = proc.info
                pid = info.get("pid")
                if pid is None:
                    continue
                name = info.get("name") or ""
                cmdline = info.get("cmdline") or []
                command_line = " ".join(cmdline)
                if needle in name.lower() or needle in command_line.lower():
                    records.append(
                        ProcessRecord(pid=int(pid), name=name, command_line=command_line)
                    )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
    except (psutil.Error, OSError) as e:
        raise ProbeError(f"Process enumeration failed: {e}") from e
    except (AttributeError, TypeError, ValueError) as e:
        raise ProbeError(f"Malformed process table entry: {e}") from e
    return records


# =============================================================================
# CLASSIFICATION
# =============================================================================


def _executable_stem(value: str) -> str:
    """'C:\\Apps\\Antigravity.exe' -> 'antigravity'."""
    base = _PATH_SEPARATORS.split(value.strip())[-1].lower()
    return base[:-4] if base.endswith(".exe") else base


def _matches_target(record: ProcessRecord, target: str) -> bool:
    if record.name:
        return _executable_stem(record.name) == target
    # Name unreadable: fall back to the executable part of the command line
    executable = record.command_line.split(" -", 1)[0]
    return bool(executable) and _executable_stem(executable) == target


def classify_processes(
    records: Iterable[ProcessRecord],
    target_name: str,
    self_pid: int,
    helper_matchers: Sequence[ProcessMatcher],
) -> List[ProcessRecord]:
    """
    Keep only records that prove the managed application is running.

    A record survives when it is not the caller's own process, is not a
    helper/child process, and its name matches the target.
    """
    target = target_name.lower()
    survivors = []
    for record in records:
        if record.pid == self_pid:
            continue
        if is_helper_process(record, helper_matchers):
            continue
        if not _matches_target(record, target):
            continue
        survivors.append(record)
    return survivors


class LivenessProber:
    """
    Answers "is the managed application running?" from the process table.

    Example:
        prober = LivenessProber("antigravity")
        running = prober.probe()
    """

    def __init__(
        self,
        target_name: str,
        helper_matchers: Optional[Sequence[ProcessMatcher]] = None,
        process_lister: Optional[ProcessLister] = None,
        self_pid: Optional[int] = None,
    ):
        """
        Args:
            target_name: Process name of the managed application
            helper_matchers: Records to ignore; defaults to the built-in set
            process_lister: Enumerator taking a lower-cased needle
            self_pid: PID to exclude; defaults to the current process
        """
        if not target_name or not target_name.strip():
            raise ValueError("target_name must not be empty")
        self.target_name = target_name.strip()
        self.helper_matchers = tuple(
            helper_matchers if helper_matchers is not None else build_helper_matchers()
        )
        self._lister = process_lister or list_processes
        self._self_pid = self_pid if self_pid is not None else os.getpid()

    def find_processes(self) -> List[ProcessRecord]:
        """
        Enumerate processes once and return those that prove the managed
        application is running.

        Raises:
            ProbeError: Enumeration failed
        """
        try:
            records = self._lister(self.target_name.lower())
        except ProbeError:
            raise
        except Exception as e:
            raise ProbeError(f"Process lister failed: {e}") from e

        survivors = classify_processes(
            records, self.target_name, self._self_pid, self.helper_matchers
        )
        if survivors:
            lib_logger.debug(
                f"Liveness probe: {len(survivors)} '{self.target_name}' process(es) "
                f"found (pids: {', '.join(str(r.pid) for r in survivors)})"
            )
        else:
            lib_logger.debug(
                f"Liveness probe: no '{self.target_name}' process "
                f"({len(records)} candidate(s) filtered)"
            )
        return survivors

    def probe(self) -> bool:
        """
        Raises:
            ProbeError: Enumeration failed
        """
        return bool(self.find_processes())
