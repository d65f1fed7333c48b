# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Declarative matchers for processes that must not count as "running".

Helper and child processes of the managed application share its name on
every platform (Electron renderers, GPU helpers, crash handlers), and the
manager itself may carry the same name prefix. Each quirk is one entry in
a tuple; adding a new one never touches the classification code.
"""

from dataclasses import dataclass
from typing import Iterable, Literal, Tuple

from ..core.types import ProcessRecord

MatchField = Literal["name", "command_line"]
MatchKind = Literal["contains", "prefix", "suffix"]


@dataclass(frozen=True)
class ProcessMatcher:
    """
    Case-insensitive check against one field of a ProcessRecord.

    Example:
        ProcessMatcher("command_line", "contains", "--type=")
    """

    field: MatchField
    kind: MatchKind
    pattern: str

    def matches(self, record: ProcessRecord) -> bool:
        value = (getattr(record, self.field) or "").lower()
        pattern = self.pattern.lower()
        if self.kind == "contains":
            return pattern in value
        if self.kind == "prefix":
            return value.startswith(pattern)
        if self.kind == "suffix":
            return _strip_exe(value).endswith(_strip_exe(pattern))
        raise ValueError(f"Unknown matcher kind: {self.kind}")


def _strip_exe(value: str) -> str:
    return value[:-4] if value.endswith(".exe") else value


# Built-in helper patterns
#   --type=            Chromium/Electron subprocess role (renderer, gpu-process, utility)
#   " helper"          macOS helper bundles: "Antigravity Helper (Renderer)"
#   crashpad_handler   crash reporter spawned next to the main binary
#   " manager"         the account manager shares the application name prefix
DEFAULT_HELPER_MATCHERS: Tuple[ProcessMatcher, ...] = (
    ProcessMatcher("command_line", "contains", "--type="),
    ProcessMatcher("name", "contains", " helper"),
    ProcessMatcher("name", "suffix", "crashpad_handler"),
    ProcessMatcher("name", "suffix", " manager"),
    ProcessMatcher("command_line", "contains", " manager.app/"),
)


def build_helper_matchers(
    extra_name_patterns: Iterable[str] = (),
) -> Tuple[ProcessMatcher, ...]:
    """Default matchers plus operator-supplied name substrings."""
    extra = tuple(
        ProcessMatcher("name", "contains", pattern)
        for pattern in extra_name_patterns
        if pattern
    )
    return DEFAULT_HELPER_MATCHERS + extra


def is_helper_process(
    record: ProcessRecord, matchers: Iterable[ProcessMatcher]
) -> bool:
    return any(matcher.matches(record) for matcher in matchers)
