# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Model-name to provider-group resolution.

The registry is an ordered list of (prefix, provider) pairs. The longest
matching prefix wins, so "gemini-3-pro-image" lands in "Gemini Image"
while "gemini-3-pro" stays in "Gemini". Adding a family is one entry.
"""

from typing import Iterable, List, Optional, Sequence, Tuple

OTHER_PROVIDER = "Other"

DEFAULT_PROVIDER_PREFIXES: Tuple[Tuple[str, str], ...] = (
    ("claude", "Claude"),
    ("gemini", "Gemini"),
    ("gemini-3-pro-image", "Gemini Image"),
    ("gemini-2.5-flash-image", "Gemini Image"),
    ("gpt-oss", "GPT-OSS"),
    ("gpt", "OpenAI"),
)


class ProviderRegistry:
    """
    Resolves model names to provider groups.

    Example:
        registry = ProviderRegistry()
        registry.resolve("Claude-Sonnet-4.5")  # "Claude"
        registry.resolve("llama-3")            # "Other"
    """

    def __init__(
        self,
        entries: Iterable[Tuple[str, str]] = DEFAULT_PROVIDER_PREFIXES,
        fallback: str = OTHER_PROVIDER,
    ):
        self._entries: List[Tuple[str, str]] = [
            (prefix.lower(), provider) for prefix, provider in entries if prefix
        ]
        self.fallback = fallback

    @property
    def providers(self) -> List[str]:
        """Provider names in registry order, without duplicates or the fallback."""
        ordered: List[str] = []
        for _, provider in self._entries:
            if provider not in ordered:
                ordered.append(provider)
        return ordered

    def resolve(self, model_name: str) -> str:
        """Longest case-insensitive prefix match; earlier entries win ties."""
        name = model_name.lower()
        best: Optional[str] = None
        best_len = -1
        for prefix, provider in self._entries:
            if name.startswith(prefix) and len(prefix) > best_len:
                best = provider
                best_len = len(prefix)
        return best if best is not None else self.fallback

    def order_key(self, provider: str) -> int:
        """Sort key placing registry providers first and the fallback last."""
        providers = self.providers
        if provider in providers:
            return providers.index(provider)
        return len(providers)

    def sorted_providers(self, names: Sequence[str]) -> List[str]:
        return sorted(set(names), key=lambda p: (self.order_key(p), p))
