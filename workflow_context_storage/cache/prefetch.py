"""
Keyword-driven prefetch table.

Maps intent keywords (``slack``, ``webhook``, ``database``...) to the catalog
documentation keys worth warming before the caller asks for them. The table
is static and swappable; fetching the documentation itself is left to a
caller-supplied resolver.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

Resolver = Callable[[str], Awaitable[Any]]

POPULAR_NODE_KEYS: tuple[str, ...] = (
    "nodes-base.slack",
    "nodes-base.httpRequest",
    "nodes-base.webhook",
    "nodes-base.googleSheets",
    "nodes-base.code",
    "nodes-base.if",
    "nodes-base.postgres",
    "nodes-base.gmail",
)

DEFAULT_KEYWORD_MAP: dict[str, tuple[str, ...]] = {
    "slack": ("nodes-base.slack",),
    "http": ("nodes-base.httpRequest",),
    "api": ("nodes-base.httpRequest", "nodes-base.webhook"),
    "webhook": ("nodes-base.webhook", "nodes-base.respondToWebhook"),
    "sheets": ("nodes-base.googleSheets",),
    "spreadsheet": ("nodes-base.googleSheets",),
    "code": ("nodes-base.code",),
    "javascript": ("nodes-base.code",),
    "if": ("nodes-base.if",),
    "condition": ("nodes-base.if", "nodes-base.switch"),
    "postgres": ("nodes-base.postgres",),
    "database": ("nodes-base.postgres",),
    "gmail": ("nodes-base.gmail",),
    "email": ("nodes-base.gmail", "nodes-base.emailSend"),
    "notification": ("nodes-base.slack", "nodes-base.emailSend"),
    "alert": ("nodes-base.slack", "nodes-base.emailSend"),
    "popular": POPULAR_NODE_KEYS,
}


@dataclass
class PrefetchResult:
    """Outcome of one prefetch batch."""

    prefetched: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    already_cached: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.prefetched)


def resolve_keywords(
    keywords: Iterable[str], keyword_map: Mapping[str, Iterable[str]]
) -> list[str]:
    """Cache keys implied by ``keywords``, deduplicated in first-seen order.

    Keywords are matched case-insensitively; unknown keywords are ignored.
    """
    resolved: dict[str, None] = {}
    for keyword in keywords:
        for cache_key in keyword_map.get(keyword.strip().lower(), ()):
            resolved.setdefault(cache_key, None)
    return list(resolved)
