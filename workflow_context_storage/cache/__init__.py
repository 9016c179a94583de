"""
Documentation cache.

TTL + byte-budget LRU cache for catalog documentation, with keyword-driven
prefetch.
"""

from .docs_cache import DocumentationCache
from .prefetch import (
    DEFAULT_KEYWORD_MAP,
    POPULAR_NODE_KEYS,
    PrefetchResult,
    Resolver,
    resolve_keywords,
)

__all__ = [
    "DocumentationCache",
    "DEFAULT_KEYWORD_MAP",
    "POPULAR_NODE_KEYS",
    "PrefetchResult",
    "Resolver",
    "resolve_keywords",
]
