"""
Documentation cache with TTL expiry and a byte-budget LRU.

Caches catalog documentation lookups (``nodes-base.slack`` and friends) so
repeated validations do not re-resolve the same documentation.

Features:
- Entries expire ``ttl`` after they were stored; an expired entry is a miss
- Resident payload bytes never exceed ``size_budget_bytes``
- Least recently used, non-pinned entries are evicted to make room
- Expired entries are purged before any eviction decision
- Optional persistence through a local backend (``cache/{cache_key}.entry``)
- Hits only mark access metadata dirty; ``flush()`` (also run by ``cleanup()``
  and ``close()``) writes it back

The index and the byte counter are guarded by one asyncio lock; every
eviction runs under it.
"""

from __future__ import annotations

import asyncio
import copy
from collections import OrderedDict
from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any

from ..backends.base import BackendAdapter
from ..config import DEFAULT_CACHE_BUDGET_BYTES, DEFAULT_CACHE_TTL_SECONDS
from ..exceptions import (
    CacheEntryTooLargeError,
    InvalidStateError,
    NotFoundError,
    SessionValidationError,
    StorageTimeoutError,
    WorkflowStorageError,
)
from ..keys import CACHE_NAMESPACE, cache_entry_key, cache_key_from_entry_key, validate_cache_key
from ..logging_utils import get_storage_logger
from ..protocol import CacheEntry, CacheStats, Clock, payload_size, utc_now
from .prefetch import DEFAULT_KEYWORD_MAP, PrefetchResult, Resolver, resolve_keywords

logger = get_storage_logger("cache")


class DocumentationCache:
    """TTL + LRU cache for documentation payloads."""

    def __init__(
        self,
        backend: BackendAdapter | None = None,
        *,
        ttl: timedelta = timedelta(seconds=DEFAULT_CACHE_TTL_SECONDS),
        size_budget_bytes: int = DEFAULT_CACHE_BUDGET_BYTES,
        keyword_map: Mapping[str, Iterable[str]] = DEFAULT_KEYWORD_MAP,
        clock: Clock = utc_now,
        backend_timeout: float = 5.0,
    ):
        """Initialize the cache.

        Args:
            backend: Local backend entries persist to (None keeps them in memory)
            ttl: Lifetime of an entry, measured from when it was stored
            size_budget_bytes: Upper bound on the sum of serialized payload sizes
            keyword_map: Keyword to cache-key table used by prefetch
            clock: Source of the current time
            backend_timeout: Deadline for each backend call (seconds)
        """
        if ttl <= timedelta(0):
            raise SessionValidationError(f"ttl must be positive, got {ttl}", "ttl")
        if size_budget_bytes < 1:
            raise SessionValidationError(
                f"size_budget_bytes must be >= 1, got {size_budget_bytes}", "size_budget_bytes"
            )

        self.backend = backend
        self.ttl = ttl
        self.size_budget_bytes = size_budget_bytes
        self.keyword_map = keyword_map
        self.clock = clock
        self.backend_timeout = backend_timeout

        # Least recently used first
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._total_bytes = 0
        self._lock = asyncio.Lock()
        # Keys whose access metadata changed since they were last persisted
        self._dirty: set[str] = set()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    # Backend persistence (best effort; entries are non-authoritative)

    async def _backend_call(self, operation: str, key: str, *args: Any) -> Any:
        assert self.backend is not None
        method = getattr(self.backend, operation)
        try:
            return await asyncio.wait_for(method(key, *args), self.backend_timeout)
        except asyncio.TimeoutError as e:
            raise StorageTimeoutError(
                operation, key, self.backend_timeout, self.backend.name
            ) from e

    async def _persist(self, entry: CacheEntry) -> None:
        if self.backend is None:
            return
        self._dirty.discard(entry.cache_key)
        try:
            await self._backend_call("put", cache_entry_key(entry.cache_key), entry.to_dict())
        except WorkflowStorageError as e:
            logger.warning(f"Could not persist cache entry {entry.cache_key}: {e}")

    async def _forget(self, cache_keys: Iterable[str]) -> None:
        if self.backend is None:
            return
        for cache_key in cache_keys:
            try:
                await self._backend_call("delete", cache_entry_key(cache_key))
            except WorkflowStorageError as e:
                logger.warning(f"Could not delete cache entry {cache_key}: {e}")

    # Index maintenance (caller holds the lock)

    def _remove(self, cache_key: str) -> CacheEntry | None:
        entry = self._entries.pop(cache_key, None)
        self._dirty.discard(cache_key)
        if entry is not None:
            self._total_bytes -= entry.size_bytes
        return entry

    def _purge_expired(self) -> list[str]:
        now = self.clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for cache_key in expired:
            self._remove(cache_key)
        if expired:
            self._expirations += len(expired)
            logger.debug(f"Expired {len(expired)} cache entries")
        return expired

    def _evict_for(self, needed: int) -> list[str]:
        """Evict LRU non-pinned entries until ``needed`` more bytes fit."""
        evicted = []
        while self._total_bytes + needed > self.size_budget_bytes:
            victim = next((k for k, e in self._entries.items() if not e.pinned), None)
            if victim is None:
                break
            self._remove(victim)
            evicted.append(victim)
        if evicted:
            self._evictions += len(evicted)
            logger.debug(f"Evicted {len(evicted)} cache entries: {evicted}")
        return evicted

    # Operations

    async def get(self, cache_key: str) -> Any | None:
        """Return the cached payload, or None on a miss.

        A miss is never an error: absent, expired and invalid keys all miss.
        """
        async with self._lock:
            expired = self._purge_expired()
            entry = self._entries.get(cache_key)
            if entry is None:
                self._misses += 1
                logger.debug(f"Cache miss: {cache_key}")
                hit = None
            else:
                entry.last_accessed_at = self.clock()
                entry.access_count += 1
                self._entries.move_to_end(cache_key)
                self._hits += 1
                logger.debug(f"Cache hit: {cache_key}")
                hit = entry
                if self.backend is not None:
                    self._dirty.add(cache_key)
            await self._forget(expired)

        return copy.deepcopy(hit.payload) if hit is not None else None

    async def contains(self, cache_key: str) -> bool:
        """True when a fresh entry exists. Does not count as a request or touch LRU order."""
        async with self._lock:
            entry = self._entries.get(cache_key)
            return entry is not None and not entry.is_expired(self.clock())

    async def put(self, cache_key: str, payload: Any, *, pinned: bool = False) -> CacheEntry:
        """Insert or replace an entry, evicting LRU entries to make room.

        A replaced entry keeps its pin.

        Raises:
            CacheEntryTooLargeError: If the payload exceeds the whole budget, or
                pinned entries leave no room for it
            SessionValidationError: If the key is invalid or the payload is None
        """
        validate_cache_key(cache_key)
        if payload is None:
            raise SessionValidationError("Cache payload must not be None", "payload", cache_key)
        size = payload_size(payload)
        if size > self.size_budget_bytes:
            raise CacheEntryTooLargeError(cache_key, size, self.size_budget_bytes)

        async with self._lock:
            expired = self._purge_expired()

            existing = self._entries.get(cache_key)
            pinned_bytes = sum(
                e.size_bytes for k, e in self._entries.items() if e.pinned and k != cache_key
            )
            if pinned_bytes + size > self.size_budget_bytes:
                await self._forget(expired)
                raise CacheEntryTooLargeError(
                    cache_key,
                    size,
                    self.size_budget_bytes - pinned_bytes,
                    reason=f"pinned entries hold {pinned_bytes} of {self.size_budget_bytes} bytes",
                )

            self._remove(cache_key)
            evicted = self._evict_for(size)

            now = self.clock()
            entry = CacheEntry(
                cache_key=cache_key,
                payload=copy.deepcopy(payload),
                size_bytes=size,
                created_at=now,
                last_accessed_at=now,
                ttl=self.ttl,
                pinned=pinned or (existing is not None and existing.pinned),
            )
            self._entries[cache_key] = entry
            self._total_bytes += size

            await self._persist(entry)
            await self._forget(expired + evicted)

        logger.debug(f"Cached {cache_key} ({size} bytes, total {self._total_bytes})")
        return entry

    async def get_or_fetch(
        self, cache_key: str, resolver: Resolver, *, force_refresh: bool = False
    ) -> Any:
        """Return the cached payload, resolving and storing it on a miss.

        Resolver errors propagate to the caller.
        """
        if not force_refresh:
            cached = await self.get(cache_key)
            if cached is not None:
                return cached

        payload = await resolver(cache_key)
        await self.put(cache_key, payload)
        return payload

    async def prefetch(self, keywords: Iterable[str], resolver: Resolver) -> PrefetchResult:
        """Warm the cache for the catalog keys implied by ``keywords``.

        Best effort: resolver failures and oversize payloads are counted as
        skipped. Entries stored before a cancellation stay cached.
        """
        result = PrefetchResult()
        for cache_key in resolve_keywords(keywords, self.keyword_map):
            if await self.contains(cache_key):
                result.already_cached.append(cache_key)
                continue

            try:
                payload = await resolver(cache_key)
            except Exception as e:
                logger.warning(f"Prefetch resolver failed for {cache_key}: {e}")
                result.skipped.append(cache_key)
                continue

            try:
                await self.put(cache_key, payload)
            except (CacheEntryTooLargeError, SessionValidationError) as e:
                logger.warning(f"Prefetch could not cache {cache_key}: {e}")
                result.skipped.append(cache_key)
                continue
            result.prefetched.append(cache_key)

        logger.info(
            f"Prefetch complete: {result.count} prefetched, {len(result.skipped)} skipped, "
            f"{len(result.already_cached)} already cached"
        )
        return result

    async def prefetch_popular(self, resolver: Resolver) -> PrefetchResult:
        """Prefetch the most commonly used catalog items."""
        return await self.prefetch(["popular"], resolver)

    async def pin(self, cache_key: str) -> bool:
        """Exempt an entry from LRU eviction. Returns False if it is not cached."""
        return await self._set_pinned(cache_key, True)

    async def unpin(self, cache_key: str) -> bool:
        return await self._set_pinned(cache_key, False)

    async def _set_pinned(self, cache_key: str, pinned: bool) -> bool:
        async with self._lock:
            entry = self._entries.get(cache_key)
            if entry is None:
                return False
            entry.pinned = pinned
            await self._persist(entry)
            return True

    async def invalidate(self, cache_key: str) -> bool:
        """Drop one entry. Returns True if it was cached."""
        async with self._lock:
            removed = self._remove(cache_key) is not None
            if removed:
                await self._forget([cache_key])
            return removed

    async def _flush_dirty(self) -> int:
        dirty = [self._entries[k] for k in sorted(self._dirty) if k in self._entries]
        self._dirty.clear()
        for entry in dirty:
            await self._persist(entry)
        return len(dirty)

    async def flush(self) -> int:
        """Persist access metadata recorded by hits since the last flush.

        Returns the number of entries written.
        """
        async with self._lock:
            return await self._flush_dirty()

    async def close(self) -> None:
        await self.flush()

    async def cleanup(self) -> int:
        """Purge expired entries and flush access metadata. Returns how many were removed."""
        async with self._lock:
            expired = self._purge_expired()
            await self._forget(expired)
            await self._flush_dirty()
        if expired:
            logger.info(f"Cache cleanup removed {len(expired)} expired entries")
        return len(expired)

    async def stats(self) -> CacheStats:
        async with self._lock:
            expired = self._purge_expired()
            await self._forget(expired)

            now = self.clock()
            requests = self._hits + self._misses
            oldest_age = None
            if self._entries:
                oldest = min(e.created_at for e in self._entries.values())
                oldest_age = (now - oldest).total_seconds()

            return CacheStats(
                entry_count=len(self._entries),
                total_bytes=self._total_bytes,
                hit_rate=self._hits / requests if requests else 0.0,
                oldest_entry_age=oldest_age,
                hits=self._hits,
                misses=self._misses,
                requests=requests,
                evictions=self._evictions,
                expirations=self._expirations,
                size_budget_bytes=self.size_budget_bytes,
            )

    def reset_stats(self) -> None:
        """Restart the hit-rate window."""
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    async def clear(self) -> None:
        """Remove every entry (memory and backend) and reset counters."""
        async with self._lock:
            cached = list(self._entries)
            self._entries.clear()
            self._dirty.clear()
            self._total_bytes = 0
            self.reset_stats()

            if self.backend is not None:
                try:
                    stored = await self._backend_call("list", f"{CACHE_NAMESPACE}/")
                except WorkflowStorageError as e:
                    logger.warning(f"Could not list persisted cache entries: {e}")
                    stored = []
                for entry_key in stored:
                    cache_key = cache_key_from_entry_key(entry_key)
                    if cache_key is not None and cache_key not in cached:
                        cached.append(cache_key)
                await self._forget(cached)

        logger.info("Documentation cache cleared")

    async def load(self) -> int:
        """Rebuild the index from the backend.

        Expired and unreadable entries are deleted from the backend. Returns
        the number of entries loaded.
        """
        if self.backend is None:
            return 0

        async with self._lock:
            now = self.clock()
            loaded: list[CacheEntry] = []
            stale: list[str] = []

            for entry_key in await self._backend_call("list", f"{CACHE_NAMESPACE}/"):
                cache_key = cache_key_from_entry_key(entry_key)
                if cache_key is None:
                    continue
                try:
                    data = await self._backend_call("get", entry_key)
                    entry = CacheEntry.from_dict(data, entry_key)
                except NotFoundError:
                    continue
                except InvalidStateError as e:
                    logger.warning(f"Dropping unreadable cache entry {cache_key}: {e}")
                    stale.append(cache_key)
                    continue
                if entry.cache_key != cache_key or entry.is_expired(now):
                    stale.append(cache_key)
                    continue
                loaded.append(entry)

            self._entries.clear()
            self._dirty.clear()
            self._total_bytes = 0
            for entry in sorted(loaded, key=lambda e: e.last_accessed_at):
                self._entries[entry.cache_key] = entry
                self._total_bytes += entry.size_bytes

            evicted = self._evict_for(0)
            await self._forget(stale + evicted)

        logger.info(f"Loaded {len(self._entries)} cache entries ({self._total_bytes} bytes)")
        return len(self._entries)
