"""
Dual-backend coordinator.

Combines a remote backend (authoritative when reachable) with a local
backend (fallback and mirror) into one logical store.

Write flow:
1. Write to REMOTE first
2. On success, mirror to local (best-effort; failures are logged only)
3. On remote failure or timeout, write to local and mark the key pending-sync

Read flow:
- Keys with a pending marker are served from local, which holds the newest write
- Otherwise remote first, local when the remote fails or misses

Reconciliation replays pending markers against the remote, on demand via
``reconcile()`` or periodically via ``start_background_sync()``. Markers are
never dropped because of repeated failures.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..backends.base import BackendAdapter
from ..exceptions import (
    InvalidStateError,
    NotFoundError,
    StorageIOError,
    StorageTimeoutError,
    WorkflowStorageError,
)
from ..keys import PENDING_NAMESPACE
from ..locks import KeyedLock
from ..logging_utils import StorageLoggerAdapter
from .circuit import CircuitBreaker
from .pending import PendingOperation, PendingSync, PendingSyncTracker

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Sync state for a key."""

    SYNCED = "synced"  # Remote holds the latest write
    PENDING = "pending"  # Has an unsynced local write or delete
    LOCAL_ONLY = "local_only"  # No remote backend configured


@dataclass
class ReconcileResult:
    """Result of a reconciliation sweep."""

    attempted: int = 0
    synced: int = 0
    failed: int = 0
    remaining: int = 0
    errors: dict[str, str] = field(default_factory=dict)


class DualBackendCoordinator:
    """Remote-authoritative store with a local fallback and mirror.

    Operations on the same key are serialized; operations on distinct keys
    run concurrently. Every backend call is bounded by a timeout, and a
    timeout is handled exactly like any other remote failure.
    """

    def __init__(
        self,
        remote: BackendAdapter | None,
        local: BackendAdapter,
        *,
        remote_timeout: float = 5.0,
        local_timeout: float = 5.0,
        local_fallback_enabled: bool = True,
        circuit: CircuitBreaker | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            remote: Authoritative remote backend, or None for local-only mode
            local: Local backend (fallback, mirror, pending-sync side-table)
            remote_timeout: Deadline for each remote call (seconds)
            local_timeout: Deadline for each local call (seconds)
            local_fallback_enabled: Write locally and mark pending on remote failure
            circuit: Circuit breaker guarding remote calls
        """
        self.remote = remote
        self.local = local
        self.remote_timeout = remote_timeout
        self.local_timeout = local_timeout
        self.local_fallback_enabled = local_fallback_enabled
        self.circuit = circuit or CircuitBreaker()
        self.pending = PendingSyncTracker(local, timeout=local_timeout)

        self._locks = KeyedLock()
        self._sync_task: asyncio.Task[None] | None = None
        self._running = False
        self._log = StorageLoggerAdapter(logger, {"component": "coordinator"})

    @property
    def local_only(self) -> bool:
        return self.remote is None

    # Backend calls

    async def _call(
        self, backend: BackendAdapter, operation: str, key: str, timeout: float, *args: Any
    ) -> Any:
        method = getattr(backend, operation)
        try:
            return await asyncio.wait_for(method(key, *args), timeout)
        except asyncio.TimeoutError as e:
            raise StorageTimeoutError(operation, key, timeout, backend.name) from e

    async def _local_call(self, operation: str, key: str, *args: Any) -> Any:
        return await self._call(self.local, operation, key, self.local_timeout, *args)

    async def _remote_call(
        self, operation: str, key: str, *args: Any, bypass_circuit: bool = False
    ) -> Any:
        """Call the remote backend, feeding the circuit breaker.

        ``bypass_circuit`` ignores an open circuit (used by reconciliation).
        Non-semantic failures are normalized to StorageIOError.
        """
        if self.remote is None:
            raise StorageIOError(operation, key, RuntimeError("no remote backend"), "remote")
        if not bypass_circuit and not self.circuit.allow_request():
            raise StorageIOError(operation, key, RuntimeError("circuit open"), self.remote.name)

        try:
            result = await self._call(self.remote, operation, key, self.remote_timeout, *args)
        except (NotFoundError, InvalidStateError):
            # The remote answered; it is reachable
            self.circuit.record_success()
            raise
        except StorageIOError as e:
            self.circuit.record_failure(str(e))
            raise
        except WorkflowStorageError:
            raise
        except Exception as e:
            self.circuit.record_failure(str(e))
            raise StorageIOError(operation, key, e, self.remote.name) from e

        self.circuit.record_success()
        return result

    # Store operations

    async def put(self, key: str, value: dict[str, Any]) -> None:
        """Write ``value`` under ``key``.

        Raises:
            StorageIOError: Only when the remote fails and the local
                fallback is disabled or also fails
        """
        async with self._locks.hold(key):
            if self.remote is None:
                await self._local_call("put", key, value)
                return

            try:
                await self._remote_call("put", key, value)
            except StorageIOError as e:
                if not self.local_fallback_enabled:
                    raise
                self._log.warning(
                    f"Remote put failed for {key}, writing locally and marking pending: {e}",
                    extra={"key": key},
                )
                await self._local_call("put", key, value)
                await self.pending.mark(key, PendingOperation.PUT, str(e))
                return

            try:
                await self._local_call("put", key, value)
            except WorkflowStorageError as e:
                self._log.warning(f"Local mirror failed for {key}: {e}", extra={"key": key})
            await self._clear_pending(key)

    async def get(self, key: str) -> dict[str, Any]:
        """Read ``key``, falling back to local when the remote cannot answer.

        Raises:
            NotFoundError: If neither backend has the key
            InvalidStateError: If the stored value is malformed
            StorageIOError: If both backends fail
        """
        async with self._locks.hold(key):
            marker = await self._pending_marker(key)
            if marker is not None:
                if marker.operation is PendingOperation.DELETE:
                    raise NotFoundError(key)
                try:
                    return await self._local_call("get", key)
                except NotFoundError:
                    self._log.warning(
                        f"Pending key {key} missing locally, reading remote", extra={"key": key}
                    )

            if self.remote is None:
                return await self._local_call("get", key)

            try:
                return await self._remote_call("get", key)
            except NotFoundError:
                pass
            except StorageIOError as e:
                if not self.local_fallback_enabled:
                    raise
                self._log.warning(
                    f"Remote get failed for {key}, reading local copy: {e}", extra={"key": key}
                )

            return await self._local_call("get", key)

    async def list(self, prefix: str) -> list[str]:
        """Merged, deduplicated key listing across both backends.

        Best-effort snapshot; may race with concurrent writes.
        """
        keys: set[str] = set()
        remote_failed = False

        if self.remote is not None:
            try:
                keys.update(await self._remote_call("list", prefix))
            except StorageIOError as e:
                remote_failed = True
                self._log.warning(f"Remote list failed for {prefix!r}, using local: {e}")

        try:
            local_keys = await self._local_call("list", prefix)
        except StorageIOError:
            if remote_failed or self.remote is None:
                raise
            self._log.warning(f"Local list failed for {prefix!r}, using remote only")
            local_keys = []

        pending_prefix = f"{PENDING_NAMESPACE}/"
        keys.update(k for k in local_keys if not k.startswith(pending_prefix))

        try:
            markers = await self.pending.all()
        except StorageIOError as e:
            self._log.warning(f"Pending-sync markers unavailable for listing: {e}")
            markers = []
        for marker in markers:
            if marker.operation is PendingOperation.DELETE:
                keys.discard(marker.key)

        return sorted(keys)

    async def delete(self, key: str) -> None:
        """Delete ``key`` from both backends. Idempotent."""
        async with self._locks.hold(key):
            remote_error: StorageIOError | None = None
            if self.remote is not None:
                try:
                    await self._remote_call("delete", key)
                except StorageIOError as e:
                    remote_error = e

            try:
                await self._local_call("delete", key)
            except StorageIOError as e:
                if remote_error is not None or self.remote is None:
                    raise
                self._log.warning(f"Local delete failed for {key}: {e}", extra={"key": key})

            if remote_error is None:
                await self._clear_pending(key)
                return

            if not self.local_fallback_enabled:
                raise remote_error
            self._log.warning(
                f"Remote delete failed for {key}, marking pending: {remote_error}",
                extra={"key": key},
            )
            await self.pending.mark(key, PendingOperation.DELETE, str(remote_error))

    async def _pending_marker(self, key: str) -> PendingSync | None:
        try:
            return await self.pending.get(key)
        except StorageIOError as e:
            self._log.warning(f"Pending-sync markers unavailable, reading {key} normally: {e}")
            return None

    async def _clear_pending(self, key: str) -> None:
        try:
            await self.pending.clear(key)
        except StorageIOError as e:
            self._log.warning(f"Could not clear pending marker for {key}: {e}", extra={"key": key})

    # Sync state

    async def sync_state(self, key: str) -> SyncState:
        if self.remote is None:
            return SyncState.LOCAL_ONLY
        if await self.pending.get(key) is not None:
            return SyncState.PENDING
        return SyncState.SYNCED

    async def pending_keys(self) -> list[str]:
        """Keys awaiting reconciliation, oldest first."""
        return [m.key for m in await self.pending.all()]

    async def reconcile(self) -> ReconcileResult:
        """Replay every pending marker against the remote.

        Always tries the remote, even when the circuit is open. Cancelling
        the sweep leaves already-synced keys synced.
        """
        result = ReconcileResult()
        if self.remote is None:
            return result

        for marker in await self.pending.all():
            async with self._locks.hold(marker.key):
                current = await self.pending.get(marker.key)
                if current is None:
                    continue
                result.attempted += 1
                try:
                    if current.operation is PendingOperation.PUT:
                        value = await self._local_call("get", current.key)
                        await self._remote_call("put", current.key, value, bypass_circuit=True)
                    else:
                        await self._remote_call("delete", current.key, bypass_circuit=True)
                except WorkflowStorageError as e:
                    result.failed += 1
                    result.errors[current.key] = str(e)
                    await self.pending.record_failure(current.key, str(e))
                    self._log.warning(
                        f"Reconciliation failed for {current.key} "
                        f"(attempt {current.attempts}): {e}",
                        extra={"key": current.key},
                    )
                    continue

                await self.pending.clear(current.key)
                result.synced += 1

        result.remaining = len(await self.pending.keys())
        if result.attempted:
            self._log.info(
                f"Reconciliation sweep: {result.synced} synced, {result.failed} failed, "
                f"{result.remaining} remaining"
            )
        return result

    # Background sync

    def start_background_sync(self, interval: float) -> None:
        """Run ``reconcile()`` every ``interval`` seconds until ``stop()``."""
        if self._running or self.remote is None:
            return
        self._running = True
        self._sync_task = asyncio.create_task(self._sync_loop(interval))

    async def stop(self) -> None:
        """Stop background sync."""
        self._running = False

        if self._sync_task:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None

    async def _sync_loop(self, interval: float) -> None:
        while self._running:
            await asyncio.sleep(interval)
            try:
                await self.reconcile()
            except WorkflowStorageError as e:
                self._log.error(f"Reconciliation sweep error: {e}")

    async def close(self) -> None:
        """Stop sync and close both backends."""
        await self.stop()
        if self.remote is not None:
            await self.remote.close()
        await self.local.close()
