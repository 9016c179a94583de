"""
Pending-sync tracking.

Records local writes (and deletes) that have not yet been confirmed against
the remote backend. Markers live in the local backend under
``pending-sync/{key}`` so the reconciliation queue survives restarts and can
be inspected like any other local data.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..backends.base import BackendAdapter
from ..exceptions import InvalidStateError, NotFoundError, StorageTimeoutError
from ..keys import PENDING_NAMESPACE, key_from_pending_marker, pending_marker_key
from ..protocol import utc_now

logger = logging.getLogger(__name__)


class PendingOperation(Enum):
    """Remote operation still owed for a key."""

    PUT = "put"
    DELETE = "delete"


@dataclass
class PendingSync:
    """Marker for one key awaiting reconciliation.

    Attributes:
        key: Storage key the marker refers to
        operation: Remote operation to replay
        marked_at: When the key first became pending
        attempts: Failed reconciliation attempts so far
        last_error: Last reconciliation error message
    """

    key: str
    operation: PendingOperation
    marked_at: datetime = field(default_factory=utc_now)
    attempts: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "operation": self.operation.value,
            "marked_at": self.marked_at.isoformat(),
            "attempts": self.attempts,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingSync:
        return cls(
            key=data["key"],
            operation=PendingOperation(data["operation"]),
            marked_at=datetime.fromisoformat(data["marked_at"]),
            attempts=data.get("attempts", 0),
            last_error=data.get("last_error"),
        )


class PendingSyncTracker:
    """Persistent side-table of keys awaiting reconciliation.

    The in-memory index is loaded from the local backend on first use and
    kept in step with every mark/clear.
    """

    def __init__(self, local: BackendAdapter, timeout: float | None = None):
        """Initialize the tracker.

        Args:
            local: Backend holding the markers
            timeout: Deadline for each marker read or write (seconds, None for no deadline)
        """
        self.local = local
        self.timeout = timeout
        self._markers: dict[str, PendingSync] = {}
        self._loaded = False
        self._load_lock = asyncio.Lock()

    async def _call(self, operation: str, key: str, *args: Any) -> Any:
        try:
            return await asyncio.wait_for(getattr(self.local, operation)(key, *args), self.timeout)
        except asyncio.TimeoutError as e:
            raise StorageTimeoutError(operation, key, self.timeout, self.local.name) from e

    async def _ensure_loaded(self) -> None:
        """Load markers from disk if not already loaded."""
        if self._loaded:
            return

        async with self._load_lock:
            if self._loaded:
                return
            for marker_key in await self._call("list", f"{PENDING_NAMESPACE}/"):
                try:
                    marker = PendingSync.from_dict(await self._call("get", marker_key))
                except (KeyError, TypeError, ValueError, InvalidStateError, NotFoundError) as e:
                    # The key itself is still owed to the remote; assume a put
                    logger.warning(f"Unreadable pending-sync marker {marker_key}: {e}")
                    marker = PendingSync(
                        key=key_from_pending_marker(marker_key), operation=PendingOperation.PUT
                    )
                self._markers[marker.key] = marker
            self._loaded = True

    async def mark(
        self, key: str, operation: PendingOperation, error: str | None = None
    ) -> PendingSync:
        """Mark ``key`` as owing ``operation`` to the remote.

        A newer operation replaces an older one for the same key; the
        original ``marked_at`` and attempt count are preserved.
        """
        await self._ensure_loaded()

        existing = self._markers.get(key)
        marker = PendingSync(key=key, operation=operation, last_error=error)
        if existing is not None:
            marker.marked_at = existing.marked_at
            marker.attempts = existing.attempts

        await self._call("put", pending_marker_key(key), marker.to_dict())
        self._markers[key] = marker
        return marker

    async def record_failure(self, key: str, error: str) -> PendingSync | None:
        """Count a failed reconciliation attempt for ``key``."""
        await self._ensure_loaded()

        marker = self._markers.get(key)
        if marker is None:
            return None
        marker.attempts += 1
        marker.last_error = error
        await self._call("put", pending_marker_key(key), marker.to_dict())
        return marker

    async def clear(self, key: str) -> None:
        """Remove the marker for ``key`` (no-op if absent)."""
        await self._ensure_loaded()

        if self._markers.pop(key, None) is not None:
            await self._call("delete", pending_marker_key(key))

    async def get(self, key: str) -> PendingSync | None:
        await self._ensure_loaded()
        return self._markers.get(key)

    async def all(self) -> list[PendingSync]:
        """All markers, oldest first."""
        await self._ensure_loaded()
        return sorted(self._markers.values(), key=lambda m: m.marked_at)

    async def keys(self) -> set[str]:
        await self._ensure_loaded()
        return set(self._markers)
