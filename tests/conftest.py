"""
Shared test configuration and fixtures.

Provides in-memory and failure-injecting backends so coordinator, session
store and cache behaviour can be tested without a Cosmos DB account, plus a
manual clock for TTL and ordering tests.
"""

import asyncio
import copy
import logging
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from workflow_context_storage.backends import BackendAdapter, LocalFileBackend
from workflow_context_storage.exceptions import NotFoundError, StorageIOError
from workflow_context_storage.sessions import SessionStore
from workflow_context_storage.sync import CircuitBreaker, DualBackendCoordinator

logger = logging.getLogger(__name__)


class InMemoryBackend(BackendAdapter):
    """Dict-backed backend adapter."""

    name = "memory"

    def __init__(self, name: str | None = None):
        if name:
            self.name = name
        self.data: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []

    async def put(self, key: str, value: dict[str, Any]) -> None:
        self.calls.append(("put", key))
        self.data[key] = copy.deepcopy(value)

    async def get(self, key: str) -> dict[str, Any]:
        self.calls.append(("get", key))
        if key not in self.data:
            raise NotFoundError(key, self.name)
        return copy.deepcopy(self.data[key])

    async def list(self, prefix: str) -> list[str]:
        self.calls.append(("list", prefix))
        return sorted(k for k in self.data if k.startswith(prefix))

    async def delete(self, key: str) -> None:
        self.calls.append(("delete", key))
        self.data.pop(key, None)


class FlakyBackend(InMemoryBackend):
    """In-memory backend that fails every call while ``failing`` is set.

    Modes:
        error: raise StorageIOError
        timeout: hang until cancelled (exercises the caller's deadline)
        crash: raise an unexpected RuntimeError
    """

    def __init__(self, name: str = "remote", mode: str = "error", failing: bool = False):
        super().__init__(name)
        self.mode = mode
        self.failing = failing

    async def _maybe_fail(self, operation: str, key: str) -> None:
        if not self.failing:
            return
        self.calls.append((f"failed_{operation}", key))
        if self.mode == "timeout":
            await asyncio.Event().wait()
        if self.mode == "crash":
            raise RuntimeError(f"remote crashed during {operation}")
        raise StorageIOError(operation, key, RuntimeError("remote unavailable"), self.name)

    async def put(self, key: str, value: dict[str, Any]) -> None:
        await self._maybe_fail("put", key)
        await super().put(key, value)

    async def get(self, key: str) -> dict[str, Any]:
        await self._maybe_fail("get", key)
        return await super().get(key)

    async def list(self, prefix: str) -> list[str]:
        await self._maybe_fail("list", prefix)
        return await super().list(prefix)

    async def delete(self, key: str) -> None:
        await self._maybe_fail("delete", key)
        await super().delete(key)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def local(temp_dir: Path) -> LocalFileBackend:
    return LocalFileBackend(temp_dir)


@pytest.fixture
def remote() -> FlakyBackend:
    return FlakyBackend()


@pytest.fixture
def coordinator(remote: FlakyBackend, local: LocalFileBackend) -> DualBackendCoordinator:
    return DualBackendCoordinator(
        remote,
        local,
        remote_timeout=0.1,
        local_timeout=2.0,
        circuit=CircuitBreaker(failure_threshold=100, reset_timeout=60.0),
    )


@pytest.fixture
def store(coordinator: DualBackendCoordinator, clock: ManualClock) -> SessionStore:
    return SessionStore(coordinator, clock=clock)
