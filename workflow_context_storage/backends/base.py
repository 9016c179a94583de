"""
Abstract backend adapter interface.

Defines the contract every physical store implements. Adapters know nothing
about sessions, caching, retries or fallback; they move JSON documents
between memory and one store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class BackendAdapter(ABC):
    """Uniform key/value access to one physical store.

    Keys are ``/``-separated paths such as ``session/t1/t1__wf1.record``;
    values are JSON-serializable dicts.
    """

    name: str = "backend"

    @abstractmethod
    async def put(self, key: str, value: dict[str, Any]) -> None:
        """Write ``value`` under ``key``, replacing any previous value.

        Raises:
            StorageIOError: If the write fails
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any]:
        """Read the value stored under ``key``.

        Raises:
            NotFoundError: If the key does not exist
            InvalidStateError: If the stored value cannot be decoded
            StorageIOError: If the read fails
        """
        ...

    @abstractmethod
    async def list(self, prefix: str) -> list[str]:
        """List keys starting with ``prefix``.

        Raises:
            StorageIOError: If the listing fails
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete ``key``. Deleting an absent key is not an error.

        Raises:
            StorageIOError: If the delete fails
        """
        ...

    async def close(self) -> None:
        """Release any resources held by the adapter."""
        return None

    async def __aenter__(self) -> BackendAdapter:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
