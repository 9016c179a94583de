"""
Local filesystem backend.

Stores one JSON file per key, with one directory per key namespace:

{base_path}/
  session/
    {tenant_id}/
      {session_key}.record
  cache/
    {cache_key}.entry
  pending-sync/
    session/{tenant_id}/{session_key}.record
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from ..exceptions import SessionValidationError, StorageIOError
from . import file_ops
from .base import BackendAdapter

logger = logging.getLogger(__name__)


class LocalFileBackend(BackendAdapter):
    """Local file-based backend adapter."""

    name = "local"

    def __init__(self, base_path: Path | str) -> None:
        """Initialize local storage.

        Args:
            base_path: Root directory; created lazily on first write
        """
        self.base_path = Path(base_path).expanduser()

    def _path_for(self, key: str) -> Path:
        """Map a key to its file, rejecting keys that would escape base_path."""
        if not key or "\\" in key or key.startswith("/"):
            raise SessionValidationError(f"Invalid storage key: {key!r}", "key")
        parts = key.split("/")
        if any(part in ("", ".", "..") for part in parts) or any(
            part.startswith(file_ops.TEMP_PREFIX) for part in parts
        ):
            raise SessionValidationError(f"Invalid storage key: {key!r}", "key")
        return self.base_path.joinpath(*parts)

    async def put(self, key: str, value: dict[str, Any]) -> None:
        await file_ops.write_json_atomic(self._path_for(key), value, key)

    async def get(self, key: str) -> dict[str, Any]:
        return await file_ops.read_json(self._path_for(key), key)

    async def list(self, prefix: str) -> list[str]:
        """List keys under ``prefix``.

        The prefix is resolved to the deepest directory it names, then
        filtered textually, so ``session/t1/`` and ``session/t1/t1__w`` both work.
        """
        directory, _, _ = prefix.rpartition("/")
        root = self._path_for(directory) if directory else self.base_path
        try:
            files = await asyncio.to_thread(file_ops.walk_files, root)
        except OSError as e:
            raise StorageIOError("list", prefix, e, self.name) from e

        keys = []
        for path in files:
            key = path.relative_to(self.base_path).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return keys

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        if await file_ops.remove_file(path, key):
            await file_ops.prune_empty_parents(path.parent, self.base_path)
            logger.debug(f"Deleted local key {key}")

    async def close(self) -> None:
        """Close storage (no-op for local storage)."""
        pass
