"""
JSON file operations for the local backend.

Provides atomic read/write operations for JSON documents:
- Atomic writes using temp file + fsync + rename
- Parse failures reported separately from I/O failures
- Directory helpers that tolerate concurrent creation/removal
"""

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..exceptions import InvalidStateError, NotFoundError, StorageIOError

TEMP_PREFIX = ".tmp_"


async def ensure_directory(path: Path) -> None:
    """Ensure directory exists, creating if necessary.

    Args:
        path: Directory path to ensure exists
    """
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise StorageIOError("create_directory", str(path), e) from e


async def read_json(path: Path, key: str) -> dict[str, Any]:
    """Read a JSON document.

    Args:
        path: Path to JSON file
        key: Logical key, used in error reporting

    Returns:
        Parsed JSON object

    Raises:
        NotFoundError: If the file does not exist
        InvalidStateError: If the content is not a JSON object
        StorageIOError: If the file cannot be read
    """
    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()
    except FileNotFoundError as e:
        raise NotFoundError(key, "local") from e
    except OSError as e:
        raise StorageIOError("read_json", key, e, "local") from e

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise InvalidStateError(key, f"corrupt JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise InvalidStateError(key, "document is not a JSON object")
    return data


async def write_json_atomic(path: Path, data: dict[str, Any], key: str) -> None:
    """Write JSON file atomically using temp file + rename.

    Args:
        path: Target path for JSON file
        data: Data to serialize as JSON
        key: Logical key, used in error reporting
    """
    await ensure_directory(path.parent)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=TEMP_PREFIX, suffix=".json")
    try:
        os.close(fd)
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2, default=_json_serializer))
            await f.flush()
            os.fsync(f.fileno())

        # Atomic rename
        await aiofiles.os.replace(temp_path, path)
    except Exception as e:
        try:
            await aiofiles.os.remove(temp_path)
        except OSError:
            pass
        raise StorageIOError("write_json", key, e, "local") from e


async def remove_file(path: Path, key: str) -> bool:
    """Remove a file if it exists.

    Returns:
        True if file was removed, False if it didn't exist
    """
    try:
        await aiofiles.os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StorageIOError("remove", key, e, "local") from e


async def prune_empty_parents(path: Path, stop_at: Path) -> None:
    """Remove empty directories from ``path`` upwards, stopping at ``stop_at``."""
    current = path
    while current != stop_at and stop_at in current.parents:
        try:
            await aiofiles.os.rmdir(current)
        except OSError:
            # Not empty, or already gone
            return
        current = current.parent


def walk_files(root: Path) -> list[Path]:
    """All regular files below ``root``, skipping in-flight temp files."""
    if not root.is_dir():
        return []
    return sorted(
        p for p in root.rglob("*") if p.is_file() and not p.name.startswith(TEMP_PREFIX)
    )


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for types not handled by default."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
