"""
Tests for the local filesystem backend.

Verifies the on-disk layout, atomic writes, error mapping and key
validation against path traversal.
"""

import json

import pytest

from workflow_context_storage.backends import LocalFileBackend
from workflow_context_storage.exceptions import (
    InvalidStateError,
    NotFoundError,
    SessionValidationError,
)


@pytest.fixture
def backend(temp_dir):
    return LocalFileBackend(temp_dir)


class TestLocalFileBackend:
    """Tests for LocalFileBackend CRUD."""

    @pytest.mark.asyncio
    async def test_put_get(self, backend, temp_dir):
        await backend.put("session/t1/t1__wf1.record", {"step_index": 2})

        assert await backend.get("session/t1/t1__wf1.record") == {"step_index": 2}
        path = temp_dir / "session" / "t1" / "t1__wf1.record"
        assert json.loads(path.read_text()) == {"step_index": 2}

    @pytest.mark.asyncio
    async def test_overwrite(self, backend):
        await backend.put("cache/a.entry", {"v": 1})
        await backend.put("cache/a.entry", {"v": 2})
        assert await backend.get("cache/a.entry") == {"v": 2}

    @pytest.mark.asyncio
    async def test_write_leaves_no_temp_files(self, backend, temp_dir):
        await backend.put("cache/a.entry", {"v": 1})
        names = [p.name for p in (temp_dir / "cache").iterdir()]
        assert names == ["a.entry"]

    @pytest.mark.asyncio
    async def test_get_missing(self, backend):
        with pytest.raises(NotFoundError) as exc_info:
            await backend.get("session/t1/missing.record")
        assert exc_info.value.kind == "NotFound"
        assert exc_info.value.key == "session/t1/missing.record"

    @pytest.mark.asyncio
    async def test_get_corrupt_json(self, backend, temp_dir):
        path = temp_dir / "session" / "t1" / "t1__bad.record"
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        with pytest.raises(InvalidStateError) as exc_info:
            await backend.get("session/t1/t1__bad.record")
        assert exc_info.value.kind == "InvalidState"
        # Left untouched
        assert path.read_text() == "{not json"

    @pytest.mark.asyncio
    async def test_get_non_object(self, backend, temp_dir):
        path = temp_dir / "cache" / "list.entry"
        path.parent.mkdir(parents=True)
        path.write_text("[1, 2]")

        with pytest.raises(InvalidStateError):
            await backend.get("cache/list.entry")


class TestLocalListing:
    """Tests for prefix listing."""

    @pytest.mark.asyncio
    async def test_list_prefix(self, backend):
        await backend.put("session/t1/t1__a.record", {})
        await backend.put("session/t1/t1__b.record", {})
        await backend.put("session/t2/t2__c.record", {})
        await backend.put("cache/x.entry", {})

        assert sorted(await backend.list("session/t1/")) == [
            "session/t1/t1__a.record",
            "session/t1/t1__b.record",
        ]
        assert len(await backend.list("session/")) == 3

    @pytest.mark.asyncio
    async def test_list_partial_name(self, backend):
        await backend.put("session/t1/t1__alpha.record", {})
        await backend.put("session/t1/t1__beta.record", {})
        assert await backend.list("session/t1/t1__al") == ["session/t1/t1__alpha.record"]

    @pytest.mark.asyncio
    async def test_list_ignores_temp_files(self, backend, temp_dir):
        await backend.put("cache/a.entry", {})
        (temp_dir / "cache" / ".tmp_inflight.json").write_text("{}")
        assert await backend.list("cache/") == ["cache/a.entry"]

    @pytest.mark.asyncio
    async def test_list_missing_directory(self, backend):
        assert await backend.list("session/nobody/") == []


class TestLocalDelete:
    """Tests for delete."""

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, backend):
        await backend.put("cache/a.entry", {})
        await backend.delete("cache/a.entry")
        await backend.delete("cache/a.entry")
        with pytest.raises(NotFoundError):
            await backend.get("cache/a.entry")

    @pytest.mark.asyncio
    async def test_delete_prunes_empty_directories(self, backend, temp_dir):
        await backend.put("session/t1/t1__a.record", {})
        await backend.delete("session/t1/t1__a.record")
        assert not (temp_dir / "session" / "t1").exists()
        assert not (temp_dir / "session").exists()
        assert temp_dir.exists()

    @pytest.mark.asyncio
    async def test_delete_keeps_non_empty_directories(self, backend, temp_dir):
        await backend.put("session/t1/t1__a.record", {})
        await backend.put("session/t1/t1__b.record", {})
        await backend.delete("session/t1/t1__a.record")
        assert (temp_dir / "session" / "t1" / "t1__b.record").exists()


class TestKeyValidation:
    """Keys must never escape the base path."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "key",
        ["../escape.record", "/etc/passwd", "session\\t1\\x", "session/./x", "a//b", ""],
    )
    async def test_rejects_unsafe_keys(self, backend, key):
        with pytest.raises(SessionValidationError):
            await backend.put(key, {})

    @pytest.mark.asyncio
    async def test_rejects_temp_prefixed_keys(self, backend):
        with pytest.raises(SessionValidationError):
            await backend.get("cache/.tmp_x.json")
