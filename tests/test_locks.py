"""Tests for per-key async critical sections."""

import asyncio

import pytest

from workflow_context_storage.locks import KeyedLock


class TestKeyedLock:
    """Tests for KeyedLock."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        lock = KeyedLock()
        events = []

        async def worker(name: str) -> None:
            async with lock.hold("k"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))
        assert events == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_distinct_keys_run_concurrently(self):
        """A holder of k1 can wait on a holder of k2 without deadlock."""
        lock = KeyedLock()
        k2_entered = asyncio.Event()

        async def hold_k1() -> None:
            async with lock.hold("k1"):
                await k2_entered.wait()

        async def hold_k2() -> None:
            async with lock.hold("k2"):
                k2_entered.set()

        await asyncio.wait_for(asyncio.gather(hold_k1(), hold_k2()), timeout=1.0)

    @pytest.mark.asyncio
    async def test_idle_locks_are_released(self):
        lock = KeyedLock()
        async with lock.hold("k"):
            assert lock.locked("k")
            assert len(lock) == 1
        assert not lock.locked("k")
        assert len(lock) == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        lock = KeyedLock()
        with pytest.raises(RuntimeError):
            async with lock.hold("k"):
                raise RuntimeError("boom")
        assert len(lock) == 0
