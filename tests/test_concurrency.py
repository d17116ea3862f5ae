"""Tests for in-process call de-duplication."""

import asyncio
import gc

import pytest

from automara_core.concurrency import SingleFlight


class TestSingleFlight:
    """Tests for SingleFlight."""

    async def test_concurrent_calls_share_one_execution(self) -> None:
        sf = SingleFlight()
        calls = 0

        async def lookup() -> str:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "tag-1"

        results = await asyncio.gather(*(sf.do("Acme", lookup) for _ in range(5)))

        assert results == ["tag-1"] * 5
        assert calls == 1

    async def test_different_keys_run_independently(self) -> None:
        sf = SingleFlight()
        seen: list[str] = []

        async def make(key: str) -> str:
            seen.append(key)
            await asyncio.sleep(0)
            return key.upper()

        a, b = await asyncio.gather(sf.do("a", lambda: make("a")), sf.do("b", lambda: make("b")))

        assert (a, b) == ("A", "B")
        assert sorted(seen) == ["a", "b"]

    async def test_nothing_cached_after_completion(self) -> None:
        sf = SingleFlight()
        calls = 0

        async def count() -> int:
            nonlocal calls
            calls += 1
            return calls

        assert await sf.do("k", count) == 1
        assert await sf.do("k", count) == 2
        assert not sf.in_flight("k")

    async def test_exception_propagates_to_all_waiters(self) -> None:
        sf = SingleFlight()

        async def fail() -> None:
            await asyncio.sleep(0.01)
            raise RuntimeError("engine down")

        results = await asyncio.gather(
            sf.do("k", fail), sf.do("k", fail), return_exceptions=True
        )

        assert all(isinstance(r, RuntimeError) for r in results)
        assert not sf.in_flight("k")

    async def test_cancelled_waiter_does_not_cancel_shared_call(self) -> None:
        sf = SingleFlight()
        done = asyncio.Event()

        async def slow() -> str:
            await asyncio.sleep(0.02)
            done.set()
            return "ok"

        first = asyncio.create_task(sf.do("k", slow))
        second = asyncio.create_task(sf.do("k", slow))
        await asyncio.sleep(0)
        first.cancel()

        assert await second == "ok"
        assert done.is_set()
        with pytest.raises(asyncio.CancelledError):
            await first

    async def test_failure_without_waiters_is_not_reported_unretrieved(self) -> None:
        sf = SingleFlight()
        started = asyncio.Event()
        reported: list[dict] = []
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(lambda _, context: reported.append(context))

        async def fail() -> None:
            started.set()
            await asyncio.sleep(0.01)
            raise RuntimeError("engine down")

        try:
            waiter = asyncio.create_task(sf.do("k", fail))
            await started.wait()
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter

            await asyncio.sleep(0.03)
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert not sf.in_flight("k")
        assert reported == []
