import asyncio

import pytest

from itinerary_engine.tools.result_cache import ResultCache, cache_key, content_hash


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_concurrent_identical_requests_compute_once():
    async def run() -> None:
        cache: ResultCache[dict] = ResultCache(ttl_seconds=60)
        calls = {"count": 0}

        async def compute():
            calls["count"] += 1
            await asyncio.sleep(0.02)
            return {"schedule": "ready"}

        key = cache_key("trip-1", [{"id": "p1"}], {"fairness_weight": 0.5})
        results = await asyncio.gather(*(cache.get_or_compute(key, compute) for _ in range(5)))

        assert calls["count"] == 1
        assert all(value == {"schedule": "ready"} for value, _ in results)
        assert sorted(cached for _, cached in results) == [False, True, True, True, True]

    asyncio.run(run())


def test_entries_expire_after_ttl():
    async def run() -> None:
        clock = FakeClock()
        cache: ResultCache[int] = ResultCache(ttl_seconds=1800, clock=clock)
        counter = {"n": 0}

        async def compute():
            counter["n"] += 1
            return counter["n"]

        key = ("trip", "places", "settings")
        assert await cache.get_or_compute(key, compute) == (1, False)
        clock.now += 1799
        assert await cache.get_or_compute(key, compute) == (1, True)
        clock.now += 2
        assert await cache.get_or_compute(key, compute) == (2, False)

    asyncio.run(run())


def test_failures_are_not_cached():
    async def run() -> None:
        cache: ResultCache[str] = ResultCache()
        attempts = {"n": 0}

        async def flaky():
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise RuntimeError("transient")
            return "ok"

        key = ("trip", "p", "s")
        with pytest.raises(RuntimeError):
            await cache.get_or_compute(key, flaky)
        assert await cache.get_or_compute(key, flaky) == ("ok", False)
        assert len(cache) == 1

    asyncio.run(run())


def test_waiters_see_the_owner_failure():
    async def run() -> None:
        cache: ResultCache[str] = ResultCache()

        async def boom():
            await asyncio.sleep(0.01)
            raise ValueError("bad input")

        key = ("trip", "p", "s")
        outcomes = await asyncio.gather(
            cache.get_or_compute(key, boom),
            cache.get_or_compute(key, boom),
            return_exceptions=True,
        )
        assert all(isinstance(item, ValueError) for item in outcomes)
        assert len(cache) == 0

    asyncio.run(run())


def test_invalidate_trip_drops_only_that_trip():
    async def run() -> None:
        cache: ResultCache[str] = ResultCache()

        async def value():
            return "v"

        await cache.get_or_compute(("a", "1", "1"), value)
        await cache.get_or_compute(("a", "2", "1"), value)
        await cache.get_or_compute(("b", "1", "1"), value)

        assert await cache.invalidate_trip("a") == 2
        assert await cache.get(("a", "1", "1")) is None
        assert await cache.get(("b", "1", "1")) == "v"

    asyncio.run(run())


def test_content_hash_ignores_key_order():
    assert content_hash({"a": 1, "b": [1, 2]}) == content_hash({"b": [1, 2], "a": 1})
    assert content_hash({"a": 1}) != content_hash({"a": 2})
    trip, places_hash, settings_hash = cache_key("t", [], {})
    assert trip == "t" and len(places_hash) == 64 and len(settings_hash) == 64


def test_expired_entries_are_swept_on_next_write():
    async def run() -> None:
        clock = FakeClock()
        cache: ResultCache[str] = ResultCache(ttl_seconds=10, clock=clock)

        async def value():
            return "v"

        for idx in range(100):
            await cache.get_or_compute((f"trip-{idx}", "p", "s"), value)
        assert len(cache) == 100

        clock.now += 1000
        await cache.get_or_compute(("trip-new", "p", "s"), value)
        assert len(cache) == 1

    asyncio.run(run())


def test_waiter_recomputes_when_first_caller_times_out():
    async def run():
        cache: ResultCache[str] = ResultCache()
        key = ("trip", "p", "s")

        async def slow():
            await asyncio.sleep(5)
            return "late"

        async def fast():
            return "fresh"

        return await asyncio.gather(
            asyncio.wait_for(cache.get_or_compute(key, slow), timeout=0.05),
            asyncio.wait_for(cache.get_or_compute(key, fast), timeout=5),
            return_exceptions=True,
        ), cache

    (first, second), cache = asyncio.run(run())

    assert isinstance(first, asyncio.TimeoutError)
    assert second == ("fresh", False)
    assert len(cache) == 1
