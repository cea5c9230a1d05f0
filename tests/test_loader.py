"""Tests for the shared, reference-counted runtime loader."""

from __future__ import annotations

import asyncio
import logging

import pytest

from dualsync.loader import RuntimeLoader


class Factory:
    """Counts loads and can be told to fail or block."""

    def __init__(self) -> None:
        self.calls = 0
        self.fail = False
        self.gate: asyncio.Event | None = None

    async def __call__(self) -> str:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("runtime unavailable")
        return f"runtime-{self.calls}"


@pytest.fixture
def factory() -> Factory:
    return Factory()


async def test_concurrent_acquires_share_one_load(factory):
    factory.gate = asyncio.Event()
    loader = RuntimeLoader(factory)

    waiters = [asyncio.ensure_future(loader.acquire()) for _ in range(3)]
    await asyncio.sleep(0)
    factory.gate.set()
    results = await asyncio.gather(*waiters)

    assert results == ["runtime-1"] * 3
    assert factory.calls == 1
    assert loader.refcount == 3
    assert loader.loaded


async def test_dispose_on_last_release(factory):
    disposed = []
    loader = RuntimeLoader(factory, dispose=disposed.append)
    await loader.acquire()
    await loader.acquire()

    loader.release()
    assert disposed == []
    assert loader.loaded

    loader.release()
    assert disposed == ["runtime-1"]
    assert not loader.loaded


async def test_reload_after_full_release(factory):
    loader = RuntimeLoader(factory)
    await loader.acquire()
    loader.release()

    assert await loader.acquire() == "runtime-2"
    assert factory.calls == 2


async def test_failure_reaches_every_waiter_then_retries(factory):
    factory.gate = asyncio.Event()
    factory.fail = True
    loader = RuntimeLoader(factory)

    waiters = [asyncio.ensure_future(loader.acquire()) for _ in range(2)]
    await asyncio.sleep(0)
    factory.gate.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert all(isinstance(result, RuntimeError) for result in results)
    assert factory.calls == 1
    assert loader.refcount == 0

    factory.gate = None
    factory.fail = False
    assert await loader.acquire() == "runtime-2"


async def test_cancelled_waiter_does_not_cancel_load(factory):
    factory.gate = asyncio.Event()
    loader = RuntimeLoader(factory)

    first = asyncio.ensure_future(loader.acquire())
    second = asyncio.ensure_future(loader.acquire())
    await asyncio.sleep(0)
    first.cancel()
    factory.gate.set()

    assert await second == "runtime-1"
    assert first.cancelled()
    assert loader.refcount == 1


async def test_unbalanced_release_warns(factory, caplog):
    loader = RuntimeLoader(factory, name="mpv")

    with caplog.at_level(logging.WARNING):
        loader.release()

    assert "without a matching acquire" in caplog.text
    assert loader.refcount == 0
