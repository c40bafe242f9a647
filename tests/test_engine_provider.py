from __future__ import annotations

import asyncio

import pytest

from vidshelf.engine.provider import EngineProvider
from vidshelf.errors import EngineInitError


class _SlowEngine:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.closed = False

    async def load(self) -> None:
        await asyncio.sleep(0.01)
        if self.error is not None:
            raise self.error

    async def close(self) -> None:
        self.closed = True


def test_concurrent_callers_share_one_engine() -> None:
    created: list[_SlowEngine] = []

    def _factory() -> _SlowEngine:
        engine = _SlowEngine()
        created.append(engine)
        return engine

    provider = EngineProvider(_factory)

    async def _scenario() -> list:
        return await asyncio.gather(*(provider.get() for _ in range(5)))

    engines = asyncio.run(_scenario())

    assert len(created) == 1
    assert all(engine is created[0] for engine in engines)
    assert provider.load_count == 1


def test_load_failure_is_wrapped_and_not_memoized() -> None:
    attempts: list[_SlowEngine] = []

    def _factory() -> _SlowEngine:
        engine = _SlowEngine(error=OSError("wasm blob unavailable") if not attempts else None)
        attempts.append(engine)
        return engine

    provider = EngineProvider(_factory)

    async def _scenario() -> None:
        with pytest.raises(EngineInitError, match="Media engine failed to load: wasm blob unavailable"):
            await provider.get()
        assert not provider.is_loaded
        await provider.get()

    asyncio.run(_scenario())

    assert len(attempts) == 2
    assert provider.is_loaded


def test_reset_closes_engine_and_next_get_reloads() -> None:
    created: list[_SlowEngine] = []

    def _factory() -> _SlowEngine:
        created.append(_SlowEngine())
        return created[-1]

    provider = EngineProvider(_factory)

    async def _scenario() -> None:
        first = await provider.get()
        await provider.reset()
        second = await provider.get()
        assert first is not second

    asyncio.run(_scenario())

    assert created[0].closed
    assert provider.load_count == 2
