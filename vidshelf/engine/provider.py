from __future__ import annotations

import asyncio
import logging
from typing import Callable

from vidshelf.engine.base import MediaEngine
from vidshelf.errors import EngineInitError

logger = logging.getLogger(__name__)


class EngineProvider:
    """Hands out one loaded engine per provider; concurrent callers share the load.

    A failed load is not memoized, so the next `get()` starts from scratch.
    `reset()` drops the current instance, which is how callers restart the
    engine after a fatal run failure left its sandbox in an unknown state.
    """

    def __init__(self, factory: Callable[[], MediaEngine]) -> None:
        self._factory = factory
        self._engine: MediaEngine | None = None
        self._lock = asyncio.Lock()
        self.load_count = 0

    @property
    def is_loaded(self) -> bool:
        return self._engine is not None

    async def get(self) -> MediaEngine:
        if self._engine is not None:
            return self._engine

        async with self._lock:
            if self._engine is not None:
                return self._engine

            engine = self._factory()
            try:
                await engine.load()
            except EngineInitError:
                raise
            except Exception as exc:
                raise EngineInitError(f"Media engine failed to load: {exc}") from exc

            self.load_count += 1
            self._engine = engine
            return engine

    async def reset(self) -> None:
        async with self._lock:
            engine, self._engine = self._engine, None
        close = getattr(engine, "close", None)
        if close is not None:
            try:
                await close()
            except OSError as exc:
                logger.warning("Failed to close media engine during reset: %s", exc)
