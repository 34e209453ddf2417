"""
Fire-and-forget side effects with retry.

Each side effect of a paid order (sold counter, basket flag, points, email)
runs as its own asyncio task with its own exponential backoff, so one failing
collaborator never holds up or cancels another. Failures are logged; they do
not propagate to the webhook.
"""
from __future__ import annotations
import asyncio
import logging
import random
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Set

from .config import SIDE_EFFECT_BACKOFF_SECONDS, SIDE_EFFECT_MAX_RETRIES
from .infra.timings import timeit

logger = logging.getLogger(__name__)


def calculate_backoff(attempt: int, initial: float, max_delay: float = 30.0,
                      jitter: float = 0.1) -> float:
    delay = min(initial * (2 ** attempt), max_delay)
    jitter_range = delay * jitter
    return max(0.0, delay + random.uniform(-jitter_range, jitter_range))


class SideEffectDispatcher:
    def __init__(
        self,
        max_retries: int = SIDE_EFFECT_MAX_RETRIES,
        backoff_seconds: float = SIDE_EFFECT_BACKOFF_SECONDS,
        keep_failed: int = 100,
    ) -> None:
        self.max_retries = max(0, max_retries)
        self.backoff_seconds = backoff_seconds
        self._tasks: Set[asyncio.Task] = set()
        # names of the most recent side effects that gave up
        self.failed: Deque[str] = deque(maxlen=max(1, keep_failed))

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def dispatch(
        self, name: str, fn: Callable[..., Awaitable[Any]],
        *args: Any, **kwargs: Any,
    ) -> asyncio.Task:
        task = asyncio.create_task(
            self._run(name, fn, args, kwargs), name=f"sideeffect:{name}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name, fn, args, kwargs) -> Any:
        attempt = 0
        while True:
            try:
                async with timeit(f"sideeffect.{name}"):
                    return await fn(*args, **kwargs)
            except Exception:
                if attempt >= self.max_retries:
                    logger.exception("side effect %s failed after %d "
                                     "attempt(s)", name, attempt + 1)
                    self.failed.append(name)
                    return None
                delay = calculate_backoff(attempt, self.backoff_seconds)
                logger.warning("side effect %s failed (attempt %d), "
                               "retrying in %.2fs", name, attempt + 1, delay,
                               exc_info=True)
                await asyncio.sleep(delay)
                attempt += 1

    async def drain(self) -> None:
        """Wait for every dispatched side effect, including late arrivals."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
