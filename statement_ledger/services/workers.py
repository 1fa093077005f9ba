"""Bounded in-process runner for fire-and-forget background work.

There is no durable queue: a task lives only as long as this process. The
Job / JobItem / Statement rows are the durable record, and anything a crash
leaves half-done is cleaned up by ``recovery.reset_interrupted_state``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine, Iterator
from contextlib import contextmanager
from typing import Any
from uuid import UUID

import structlog

from statement_ledger.config import settings
from statement_ledger.logger import get_logger

logger = get_logger(__name__)

# Records currently owned by live work in this process, by kind ("job", "statement", "connection")
_IN_FLIGHT: dict[str, set[UUID]] = {}


@contextmanager
def mark_in_flight(kind: str, key: UUID) -> Iterator[None]:
    keys = _IN_FLIGHT.setdefault(kind, set())
    keys.add(key)
    try:
        yield
    finally:
        keys.discard(key)


def in_flight(kind: str) -> frozenset[UUID]:
    return frozenset(_IN_FLIGHT.get(kind, ()))


class BackgroundRunner:
    """Spawns detached tasks, at most ``max_workers`` running at once."""

    def __init__(self, max_workers: int) -> None:
        self.max_workers = max_workers
        self._semaphore: asyncio.Semaphore | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        # Strong references so pending tasks are not garbage collected
        self._tasks: set[asyncio.Task[None]] = set()

    def _slots(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._loop is not loop:
            self._semaphore = asyncio.Semaphore(self.max_workers)
            self._loop = loop
        return self._semaphore

    def _track_task(self, task: asyncio.Task[None]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        *,
        name: str,
        claim: tuple[str, UUID] | None = None,
        **log_context: Any,
    ) -> asyncio.Task[None]:
        """Schedule ``coro`` and return immediately.

        ``claim`` marks a record as owned by this task from the moment it is
        queued, so a reset does not fail work that is merely waiting for a slot.
        """

        if claim:
            _IN_FLIGHT.setdefault(claim[0], set()).add(claim[1])

        async def _run() -> None:
            structlog.contextvars.bind_contextvars(task=name, **log_context)
            try:
                async with self._slots():
                    await coro
            except Exception:
                logger.exception("Background task failed", task=name)
            finally:
                if claim:
                    _IN_FLIGHT[claim[0]].discard(claim[1])

        task = asyncio.create_task(_run(), name=name)
        self._track_task(task)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_for_tasks(self) -> None:
        """Wait for all pending background tasks to complete. Useful for tests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


background_runner = BackgroundRunner(settings.max_background_workers)


async def wait_for_background_tasks() -> None:
    await background_runner.wait_for_tasks()
