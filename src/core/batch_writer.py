"""Accumulate write operations and commit them in bounded batches."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Generic, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_THRESHOLD = 400
DEFAULT_CAP = 500


class BatchedWriter(Generic[T]):
    """Group operations into batches of ``threshold`` and commit them together.

    A batch is sealed as soon as it reaches ``threshold``, which stays strictly
    below the store's per-commit ``cap``. ``flush`` commits every sealed batch
    plus the trailing partial one concurrently and waits for all of them.

    Usable as an async context manager; the batches are flushed on a clean exit.
    """

    def __init__(
        self,
        commit: Callable[[list[T]], Awaitable[Any]],
        *,
        threshold: int = DEFAULT_THRESHOLD,
        cap: int = DEFAULT_CAP,
    ) -> None:
        if not 0 < threshold < cap:
            raise ValueError("Batch threshold must be positive and below the commit cap")
        self._commit = commit
        self._threshold = threshold
        self._sealed: list[list[T]] = []
        self._current: list[T] = []

    def add(self, op: T) -> None:
        self._current.append(op)
        if len(self._current) >= self._threshold:
            self._sealed.append(self._current)
            self._current = []

    @property
    def pending(self) -> int:
        return sum(len(batch) for batch in self._sealed) + len(self._current)

    async def flush(self) -> list[Any]:
        batches = self._sealed + ([self._current] if self._current else [])
        self._sealed = []
        self._current = []
        if not batches:
            return []
        log.debug("batch_writer_flush", batches=len(batches), ops=sum(len(b) for b in batches))
        return list(await asyncio.gather(*(self._commit(batch) for batch in batches)))

    async def __aenter__(self) -> BatchedWriter[T]:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.flush()
