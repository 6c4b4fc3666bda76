"""
Bounded-concurrency request executor with retry and backoff.

One pipeline is shared by every consumer of a sync pass (all scan branches
and the verifier), so the concurrency bound holds for the whole pass.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

from loguru import logger

from escore.constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_BACKOFF,
    MAX_RETRY_BACKOFF,
)
from escore.errors import InvalidConfigurationError, NetworkTransientError
from eswallet.config import EsploraConfig

T = TypeVar("T")
R = TypeVar("R")


class FetchPipeline:
    """
    Executes at most `concurrency` requests at any time.

    Each request is retried on NetworkTransientError with exponential
    backoff plus jitter, up to max_attempts attempts in total. The slot is
    released while backing off. Every other error surfaces immediately.
    """

    def __init__(
        self,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_RETRY_BACKOFF,
        backoff_max: float = MAX_RETRY_BACKOFF,
    ):
        if concurrency < 1:
            raise InvalidConfigurationError(f"concurrency must be positive, got {concurrency}")
        if max_attempts < 1:
            raise InvalidConfigurationError(f"max_attempts must be positive, got {max_attempts}")

        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._semaphore = asyncio.Semaphore(concurrency)

        # Counters for progress reporting and tests
        self.in_flight = 0
        self.peak_in_flight = 0
        self.requests = 0
        self.retries = 0

    @classmethod
    def from_config(cls, config: EsploraConfig) -> FetchPipeline:
        return cls(
            concurrency=config.concurrency,
            max_attempts=config.max_attempts,
            backoff_base=config.retry_backoff,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number attempt+1 (attempt is 0-based)."""
        delay = min(self.backoff_base * (2**attempt), self.backoff_max)
        return delay + random.uniform(0, self.backoff_base / 2)

    async def _attempt(self, fn: Callable[..., Awaitable[R]], args: tuple[Any, ...]) -> R:
        async with self._semaphore:
            self.in_flight += 1
            self.requests += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                return await fn(*args)
            finally:
                self.in_flight -= 1

    async def run(self, fn: Callable[..., Awaitable[R]], *args: Any, label: str | None = None) -> R:
        """
        Execute one request under the concurrency bound, retrying transient failures.

        Raises:
            NetworkTransientError: When every attempt failed transiently
        """
        name = label or getattr(fn, "__name__", "request")
        attempt = 0
        while True:
            try:
                return await self._attempt(fn, args)
            except NetworkTransientError as e:
                attempt += 1
                if attempt >= self.max_attempts:
                    logger.error(f"{name} failed after {attempt} attempt(s): {e}")
                    raise
                delay = self.backoff_delay(attempt - 1)
                self.retries += 1
                logger.warning(
                    f"{name} failed ({e}), retrying in {delay:.2f}s "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                await asyncio.sleep(delay)

    async def map(
        self,
        fn: Callable[[T], Awaitable[R]],
        items: Iterable[T],
        label: str | None = None,
    ) -> list[R]:
        """
        Run fn over items concurrently, returning results in input order.

        All results are collected before returning. On the first failure the
        outstanding requests are cancelled and the error propagates.
        """
        return await self.gather(self.run(fn, item, label=label) for item in items)

    @staticmethod
    async def gather(aws: Iterable[Awaitable[R]]) -> list[R]:
        """asyncio.gather that cancels the remaining awaitables on the first failure."""
        tasks = [asyncio.ensure_future(aw) for aw in aws]
        if not tasks:
            return []
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
