"""
Tests for the bounded-concurrency fetch pipeline.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from escore.errors import (
    HttpStatusError,
    InvalidConfigurationError,
    MalformedResponseError,
    NetworkTransientError,
)
from eswallet.config import EsploraConfig
from eswallet.pipeline import FetchPipeline


class TestPipelineConstruction:
    def test_rejects_zero_concurrency(self) -> None:
        with pytest.raises(InvalidConfigurationError, match="concurrency"):
            FetchPipeline(concurrency=0)

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(InvalidConfigurationError, match="max_attempts"):
            FetchPipeline(max_attempts=0)

    def test_from_config(self) -> None:
        config = EsploraConfig(
            base_url="http://esplora.test",
            stop_gap=5,
            concurrency=7,
            max_attempts=5,
            retry_backoff=0.25,
            _env_file=None,  # type: ignore[call-arg]
        )
        pipeline = FetchPipeline.from_config(config)
        assert pipeline.concurrency == 7
        assert pipeline.max_attempts == 5
        assert pipeline.backoff_base == 0.25

    def test_backoff_grows_and_is_capped(self) -> None:
        pipeline = FetchPipeline(backoff_base=1.0, backoff_max=3.0)
        for attempt, floor in [(0, 1.0), (1, 2.0), (2, 3.0), (5, 3.0)]:
            delay = pipeline.backoff_delay(attempt)
            assert floor <= delay <= floor + 0.5


class TestPipelineConcurrency:
    @pytest.mark.asyncio
    async def test_in_flight_never_exceeds_bound(self) -> None:
        pipeline = FetchPipeline(concurrency=3)
        active = 0
        peak = 0

        async def request(item: int) -> int:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return item * 2

        results = await pipeline.map(request, range(20))

        assert results == [i * 2 for i in range(20)]
        assert peak == 3
        assert pipeline.peak_in_flight == 3
        assert pipeline.requests == 20
        assert pipeline.in_flight == 0

    @pytest.mark.asyncio
    async def test_map_preserves_input_order(self) -> None:
        pipeline = FetchPipeline(concurrency=4)

        async def request(delay: float) -> float:
            await asyncio.sleep(delay)
            return delay

        delays = [0.03, 0.0, 0.02, 0.01]
        assert await pipeline.map(request, delays) == delays

    @pytest.mark.asyncio
    async def test_map_empty(self) -> None:
        assert await FetchPipeline().map(AsyncMock(), []) == []

    @pytest.mark.asyncio
    async def test_failure_cancels_outstanding_requests(self) -> None:
        pipeline = FetchPipeline(concurrency=4)
        finished: list[int] = []

        async def request(item: int) -> int:
            if item == 0:
                raise HttpStatusError("HTTP 400", 400)
            await asyncio.sleep(0.05)
            finished.append(item)
            return item

        with pytest.raises(HttpStatusError):
            await pipeline.map(request, range(4))
        await asyncio.sleep(0.1)
        assert finished == []


class TestPipelineRetry:
    @pytest.mark.asyncio
    async def test_transient_then_success(self) -> None:
        pipeline = FetchPipeline(max_attempts=3, backoff_base=0)
        fn = AsyncMock(side_effect=[NetworkTransientError("timeout"), "ok"])

        assert await pipeline.run(fn, "arg") == "ok"
        assert fn.await_count == 2
        fn.assert_awaited_with("arg")
        assert pipeline.retries == 1

    @pytest.mark.asyncio
    async def test_exhausted_attempts_reraise(self) -> None:
        pipeline = FetchPipeline(max_attempts=3, backoff_base=0)
        fn = AsyncMock(side_effect=NetworkTransientError("HTTP 503", status_code=503))

        with pytest.raises(NetworkTransientError) as exc_info:
            await pipeline.run(fn)
        assert exc_info.value.status_code == 503
        assert fn.await_count == 3
        assert pipeline.retries == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [HttpStatusError("HTTP 400", 400), MalformedResponseError("bad json")],
    )
    async def test_non_transient_errors_not_retried(self, error: Exception) -> None:
        pipeline = FetchPipeline(max_attempts=5, backoff_base=0)
        fn = AsyncMock(side_effect=error)

        with pytest.raises(type(error)):
            await pipeline.run(fn)
        assert fn.await_count == 1
        assert pipeline.retries == 0

    @pytest.mark.asyncio
    async def test_not_found_result_is_not_retried(self) -> None:
        pipeline = FetchPipeline(backoff_base=0)
        fn = AsyncMock(return_value=None)

        assert await pipeline.run(fn) is None
        assert fn.await_count == 1

    @pytest.mark.asyncio
    async def test_slot_released_while_backing_off(self) -> None:
        """A request waiting to retry must not block other requests."""
        pipeline = FetchPipeline(concurrency=1, max_attempts=2, backoff_base=0.2)
        order: list[str] = []
        calls = 0

        async def flaky() -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                order.append("flaky failed")
                raise NetworkTransientError("reset")
            order.append("flaky ok")
            return "flaky"

        async def quick() -> str:
            order.append("quick")
            return "quick"

        async def start_quick_later() -> str:
            await asyncio.sleep(0.01)
            return await pipeline.run(quick)

        results = await asyncio.gather(pipeline.run(flaky), start_quick_later())

        assert results == ["flaky", "quick"]
        assert order == ["flaky failed", "quick", "flaky ok"]
