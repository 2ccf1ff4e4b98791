from __future__ import annotations

import asyncio
from datetime import date
from typing import List

import pytest

from vibra_kpi.calendar_weighting import compute_month_progress
from vibra_kpi.errors import ForecastUnavailable
from vibra_kpi.forecast_cache import (
    ForecastCache,
    ForecastKey,
    ForecastSubject,
    InMemoryForecastBackend,
    NullForecastBackend,
)
from vibra_kpi.forecast_provider import Forecast, ForecastRequest


PROGRESS = compute_month_progress(date(2024, 4, 15))


class CountingProvider:
    def __init__(self, fail_for=(), cancel_for=()) -> None:
        self.calls: List[ForecastRequest] = []
        self.fail_for = set(fail_for)
        self.cancel_for = set(cancel_for)

    async def __call__(self, request: ForecastRequest) -> Forecast:
        self.calls.append(request)
        await asyncio.sleep(0)
        if request.entity_id in self.fail_for:
            raise RuntimeError("model overloaded")
        if request.entity_id in self.cancel_for:
            raise asyncio.CancelledError()
        projected = request.current_revenue * 2
        return Forecast(forecast=projected, reasoning=f"{request.entity_id} doubles its pace")


@pytest.mark.asyncio
async def test_second_call_hits_cache():
    provider = CountingProvider()
    cache = ForecastCache(provider)

    first = await cache.get_forecast("ciudadela", 1000.0, [100, 200], PROGRESS)
    second = await cache.get_forecast("ciudadela", 1000.0, [100, 200], PROGRESS)

    assert first == second == Forecast(2000.0, "ciudadela doubles its pace")
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_force_refresh_always_calls_provider():
    provider = CountingProvider()
    cache = ForecastCache(provider)

    await cache.get_forecast("ciudadela", 1000.0, [], PROGRESS)
    await cache.get_forecast("ciudadela", 1000.0, [], PROGRESS, force_refresh=True)
    await cache.get_forecast("ciudadela", 1000.0, [], PROGRESS, force_refresh=True)

    assert len(provider.calls) == 3


@pytest.mark.asyncio
async def test_revenue_change_invalidates_entry():
    provider = CountingProvider()
    backend = InMemoryForecastBackend()
    cache = ForecastCache(provider, backend)

    await cache.get_forecast("ciudadela", 1000.0, [], PROGRESS)
    updated = await cache.get_forecast("ciudadela", 1500.0, [], PROGRESS)

    assert updated.forecast == 3000.0
    assert len(provider.calls) == 2
    assert backend.get(ForecastKey("ciudadela", 1000.0)) is None
    assert len(backend) == 1

    # Going back to the old revenue is a miss too
    await cache.get_forecast("ciudadela", 1000.0, [], PROGRESS)
    assert len(provider.calls) == 3


@pytest.mark.asyncio
async def test_provider_receives_trimmed_history_and_progress():
    provider = CountingProvider()
    cache = ForecastCache(provider)

    await cache.get_forecast("ciudadela", 1000.0, list(range(10, 0, -1)), PROGRESS)

    request = provider.calls[0]
    assert request.historical_revenue == [10.0, 9.0, 8.0, 7.0, 6.0, 5.0, 4.0]
    assert request.current_revenue == 1000.0
    assert request.progress == PROGRESS


@pytest.mark.asyncio
async def test_failure_is_not_cached():
    provider = CountingProvider(fail_for={"ciudadela"})
    backend = InMemoryForecastBackend()
    cache = ForecastCache(provider, backend)

    with pytest.raises(ForecastUnavailable) as excinfo:
        await cache.get_forecast("ciudadela", 1000.0, [], PROGRESS)

    assert excinfo.value.entity_id == "ciudadela"
    assert "model overloaded" in excinfo.value.message
    assert len(backend) == 0

    with pytest.raises(ForecastUnavailable):
        await cache.get_forecast("ciudadela", 1000.0, [], PROGRESS)
    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_failed_refresh_keeps_previous_entry():
    provider = CountingProvider()
    backend = InMemoryForecastBackend()
    cache = ForecastCache(provider, backend)

    previous = await cache.get_forecast("ciudadela", 1000.0, [], PROGRESS)
    provider.fail_for.add("ciudadela")

    with pytest.raises(ForecastUnavailable):
        await cache.get_forecast("ciudadela", 1000.0, [], PROGRESS, force_refresh=True)

    assert backend.get(ForecastKey("ciudadela", 1000.0)) == previous


@pytest.mark.asyncio
async def test_null_backend_disables_caching():
    provider = CountingProvider()
    cache = ForecastCache(provider, NullForecastBackend())

    await cache.get_forecast("ciudadela", 1000.0, [], PROGRESS)
    await cache.get_forecast("ciudadela", 1000.0, [], PROGRESS)

    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_invalidate_drops_entity():
    provider = CountingProvider()
    cache = ForecastCache(provider)

    await cache.get_forecast("ciudadela", 1000.0, [], PROGRESS)
    cache.invalidate("ciudadela")
    await cache.get_forecast("ciudadela", 1000.0, [], PROGRESS)

    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_batch_failures_are_independent():
    provider = CountingProvider(fail_for={"floridablanca"}, cancel_for={"piedecuesta"})
    cache = ForecastCache(provider)
    subjects = [
        ForecastSubject("ciudadela", 1000.0, [100.0]),
        ForecastSubject("floridablanca", 2000.0, [200.0]),
        ForecastSubject("piedecuesta", 3000.0, [300.0]),
    ]

    outcomes = await cache.get_forecasts(subjects, PROGRESS)

    assert outcomes["ciudadela"] == Forecast(2000.0, "ciudadela doubles its pace")
    assert isinstance(outcomes["floridablanca"], ForecastUnavailable)
    assert isinstance(outcomes["piedecuesta"], ForecastUnavailable)
    assert len(provider.calls) == 3


@pytest.mark.asyncio
async def test_batch_uses_cache_per_entity():
    provider = CountingProvider()
    cache = ForecastCache(provider)
    subjects = [ForecastSubject("ciudadela", 1000.0), ForecastSubject("floridablanca", 2000.0)]

    await cache.get_forecasts(subjects, PROGRESS)
    await cache.get_forecasts(subjects, PROGRESS)
    assert len(provider.calls) == 2

    await cache.get_forecasts(subjects, PROGRESS, force_refresh=True)
    assert len(provider.calls) == 4


@pytest.mark.asyncio
async def test_batch_empty():
    cache = ForecastCache(CountingProvider())
    assert await cache.get_forecasts([], PROGRESS) == {}
