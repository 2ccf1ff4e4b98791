"""Forecast lookups cached per entity and revenue snapshot."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from .calendar_weighting import MonthProgress
from .errors import ForecastUnavailable
from .forecast_provider import Forecast, ForecastProvider, ForecastRequest, trim_history

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForecastKey:
    """A forecast is valid only while the entity's revenue to date is unchanged."""

    entity_id: str
    revenue: float


@dataclass(frozen=True)
class ForecastSubject:
    """One entity in a batch fetch."""

    entity_id: str
    current_revenue: float
    historical_revenue: Sequence[float] = field(default_factory=tuple)


class ForecastBackend(Protocol):
    def get(self, key: ForecastKey) -> Optional[Forecast]: ...

    def set(self, key: ForecastKey, value: Forecast) -> None: ...

    def invalidate(self, entity_id: str) -> None: ...


class InMemoryForecastBackend:
    """Keeps the latest forecast per entity, tagged with the revenue it was computed for."""

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[float, Forecast]] = {}

    def get(self, key: ForecastKey) -> Optional[Forecast]:
        entry = self._entries.get(key.entity_id)
        if entry is None:
            return None
        revenue, forecast = entry
        if revenue != key.revenue:
            return None
        return forecast

    def set(self, key: ForecastKey, value: Forecast) -> None:
        self._entries[key.entity_id] = (key.revenue, value)

    def invalidate(self, entity_id: str) -> None:
        self._entries.pop(entity_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class NullForecastBackend:
    """Caching disabled: every lookup misses."""

    def get(self, key: ForecastKey) -> Optional[Forecast]:
        return None

    def set(self, key: ForecastKey, value: Forecast) -> None:
        return None

    def invalidate(self, entity_id: str) -> None:
        return None


ForecastOutcome = Union[Forecast, ForecastUnavailable]


class ForecastCache:
    """Wraps a forecast provider with a per-entity revenue-keyed cache."""

    def __init__(self, provider: ForecastProvider, backend: Optional[ForecastBackend] = None) -> None:
        self.provider = provider
        self.backend: ForecastBackend = backend if backend is not None else InMemoryForecastBackend()

    async def get_forecast(
        self,
        entity_id: str,
        current_revenue: float,
        historical_daily_revenues: Sequence[float],
        progress: MonthProgress,
        force_refresh: bool = False,
    ) -> Forecast:
        """
        Return the cached forecast for (entity_id, current_revenue) or ask the provider

        Raises:
            ForecastUnavailable: provider failed; nothing is cached
        """
        key = ForecastKey(entity_id=entity_id, revenue=current_revenue)
        if not force_refresh:
            cached = self.backend.get(key)
            if cached is not None:
                LOGGER.debug("Forecast cache hit for %s at revenue %s", entity_id, current_revenue)
                return cached

        request = ForecastRequest(
            entity_id=entity_id,
            current_revenue=current_revenue,
            progress=progress,
            historical_revenue=trim_history(historical_daily_revenues),
        )
        try:
            forecast = await self.provider(request)
        except ForecastUnavailable:
            LOGGER.error("Forecast unavailable for %s", entity_id)
            raise
        except Exception as exc:
            LOGGER.error("Forecast provider failed for %s: %s", entity_id, exc)
            raise ForecastUnavailable(entity_id, str(exc) or type(exc).__name__) from exc

        self.backend.set(key, forecast)
        return forecast

    async def get_forecasts(
        self,
        subjects: Iterable[ForecastSubject],
        progress: MonthProgress,
        force_refresh: bool = False,
    ) -> Dict[str, ForecastOutcome]:
        """
        Fetch forecasts for several entities concurrently

        Each entity resolves on its own to a Forecast or a ForecastUnavailable;
        one failing or cancelled fetch never affects the others.
        """
        subjects = list(subjects)
        if not subjects:
            return {}

        tasks: List[asyncio.Task] = [
            asyncio.ensure_future(
                self.get_forecast(
                    subject.entity_id,
                    subject.current_revenue,
                    subject.historical_revenue,
                    progress,
                    force_refresh=force_refresh,
                )
            )
            for subject in subjects
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes: Dict[str, ForecastOutcome] = {}
        for subject, result in zip(subjects, results):
            if isinstance(result, Forecast):
                outcomes[subject.entity_id] = result
            elif isinstance(result, ForecastUnavailable):
                outcomes[subject.entity_id] = result
            elif isinstance(result, asyncio.CancelledError):
                outcomes[subject.entity_id] = ForecastUnavailable(subject.entity_id, "forecast request cancelled")
            else:
                outcomes[subject.entity_id] = ForecastUnavailable(subject.entity_id, repr(result))
        return outcomes

    def invalidate(self, entity_id: str) -> None:
        self.backend.invalidate(entity_id)
