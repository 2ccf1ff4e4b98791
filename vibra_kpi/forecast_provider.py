"""Async client for the generative-text sales forecast endpoint."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import textwrap
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import aiohttp

from .calendar_weighting import MonthProgress
from .errors import ForecastUnavailable

LOGGER = logging.getLogger(__name__)

HISTORY_WINDOW = 7
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class Forecast:
    """Projected total revenue for the month and a one-sentence rationale."""

    forecast: float
    reasoning: str

    def to_dict(self) -> Dict[str, Any]:
        return {"forecast": self.forecast, "reasoning": self.reasoning}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Forecast":
        if not isinstance(payload, dict):
            raise ValueError("Forecast payload must be an object")
        value = payload.get("forecast")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"Forecast value is not a number: {value!r}")
        reasoning = payload.get("reasoning")
        if not isinstance(reasoning, str):
            raise ValueError("Forecast reasoning is missing")
        return cls(forecast=float(value), reasoning=reasoning.strip())


@dataclass(frozen=True)
class ForecastRequest:
    """Inputs sent to the provider for one entity."""

    entity_id: str
    current_revenue: float
    progress: MonthProgress
    historical_revenue: List[float] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "historicalRevenue": list(self.historical_revenue[:HISTORY_WINDOW]),
            "currentMonthRevenue": self.current_revenue,
            **self.progress.to_dict(),
        }


ForecastProvider = Callable[[ForecastRequest], Awaitable[Forecast]]


PROMPT_TEMPLATE = textwrap.dedent(
    """\
    You are a financial analyst for a chain of gyms in Colombia. Forecast total
    sales for the current month using business-day weighting.

    Business rules:
    - Sundays generate no sales (0 business days).
    - Saturdays and public holidays generate half a normal day (0.5 business days).
    - Monday to Friday, when not a holiday, are full business days (1 business day).

    Current month:
    - Total days in month: {totalDaysInMonth}
    - Elapsed days: {elapsedDaysInMonth}
    - Effective business days elapsed: {effectiveBusinessDaysPast}
    - Effective business days remaining: {effectiveBusinessDaysRemaining}
    - Revenue to date: COP {currentMonthRevenue}

    Recent daily revenue (most recent first): {history}

    Steps:
    1. Average revenue per effective business day so far (revenue to date / effective days elapsed).
    2. Multiply that average by the effective business days remaining.
    3. Add revenue to date to get the month total.

    Reply only with a JSON object {{"forecast": <number in COP>, "reasoning": "<one sentence>"}}.
    """
)


def render_prompt(request: ForecastRequest) -> str:
    payload = request.to_payload()
    history = ", ".join(f"COP {value:.0f}" for value in payload["historicalRevenue"]) or "none"
    return PROMPT_TEMPLATE.format(history=history, **payload)


class HttpForecastProvider:
    """Calls a JSON generative-text endpoint and parses its forecast reply."""

    def __init__(
        self,
        *,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.api_url = api_url or os.getenv("FORECAST_API_URL")
        self.api_key = api_key or os.getenv("FORECAST_API_KEY")
        self.model = model or os.getenv("FORECAST_MODEL", DEFAULT_MODEL)
        self.timeout = timeout if timeout is not None else float(
            os.getenv("FORECAST_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    @classmethod
    def from_environment(cls) -> "HttpForecastProvider":
        return cls()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _body(self, request: ForecastRequest) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": render_prompt(request),
            "input": request.to_payload(),
            "response_format": "json",
        }

    async def __call__(self, request: ForecastRequest) -> Forecast:
        if not self.is_configured:
            raise ForecastUnavailable(
                request.entity_id,
                "forecast provider credentials missing. Set FORECAST_API_URL and FORECAST_API_KEY.",
            )

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self.api_url, json=self._body(request), headers=self._headers()
                ) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise ForecastUnavailable(
                            request.entity_id,
                            f"provider returned HTTP {response.status}: {text[:200]}",
                        )
                    payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as exc:
            LOGGER.error("Forecast request for %s failed: %s", request.entity_id, exc)
            raise ForecastUnavailable(request.entity_id, str(exc)) from exc

        return self._parse(request.entity_id, payload)

    @staticmethod
    def _parse(entity_id: str, payload: Any) -> Forecast:
        # Some endpoints wrap the model output as a JSON string under "output".
        if isinstance(payload, dict) and "forecast" not in payload and "output" in payload:
            payload = payload["output"]
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as exc:
                raise ForecastUnavailable(entity_id, "provider reply is not JSON") from exc
        try:
            return Forecast.from_dict(payload)
        except ValueError as exc:
            raise ForecastUnavailable(entity_id, str(exc)) from exc


def trim_history(values: Sequence[float]) -> List[float]:
    """Keep at most the last HISTORY_WINDOW daily revenues, most recent first."""
    return [float(v) for v in list(values)[:HISTORY_WINDOW]]
