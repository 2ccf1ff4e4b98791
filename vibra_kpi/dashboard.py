"""Per-site and chain-wide KPI summaries."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from .calendar_weighting import HolidayCalendar, MonthProgress, compute_month_progress
from .compliance import ComplianceResult, compute_compliance, daily_goal
from .errors import ForecastUnavailable
from .forecast_cache import ForecastCache, ForecastSubject
from .forecast_provider import HISTORY_WINDOW, Forecast
from .models import MonthlyHistoryRecord, Site

LOGGER = logging.getLogger(__name__)

CHART_WINDOW = 14


@dataclass
class ChartPoint:
    report_date: date
    revenue: float
    goal: int


@dataclass
class SiteSummary:
    site: Site
    progress: MonthProgress
    compliance: ComplianceResult
    forecast: Optional[Forecast] = None
    forecast_warning: Optional[str] = None
    chart: List[ChartPoint] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site_id": self.site.id,
            "name": self.site.name,
            "revenue_to_date": self.site.revenue_to_date,
            "monthly_goal": self.site.monthly_goal,
            "retention_rate": self.site.retention_rate,
            "nps_score": self.site.nps_score,
            "average_ticket": self.site.average_ticket,
            "progress": self.progress.to_dict(),
            "compliance": self.compliance.to_dict(),
            "forecast": self.forecast.to_dict() if self.forecast else None,
            "forecast_warning": self.forecast_warning,
            "chart": [
                {"date": p.report_date.isoformat(), "revenue": p.revenue, "goal": p.goal}
                for p in self.chart
            ],
        }


@dataclass
class GlobalSummary:
    revenue: float
    retention: float
    nps: float
    average_ticket: float
    sales_forecast: float
    monthly_goal: float
    sites: List[SiteSummary] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "revenue": self.revenue,
            "retention": self.retention,
            "nps": self.nps,
            "average_ticket": self.average_ticket,
            "sales_forecast": self.sales_forecast,
            "monthly_goal": self.monthly_goal,
            "sites": [s.to_dict() for s in self.sites],
        }


@dataclass
class MonthHistorySummary:
    month_key: str
    revenue: float
    retention: float
    nps: float
    average_ticket: float
    monthly_goal: float
    records: List[MonthlyHistoryRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month_key,
            "revenue": self.revenue,
            "retention": self.retention,
            "nps": self.nps,
            "average_ticket": self.average_ticket,
            "monthly_goal": self.monthly_goal,
            "sites": [r.site_id for r in self.records],
        }


class KpiDashboard:
    """Builds dashboard summaries from the store and the forecast cache.

    Every summary takes its month progress from ``compute_month_progress`` so
    compliance, forecasts and chart goals share one weighting rule.
    """

    def __init__(self, store, forecasts: ForecastCache, holidays: Optional[HolidayCalendar] = None) -> None:
        self.store = store
        self.forecasts = forecasts
        self.holidays = holidays

    def _progress(self, reference_date: Optional[date]) -> MonthProgress:
        return compute_month_progress(reference_date or date.today(), self.holidays)

    async def _chart(self, site: Site, progress: MonthProgress) -> List[ChartPoint]:
        reports = await asyncio.to_thread(self.store.recent_daily_reports, site.id, CHART_WINDOW)
        goal = math.floor(daily_goal(site.monthly_goal, progress))
        return [
            ChartPoint(report_date=r.report_date, revenue=r.new_revenue, goal=goal)
            for r in reversed(reports)
        ]

    async def site_summary(
        self,
        site_id: str,
        reference_date: Optional[date] = None,
        force_refresh: bool = False,
    ) -> SiteSummary:
        site = await asyncio.to_thread(self.store.get_site, site_id)
        progress = self._progress(reference_date)
        history = await asyncio.to_thread(self.store.recent_daily_revenues, site.id, HISTORY_WINDOW)

        summary = SiteSummary(
            site=site,
            progress=progress,
            compliance=compute_compliance(site.revenue_to_date, site.monthly_goal, progress),
            chart=await self._chart(site, progress),
        )
        try:
            summary.forecast = await self.forecasts.get_forecast(
                site.id, site.revenue_to_date, history, progress, force_refresh=force_refresh
            )
        except ForecastUnavailable as exc:
            summary.forecast_warning = f"Forecast unavailable: {exc.message}"
        return summary

    async def global_summary(
        self,
        reference_date: Optional[date] = None,
        force_refresh: bool = False,
    ) -> GlobalSummary:
        sites = await asyncio.to_thread(self.store.list_sites)
        if not sites:
            return GlobalSummary(0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

        progress = self._progress(reference_date)
        subjects = []
        for site in sites:
            history = await asyncio.to_thread(self.store.recent_daily_revenues, site.id, HISTORY_WINDOW)
            subjects.append(ForecastSubject(site.id, site.revenue_to_date, history))

        outcomes = await self.forecasts.get_forecasts(subjects, progress, force_refresh=force_refresh)

        summaries = []
        for site in sites:
            outcome = outcomes.get(site.id)
            summary = SiteSummary(
                site=site,
                progress=progress,
                compliance=compute_compliance(site.revenue_to_date, site.monthly_goal, progress),
            )
            if isinstance(outcome, Forecast):
                summary.forecast = outcome
            elif outcome is not None:
                summary.forecast_warning = f"Forecast unavailable: {outcome.message}"
            summaries.append(summary)

        count = len(sites)
        return GlobalSummary(
            revenue=sum(s.revenue_to_date for s in sites),
            retention=sum(s.retention_rate for s in sites) / count,
            nps=sum(s.nps_score for s in sites) / count,
            average_ticket=sum(s.average_ticket for s in sites) / count,
            sales_forecast=sum(s.forecast.forecast for s in summaries if s.forecast),
            monthly_goal=sum(s.monthly_goal for s in sites),
            sites=summaries,
        )

    async def history_summary(self, site_id: Optional[str] = None) -> List[MonthHistorySummary]:
        """
        Archived months aggregated across sites, newest month first

        Revenue and goal are summed, retention, NPS and ticket averaged over
        the records of each month. Pass ``site_id`` to restrict to one site.
        """
        records = await asyncio.to_thread(self.store.list_monthly_history, site_id)

        by_month: Dict[str, List[MonthlyHistoryRecord]] = {}
        for record in records:
            by_month.setdefault(record.month_key, []).append(record)

        summaries = []
        for key in sorted(by_month, reverse=True):
            month_records = by_month[key]
            count = len(month_records)
            summaries.append(MonthHistorySummary(
                month_key=key,
                revenue=sum(r.final_revenue for r in month_records),
                retention=sum(r.final_retention for r in month_records) / count,
                nps=sum(r.final_nps for r in month_records) / count,
                average_ticket=sum(r.final_average_ticket for r in month_records) / count,
                monthly_goal=sum(r.monthly_goal for r in month_records),
                records=month_records,
            ))
        return summaries
