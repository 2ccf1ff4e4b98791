"""
VIBRA OS - KPI forecast and month compliance engine
"""

from .calendar_weighting import HolidayCalendar, MonthProgress, compute_month_progress, day_weight
from .compliance import ComplianceResult, ComplianceStatus, compute_compliance, daily_goal
from .dashboard import GlobalSummary, KpiDashboard, MonthHistorySummary, SiteSummary
from .errors import (
    DuplicateDailyReport,
    ForecastUnavailable,
    KpiEngineError,
    NpsUnavailable,
    RolloverAborted,
    SiteNotFound,
)
from .forecast_cache import ForecastCache, ForecastKey, ForecastSubject, InMemoryForecastBackend, NullForecastBackend
from .forecast_provider import Forecast, ForecastRequest, HttpForecastProvider
from .models import DailyReport, MonthlyHistoryRecord, Site
from .rollover import MonthRollover, RolloverOutcome, RolloverStatus

__all__ = [
    'HolidayCalendar',
    'MonthProgress',
    'compute_month_progress',
    'day_weight',
    'ComplianceResult',
    'ComplianceStatus',
    'compute_compliance',
    'daily_goal',
    'KpiDashboard',
    'SiteSummary',
    'GlobalSummary',
    'MonthHistorySummary',
    'ForecastCache',
    'ForecastKey',
    'ForecastSubject',
    'InMemoryForecastBackend',
    'NullForecastBackend',
    'Forecast',
    'ForecastRequest',
    'HttpForecastProvider',
    'Site',
    'DailyReport',
    'MonthlyHistoryRecord',
    'MonthRollover',
    'RolloverOutcome',
    'RolloverStatus',
    'KpiEngineError',
    'ForecastUnavailable',
    'RolloverAborted',
    'NpsUnavailable',
    'SiteNotFound',
    'DuplicateDailyReport',
]

__version__ = '0.1.0'
