"""Exceptions raised by the KPI engine."""


class KpiEngineError(Exception):
    """Base class for KPI engine errors"""


class ForecastUnavailable(KpiEngineError):
    """The external forecast provider failed for an entity"""

    def __init__(self, entity_id: str, message: str = "forecast provider failed"):
        super().__init__(f"{entity_id}: {message}")
        self.entity_id = entity_id
        self.message = message


class RolloverAborted(KpiEngineError):
    """The monthly rollover transaction was rolled back"""


class NpsUnavailable(KpiEngineError):
    """The NPS spreadsheet could not be read"""


class SiteNotFound(KpiEngineError):
    """The referenced site does not exist"""


class DuplicateDailyReport(KpiEngineError):
    """A daily report already exists for this site and date"""
