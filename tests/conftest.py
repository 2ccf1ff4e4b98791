"""Shared pytest configuration for the project test suite."""
from __future__ import annotations

import copy
import sys
import threading
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest


# Ensure the repository root (which contains the ``vibra_kpi`` package) is importable.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from vibra_kpi.errors import SiteNotFound  # noqa: E402
from vibra_kpi.models import DailyReport, MonthlyHistoryRecord, Site  # noqa: E402


class _MemoryTransaction:
    def __init__(self, store: "MemoryKpiStore") -> None:
        self.store = store

    def _maybe_fail(self, name: str) -> None:
        if self.store.fail_on == name:
            raise RuntimeError(f"simulated failure in {name}")

    def get_last_reset_month(self, lock: bool = True) -> Optional[str]:
        self._maybe_fail("get_last_reset_month")
        return self.store.last_reset_month

    def init_last_reset_month(self, month: str) -> bool:
        self._maybe_fail("init_last_reset_month")
        if self.store.last_reset_month is not None:
            return False
        self.store.last_reset_month = month
        return True

    def set_last_reset_month(self, month: str) -> None:
        self._maybe_fail("set_last_reset_month")
        self.store.last_reset_month = month

    def list_sites(self, lock: bool = False) -> List[Site]:
        self._maybe_fail("list_sites")
        return [copy.copy(s) for _, s in sorted(self.store.sites.items())]

    def insert_history(self, record: MonthlyHistoryRecord) -> bool:
        self._maybe_fail("insert_history")
        key = (record.site_id, record.year, record.month)
        if key in self.store.history:
            return False
        self.store.history[key] = record
        return True

    def reset_site_counters(self, site_id: str) -> None:
        self._maybe_fail("reset_site_counters")
        site = self.store.sites[site_id]
        site.revenue_to_date = 0.0
        site.retention_rate = 0.0
        site.nps_score = 0.0
        site.average_ticket = 0.0


class MemoryKpiStore:
    """Test double for PostgresKpiStore.

    A single lock is held for the whole transaction, which mirrors the row
    lock the Postgres store takes on the status row, and state is restored
    from a snapshot when the block raises.
    """

    def __init__(self, sites: Tuple[Site, ...] = ()) -> None:
        self.sites: Dict[str, Site] = {s.id: s for s in sites}
        self.history: Dict[Tuple[str, int, int], MonthlyHistoryRecord] = {}
        self.reports: List[DailyReport] = []
        self.last_reset_month: Optional[str] = None
        self.fail_on: Optional[str] = None
        self.nps_updates: List[Tuple[str, float, date]] = []
        self._lock = threading.Lock()

    @contextmanager
    def transaction(self):
        with self._lock:
            snapshot = (copy.deepcopy(self.sites), dict(self.history), self.last_reset_month)
            try:
                yield _MemoryTransaction(self)
            except BaseException:
                self.sites, self.history, self.last_reset_month = snapshot
                raise

    def list_sites(self) -> List[Site]:
        return [copy.copy(s) for _, s in sorted(self.sites.items())]

    def get_site(self, site_id: str) -> Site:
        if site_id not in self.sites:
            raise SiteNotFound(f"Site {site_id} does not exist")
        return copy.copy(self.sites[site_id])

    def recent_daily_reports(self, site_id: str, limit: int = 14) -> List[DailyReport]:
        reports = [r for r in self.reports if r.site_id == site_id]
        reports.sort(key=lambda r: r.report_date, reverse=True)
        return reports[:limit]

    def recent_daily_revenues(self, site_id: str, limit: int = 7) -> List[float]:
        return [r.new_revenue for r in self.recent_daily_reports(site_id, limit)]

    def update_site_nps(self, site_id: str, nps_score: float, updated_on: Optional[date] = None) -> None:
        if nps_score < 0:
            raise ValueError("nps_score must be non-negative")
        if site_id not in self.sites:
            raise SiteNotFound(f"Site {site_id} does not exist")
        self.sites[site_id].nps_score = nps_score
        self.sites[site_id].nps_updated_on = updated_on
        self.nps_updates.append((site_id, nps_score, updated_on))

    def list_monthly_history(self, site_id: Optional[str] = None) -> List[MonthlyHistoryRecord]:
        records = [r for r in self.history.values() if site_id is None or r.site_id == site_id]
        records.sort(key=lambda r: r.site_id)
        records.sort(key=lambda r: (r.year, r.month), reverse=True)
        return records

    def health_check(self) -> bool:
        return True


@pytest.fixture
def sample_sites() -> Tuple[Site, ...]:
    return (
        Site(id="ciudadela", name="VIBRA Ciudadela", revenue_to_date=7500000, monthly_goal=30000000,
             retention_rate=92, nps_score=8.8, average_ticket=155000, spreadsheet_id="sheet-ciudadela"),
        Site(id="floridablanca", name="VIBRA Floridablanca", revenue_to_date=9800000, monthly_goal=40000000,
             retention_rate=88, nps_score=8.2, average_ticket=162000, spreadsheet_id="sheet-floridablanca"),
        Site(id="piedecuesta", name="VIBRA Piedecuesta", revenue_to_date=6200000, monthly_goal=25000000,
             retention_rate=95, nps_score=9.1, average_ticket=148000),
    )


@pytest.fixture
def memory_store(sample_sites) -> MemoryKpiStore:
    return MemoryKpiStore(tuple(copy.deepcopy(s) for s in sample_sites))


@pytest.fixture
def empty_store() -> MemoryKpiStore:
    return MemoryKpiStore()
