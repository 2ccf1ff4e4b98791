"""
Domain records for sites, daily reports and the monthly archive
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Optional


def _number(value: Any) -> float:
    # NUMERIC columns come back from psycopg2 as Decimal
    return float(value) if value is not None else 0.0


@dataclass
class Site:
    """One physical gym location and its running KPIs for the open month"""

    id: str
    name: str
    revenue_to_date: float = 0.0
    monthly_goal: float = 0.0
    retention_rate: float = 0.0
    nps_score: float = 0.0
    average_ticket: float = 0.0
    spreadsheet_id: Optional[str] = None
    nps_updated_on: Optional[date] = None

    def validate(self):
        for name in ('revenue_to_date', 'monthly_goal', 'retention_rate', 'nps_score', 'average_ticket'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Site':
        return cls(
            id=row['id'],
            name=row['name'],
            revenue_to_date=_number(row.get('revenue_to_date')),
            monthly_goal=_number(row.get('monthly_goal')),
            retention_rate=_number(row.get('retention_rate')),
            nps_score=_number(row.get('nps_score')),
            average_ticket=_number(row.get('average_ticket')),
            spreadsheet_id=row.get('spreadsheet_id'),
            nps_updated_on=row.get('nps_updated_on'),
        )


@dataclass
class DailyReport:
    """A site leader's report for one calendar date"""

    site_id: str
    leader_id: str
    report_date: date
    new_revenue: float
    leader_name: str = ''
    new_members: int = 0
    lost_members: int = 0
    renewal_rate: Optional[float] = None
    coach_satisfaction: Optional[float] = None
    daily_win: str = ''
    daily_challenge: str = ''
    lesson_learned: str = ''
    id: Optional[str] = None
    submitted_at: Optional[datetime] = None

    def validate(self):
        """Same bounds the report form enforces"""
        if self.new_revenue < 0:
            raise ValueError("new_revenue cannot be negative")
        if self.new_members < 0 or self.lost_members < 0:
            raise ValueError("membership deltas cannot be negative")
        if self.renewal_rate is not None and not 0 <= self.renewal_rate <= 100:
            raise ValueError("renewal_rate must be between 0 and 100")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'DailyReport':
        return cls(
            id=str(row['id']) if row.get('id') is not None else None,
            site_id=row['site_id'],
            leader_id=row['leader_id'],
            leader_name=row.get('leader_name') or '',
            report_date=row['report_date'],
            new_revenue=_number(row.get('new_revenue')),
            new_members=row.get('new_members') or 0,
            lost_members=row.get('lost_members') or 0,
            renewal_rate=_number(row['renewal_rate']) if row.get('renewal_rate') is not None else None,
            coach_satisfaction=(
                _number(row['coach_satisfaction']) if row.get('coach_satisfaction') is not None else None
            ),
            daily_win=row.get('daily_win') or '',
            daily_challenge=row.get('daily_challenge') or '',
            lesson_learned=row.get('lesson_learned') or '',
            submitted_at=row.get('submitted_at'),
        )


@dataclass(frozen=True)
class MonthlyHistoryRecord:
    """Final KPIs of a site for an archived month"""

    site_id: str
    site_name: str
    year: int
    month: int
    final_revenue: float
    final_retention: float
    final_nps: float
    final_average_ticket: float
    monthly_goal: float
    archived_at: Optional[datetime] = field(default=None, compare=False)

    @property
    def month_key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @classmethod
    def from_site(cls, site: Site, month_key: str) -> 'MonthlyHistoryRecord':
        year, month = parse_month_key(month_key)
        return cls(
            site_id=site.id,
            site_name=site.name,
            year=year,
            month=month,
            final_revenue=site.revenue_to_date,
            final_retention=site.retention_rate,
            final_nps=site.nps_score,
            final_average_ticket=site.average_ticket,
            monthly_goal=site.monthly_goal,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'MonthlyHistoryRecord':
        return cls(
            site_id=row['site_id'],
            site_name=row['site_name'],
            year=int(row['year']),
            month=int(row['month']),
            final_revenue=_number(row.get('final_revenue')),
            final_retention=_number(row.get('final_retention')),
            final_nps=_number(row.get('final_nps')),
            final_average_ticket=_number(row.get('final_average_ticket')),
            monthly_goal=_number(row.get('monthly_goal')),
            archived_at=row.get('archived_at'),
        )


def month_key(day: date) -> str:
    """'YYYY-MM' for the month containing day; these strings sort chronologically"""
    return day.strftime('%Y-%m')


def parse_month_key(key: str):
    parsed = datetime.strptime(key, '%Y-%m')
    return parsed.year, parsed.month
