"""
Compliance Engine Module
Expected-vs-actual revenue to date, weighted by effective business days
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict

from .calendar_weighting import MonthProgress


class ComplianceStatus(str, Enum):
    ABOVE = 'above'
    BELOW = 'below'
    ON_TRACK = 'on_track'


@dataclass(frozen=True)
class ComplianceResult:
    expected: float
    difference: float
    status: ComplianceStatus

    def to_dict(self) -> Dict:
        return {
            'expected': self.expected,
            'difference': self.difference,
            'status': self.status.value,
        }


def daily_goal(monthly_goal: float, progress: MonthProgress) -> float:
    """Goal per full effective business day, 0 when the month has no business days"""
    total_effective = progress.effective_total
    if total_effective <= 0:
        return 0.0
    return monthly_goal / total_effective


def compute_compliance(revenue_to_date: float,
                       monthly_goal: float,
                       progress: MonthProgress) -> ComplianceResult:
    """
    Compare revenue to date with the time-weighted share of the monthly goal

    Args:
        revenue_to_date: Revenue accumulated this month
        monthly_goal: Monthly revenue target
        progress: Month progress for the reference date

    Returns:
        ComplianceResult with expected revenue, signed difference and status
    """
    if monthly_goal == 0 or progress.effective_total == 0:
        expected = 0.0
        difference = revenue_to_date
    else:
        expected = daily_goal(monthly_goal, progress) * progress.effective_past
        difference = revenue_to_date - expected

    if difference > 0:
        status = ComplianceStatus.ABOVE
    elif difference < 0:
        status = ComplianceStatus.BELOW
    else:
        status = ComplianceStatus.ON_TRACK

    return ComplianceResult(expected=expected, difference=difference, status=status)
