"""
Calendar Weighting Module
Converts a calendar month into weighted effective business days
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, Optional, Union

SUNDAY_WEIGHT = 0.0
HALF_DAY_WEIGHT = 0.5
FULL_DAY_WEIGHT = 1.0

# Colombian public holidays. Only 2024 is enumerated; other years fall back
# to the weekday/weekend rule.
COLOMBIAN_HOLIDAYS_2024 = (
    '2024-01-01', '2024-01-08', '2024-03-25', '2024-03-28', '2024-03-29',
    '2024-05-01', '2024-05-13', '2024-06-03', '2024-06-10', '2024-07-01',
    '2024-07-20', '2024-08-07', '2024-08-19', '2024-10-14', '2024-11-04',
    '2024-11-11', '2024-12-08', '2024-12-25',
)


class HolidayCalendar:
    """Set lookup of non-business dates"""

    def __init__(self, dates: Iterable[Union[str, date]] = ()):
        self._dates = frozenset(self._coerce(d) for d in dates)

    @staticmethod
    def _coerce(value: Union[str, date]) -> date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return datetime.strptime(value, '%Y-%m-%d').date()

    def is_holiday(self, day: date) -> bool:
        return day in self._dates

    def __contains__(self, day: date) -> bool:
        return self.is_holiday(day)

    def __len__(self) -> int:
        return len(self._dates)


DEFAULT_HOLIDAYS = HolidayCalendar(COLOMBIAN_HOLIDAYS_2024)


@dataclass(frozen=True)
class MonthProgress:
    """Progress through a calendar month, in calendar and effective days"""

    total_days: int
    elapsed_days: int
    effective_past: float
    effective_remaining: float

    @property
    def effective_total(self) -> float:
        return self.effective_past + self.effective_remaining

    def to_dict(self) -> Dict[str, float]:
        """Field names expected by the forecast provider"""
        return {
            'totalDaysInMonth': self.total_days,
            'elapsedDaysInMonth': self.elapsed_days,
            'effectiveBusinessDaysPast': self.effective_past,
            'effectiveBusinessDaysRemaining': self.effective_remaining,
        }


def day_weight(day: date, holidays: Optional[HolidayCalendar] = None) -> float:
    """
    Weight of a single calendar day by expected sales volume

    Sunday counts 0, Saturday or a holiday counts 0.5, any other day 1.
    A holiday falling on a Sunday still counts 0.

    Args:
        day: Calendar date
        holidays: Holiday lookup (default: Colombian 2024 holidays)

    Returns:
        Day weight
    """
    if holidays is None:
        holidays = DEFAULT_HOLIDAYS

    weekday = day.weekday()  # 0=Mon ... 6=Sun
    if weekday == 6:
        return SUNDAY_WEIGHT
    if weekday == 5 or holidays.is_holiday(day):
        return HALF_DAY_WEIGHT
    return FULL_DAY_WEIGHT


def compute_month_progress(reference_date: Union[date, datetime],
                           holidays: Optional[HolidayCalendar] = None) -> MonthProgress:
    """
    Compute elapsed and remaining effective business days for a month

    Days 1..elapsed (inclusive of the reference day) count as past, the
    rest of the month as remaining.

    Args:
        reference_date: Any date within the month of interest
        holidays: Holiday lookup (default: Colombian 2024 holidays)

    Returns:
        MonthProgress for the month containing reference_date
    """
    if isinstance(reference_date, datetime):
        reference_date = reference_date.date()

    year, month = reference_date.year, reference_date.month
    total_days = calendar.monthrange(year, month)[1]
    elapsed_days = reference_date.day

    effective_past = 0.0
    effective_remaining = 0.0
    for day_number in range(1, total_days + 1):
        weight = day_weight(date(year, month, day_number), holidays)
        if day_number <= elapsed_days:
            effective_past += weight
        else:
            effective_remaining += weight

    return MonthProgress(
        total_days=total_days,
        elapsed_days=elapsed_days,
        effective_past=effective_past,
        effective_remaining=effective_remaining,
    )
