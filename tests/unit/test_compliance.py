"""
Test Suite: Expected-vs-actual revenue compliance
"""

import pytest

from vibra_kpi.calendar_weighting import MonthProgress
from vibra_kpi.compliance import ComplianceStatus, compute_compliance, daily_goal


def progress(past: float, remaining: float) -> MonthProgress:
    return MonthProgress(total_days=30, elapsed_days=15, effective_past=past, effective_remaining=remaining)


class TestCompliance:

    def test_zero_goal_zero_revenue(self):
        result = compute_compliance(0, 0, progress(12, 12))

        assert result.expected == 0
        assert result.difference == 0
        assert result.status == ComplianceStatus.ON_TRACK

    def test_zero_goal_with_revenue(self):
        result = compute_compliance(1000, 0, progress(12, 12))

        assert result.expected == 0
        assert result.difference == 1000
        assert result.status == ComplianceStatus.ABOVE

    def test_zero_effective_days(self):
        result = compute_compliance(500, 30000000, progress(0, 0))

        assert result.expected == 0
        assert result.difference == 500
        assert result.status == ComplianceStatus.ABOVE

    def test_below_expected(self):
        p = progress(10, 10)
        result = compute_compliance(5000000, 30000000, p)

        assert daily_goal(30000000, p) == 1500000
        assert result.expected == 15000000
        assert result.difference == -10000000
        assert result.status == ComplianceStatus.BELOW

    def test_above_expected(self):
        result = compute_compliance(20000000, 30000000, progress(10, 10))

        assert result.difference == 5000000
        assert result.status == ComplianceStatus.ABOVE

    def test_exact_tie_is_on_track(self):
        result = compute_compliance(15000000, 30000000, progress(10, 10))

        assert result.difference == 0
        assert result.status == ComplianceStatus.ON_TRACK

    def test_to_dict(self):
        assert compute_compliance(5000000, 30000000, progress(10, 10)).to_dict() == {
            'expected': 15000000,
            'difference': -10000000,
            'status': 'below',
        }

    @pytest.mark.parametrize("revenue,goal,past,remaining", [
        (0, 0, 0, 0),
        (1234.5, 9876.5, 3.5, 20.0),
        (5000000, 30000000, 10, 10),
    ])
    def test_deterministic(self, revenue, goal, past, remaining):
        p = progress(past, remaining)
        assert compute_compliance(revenue, goal, p) == compute_compliance(revenue, goal, p)


class TestDailyGoal:

    def test_degenerate_month(self):
        assert daily_goal(30000000, progress(0, 0)) == 0

    def test_split_over_effective_days(self):
        assert daily_goal(24000000, progress(12, 12)) == 1000000
