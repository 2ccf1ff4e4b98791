"""
Month Rollover Module
Archives every site's final KPIs once per calendar month and resets the counters
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

from .errors import RolloverAborted
from .models import MonthlyHistoryRecord, month_key

logger = logging.getLogger(__name__)


class RolloverStatus(str, Enum):
    INITIALIZED = 'initialized'
    ROLLED_OVER = 'rolled_over'
    NOT_DUE = 'not_due'


@dataclass(frozen=True)
class RolloverOutcome:
    status: RolloverStatus
    last_reset_month: str
    archived_month: Optional[str] = None
    archived_sites: int = 0

    def to_dict(self):
        return {
            'status': self.status.value,
            'last_reset_month': self.last_reset_month,
            'archived_month': self.archived_month,
            'archived_sites': self.archived_sites,
        }


class MonthRollover:
    """Runs the monthly archive-and-reset against the KPI store"""

    def __init__(self, store):
        """
        Args:
            store: Object exposing transaction() -> StoreTransaction
        """
        self.store = store

    def run_monthly_rollover_if_due(self,
                                    reference_date: Optional[Union[date, datetime]] = None) -> RolloverOutcome:
        """
        Archive and reset once the calendar month has changed

        The status row is locked inside the same transaction as the archive
        and reset writes, so concurrent callers serialise and only the first
        one sees the rollover as due.

        Args:
            reference_date: Date deciding the current month (default: today)

        Returns:
            RolloverOutcome

        Raises:
            RolloverAborted: the transaction failed and was rolled back
        """
        if reference_date is None:
            reference_date = date.today()
        current_month = month_key(reference_date)

        try:
            with self.store.transaction() as tx:
                last_reset_month = tx.get_last_reset_month(lock=True)

                if last_reset_month is None:
                    if tx.init_last_reset_month(current_month):
                        logger.info(f"Initialized monthly reset status at {current_month}")
                        return RolloverOutcome(RolloverStatus.INITIALIZED, current_month)
                    # Another caller created the row first
                    last_reset_month = tx.get_last_reset_month(lock=True)

                if last_reset_month >= current_month:
                    return RolloverOutcome(RolloverStatus.NOT_DUE, last_reset_month)

                logger.info(f"Running month rollover: archiving {last_reset_month}, opening {current_month}")

                archived = 0
                for site in tx.list_sites(lock=True):
                    record = MonthlyHistoryRecord.from_site(site, last_reset_month)
                    if tx.insert_history(record):
                        archived += 1
                    else:
                        logger.warning(f"History for {site.id} {last_reset_month} already exists; keeping it")
                    tx.reset_site_counters(site.id)

                tx.set_last_reset_month(current_month)

        except Exception as e:
            logger.error(f"Month rollover failed, state left at previous month: {str(e)}")
            raise RolloverAborted(f"Month rollover to {current_month} aborted: {e}") from e

        logger.info(f"Month rollover completed: {archived} sites archived for {last_reset_month}")
        return RolloverOutcome(
            RolloverStatus.ROLLED_OVER,
            current_month,
            archived_month=last_reset_month,
            archived_sites=archived,
        )
