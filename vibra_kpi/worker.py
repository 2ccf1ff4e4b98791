#!/usr/bin/env python3
"""
Worker Service for VIBRA OS
Runs the monthly rollover check and the daily NPS refresh on a schedule
"""

import os
import time
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import schedule

from .errors import RolloverAborted
from .nps import SheetsNpsClient, refresh_site_nps
from .rollover import MonthRollover
from .store import PostgresKpiStore

logger = logging.getLogger(__name__)


class WorkerService:
    """Scheduled jobs over the KPI store"""

    def __init__(self, store: Optional[PostgresKpiStore] = None,
                 nps_client: Optional[SheetsNpsClient] = None):
        self.store = store or PostgresKpiStore()
        self.nps_client = nps_client or SheetsNpsClient()
        self.rollover = MonthRollover(self.store)

        self.rollover_time = os.getenv('ROLLOVER_CHECK_TIME', '00:05')
        self.nps_refresh_time = os.getenv('NPS_REFRESH_TIME', '06:00')

    def run_rollover_check(self) -> Dict[str, Any]:
        """Run the month rollover if due; errors are reported, the next run retries"""
        try:
            outcome = self.rollover.run_monthly_rollover_if_due()
        except RolloverAborted as e:
            logger.error(f"Rollover check failed: {e}")
            return {
                'status': 'error',
                'error': str(e),
                'timestamp': datetime.now().isoformat()
            }

        result = outcome.to_dict()
        result['timestamp'] = datetime.now().isoformat()
        logger.info(f"Rollover check: {result}")
        return result

    def run_nps_refresh(self) -> Dict[str, Any]:
        """Refresh every site's NPS; one failing site does not stop the others"""
        stats = {'updated': 0, 'skipped': 0}

        if not self.nps_client.is_configured:
            logger.warning("Google Sheets credentials not configured, skipping NPS refresh")
            return stats

        for site in self.store.list_sites():
            try:
                value = refresh_site_nps(self.store, self.nps_client, site)
            except Exception as e:
                logger.error(f"NPS refresh failed for {site.id}: {str(e)}")
                value = None
            if value is None:
                stats['skipped'] += 1
            else:
                stats['updated'] += 1

        logger.info(f"NPS refresh completed: {stats}")
        return stats

    def health_check(self) -> Dict[str, Any]:
        """Health check for worker service"""
        try:
            self.store.health_check()
            db_status = "healthy"
        except Exception as e:
            db_status = f"error: {str(e)}"

        return {
            'status': 'healthy' if db_status == 'healthy' else 'unhealthy',
            'database': db_status,
            'timestamp': datetime.now().isoformat(),
        }

    def schedule_jobs(self, scheduler: Optional[schedule.Scheduler] = None) -> schedule.Scheduler:
        scheduler = scheduler or schedule.Scheduler()
        scheduler.every().day.at(self.rollover_time).do(self.run_rollover_check)
        scheduler.every().day.at(self.nps_refresh_time).do(self.run_nps_refresh)
        logger.info(f"Rollover check scheduled at {self.rollover_time}, NPS refresh at {self.nps_refresh_time}")
        return scheduler


def main():
    """Main worker loop"""
    logging.basicConfig(
        level=getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    logger.info("Starting VIBRA OS worker")

    worker = WorkerService()
    worker.store.init_database()
    scheduler = worker.schedule_jobs()

    # Catch up on a month change that happened while the worker was down
    worker.run_rollover_check()

    while True:
        try:
            scheduler.run_pending()
            time.sleep(60)

        except KeyboardInterrupt:
            logger.info("Worker shutting down...")
            break
        except Exception as e:
            logger.error(f"Worker loop error: {str(e)}")
            time.sleep(60)


if __name__ == "__main__":
    main()
