#!/usr/bin/env python3
"""
PostgreSQL-backed KPI store.
Sites, daily reports, the monthly archive and the rollover status row.
"""

import os
import uuid
import logging
import calendar
from contextlib import contextmanager
from datetime import date
from typing import Iterator, List, Optional

import psycopg2
import psycopg2.extras

from .errors import DuplicateDailyReport, SiteNotFound
from .models import DailyReport, MonthlyHistoryRecord, Site

logger = logging.getLogger(__name__)

SITE_COLUMNS = """
    id, name, revenue_to_date, monthly_goal, retention_rate, nps_score,
    average_ticket, spreadsheet_id, nps_updated_on
"""


class StoreTransaction:
    """Operations run on one open cursor; committed or rolled back as a unit"""

    def __init__(self, cursor):
        self.cursor = cursor

    def get_last_reset_month(self, lock: bool = True) -> Optional[str]:
        """Read the rollover status row, locking it until the transaction ends"""
        sql = "SELECT last_reset_month FROM app_status WHERE id = 1"
        if lock:
            sql += " FOR UPDATE"
        self.cursor.execute(sql)
        row = self.cursor.fetchone()
        return row['last_reset_month'] if row else None

    def init_last_reset_month(self, month: str) -> bool:
        """Create the status row; False if a concurrent caller created it first"""
        self.cursor.execute("""
            INSERT INTO app_status (id, last_reset_month)
            VALUES (1, %s)
            ON CONFLICT (id) DO NOTHING
        """, (month,))
        return self.cursor.rowcount == 1

    def set_last_reset_month(self, month: str):
        self.cursor.execute("""
            UPDATE app_status
            SET last_reset_month = %s, updated_at = CURRENT_TIMESTAMP
            WHERE id = 1
        """, (month,))

    def list_sites(self, lock: bool = False) -> List[Site]:
        sql = f"SELECT {SITE_COLUMNS} FROM sites ORDER BY id"
        if lock:
            sql += " FOR UPDATE"
        self.cursor.execute(sql)
        return [Site.from_row(row) for row in self.cursor.fetchall()]

    def insert_history(self, record: MonthlyHistoryRecord) -> bool:
        """Insert one archive row; False if (site, year, month) already exists"""
        self.cursor.execute("""
            INSERT INTO monthly_history (
                site_id, site_name, year, month, final_revenue, final_retention,
                final_nps, final_average_ticket, monthly_goal
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (site_id, year, month) DO NOTHING
        """, (
            record.site_id,
            record.site_name,
            record.year,
            record.month,
            record.final_revenue,
            record.final_retention,
            record.final_nps,
            record.final_average_ticket,
            record.monthly_goal,
        ))
        return self.cursor.rowcount == 1

    def reset_site_counters(self, site_id: str):
        """Zero the running counters; the monthly goal is kept"""
        self.cursor.execute("""
            UPDATE sites SET
                revenue_to_date = 0,
                retention_rate = 0,
                nps_score = 0,
                average_ticket = 0,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = %s
        """, (site_id,))


class PostgresKpiStore:
    """KPI persistence on PostgreSQL"""

    def __init__(self, db_config: Optional[dict] = None):
        self.db_config = db_config or {
            'host': os.getenv('DB_HOST', 'localhost'),
            'port': int(os.getenv('DB_PORT', 5432)),
            'database': os.getenv('DB_NAME', 'vibra_os'),
            'user': os.getenv('DB_USER', 'vibra_user'),
            'password': os.getenv('DB_PASSWORD', '')
        }

    def _get_connection(self):
        return psycopg2.connect(**self.db_config)

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """
        Open a transaction

        Commits when the block exits normally; rolls back and re-raises
        on any exception.
        """
        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                yield StoreTransaction(cursor)
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_database(self):
        """Create tables if they don't exist"""
        try:
            with self.transaction() as tx:
                cursor = tx.cursor
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS sites (
                        id VARCHAR(64) PRIMARY KEY,
                        name VARCHAR(255) NOT NULL,
                        revenue_to_date DECIMAL(14,2) NOT NULL DEFAULT 0 CHECK (revenue_to_date >= 0),
                        monthly_goal DECIMAL(14,2) NOT NULL DEFAULT 0 CHECK (monthly_goal >= 0),
                        retention_rate DECIMAL(5,2) NOT NULL DEFAULT 0 CHECK (retention_rate >= 0),
                        nps_score DECIMAL(6,2) NOT NULL DEFAULT 0 CHECK (nps_score >= 0),
                        average_ticket DECIMAL(14,2) NOT NULL DEFAULT 0 CHECK (average_ticket >= 0),
                        spreadsheet_id VARCHAR(255),
                        nps_updated_on DATE,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    );
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS daily_reports (
                        id UUID PRIMARY KEY,
                        site_id VARCHAR(64) NOT NULL REFERENCES sites(id),
                        leader_id VARCHAR(255) NOT NULL,
                        leader_name VARCHAR(255),
                        report_date DATE NOT NULL,
                        new_revenue DECIMAL(14,2) NOT NULL CHECK (new_revenue >= 0),
                        new_members INTEGER DEFAULT 0,
                        lost_members INTEGER DEFAULT 0,
                        renewal_rate DECIMAL(5,2),
                        coach_satisfaction DECIMAL(5,2),
                        daily_win TEXT,
                        daily_challenge TEXT,
                        lesson_learned TEXT,
                        submitted_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    );
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS monthly_history (
                        site_id VARCHAR(64) NOT NULL REFERENCES sites(id),
                        site_name VARCHAR(255) NOT NULL,
                        year INTEGER NOT NULL,
                        month INTEGER NOT NULL CHECK (month BETWEEN 1 AND 12),
                        final_revenue DECIMAL(14,2),
                        final_retention DECIMAL(5,2),
                        final_nps DECIMAL(6,2),
                        final_average_ticket DECIMAL(14,2),
                        monthly_goal DECIMAL(14,2),
                        archived_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        PRIMARY KEY (site_id, year, month)
                    );
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS app_status (
                        id SMALLINT PRIMARY KEY CHECK (id = 1),
                        last_reset_month CHAR(7) NOT NULL,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    );
                """)

                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_daily_reports_site_date
                    ON daily_reports(site_id, report_date DESC);
                """)

            logger.info("Database initialized successfully")

        except Exception as e:
            logger.error(f"Database initialization error: {str(e)}")
            raise

    def list_sites(self) -> List[Site]:
        with self.transaction() as tx:
            return tx.list_sites()

    def get_site(self, site_id: str) -> Site:
        with self.transaction() as tx:
            tx.cursor.execute(f"SELECT {SITE_COLUMNS} FROM sites WHERE id = %s", (site_id,))
            row = tx.cursor.fetchone()
        if not row:
            raise SiteNotFound(f"Site {site_id} does not exist")
        return Site.from_row(row)

    def create_site(self, site: Site) -> Site:
        site.validate()
        with self.transaction() as tx:
            tx.cursor.execute("""
                INSERT INTO sites (
                    id, name, revenue_to_date, monthly_goal, retention_rate,
                    nps_score, average_ticket, spreadsheet_id
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """, (
                site.id,
                site.name,
                site.revenue_to_date,
                site.monthly_goal,
                site.retention_rate,
                site.nps_score,
                site.average_ticket,
                site.spreadsheet_id,
            ))
        logger.info(f"Created site {site.id} ({site.name})")
        return site

    def update_site_kpis(self, site_id: str,
                         revenue_to_date: Optional[float] = None,
                         monthly_goal: Optional[float] = None):
        """Manual CEO edit of revenue to date and/or monthly goal"""
        updates = {}
        if revenue_to_date is not None:
            updates['revenue_to_date'] = revenue_to_date
        if monthly_goal is not None:
            updates['monthly_goal'] = monthly_goal
        if not updates:
            return
        for name, value in updates.items():
            if value < 0:
                raise ValueError(f"{name} must be non-negative")

        assignments = ", ".join(f"{name} = %s" for name in updates)
        with self.transaction() as tx:
            tx.cursor.execute(
                f"UPDATE sites SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = %s",
                (*updates.values(), site_id)
            )
            if tx.cursor.rowcount == 0:
                raise SiteNotFound(f"Site {site_id} does not exist")
        logger.info(f"Updated KPIs for site {site_id}: {updates}")

    def submit_daily_report(self, report: DailyReport) -> DailyReport:
        """
        Record a daily report and add its revenue to the site total

        The site row is locked for the duration of the transaction so that
        concurrent submissions serialise: new total = prior total + delta.

        Raises:
            SiteNotFound: the site does not exist
            DuplicateDailyReport: a report already exists for this site and date
        """
        report.validate()
        report_id = report.id or str(uuid.uuid4())

        with self.transaction() as tx:
            cursor = tx.cursor
            cursor.execute(
                "SELECT revenue_to_date FROM sites WHERE id = %s FOR UPDATE",
                (report.site_id,)
            )
            site_row = cursor.fetchone()
            if not site_row:
                raise SiteNotFound(f"Site {report.site_id} does not exist")

            cursor.execute(
                "SELECT 1 FROM daily_reports WHERE site_id = %s AND report_date = %s",
                (report.site_id, report.report_date)
            )
            if cursor.fetchone():
                raise DuplicateDailyReport(
                    f"A report for {report.site_id} on {report.report_date} already exists"
                )

            cursor.execute("""
                INSERT INTO daily_reports (
                    id, site_id, leader_id, leader_name, report_date, new_revenue,
                    new_members, lost_members, renewal_rate, coach_satisfaction,
                    daily_win, daily_challenge, lesson_learned
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """, (
                report_id,
                report.site_id,
                report.leader_id,
                report.leader_name,
                report.report_date,
                report.new_revenue,
                report.new_members,
                report.lost_members,
                report.renewal_rate,
                report.coach_satisfaction,
                report.daily_win,
                report.daily_challenge,
                report.lesson_learned,
            ))

            new_total = float(site_row['revenue_to_date'] or 0) + float(report.new_revenue)
            if report.renewal_rate is not None:
                cursor.execute("""
                    UPDATE sites SET revenue_to_date = %s, retention_rate = %s,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = %s
                """, (new_total, report.renewal_rate, report.site_id))
            else:
                cursor.execute("""
                    UPDATE sites SET revenue_to_date = %s, updated_at = CURRENT_TIMESTAMP
                    WHERE id = %s
                """, (new_total, report.site_id))

        report.id = report_id
        logger.info(f"Daily report {report_id} stored for {report.site_id} on {report.report_date}; "
                    f"revenue to date now {new_total:.2f}")
        return report

    def has_daily_report(self, site_id: str, report_date: date) -> bool:
        with self.transaction() as tx:
            tx.cursor.execute(
                "SELECT 1 FROM daily_reports WHERE site_id = %s AND report_date = %s",
                (site_id, report_date)
            )
            return tx.cursor.fetchone() is not None

    def recent_daily_reports(self, site_id: str, limit: int = 14) -> List[DailyReport]:
        """Latest reports for a site, most recent first"""
        with self.transaction() as tx:
            tx.cursor.execute("""
                SELECT * FROM daily_reports
                WHERE site_id = %s
                ORDER BY report_date DESC
                LIMIT %s
            """, (site_id, limit))
            return [DailyReport.from_row(row) for row in tx.cursor.fetchall()]

    def recent_daily_revenues(self, site_id: str, limit: int = 7) -> List[float]:
        """Revenue of the latest reports for a site, most recent first"""
        with self.transaction() as tx:
            tx.cursor.execute("""
                SELECT new_revenue FROM daily_reports
                WHERE site_id = %s
                ORDER BY report_date DESC
                LIMIT %s
            """, (site_id, limit))
            return [float(row['new_revenue']) for row in tx.cursor.fetchall()]

    def recalculate_site_revenue(self, site_id: str, reference_date: Optional[date] = None) -> float:
        """
        Rebuild revenue to date from the daily reports of the reference month

        Returns:
            The recomputed total (0 when the month has no reports)
        """
        reference_date = reference_date or date.today()
        first_day = reference_date.replace(day=1)
        last_day = reference_date.replace(day=calendar.monthrange(reference_date.year, reference_date.month)[1])

        with self.transaction() as tx:
            cursor = tx.cursor
            cursor.execute("SELECT id FROM sites WHERE id = %s FOR UPDATE", (site_id,))
            if not cursor.fetchone():
                raise SiteNotFound(f"Site {site_id} does not exist")

            cursor.execute("""
                SELECT COALESCE(SUM(new_revenue), 0) AS total FROM daily_reports
                WHERE site_id = %s AND report_date BETWEEN %s AND %s
            """, (site_id, first_day, last_day))
            total = float(cursor.fetchone()['total'])

            cursor.execute(
                "UPDATE sites SET revenue_to_date = %s, updated_at = CURRENT_TIMESTAMP WHERE id = %s",
                (total, site_id)
            )

        logger.info(f"Recalculated revenue for {site_id}: {total:.2f}")
        return total

    def update_site_nps(self, site_id: str, nps_score: float, updated_on: Optional[date] = None):
        if nps_score < 0:
            raise ValueError("nps_score must be non-negative")
        with self.transaction() as tx:
            tx.cursor.execute("""
                UPDATE sites SET nps_score = %s, nps_updated_on = %s, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
            """, (nps_score, updated_on or date.today(), site_id))
            if tx.cursor.rowcount == 0:
                raise SiteNotFound(f"Site {site_id} does not exist")

    def list_monthly_history(self, site_id: Optional[str] = None) -> List[MonthlyHistoryRecord]:
        """Archived months, newest first"""
        with self.transaction() as tx:
            if site_id:
                tx.cursor.execute("""
                    SELECT * FROM monthly_history WHERE site_id = %s
                    ORDER BY year DESC, month DESC, site_id
                """, (site_id,))
            else:
                tx.cursor.execute("""
                    SELECT * FROM monthly_history
                    ORDER BY year DESC, month DESC, site_id
                """)
            return [MonthlyHistoryRecord.from_row(row) for row in tx.cursor.fetchall()]

    def health_check(self) -> bool:
        with self.transaction() as tx:
            tx.cursor.execute("SELECT 1")
        return True
