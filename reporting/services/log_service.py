"""
Logging service for report runs

Author: Adryan R A
"""

import logging
import json
import sqlite3
from datetime import datetime, date, timedelta
from typing import Dict, Optional, Any
from dataclasses import dataclass, asdict, field
from enum import Enum

from reporting.utils.config import get_settings

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """Outcome of a report run"""
    COMPLETED = "completed"
    FAILED = "failed"


class RunTrigger(str, Enum):
    """What started a report run"""
    API_REQUEST = "api_request"
    VIEW_REFRESH = "view_refresh"
    BATCH_PIPELINE = "batch_pipeline"


@dataclass
class ReportRunEntry:
    """Structured report run record"""
    timestamp: datetime
    report_name: str
    status: RunStatus
    source: RunTrigger
    row_count: int = 0
    duration_seconds: Optional[float] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data['status'] = self.status.value
        data['source'] = self.source.value
        data['parameters'] = json.dumps(self.parameters, default=str)
        return data


class LogService:
    """
    Records every report run in a SQLite ``report_runs`` table
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize logging service

        Args:
            db_path: SQLite file for the run log, defaults to the configured path
        """
        settings = get_settings()
        self.db_path = db_path or settings.log_database_path
        self.retention_days = settings.log_retention_days
        self.max_entries = settings.max_log_entries
        self._init_database()

    def _init_database(self):
        """Initialize the logging database"""
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS report_runs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        timestamp TEXT NOT NULL,
                        report_name TEXT NOT NULL,
                        status TEXT NOT NULL,
                        source TEXT NOT NULL,
                        row_count INTEGER,
                        duration_seconds REAL,
                        parameters TEXT,
                        error TEXT,
                        created_at TEXT DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_runs_timestamp
                    ON report_runs(timestamp)
                """)

                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_runs_report_status
                    ON report_runs(report_name, status)
                """)

                conn.commit()
                logger.info("Logging database initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize logging database: {e}")
            raise

    async def log_report_run(self,
                             report_name: str,
                             success: bool,
                             duration_seconds: float,
                             row_count: int = 0,
                             trigger: RunTrigger = RunTrigger.API_REQUEST,
                             parameters: Optional[Dict[str, Any]] = None,
                             error: Optional[str] = None) -> None:
        """
        Log a report run

        Args:
            report_name: Report that ran
            success: Whether the run produced rows without error
            duration_seconds: Run duration
            row_count: Number of rows produced
            trigger: What started the run
            parameters: Run options such as reference_date and limit
            error: Error message if any
        """
        entry = ReportRunEntry(
            timestamp=datetime.now(),
            report_name=report_name,
            status=RunStatus.COMPLETED if success else RunStatus.FAILED,
            source=trigger,
            row_count=row_count,
            duration_seconds=duration_seconds,
            parameters=parameters or {},
            error=error,
        )
        await self._store_run_entry(entry)

    async def get_logs(self,
                       report_name: Optional[str] = None,
                       status: Optional[str] = None,
                       start_date: Optional[date] = None,
                       end_date: Optional[date] = None,
                       limit: int = 100,
                       offset: int = 0) -> Dict[str, Any]:
        """
        Retrieve report runs with filtering

        Args:
            report_name: Report name filter
            status: Run status filter
            start_date: Start date filter
            end_date: End date filter
            limit: Maximum number of records
            offset: Offset for pagination

        Returns:
            Filtered runs and paging metadata
        """
        try:
            conditions = []
            params = []

            if report_name:
                conditions.append("report_name = ?")
                params.append(report_name)

            if status:
                conditions.append("status = ?")
                params.append(status)

            if start_date:
                conditions.append("timestamp >= ?")
                params.append(start_date.isoformat())

            if end_date:
                conditions.append("timestamp < ?")
                params.append((end_date + timedelta(days=1)).isoformat())

            where_clause = " AND ".join(conditions) if conditions else "1=1"

            count_query = f"SELECT COUNT(*) FROM report_runs WHERE {where_clause}"
            logs_query = f"""
                SELECT * FROM report_runs
                WHERE {where_clause}
                ORDER BY timestamp DESC, id DESC
                LIMIT ? OFFSET ?
            """

            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()

                cursor.execute(count_query, params)
                total_count = cursor.fetchone()[0]

                cursor.execute(logs_query, params + [limit, offset])
                columns = [description[0] for description in cursor.description]
                rows = cursor.fetchall()

            logs = []
            for row in rows:
                log_dict = dict(zip(columns, row))
                if log_dict['parameters']:
                    try:
                        log_dict['parameters'] = json.loads(log_dict['parameters'])
                    except json.JSONDecodeError:
                        log_dict['parameters'] = {}
                logs.append(log_dict)

            return {
                'logs': logs,
                'total_count': total_count,
                'limit': limit,
                'offset': offset,
                'has_more': offset + len(logs) < total_count
            }

        except Exception as e:
            logger.error(f"Failed to retrieve logs: {e}")
            raise

    async def get_log_summary(self, days_back: int = 7) -> Dict[str, Any]:
        """
        Summarise recent runs per report

        Args:
            days_back: Number of days to look back

        Returns:
            Run counts, failures and average duration per report
        """
        try:
            cutoff = (datetime.now() - timedelta(days=days_back)).isoformat()

            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT report_name,
                           COUNT(*) AS runs,
                           SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) AS failures,
                           AVG(duration_seconds) AS avg_duration_seconds
                    FROM report_runs
                    WHERE timestamp >= ?
                    GROUP BY report_name
                    ORDER BY report_name
                """, [cutoff])
                rows = cursor.fetchall()

            reports = {
                row[0]: {
                    'runs': row[1],
                    'failures': row[2],
                    'avg_duration_seconds': round(row[3], 4) if row[3] is not None else None
                }
                for row in rows
            }

            return {
                'period_days': days_back,
                'total_runs': sum(stats['runs'] for stats in reports.values()),
                'total_failures': sum(stats['failures'] for stats in reports.values()),
                'reports': reports
            }

        except Exception as e:
            logger.error(f"Failed to get log summary: {e}")
            raise

    async def cleanup_old_logs(self) -> int:
        """Delete runs older than the retention period and trim to the entry cap"""
        try:
            cutoff_date = datetime.now() - timedelta(days=self.retention_days)

            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()

                cursor.execute(
                    "DELETE FROM report_runs WHERE timestamp < ?",
                    [cutoff_date.isoformat()]
                )
                deleted_count = cursor.rowcount

                cursor.execute("""
                    DELETE FROM report_runs WHERE id NOT IN (
                        SELECT id FROM report_runs ORDER BY id DESC LIMIT ?
                    )
                """, [self.max_entries])
                deleted_count += cursor.rowcount
                conn.commit()

            if deleted_count > 0:
                logger.info(f"Cleaned up {deleted_count} old report runs")
            return deleted_count

        except Exception as e:
            logger.error(f"Failed to cleanup old logs: {e}")
            raise

    async def _store_run_entry(self, entry: ReportRunEntry) -> None:
        """Store run entry in database"""
        try:
            run = entry.to_dict()

            query = """
                INSERT INTO report_runs (
                    timestamp, report_name, status, source, row_count,
                    duration_seconds, parameters, error
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """

            values = (
                run['timestamp'],
                run['report_name'],
                run['status'],
                run['source'],
                run['row_count'],
                run['duration_seconds'],
                run['parameters'],
                run['error']
            )

            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(query, values)
                conn.commit()

        except Exception as e:
            # A failed log write must not fail the report itself
            logger.error(f"Failed to store report run: {e}")
