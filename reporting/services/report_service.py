"""
Report service for running analytic reports and persisting report views

Author: Adryan R A
"""

import json
import logging
import time
from datetime import date
from typing import Dict, List, Optional, Any
import pandas as pd

from reporting.analytics.anomaly import AnomalyDetectionReport
from reporting.analytics.base import BaseReport
from reporting.analytics.basket import ProductAffinityReport
from reporting.analytics.churn import ChurnRiskReport
from reporting.analytics.cohort import CohortActivityReport, CohortRetentionReport
from reporting.analytics.engagement import EngagementTierReport, JourneyKPIReport
from reporting.analytics.financial import (
    CustomerAnalyticsView, CustomerValueReport, DeviceReport, ExecutiveSummaryReport, FinancialKPIReport,
    FraudBreakdownReport, FraudMonitoringView, GeographyReport, IncomeBracketReport,
    MerchantCategoryReport, MonthlyTrendReport, TransactionSequenceReport,
)
from reporting.analytics.funnel import FunnelReport, PathReport
from reporting.analytics.rfm import RFMSegmentReport, TransactionRFMReport
from reporting.services.data_service import DataService
from reporting.services.log_service import LogService, RunTrigger
from reporting.utils.config import REPORT_DESCRIPTIONS, REPORT_VIEWS, Settings, get_settings
from reporting.utils.validation import validate_report_name

logger = logging.getLogger(__name__)

# Report classes keyed by report name
REPORT_REGISTRY = {
    report_class.name: report_class
    for report_class in [
        FunnelReport, PathReport,
        CohortRetentionReport, CohortActivityReport,
        RFMSegmentReport, TransactionRFMReport,
        ChurnRiskReport, ProductAffinityReport,
        EngagementTierReport, JourneyKPIReport,
        AnomalyDetectionReport,
        CustomerValueReport, MonthlyTrendReport, MerchantCategoryReport,
        GeographyReport, DeviceReport, TransactionSequenceReport,
        FraudBreakdownReport, IncomeBracketReport, ExecutiveSummaryReport, FinancialKPIReport,
        CustomerAnalyticsView, FraudMonitoringView,
    ]
}


def to_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """JSON-safe row dicts: NaN becomes null and timestamps ISO strings"""
    return json.loads(df.to_json(orient='records', date_format='iso'))


class ReportService:
    """
    Service for running reports against the source database
    """

    def __init__(self,
                 data_service: Optional[DataService] = None,
                 log_service: Optional[LogService] = None,
                 settings: Optional[Settings] = None):
        """Initialize report service"""
        self.settings = settings or get_settings()
        self.data_service = data_service or DataService()
        self.log_service = log_service or LogService()

    def list_reports(self) -> List[Dict[str, Any]]:
        """
        Report catalogue

        Returns:
            Name, description, source tables and view flag of every report
        """
        return [
            {
                'name': name,
                'description': REPORT_DESCRIPTIONS.get(name, ""),
                'required_tables': sorted(report_class.required_tables),
                'is_view': name in REPORT_VIEWS,
            }
            for name, report_class in REPORT_REGISTRY.items()
        ]

    def get_report(self, report_name: str) -> BaseReport:
        """Instantiate a report by (possibly loosely written) name"""
        report_name = validate_report_name(report_name)
        return REPORT_REGISTRY[report_name](self.settings)

    async def run_report(self,
                         report_name: str,
                         reference_date: Optional[date] = None,
                         limit: Optional[int] = None,
                         trigger: RunTrigger = RunTrigger.API_REQUEST) -> pd.DataFrame:
        """
        Run a report from raw rows

        Args:
            report_name: Report to run
            reference_date: Overrides the dataset's "today"
            limit: Maximum rows to return
            trigger: What started the run, for the run log

        Returns:
            Report rows
        """
        report = self.get_report(report_name)
        if limit is not None and limit <= 0:
            raise ValueError("Limit must be a positive integer")

        parameters = {'reference_date': reference_date, 'limit': limit}
        start_time = time.time()

        try:
            tables = await self.data_service.load_tables(report.required_tables)
            result = report.run(tables, reference_date=reference_date)
        except Exception as e:
            duration = time.time() - start_time
            logger.error(f"Report {report.name} failed: {e}")
            await self.log_service.log_report_run(
                report_name=report.name,
                success=False,
                duration_seconds=duration,
                trigger=trigger,
                parameters=parameters,
                error=str(e)
            )
            raise

        duration = time.time() - start_time
        await self.log_service.log_report_run(
            report_name=report.name,
            success=True,
            duration_seconds=duration,
            row_count=len(result),
            trigger=trigger,
            parameters=parameters
        )

        if limit is not None:
            result = result.head(limit)
        return result

    async def refresh_views(self) -> Dict[str, int]:
        """
        Rebuild the persisted report views

        Returns:
            Rows written per view
        """
        row_counts = {}
        for view_name in REPORT_VIEWS:
            rows = await self.run_report(view_name, trigger=RunTrigger.VIEW_REFRESH)
            row_counts[view_name] = await self.data_service.save_table(rows, view_name)

        logger.info(f"Refreshed report views: {row_counts}")
        return row_counts

    async def run_all(self,
                      report_names: Optional[List[str]] = None,
                      reference_date: Optional[date] = None,
                      persist: bool = True) -> Dict[str, Dict[str, Any]]:
        """
        Run many reports, persisting each result table

        A failing report is recorded and the remaining reports still run.

        Args:
            report_names: Reports to run, all of them when omitted
            reference_date: Overrides the dataset's "today"
            persist: Write each report to the analytics database

        Returns:
            Status and row count per report
        """
        results = {}
        if report_names is None:
            report_names = list(REPORT_REGISTRY)

        for report_name in report_names:
            try:
                rows = await self.run_report(
                    report_name,
                    reference_date=reference_date,
                    trigger=RunTrigger.BATCH_PIPELINE
                )
                if persist:
                    await self.data_service.save_table(rows, validate_report_name(report_name))
                results[report_name] = {'status': 'completed', 'rows': len(rows)}
            except Exception as e:
                logger.error(f"Skipping report {report_name}: {e}")
                results[report_name] = {'status': 'failed', 'rows': 0, 'error': str(e)}

        completed = sum(1 for result in results.values() if result['status'] == 'completed')
        logger.info(f"Batch run finished: {completed}/{len(results)} reports completed")
        return results
