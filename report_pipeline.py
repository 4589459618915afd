#!/usr/bin/env python3
"""
Customer Analytics - Batch Report Pipeline
==========================================

Runs the analytic reports once against the raw database and persists one
table per report, plus the customer_analytics and fraud_monitoring report
views, to the analytics database.

Author: Adryan R A
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional

from reporting.services.data_service import DataService
from reporting.services.log_service import LogService
from reporting.services.report_service import ReportService
from reporting.utils.config import REPORT_VIEWS, get_settings
from reporting.utils.validation import validate_date, validate_report_name

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('report_pipeline.log'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)


async def run_pipeline(service: ReportService,
                       report_names: Optional[List[str]] = None,
                       reference_date=None,
                       persist: bool = True) -> Dict[str, Any]:
    """
    Run reports and refresh the report views.

    Args:
        service: Report service bound to the raw and analytics databases
        report_names: Reports to run, all of them when omitted
        reference_date: Overrides each dataset's "today"
        persist: Write report tables to the analytics database

    Returns:
        Per-report results and overall counts
    """
    start_time = datetime.utcnow()

    if report_names:
        report_names = [validate_report_name(name) for name in report_names]

    # Views are written by the refresh step, not as plain report tables
    selected = [
        name for name in (report_names or [report['name'] for report in service.list_reports()])
        if name not in REPORT_VIEWS
    ]
    results = await service.run_all(selected, reference_date=reference_date, persist=persist)

    views = {}
    if persist and (not report_names or any(name in REPORT_VIEWS for name in report_names)):
        try:
            views = await service.refresh_views()
        except Exception as e:
            logger.error(f"Failed to refresh report views: {e}")
            views = {'error': str(e)}

    processing_time = (datetime.utcnow() - start_time).total_seconds()
    failed = [name for name, result in results.items() if result['status'] == 'failed']

    logger.info(f"Report pipeline finished in {processing_time:.2f} seconds, {len(failed)} failed")

    return {
        'status': 'completed' if not failed else 'completed_with_errors',
        'reports_run': len(results),
        'reports_failed': failed,
        'views': views,
        'processing_time': processing_time,
        'results': results
    }


def main():
    """Main function for command-line usage."""
    import argparse

    settings = get_settings()

    parser = argparse.ArgumentParser(description='Batch Report Pipeline for Customer Analytics')
    parser.add_argument('--raw-database', default=settings.raw_database_url, help='Raw database URL')
    parser.add_argument('--analytics-database', default=settings.analytics_database_url,
                        help='Analytics database URL')
    parser.add_argument('--reports', nargs='+', help='Reports to run (default: all)')
    parser.add_argument('--reference-date', help='Reference date override (YYYY-MM-DD)')
    parser.add_argument('--no-persist', action='store_true', help='Run reports without writing tables')
    parser.add_argument('--list', action='store_true', help='List available reports')

    args = parser.parse_args()

    service = ReportService(
        data_service=DataService(args.raw_database, args.analytics_database),
        log_service=LogService()
    )

    if args.list:
        print("\nAvailable Reports:")
        print("=" * 50)
        for report in service.list_reports():
            suffix = " (view)" if report['is_view'] else ""
            print(f"{report['name']}{suffix}: {report['description']}")
        return

    reference_date = validate_date(args.reference_date) if args.reference_date else None

    results = asyncio.run(run_pipeline(
        service,
        report_names=args.reports,
        reference_date=reference_date,
        persist=not args.no_persist
    ))

    print("\nReport Pipeline Results:")
    print("=" * 50)
    for key, value in results.items():
        if key != 'results':
            print(f"{key}: {value}")

    print("\nReports:")
    for name, result in results['results'].items():
        detail = f"{result['rows']} rows" if result['status'] == 'completed' else result.get('error')
        print(f"  {name}: {result['status']} ({detail})")


if __name__ == "__main__":
    main()
