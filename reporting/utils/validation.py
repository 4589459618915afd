"""
Input validation utilities for the analytics reports

Author: Adryan R A
"""

import re
from datetime import date, datetime
from typing import Optional, Iterable

import pandas as pd

from reporting.utils.config import REPORT_DESCRIPTIONS


def validate_report_name(report_name: str) -> str:
    """
    Validate a report name against the report catalogue

    Args:
        report_name: Report name to validate

    Returns:
        Normalized report name

    Raises:
        ValueError: If the report is unknown
    """
    if not report_name or not isinstance(report_name, str):
        raise ValueError("Report name is required")

    # Accept "Cohort Retention", "cohort-retention" and "cohort_retention"
    report_name = re.sub(r'[\s\-]+', '_', report_name.strip().lower())

    if report_name not in REPORT_DESCRIPTIONS:
        raise ValueError(
            f"Report '{report_name}' not supported. "
            f"Available reports: {', '.join(sorted(REPORT_DESCRIPTIONS))}"
        )

    return report_name


def validate_date(input_date) -> date:
    """
    Validate a date given as a date or a YYYY-MM-DD string

    Args:
        input_date: Date to validate

    Returns:
        Validated date

    Raises:
        ValueError: If date is invalid
    """
    if not input_date:
        raise ValueError("Date is required")

    # Convert string to date if needed
    if isinstance(input_date, str):
        try:
            input_date = datetime.strptime(input_date, "%Y-%m-%d").date()
        except ValueError:
            raise ValueError("Date must be in YYYY-MM-DD format")

    return input_date


def require_columns(df: pd.DataFrame, required_columns: Iterable[str], table_name: str) -> pd.DataFrame:
    """
    Check that a DataFrame carries the columns a report reads

    Raises:
        ValueError: If any column is missing
    """
    missing_columns = [column for column in required_columns if column not in df.columns]
    if missing_columns:
        raise ValueError(f"Table '{table_name}' is missing columns: {', '.join(missing_columns)}")

    return df


def sanitize_log_parameters(report_name: Optional[str],
                           status: Optional[str],
                           limit: int,
                           offset: int) -> tuple:
    """
    Sanitize log query parameters

    Args:
        report_name: Report name filter
        status: Run status filter
        limit: Maximum records to return
        offset: Pagination offset

    Returns:
        Tuple of sanitized parameters

    Raises:
        ValueError: If parameters are invalid
    """
    if report_name:
        report_name = validate_report_name(report_name)

    allowed_statuses = ["completed", "failed"]
    if status and status not in allowed_statuses:
        raise ValueError(f"Status must be one of: {', '.join(allowed_statuses)}")

    # Validate pagination parameters
    if not isinstance(limit, int) or limit <= 0:
        raise ValueError("Limit must be a positive integer")

    if limit > 1000:
        limit = 1000  # Cap to prevent large responses

    if not isinstance(offset, int) or offset < 0:
        raise ValueError("Offset must be a non-negative integer")

    return report_name, status, limit, offset

