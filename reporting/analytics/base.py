"""
Abstract base class and shared helpers for analytic reports

Author: Adryan R A
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Dict, List, Optional, Any
import numpy as np
import pandas as pd

from reporting.utils.config import Settings, get_settings
from reporting.utils.validation import require_columns

logger = logging.getLogger(__name__)


def safe_divide(numerator, denominator):
    """
    Null-safe division.

    Works on scalars and Series. Wherever the denominator is zero or null
    the result is NaN instead of an error or an infinity.
    """
    if isinstance(numerator, pd.Series) or isinstance(denominator, pd.Series):
        index = numerator.index if isinstance(numerator, pd.Series) else denominator.index
        numerator = _as_float_series(numerator, index)
        denominator = _as_float_series(denominator, index)
        return numerator / denominator.where(denominator != 0)

    if numerator is None or denominator is None or pd.isna(numerator) or pd.isna(denominator) or denominator == 0:
        return np.nan
    return numerator / denominator


def _as_float_series(value, index) -> pd.Series:
    if isinstance(value, pd.Series):
        return pd.to_numeric(value, errors='coerce').astype('float64')
    return pd.Series(np.nan if value is None else value, index=index, dtype='float64')


def percentage(numerator, denominator, decimals: int = 2):
    """Null-safe ``numerator * 100 / denominator`` rounded like the reports."""
    ratio = safe_divide(numerator, denominator)
    if isinstance(ratio, pd.Series):
        return (ratio * 100.0).round(decimals)
    return ratio if pd.isna(ratio) else round(ratio * 100.0, decimals)


def fraud_flag(values: pd.Series) -> pd.Series:
    """Boolean fraud flag from 0/1, bool or null values."""
    if pd.api.types.is_bool_dtype(values):
        return values.fillna(False).astype(bool)
    return pd.to_numeric(values, errors='coerce').fillna(0).astype(int) == 1


def ntile(values: pd.Series, buckets: int, ascending: bool = True) -> pd.Series:
    """
    Rank-based bucketing with SQL NTILE semantics.

    Rows are ordered by value (ties keep input order) and split into
    ``buckets`` groups whose sizes differ by at most one; the larger groups
    come first. Bucket 1 holds the lowest values when ascending.
    """
    if buckets <= 0:
        raise ValueError("Number of buckets must be positive")

    n_rows = len(values)
    if n_rows == 0:
        return pd.Series([], index=values.index, dtype='int64')

    positions = values.rank(method='first', ascending=ascending, na_option='bottom').astype(int).to_numpy() - 1
    base_size, remainder = divmod(n_rows, buckets)
    large_span = remainder * (base_size + 1)

    in_large = positions < large_span
    large_bucket = positions // (base_size + 1)
    small_bucket = remainder + (positions - large_span) // max(base_size, 1)

    return pd.Series(np.where(in_large, large_bucket, small_bucket) + 1, index=values.index, dtype='int64')


def days_since(reference: pd.Timestamp, timestamps: pd.Series) -> pd.Series:
    """Whole days from each timestamp to ``reference`` (DATEDIFF semantics, NaT gives NaN)."""
    return (pd.Timestamp(reference).normalize() - pd.to_datetime(timestamps).dt.normalize()).dt.days


class BaseReport(ABC):
    """
    Abstract base class for analytic reports.

    A report reads one or more source tables and returns a DataFrame. Reports
    hold no state between runs; every call recomputes from the raw rows.
    """

    #: Report name as exposed in the catalogue
    name: str = ""
    #: Source tables and the columns each one must carry
    required_tables: Dict[str, List[str]] = {}

    def __init__(self, settings: Optional[Settings] = None):
        """
        Initialize base report

        Args:
            settings: Thresholds and reference dates, defaults to the cached settings
        """
        self.settings = settings or get_settings()
        self.last_run_at: Optional[datetime] = None
        self.last_row_count = 0

    def run(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        """
        Validate inputs, build the report and record run metadata

        Args:
            tables: Source tables keyed by table name
            **kwargs: Report specific options (e.g. reference_date)

        Returns:
            Report rows
        """
        self._validate_tables(tables)
        result = self.build(tables, **kwargs)

        self.last_run_at = datetime.now()
        self.last_row_count = len(result)
        logger.info(f"Report {self.name} produced {len(result)} rows")
        return result

    @abstractmethod
    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        """
        Compute the report

        Args:
            tables: Validated source tables
            **kwargs: Report specific options

        Returns:
            Report rows
        """
        pass

    def get_report_info(self) -> Dict[str, Any]:
        """Get report metadata"""
        return {
            'name': self.name,
            'required_tables': sorted(self.required_tables),
            'last_run_at': self.last_run_at.isoformat() if self.last_run_at else None,
            'last_row_count': self.last_row_count,
        }

    def _validate_tables(self, tables: Dict[str, pd.DataFrame]):
        """Check that every required table is present with its columns."""
        missing_tables = [table for table in self.required_tables if table not in tables]
        if missing_tables:
            raise ValueError(f"Report '{self.name}' needs tables: {', '.join(missing_tables)}")

        for table_name, columns in self.required_tables.items():
            require_columns(tables[table_name], columns, table_name)

    def _reference_date(self, reference_date: Optional[date], default: date) -> pd.Timestamp:
        return pd.Timestamp(reference_date or default).normalize()
