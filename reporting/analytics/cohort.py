"""
Signup-month cohort retention

Author: Adryan R A
"""

import logging
from typing import Dict
import pandas as pd

from reporting.analytics.base import BaseReport, percentage, safe_divide

logger = logging.getLogger(__name__)


def _month_index(timestamps: pd.Series) -> pd.Series:
    """Months since year zero, so month offsets are plain subtraction."""
    return timestamps.dt.year * 12 + timestamps.dt.month - 1


def cohort_activity(customers: pd.DataFrame, orders: pd.DataFrame) -> pd.DataFrame:
    """
    Orders of each customer tagged with their signup cohort and month offset.

    Orders placed before the signup month are dropped.

    Returns:
        DataFrame with customer_id, cohort, month_offset, total_amount
    """
    signups = customers[['customer_id', 'signup_date']].copy()
    signups['signup_date'] = pd.to_datetime(signups['signup_date'], errors='coerce')

    missing_signup = signups['signup_date'].isna()
    if missing_signup.any():
        logger.warning(f"Skipping {int(missing_signup.sum())} customers without a signup date")
        signups = signups[~missing_signup]

    signups['cohort'] = signups['signup_date'].dt.strftime('%Y-%m')
    signups['signup_month'] = _month_index(signups['signup_date'])

    activity = orders[['customer_id', 'order_timestamp', 'total_amount']].copy()
    activity['order_timestamp'] = pd.to_datetime(activity['order_timestamp'], errors='coerce')
    activity = activity.dropna(subset=['order_timestamp'])
    activity = activity.merge(signups[['customer_id', 'cohort', 'signup_month']], on='customer_id', how='inner')

    activity['month_offset'] = _month_index(activity['order_timestamp']) - activity['signup_month']
    activity = activity[activity['month_offset'] >= 0]

    return activity[['customer_id', 'cohort', 'month_offset', 'total_amount']].reset_index(drop=True)


class CohortRetentionReport(BaseReport):
    """
    Retention of each signup cohort at month offsets 0..N-1.

    A customer counts at offset N when they ordered in their signup month and
    in month N, so month 0 is always 100% and every rate stays in [0, 100].
    """

    name = "cohort_retention"
    required_tables = {
        'customers': ['customer_id', 'signup_date'],
        'orders': ['customer_id', 'order_timestamp', 'total_amount'],
    }

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        offsets = range(self.settings.cohort_month_offsets)
        customers = tables['customers'].copy()
        customers['signup_date'] = pd.to_datetime(customers['signup_date'], errors='coerce')
        customers = customers.dropna(subset=['signup_date'])
        customers['cohort'] = customers['signup_date'].dt.strftime('%Y-%m')

        cohorts = customers.groupby('cohort').agg(cohort_size=('customer_id', 'nunique'))

        activity = cohort_activity(tables['customers'], tables['orders'])
        month_zero = activity.loc[activity['month_offset'] == 0, 'customer_id'].unique()
        retained = activity[activity['customer_id'].isin(month_zero)]

        for offset in offsets:
            active = (
                retained[retained['month_offset'] == offset]
                .groupby('cohort')['customer_id']
                .nunique()
            )
            cohorts[f'm{offset}_customers'] = active.reindex(cohorts.index).fillna(0).astype(int)

        for offset in offsets:
            cohorts[f'm{offset}_retention_rate'] = percentage(
                cohorts[f'm{offset}_customers'], cohorts['m0_customers']
            )

        return cohorts.reset_index().sort_values('cohort').reset_index(drop=True)


class CohortActivityReport(BaseReport):
    """Active customers, revenue and ARPU per cohort and month offset."""

    name = "cohort_activity"
    required_tables = CohortRetentionReport.required_tables

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        activity = cohort_activity(tables['customers'], tables['orders'])
        columns = ['cohort', 'month_offset', 'active_customers', 'monthly_revenue', 'arpu']
        if activity.empty:
            return pd.DataFrame(columns=columns)

        summary = activity.groupby(['cohort', 'month_offset']).agg(
            active_customers=('customer_id', 'nunique'),
            monthly_revenue=('total_amount', 'sum'),
        ).reset_index()
        summary['arpu'] = safe_divide(summary['monthly_revenue'], summary['active_customers']).round(2)

        return summary[columns]
