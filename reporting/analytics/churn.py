"""
Churn risk classification

Author: Adryan R A
"""

import logging
from typing import Dict
import numpy as np
import pandas as pd

from reporting.analytics.base import BaseReport, days_since, percentage
from reporting.utils.config import Settings

logger = logging.getLogger(__name__)

# Severity order used to sort the summary
CHURN_RISK_ORDER = ['High Risk', 'Medium Risk', 'Low Risk', 'Active']


def churn_risk(days_inactive: pd.Series, settings: Settings) -> pd.Series:
    """
    Risk band by days since the last order.

    Customers who never ordered (null days) are High Risk.
    """
    conditions = [
        days_inactive.isna() | (days_inactive > settings.churn_high_risk_days),
        days_inactive > settings.churn_medium_risk_days,
        days_inactive > settings.churn_low_risk_days,
    ]
    return pd.Series(
        np.select(conditions, CHURN_RISK_ORDER[:3], default='Active'),
        index=days_inactive.index,
    )


def customer_type(total_orders: pd.Series, settings: Settings) -> pd.Series:
    """Buyer type by number of orders."""
    conditions = [
        total_orders == 0,
        total_orders == 1,
        total_orders <= settings.repeat_buyer_max_orders,
    ]
    choices = ['Never Purchased', 'One-Time Buyer', 'Repeat Buyer']
    return pd.Series(np.select(conditions, choices, default='VIP Customer'), index=total_orders.index)


class ChurnRiskReport(BaseReport):
    """Customer counts by churn risk and buyer type."""

    name = "churn_risk"
    required_tables = {
        'customers': ['customer_id'],
        'orders': ['order_id', 'customer_id', 'order_timestamp', 'total_amount'],
    }

    def classify_customers(self, tables: Dict[str, pd.DataFrame], reference_date=None) -> pd.DataFrame:
        """Per-customer activity with churn risk and customer type"""
        reference = self._reference_date(reference_date, self.settings.journey_reference_date)

        orders = tables['orders'][['order_id', 'customer_id', 'order_timestamp', 'total_amount']].copy()
        orders['order_timestamp'] = pd.to_datetime(orders['order_timestamp'], errors='coerce')

        activity = orders.groupby('customer_id').agg(
            last_order_date=('order_timestamp', 'max'),
            total_orders=('order_id', 'count'),
            total_spent=('total_amount', 'sum'),
            avg_order_value=('total_amount', 'mean'),
        ).reset_index()

        customers = tables['customers'].merge(activity, on='customer_id', how='left')
        customers['total_orders'] = customers['total_orders'].fillna(0).astype(int)
        customers['total_spent'] = customers['total_spent'].fillna(0.0)
        customers['days_since_last_order'] = days_since(reference, customers['last_order_date'])

        customers['churn_risk'] = churn_risk(customers['days_since_last_order'], self.settings)
        customers['customer_type'] = customer_type(customers['total_orders'], self.settings)
        return customers

    def build(self, tables: Dict[str, pd.DataFrame], reference_date=None, **kwargs) -> pd.DataFrame:
        customers = self.classify_customers(tables, reference_date)
        columns = ['churn_risk', 'customer_type', 'customer_count', 'avg_lifetime_value',
                   'avg_days_inactive', 'percentage_of_total']
        if customers.empty:
            return pd.DataFrame(columns=columns)

        summary = customers.groupby(['churn_risk', 'customer_type']).agg(
            customer_count=('customer_id', 'size'),
            avg_lifetime_value=('total_spent', 'mean'),
            avg_days_inactive=('days_since_last_order', 'mean'),
        ).reset_index()

        summary[['avg_lifetime_value', 'avg_days_inactive']] = (
            summary[['avg_lifetime_value', 'avg_days_inactive']].round(2)
        )
        summary['percentage_of_total'] = percentage(summary['customer_count'], len(customers))

        summary['risk_rank'] = summary['churn_risk'].map({risk: rank for rank, risk in enumerate(CHURN_RISK_ORDER)})
        summary = summary.sort_values(['risk_rank', 'customer_count', 'customer_type'],
                                      ascending=[True, False, True])
        return summary[columns].reset_index(drop=True)
