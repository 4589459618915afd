"""
Engagement tiers and the order/clickstream KPI dashboard

Author: Adryan R A
"""

import logging
from typing import Dict
import numpy as np
import pandas as pd

from reporting.analytics.base import BaseReport, percentage, safe_divide

logger = logging.getLogger(__name__)

ENGAGEMENT_TIERS = ['Platinum', 'Gold', 'Silver', 'Bronze']
LEAD_TIER = 'Lead'


class EngagementTierReport(BaseReport):
    """
    Customer tiers from a weighted engagement score.

    score = orders x w_orders + spend / unit x w_spend + sessions x w_sessions
    """

    name = "engagement_tiers"
    required_tables = {
        'customers': ['customer_id'],
        'orders': ['order_id', 'customer_id', 'total_amount'],
        'page_events': ['session_id', 'customer_id'],
    }

    def score_customers(self, tables: Dict[str, pd.DataFrame]) -> pd.DataFrame:
        """Per-customer engagement score and tier"""
        settings = self.settings

        order_metrics = tables['orders'].groupby('customer_id').agg(
            order_count=('order_id', 'count'),
            total_spent=('total_amount', 'sum'),
        )
        session_metrics = tables['page_events'].groupby('customer_id').agg(
            total_sessions=('session_id', 'nunique'),
        )

        customers = tables['customers'][['customer_id']].drop_duplicates()
        customers = customers.join(order_metrics, on='customer_id').join(session_metrics, on='customer_id')
        customers['order_count'] = customers['order_count'].fillna(0).astype(int)
        customers['total_spent'] = customers['total_spent'].fillna(0.0)
        customers['total_sessions'] = customers['total_sessions'].fillna(0).astype(int)

        customers['engagement_score'] = (
            customers['order_count'] * settings.engagement_order_weight
            + customers['total_spent'] / settings.engagement_spend_unit * settings.engagement_spend_weight
            + customers['total_sessions'] * settings.engagement_session_weight
        ).round(2)

        conditions = [customers['engagement_score'] >= threshold for threshold in settings.engagement_tiers]
        customers['customer_tier'] = np.select(conditions, ENGAGEMENT_TIERS[:len(conditions)], default=LEAD_TIER)
        return customers

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        customers = self.score_customers(tables)
        columns = ['customer_tier', 'customer_count', 'avg_spending', 'avg_orders',
                   'avg_engagement', 'segment_percentage', 'segment_total_revenue']
        if customers.empty:
            return pd.DataFrame(columns=columns)

        summary = customers.groupby('customer_tier').agg(
            customer_count=('customer_id', 'size'),
            avg_spending=('total_spent', 'mean'),
            avg_orders=('order_count', 'mean'),
            avg_engagement=('engagement_score', 'mean'),
            segment_total_revenue=('total_spent', 'sum'),
        ).reset_index()

        summary[['avg_spending', 'avg_orders', 'avg_engagement']] = (
            summary[['avg_spending', 'avg_orders', 'avg_engagement']].round(2)
        )
        summary['segment_percentage'] = percentage(summary['customer_count'], len(customers))

        tier_order = {tier: rank for rank, tier in enumerate(ENGAGEMENT_TIERS + [LEAD_TIER])}
        summary = summary.sort_values('customer_tier', key=lambda tiers: tiers.map(tier_order))
        return summary[columns].reset_index(drop=True)


class JourneyKPIReport(BaseReport):
    """Executive KPI rows for the order and clickstream data."""

    name = "journey_kpis"
    required_tables = {
        'customers': ['customer_id'],
        'orders': ['order_id', 'customer_id', 'order_timestamp', 'total_amount'],
        'page_events': ['session_id', 'customer_id'],
    }

    def build(self, tables: Dict[str, pd.DataFrame], reference_date=None, **kwargs) -> pd.DataFrame:
        settings = self.settings
        reference = self._reference_date(reference_date, settings.journey_reference_date)

        customer_ids = tables['customers']['customer_id'].dropna().unique()
        orders = tables['orders'][tables['orders']['customer_id'].isin(customer_ids)].copy()
        orders['order_timestamp'] = pd.to_datetime(orders['order_timestamp'], errors='coerce')
        sessions = tables['page_events'][tables['page_events']['customer_id'].isin(customer_ids)]

        total_customers = len(customer_ids)
        total_orders = orders['order_id'].nunique()
        total_revenue = float(orders['total_amount'].sum())
        window_start = reference - pd.Timedelta(days=settings.kpi_window_days)
        revenue_window = float(orders.loc[orders['order_timestamp'] >= window_start, 'total_amount'].sum())
        avg_order_value = orders['total_amount'].mean() if len(orders) else np.nan

        metrics = [
            ('Total Customers', total_customers),
            ('Purchasing Customers', orders['customer_id'].nunique()),
            ('Total Revenue ($)', round(total_revenue, 2)),
            ('Average Order Value ($)', round(avg_order_value, 2) if pd.notna(avg_order_value) else np.nan),
            ('Conversion Rate (%)', percentage(total_orders, sessions['session_id'].nunique())),
            (f'{settings.kpi_window_days}-Day Revenue ($)', round(revenue_window, 2)),
            ('Customer Acquisition Cost (Est.)',
             round(safe_divide(total_revenue * settings.acquisition_cost_ratio, total_customers), 2)),
        ]
        return pd.DataFrame(metrics, columns=['metric', 'value'])
