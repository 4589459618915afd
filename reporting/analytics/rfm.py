"""
RFM scoring, segmentation and segment-level CLV

Author: Adryan R A
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional
import numpy as np
import pandas as pd

from reporting.analytics.base import BaseReport, days_since, ntile, percentage, safe_divide
from reporting.utils.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT = 'Need Attention'


@dataclass(frozen=True)
class SegmentRule:
    """One row of the RFM decision table: inclusive score bounds per dimension"""
    segment: str
    min_recency: int = 1
    min_frequency: int = 1
    min_monetary: int = 1
    max_recency: int = 5
    max_frequency: int = 5
    max_monetary: int = 5

    def matches(self, scores: pd.DataFrame) -> pd.Series:
        return (
            scores['recency_score'].between(self.min_recency, self.max_recency)
            & scores['frequency_score'].between(self.min_frequency, self.max_frequency)
            & scores['monetary_score'].between(self.min_monetary, self.max_monetary)
        )


def segment_rules(settings: Settings, at_risk_min_frequency: Optional[int] = None) -> List[SegmentRule]:
    """
    Build the ordered RFM decision table; the first matching rule wins.

    Args:
        settings: Score thresholds
        at_risk_min_frequency: Frequency score that flags At Risk customers,
            defaults to the order-data threshold
    """
    top = settings.rfm_buckets
    if at_risk_min_frequency is None:
        at_risk_min_frequency = settings.rfm_at_risk_min_frequency

    champion = settings.rfm_champion_min_score
    loyal = settings.rfm_loyal_min_score
    lost = settings.rfm_lost_max_score

    return [
        SegmentRule('Champions', min_recency=champion, min_frequency=champion, min_monetary=champion,
                    max_recency=top, max_frequency=top, max_monetary=top),
        SegmentRule('Loyal Customers', min_recency=loyal, min_frequency=loyal,
                    max_recency=top, max_frequency=top, max_monetary=top),
        SegmentRule('New Customers', min_recency=settings.rfm_new_min_recency,
                    max_recency=top, max_frequency=top, max_monetary=top),
        SegmentRule('At Risk', min_frequency=at_risk_min_frequency,
                    max_recency=top, max_frequency=top, max_monetary=top),
        SegmentRule('Lost Customers', max_recency=lost, max_frequency=lost, max_monetary=lost),
    ]


def assign_segments(scores: pd.DataFrame, rules: List[SegmentRule]) -> pd.Series:
    """Label each row with the first matching rule, or the default segment."""
    if scores.empty:
        return pd.Series([], index=scores.index, dtype='object')

    conditions = [rule.matches(scores) for rule in rules]
    labels = [rule.segment for rule in rules]
    return pd.Series(np.select(conditions, labels, default=DEFAULT_SEGMENT), index=scores.index)


def customer_rfm(customers: pd.DataFrame,
                 activity: pd.DataFrame,
                 reference_date: pd.Timestamp,
                 date_column: str,
                 amount_column: str,
                 key_column: str,
                 include_inactive: bool,
                 missing_recency_days: int) -> pd.DataFrame:
    """
    Recency, frequency and monetary value per customer.

    Args:
        customers: Customer dimension
        activity: Orders or transactions
        reference_date: Date recency is measured from
        date_column: Activity timestamp column
        amount_column: Activity amount column
        key_column: Activity identifier counted for frequency
        include_inactive: Keep customers without activity (left join)
        missing_recency_days: Recency given to customers without activity

    Returns:
        One row per customer sorted by customer_id
    """
    activity = activity[['customer_id', key_column, date_column, amount_column]].copy()
    activity[date_column] = pd.to_datetime(activity[date_column], errors='coerce')

    metrics = activity.groupby('customer_id').agg(
        last_activity=(date_column, 'max'),
        frequency=(key_column, 'count'),
        monetary=(amount_column, 'sum'),
    ).reset_index()

    how = 'left' if include_inactive else 'inner'
    rfm = customers.merge(metrics, on='customer_id', how=how)

    rfm['frequency'] = rfm['frequency'].fillna(0).astype(int)
    rfm['monetary'] = rfm['monetary'].fillna(0.0).astype(float)
    rfm['recency_days'] = days_since(reference_date, rfm['last_activity']).fillna(missing_recency_days).astype(int)
    rfm['avg_order_value'] = safe_divide(rfm['monetary'], rfm['frequency']).fillna(0.0)

    return rfm.sort_values('customer_id', kind='mergesort').reset_index(drop=True)


def score_rfm(rfm: pd.DataFrame, buckets: int) -> pd.DataFrame:
    """Add 1..buckets NTILE scores for each dimension plus the R-F-M cell label."""
    scored = rfm.copy()
    # most recent customers land in the top bucket
    scored['recency_score'] = ntile(scored['recency_days'], buckets, ascending=False)
    scored['frequency_score'] = ntile(scored['frequency'], buckets, ascending=True)
    scored['monetary_score'] = ntile(scored['monetary'], buckets, ascending=True)
    scored['rfm_cell'] = (
        scored['recency_score'].astype(str)
        + scored['frequency_score'].astype(str)
        + scored['monetary_score'].astype(str)
    )
    return scored


class RFMSegmentReport(BaseReport):
    """
    RFM segments over orders with a simple 1-year CLV per segment.

    CLV = average monetary value x average order frequency x lifespan.
    """

    name = "rfm_segments"
    required_tables = {
        'customers': ['customer_id'],
        'orders': ['order_id', 'customer_id', 'order_timestamp', 'total_amount'],
    }

    def score_customers(self, tables: Dict[str, pd.DataFrame], reference_date=None) -> pd.DataFrame:
        """Per-customer RFM scores and segment labels"""
        reference = self._reference_date(reference_date, self.settings.journey_reference_date)
        rfm = customer_rfm(
            tables['customers'], tables['orders'], reference,
            date_column='order_timestamp',
            amount_column='total_amount',
            key_column='order_id',
            include_inactive=True,
            missing_recency_days=self.settings.rfm_missing_recency_days,
        )
        scored = score_rfm(rfm, self.settings.rfm_buckets)
        scored['rfm_segment'] = assign_segments(scored, segment_rules(self.settings))
        return scored

    def build(self, tables: Dict[str, pd.DataFrame], reference_date=None, **kwargs) -> pd.DataFrame:
        scored = self.score_customers(tables, reference_date)
        columns = ['rfm_segment', 'customer_count', 'avg_revenue', 'avg_frequency',
                   'avg_order_value', 'predicted_clv_1yr', 'segment_percentage']
        if scored.empty:
            return pd.DataFrame(columns=columns)

        summary = scored.groupby('rfm_segment').agg(
            customer_count=('customer_id', 'size'),
            avg_revenue=('monetary', 'mean'),
            avg_frequency=('frequency', 'mean'),
            avg_order_value=('avg_order_value', 'mean'),
        ).reset_index()

        summary['predicted_clv_1yr'] = (
            summary['avg_revenue'] * summary['avg_frequency'] * self.settings.clv_lifespan_years
        ).round(2)
        summary[['avg_revenue', 'avg_frequency', 'avg_order_value']] = (
            summary[['avg_revenue', 'avg_frequency', 'avg_order_value']].round(2)
        )
        summary['segment_percentage'] = percentage(summary['customer_count'], len(scored))

        summary = summary.sort_values(['predicted_clv_1yr', 'rfm_segment'], ascending=[False, True])
        return summary[columns].reset_index(drop=True)


class TransactionRFMReport(BaseReport):
    """RFM segments over completed financial transactions."""

    name = "transaction_rfm"
    required_tables = {
        'customers': ['customer_id'],
        'financial_transactions': ['transaction_id', 'customer_id', 'amount',
                                   'transaction_date', 'transaction_status'],
    }

    def score_customers(self, tables: Dict[str, pd.DataFrame], reference_date=None) -> pd.DataFrame:
        """Per-customer RFM scores; customers without completed transactions are left out"""
        reference = self._reference_date(reference_date, self.settings.financial_reference_date)
        transactions = tables['financial_transactions']
        completed = transactions[transactions['transaction_status'] == self.settings.completed_status]

        rfm = customer_rfm(
            tables['customers'], completed, reference,
            date_column='transaction_date',
            amount_column='amount',
            key_column='transaction_id',
            include_inactive=False,
            missing_recency_days=self.settings.rfm_missing_recency_days,
        )
        scored = score_rfm(rfm, self.settings.rfm_buckets)
        rules = segment_rules(self.settings, self.settings.rfm_financial_at_risk_min_frequency)
        scored['customer_segment'] = assign_segments(scored, rules)
        return scored

    def build(self, tables: Dict[str, pd.DataFrame], reference_date=None, **kwargs) -> pd.DataFrame:
        scored = self.score_customers(tables, reference_date)
        columns = ['customer_segment', 'customer_count', 'avg_spending', 'avg_frequency', 'avg_recency_days']
        if scored.empty:
            return pd.DataFrame(columns=columns)

        summary = scored.groupby('customer_segment').agg(
            customer_count=('customer_id', 'size'),
            avg_spending=('monetary', 'mean'),
            avg_frequency=('frequency', 'mean'),
            avg_recency_days=('recency_days', 'mean'),
        ).round(2).reset_index()

        summary = summary.sort_values(['avg_spending', 'customer_segment'], ascending=[False, True])
        return summary[columns].reset_index(drop=True)
