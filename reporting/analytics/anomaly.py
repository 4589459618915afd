"""
Z-score anomaly detection over financial transactions

Author: Adryan R A
"""

import logging
from typing import Dict
import numpy as np
import pandas as pd

from reporting.analytics.base import BaseReport, fraud_flag, percentage, safe_divide
from reporting.utils.config import Settings

logger = logging.getLogger(__name__)

ANOMALY_LEVELS = ['High Anomaly', 'Medium Anomaly', 'Normal']


def z_score(amount, mean, std):
    """(amount - mean) / std, null when std is zero or missing."""
    return safe_divide(amount - mean, std)


def anomaly_level(z_scores: pd.Series, settings: Settings) -> pd.Series:
    """Band absolute z-scores; null scores are Normal."""
    magnitude = z_scores.abs()
    return pd.Series(
        np.select(
            [magnitude > settings.anomaly_high_z, magnitude > settings.anomaly_medium_z],
            ANOMALY_LEVELS[:2],
            default='Normal',
        ),
        index=z_scores.index,
    )


class AnomalyDetectionReport(BaseReport):
    """
    Transactions scored against their customer's purchase baseline.

    The baseline (mean and population standard deviation of amount) comes from
    completed purchases; customers with fewer than the minimum number of such
    purchases are not scored.
    """

    name = "anomalies"
    required_tables = {
        'financial_transactions': ['transaction_id', 'customer_id', 'amount', 'transaction_type',
                                   'transaction_status', 'is_fraudulent'],
    }

    def spending_patterns(self, transactions: pd.DataFrame) -> pd.DataFrame:
        """Per-customer purchase baseline for qualifying customers"""
        settings = self.settings
        purchases = transactions[
            (transactions['transaction_status'] == settings.completed_status)
            & (transactions['transaction_type'] == settings.purchase_type)
        ]

        patterns = purchases.groupby('customer_id')['amount'].agg(
            avg_amount='mean',
            std_amount=lambda amounts: amounts.std(ddof=0),
            transaction_count='count',
        ).reset_index()

        return patterns[patterns['transaction_count'] >= settings.anomaly_min_transactions]

    def score_transactions(self, tables: Dict[str, pd.DataFrame]) -> pd.DataFrame:
        """Completed transactions of qualifying customers with z-score and level"""
        transactions = tables['financial_transactions']
        patterns = self.spending_patterns(transactions)

        completed = transactions[transactions['transaction_status'] == self.settings.completed_status]
        scored = completed.merge(patterns[['customer_id', 'avg_amount', 'std_amount']], on='customer_id', how='inner')

        scored['z_score'] = z_score(scored['amount'], scored['avg_amount'], scored['std_amount'])
        scored['anomaly_level'] = anomaly_level(scored['z_score'], self.settings)

        logger.info(f"Scored {len(scored)} transactions for {len(patterns)} customers")
        return scored

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        scored = self.score_transactions(tables)
        columns = ['anomaly_level', 'transaction_count', 'avg_amount', 'fraud_capture_rate']
        if scored.empty:
            return pd.DataFrame(columns=columns)

        scored['is_fraud'] = fraud_flag(scored['is_fraudulent'])
        summary = scored.groupby('anomaly_level').agg(
            transaction_count=('transaction_id', 'size'),
            avg_amount=('amount', 'mean'),
            fraud_cases=('is_fraud', 'sum'),
        ).reset_index()

        summary['avg_amount'] = summary['avg_amount'].round(2)
        summary['fraud_capture_rate'] = percentage(summary['fraud_cases'], summary['transaction_count'])

        summary = summary.sort_values('anomaly_level', key=lambda levels: levels.map(ANOMALY_LEVELS.index))
        return summary[columns].reset_index(drop=True)
