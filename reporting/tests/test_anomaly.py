"""
Unit tests for z-score anomaly detection

Author: Adryan R A
"""

import numpy as np
import pandas as pd
import pytest

from reporting.analytics.anomaly import AnomalyDetectionReport, anomaly_level, z_score


@pytest.fixture
def spending_history():
    """
    Customer x: nine $10 purchases and one fraudulent $100 purchase
    (mean 19, population std 27) plus a $1000 withdrawal.
    Customer y always spends $50. Customer z has only two purchases.
    """
    rows = [(f'x{i}', 'x', 10.0, 'purchase', 'completed', 0) for i in range(9)]
    rows += [
        ('x9', 'x', 100.0, 'purchase', 'completed', 1),
        ('x10', 'x', 1000.0, 'withdrawal', 'completed', 0),
        ('x11', 'x', 5000.0, 'purchase', 'failed', 0),
        ('y0', 'y', 50.0, 'purchase', 'completed', 0),
        ('y1', 'y', 50.0, 'purchase', 'completed', 0),
        ('y2', 'y', 50.0, 'purchase', 'completed', 0),
        ('z0', 'z', 20.0, 'purchase', 'completed', 0),
        ('z1', 'z', 900.0, 'purchase', 'completed', 1),
    ]
    return pd.DataFrame(rows, columns=['transaction_id', 'customer_id', 'amount', 'transaction_type',
                                       'transaction_status', 'is_fraudulent'])


class TestAnomalyHelpers:
    """Test z-score banding"""

    def test_z_score_with_zero_std(self):
        assert np.isnan(z_score(50.0, 50.0, 0.0))

    def test_levels(self, test_settings):
        scores = pd.Series([3.5, -3.01, 3.0, 2.5, -2.0, 0.0, np.nan])
        assert anomaly_level(scores, test_settings).tolist() == [
            'High Anomaly', 'High Anomaly', 'Medium Anomaly', 'Medium Anomaly', 'Normal', 'Normal', 'Normal',
        ]


class TestAnomalyDetectionReport:
    """Test anomaly report"""

    def test_baseline_uses_population_std(self, spending_history, test_settings):
        patterns = AnomalyDetectionReport(test_settings).spending_patterns(spending_history).set_index('customer_id')

        assert patterns.index.tolist() == ['x', 'y']
        assert patterns.loc['x', 'avg_amount'] == 19.0
        assert patterns.loc['x', 'std_amount'] == 27.0
        assert patterns.loc['x', 'transaction_count'] == 10

    def test_scored_transactions(self, spending_history, test_settings):
        scored = AnomalyDetectionReport(test_settings).score_transactions(
            {'financial_transactions': spending_history}
        ).set_index('transaction_id')

        assert scored.loc['x9', 'z_score'] == 3.0
        assert scored.loc['x9', 'anomaly_level'] == 'Medium Anomaly'
        assert scored.loc['x10', 'anomaly_level'] == 'High Anomaly'
        assert scored.loc['y0', 'anomaly_level'] == 'Normal'
        assert 'x11' not in scored.index
        assert 'z0' not in scored.index

    def test_summary(self, spending_history, test_settings):
        result = AnomalyDetectionReport(test_settings).run({'financial_transactions': spending_history})

        assert result['anomaly_level'].tolist() == ['High Anomaly', 'Medium Anomaly', 'Normal']
        assert result['transaction_count'].tolist() == [1, 1, 12]
        assert result['fraud_capture_rate'].tolist() == [0.0, 100.0, 0.0]
        assert result.iloc[0]['avg_amount'] == 1000.0

    @pytest.mark.parametrize("encode", [lambda flag: flag == 1, str])
    def test_fraud_flag_encodings(self, spending_history, test_settings, encode):
        spending_history['is_fraudulent'] = spending_history['is_fraudulent'].map(encode)
        result = AnomalyDetectionReport(test_settings).run({'financial_transactions': spending_history})

        assert result['fraud_capture_rate'].tolist() == [0.0, 100.0, 0.0]

    def test_no_qualifying_customers(self, financial_transactions, test_settings):
        result = AnomalyDetectionReport(test_settings).run({'financial_transactions': financial_transactions})

        assert result.empty
        assert list(result.columns) == ['anomaly_level', 'transaction_count', 'avg_amount', 'fraud_capture_rate']
