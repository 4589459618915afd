"""
Unit tests for cohort retention

Author: Adryan R A
"""

import pandas as pd

from conftest import TestUtils
from reporting.analytics.cohort import CohortActivityReport, CohortRetentionReport, cohort_activity


class TestCohortActivity:
    """Test order-to-cohort tagging"""

    def test_month_offsets(self, customers, orders):
        activity = cohort_activity(customers, orders)
        offsets = activity.groupby('customer_id')['month_offset'].apply(list).to_dict()

        assert offsets == {'1': [0, 1, 3], '2': [0], '3': [0, 1], '4': [1], '5': [0]}
        assert set(activity.loc[activity['customer_id'] == '1', 'cohort']) == {'2024-01'}

    def test_orders_before_signup_are_dropped(self, customers):
        early_order = pd.DataFrame({
            'customer_id': ['6'],
            'order_timestamp': pd.to_datetime(['2024-02-28']),
            'total_amount': [10.0],
        })
        assert cohort_activity(customers, early_order).empty

    def test_customers_without_signup_date_are_skipped(self, customers, orders):
        customers.loc[customers['customer_id'] == '1', 'signup_date'] = pd.NaT
        activity = cohort_activity(customers, orders)

        assert '1' not in activity['customer_id'].tolist()


class TestCohortRetentionReport:
    """Test cohort retention report"""

    def test_retention_by_cohort(self, journey_tables, test_settings):
        result = CohortRetentionReport(test_settings).run(journey_tables).set_index('cohort')

        assert result.index.tolist() == ['2024-01', '2024-02', '2024-03']
        assert result['cohort_size'].tolist() == [2, 2, 2]
        assert result['m0_customers'].tolist() == [2, 1, 1]
        assert result['m1_customers'].tolist() == [1, 1, 0]
        assert result['m2_customers'].tolist() == [0, 0, 0]

        assert result.loc['2024-01', ['m0_retention_rate', 'm1_retention_rate', 'm2_retention_rate']].tolist() == [100.0, 50.0, 0.0]
        assert result.loc['2024-02', ['m0_retention_rate', 'm1_retention_rate', 'm2_retention_rate']].tolist() == [100.0, 100.0, 0.0]

    def test_customer_inactive_in_signup_month_is_not_retained(self, journey_tables, test_settings):
        # customer 4 signed up in February but first ordered in March
        result = CohortRetentionReport(test_settings).run(journey_tables).set_index('cohort')
        assert result.loc['2024-02', 'm1_customers'] == 1

    def test_rates_stay_in_range(self, journey_tables, test_settings):
        result = CohortRetentionReport(test_settings).run(journey_tables)
        for column in ['m0_retention_rate', 'm1_retention_rate', 'm2_retention_rate']:
            TestUtils.assert_percentages(result[column])

    def test_month_offsets_setting(self, journey_tables, test_settings):
        settings = test_settings.model_copy(update={'cohort_month_offsets': 4})
        result = CohortRetentionReport(settings).run(journey_tables).set_index('cohort')

        assert result.loc['2024-01', 'm3_customers'] == 1
        assert result.loc['2024-01', 'm3_retention_rate'] == 50.0


class TestCohortActivityReport:
    """Test cohort activity report"""

    def test_revenue_per_cohort_month(self, journey_tables, test_settings):
        result = CohortActivityReport(test_settings).run(journey_tables)
        rows = result.set_index(['cohort', 'month_offset'])

        assert len(result) == 6
        assert rows.loc[('2024-01', 0), 'active_customers'] == 2
        assert rows.loc[('2024-01', 0), 'monthly_revenue'] == 150.0
        assert rows.loc[('2024-01', 0), 'arpu'] == 75.0
        assert rows.loc[('2024-02', 1), 'active_customers'] == 2
        assert rows.loc[('2024-02', 1), 'arpu'] == 100.0

    def test_no_orders(self, journey_tables, test_settings):
        journey_tables['orders'] = journey_tables['orders'].iloc[0:0]
        result = CohortActivityReport(test_settings).run(journey_tables)

        assert result.empty
        assert 'arpu' in result.columns
