"""
Financial transaction reports and the persisted report views

Author: Adryan R A

Unless stated otherwise every report here reads completed transactions only.
"""

import logging
from typing import Dict
import numpy as np
import pandas as pd

from reporting.analytics.base import BaseReport, fraud_flag, ntile, percentage, safe_divide
from reporting.utils.config import Settings

logger = logging.getLogger(__name__)

TRANSACTION_COLUMNS = ['transaction_id', 'customer_id', 'amount', 'transaction_date', 'transaction_status']


def completed_transactions(transactions: pd.DataFrame, settings: Settings) -> pd.DataFrame:
    """Completed transactions with parsed dates and a boolean ``is_fraud`` column."""
    completed = transactions[transactions['transaction_status'] == settings.completed_status].copy()
    completed['transaction_date'] = pd.to_datetime(completed['transaction_date'], errors='coerce')
    if 'is_fraudulent' in completed.columns:
        completed['is_fraud'] = fraud_flag(completed['is_fraudulent'])
    return completed


def _rate(flags: pd.Series, decimals: int) -> float:
    return percentage(flags.sum(), len(flags), decimals)


class CustomerValueReport(BaseReport):
    """
    Estimated annual CLV by customer value quartile.

    annual CLV = total spent / lifetime days x 365, null for a zero-day lifetime
    """

    name = "customer_value"
    required_tables = {
        'customers': ['customer_id'],
        'financial_transactions': TRANSACTION_COLUMNS,
    }

    def customer_metrics(self, tables: Dict[str, pd.DataFrame]) -> pd.DataFrame:
        """Per-customer spend, lifetime and annual CLV"""
        completed = completed_transactions(tables['financial_transactions'], self.settings)

        metrics = completed.groupby('customer_id').agg(
            total_transactions=('transaction_id', 'count'),
            total_spent=('amount', 'sum'),
            avg_transaction_value=('amount', 'mean'),
            last_transaction_date=('transaction_date', 'max'),
            first_transaction_date=('transaction_date', 'min'),
        ).reset_index()

        metrics = tables['customers'].merge(metrics, on='customer_id', how='inner')
        metrics['customer_lifetime_days'] = (
            metrics['last_transaction_date'].dt.normalize() - metrics['first_transaction_date'].dt.normalize()
        ).dt.days
        metrics['estimated_annual_clv'] = safe_divide(metrics['total_spent'], metrics['customer_lifetime_days']) * 365
        metrics['customer_value_segment'] = ntile(
            metrics['total_spent'], self.settings.value_segment_buckets, ascending=False
        )
        return metrics

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        metrics = self.customer_metrics(tables)
        columns = ['customer_value_segment', 'customer_count', 'avg_total_spent', 'avg_annual_clv', 'avg_transactions']
        if metrics.empty:
            return pd.DataFrame(columns=columns)

        summary = metrics.groupby('customer_value_segment').agg(
            customer_count=('customer_id', 'size'),
            avg_total_spent=('total_spent', 'mean'),
            avg_annual_clv=('estimated_annual_clv', 'mean'),
            avg_transactions=('total_transactions', 'mean'),
        ).round(2).reset_index()

        return summary[columns].sort_values('customer_value_segment').reset_index(drop=True)


class MonthlyTrendReport(BaseReport):
    """Monthly volume with moving average, month-over-month growth and fraud rate."""

    name = "monthly_trends"
    required_tables = {'financial_transactions': TRANSACTION_COLUMNS + ['is_fraudulent']}

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        completed = completed_transactions(tables['financial_transactions'], self.settings)
        completed = completed.dropna(subset=['transaction_date'])
        completed['year'] = completed['transaction_date'].dt.year
        completed['month'] = completed['transaction_date'].dt.month

        monthly = completed.groupby(['year', 'month']).agg(
            transaction_count=('transaction_id', 'count'),
            total_volume=('amount', 'sum'),
            avg_transaction_size=('amount', 'mean'),
            active_customers=('customer_id', 'nunique'),
            fraud_cases=('is_fraud', 'sum'),
        ).reset_index().sort_values(['year', 'month'])

        window = self.settings.moving_average_months
        monthly['moving_avg_3month'] = monthly['total_volume'].rolling(window, min_periods=1).mean().round(2)
        monthly['volume_previous_month'] = monthly['total_volume'].shift(1)
        monthly['mom_growth_percentage'] = percentage(
            monthly['total_volume'] - monthly['volume_previous_month'], monthly['volume_previous_month']
        )
        monthly['fraud_rate_percentage'] = percentage(monthly['fraud_cases'], monthly['transaction_count'], 4)
        monthly['avg_transaction_size'] = monthly['avg_transaction_size'].round(2)

        return monthly[['year', 'month', 'transaction_count', 'total_volume', 'avg_transaction_size',
                        'active_customers', 'moving_avg_3month', 'volume_previous_month',
                        'mom_growth_percentage', 'fraud_rate_percentage']].reset_index(drop=True)


class MerchantCategoryReport(BaseReport):
    """Volume, customers and fraud rate per merchant category."""

    name = "merchant_categories"
    required_tables = {'financial_transactions': TRANSACTION_COLUMNS + ['merchant_category', 'is_fraudulent']}

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        completed = completed_transactions(tables['financial_transactions'], self.settings)

        summary = completed.groupby('merchant_category').agg(
            transaction_count=('transaction_id', 'count'),
            total_volume=('amount', 'sum'),
            avg_transaction_value=('amount', 'mean'),
            unique_customers=('customer_id', 'nunique'),
            fraud_cases=('is_fraud', 'sum'),
        ).reset_index()

        summary['avg_transaction_value'] = summary['avg_transaction_value'].round(2)
        summary['fraud_rate_percent'] = percentage(summary['fraud_cases'], summary['transaction_count'], 4)
        summary['revenue_per_customer'] = safe_divide(summary['total_volume'], summary['unique_customers']).round(2)

        summary = summary.sort_values('total_volume', ascending=False)
        return summary.drop(columns='fraud_cases').reset_index(drop=True)


class GeographyReport(BaseReport):
    """Regional performance by city and country."""

    name = "geography"
    required_tables = {
        'financial_transactions': TRANSACTION_COLUMNS + ['location_city', 'location_country',
                                                         'device_type', 'is_fraudulent'],
    }

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        completed = completed_transactions(tables['financial_transactions'], self.settings)
        completed['is_mobile'] = completed['device_type'] == self.settings.mobile_device

        summary = completed.groupby(['location_city', 'location_country'], dropna=False).agg(
            transaction_count=('transaction_id', 'count'),
            total_volume=('amount', 'sum'),
            avg_transaction_size=('amount', 'mean'),
            unique_customers=('customer_id', 'nunique'),
            mobile_usage_percent=('is_mobile', lambda flags: _rate(flags, 2)),
            fraud_rate_percent=('is_fraud', lambda flags: _rate(flags, 4)),
        ).reset_index()

        summary['avg_transaction_size'] = summary['avg_transaction_size'].round(2)
        return summary.sort_values('total_volume', ascending=False).reset_index(drop=True)


def usage_period(hour: float) -> str:
    """Morning up to noon, afternoon up to 18:00, evening after."""
    if pd.isna(hour):
        return None
    if hour <= 12:
        return 'Morning'
    if hour <= 18:
        return 'Afternoon'
    return 'Evening'


class DeviceReport(BaseReport):
    """Channel performance per device type with its busiest time of day."""

    name = "devices"
    required_tables = {
        'financial_transactions': TRANSACTION_COLUMNS + ['device_type', 'transaction_type', 'is_fraudulent'],
    }

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        completed = completed_transactions(tables['financial_transactions'], self.settings)
        completed['is_purchase'] = completed['transaction_type'] == self.settings.purchase_type
        completed['hour'] = completed['transaction_date'].dt.hour

        summary = completed.groupby('device_type').agg(
            transaction_count=('transaction_id', 'count'),
            total_volume=('amount', 'sum'),
            avg_transaction_size=('amount', 'mean'),
            purchase_rate_percent=('is_purchase', lambda flags: _rate(flags, 2)),
            fraud_rate_percent=('is_fraud', lambda flags: _rate(flags, 4)),
            peak_hour=('hour', lambda hours: hours.mode().min() if hours.notna().any() else np.nan),
        ).reset_index()

        summary['avg_transaction_size'] = summary['avg_transaction_size'].round(2)
        summary['peak_usage_time'] = summary['peak_hour'].map(usage_period)

        summary = summary.sort_values('total_volume', ascending=False)
        return summary.drop(columns='peak_hour').reset_index(drop=True)


class TransactionSequenceReport(BaseReport):
    """Recurring previous -> current -> next transaction type patterns per customer."""

    name = "transaction_sequences"
    required_tables = {'financial_transactions': TRANSACTION_COLUMNS + ['transaction_type']}

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        columns = ['transaction_sequence', 'total_occurrences', 'avg_transaction_amount', 'avg_days_between']
        completed = completed_transactions(tables['financial_transactions'], self.settings)
        completed = completed.sort_values(['customer_id', 'transaction_date'], kind='mergesort')

        by_customer = completed.groupby('customer_id')
        completed['previous_type'] = by_customer['transaction_type'].shift(1)
        completed['next_type'] = by_customer['transaction_type'].shift(-1)
        completed['days_since_last_transaction'] = by_customer['transaction_date'].diff().dt.days

        sequences = completed.dropna(subset=['previous_type', 'next_type'])
        if sequences.empty:
            return pd.DataFrame(columns=columns)

        separator = self.settings.path_separator
        sequences = sequences.assign(
            transaction_sequence=sequences['previous_type'].astype(str) + separator
            + sequences['transaction_type'].astype(str) + separator
            + sequences['next_type'].astype(str)
        )

        patterns = sequences.groupby('transaction_sequence').agg(
            total_occurrences=('transaction_id', 'size'),
            avg_transaction_amount=('amount', 'mean'),
            avg_days_between=('days_since_last_transaction', 'mean'),
        ).round(2).reset_index()

        patterns = patterns[patterns['total_occurrences'] >= self.settings.min_sequence_occurrences]
        patterns = patterns.sort_values(['total_occurrences', 'transaction_sequence'], ascending=[False, True])
        return patterns[columns].reset_index(drop=True)


class FraudBreakdownReport(BaseReport):
    """Fraud rate by hour, weekday, type, category, device and city (groups with fraud only)."""

    name = "fraud_breakdown"
    required_tables = {
        'financial_transactions': TRANSACTION_COLUMNS + ['transaction_type', 'merchant_category',
                                                         'device_type', 'location_city', 'is_fraudulent'],
    }

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        completed = completed_transactions(tables['financial_transactions'], self.settings)
        completed['transaction_hour'] = completed['transaction_date'].dt.hour
        completed['transaction_day'] = completed['transaction_date'].dt.day_name()
        completed['fraud_amount'] = completed['amount'].where(completed['is_fraud'])
        completed['legit_amount'] = completed['amount'].where(~completed['is_fraud'])

        dimensions = ['transaction_hour', 'transaction_day', 'transaction_type',
                      'merchant_category', 'device_type', 'location_city']
        summary = completed.groupby(dimensions, dropna=False).agg(
            total_transactions=('transaction_id', 'count'),
            fraud_cases=('is_fraud', 'sum'),
            avg_fraud_amount=('fraud_amount', 'mean'),
            avg_legit_amount=('legit_amount', 'mean'),
        ).reset_index()

        summary = summary[summary['fraud_cases'] > 0].copy()
        summary['fraud_rate_percent'] = percentage(summary['fraud_cases'], summary['total_transactions'], 4)
        summary[['avg_fraud_amount', 'avg_legit_amount']] = summary[['avg_fraud_amount', 'avg_legit_amount']].round(2)

        return summary.sort_values('fraud_rate_percent', ascending=False).reset_index(drop=True)


class IncomeBracketReport(BaseReport):
    """Spending, credit, checking balance and fraud rate per income bracket."""

    name = "income_brackets"
    required_tables = {
        'customers': ['customer_id', 'income_bracket', 'credit_score'],
        'financial_transactions': TRANSACTION_COLUMNS + ['is_fraudulent'],
        'accounts': ['customer_id', 'account_type', 'balance'],
    }

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        columns = ['income_bracket', 'customer_count', 'avg_total_spent', 'avg_credit_score',
                   'avg_balance', 'avg_transactions', 'overall_fraud_rate']
        completed = completed_transactions(tables['financial_transactions'], self.settings)

        activity = completed.groupby('customer_id').agg(
            total_transactions=('transaction_id', 'count'),
            total_spent=('amount', 'sum'),
            fraud_attempts=('is_fraud', 'sum'),
        )
        accounts = tables['accounts']
        balances = (
            accounts[accounts['account_type'] == self.settings.checking_account_type]
            .groupby('customer_id')['balance'].sum()
            .rename('current_balance')
        )

        customers = tables['customers'].join(activity, on='customer_id').join(balances, on='customer_id')
        customers[['total_transactions', 'total_spent', 'fraud_attempts']] = (
            customers[['total_transactions', 'total_spent', 'fraud_attempts']].fillna(0)
        )
        if customers.empty:
            return pd.DataFrame(columns=columns)

        summary = customers.groupby('income_bracket', dropna=False).agg(
            customer_count=('customer_id', 'size'),
            avg_total_spent=('total_spent', 'mean'),
            avg_credit_score=('credit_score', 'mean'),
            avg_balance=('current_balance', 'mean'),
            avg_transactions=('total_transactions', 'mean'),
            fraud_attempts=('fraud_attempts', 'sum'),
            transactions=('total_transactions', 'sum'),
        ).reset_index()

        summary['overall_fraud_rate'] = percentage(summary['fraud_attempts'], summary['transactions'], 4)
        rounded = ['avg_total_spent', 'avg_credit_score', 'avg_balance', 'avg_transactions']
        summary[rounded] = summary[rounded].round(2)

        summary = summary.sort_values('avg_total_spent', ascending=False)
        return summary[columns].reset_index(drop=True)


class ExecutiveSummaryReport(BaseReport):
    """Headline metric/value rows."""

    name = "executive_summary"
    required_tables = {
        'customers': ['customer_id'],
        'financial_transactions': TRANSACTION_COLUMNS + ['device_type', 'is_fraudulent'],
    }

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        completed = completed_transactions(tables['financial_transactions'], self.settings)
        has_rows = len(completed) > 0

        metrics = [
            ('Total Customers', len(tables['customers'])),
            ('Total Transactions', len(completed)),
            ('Total Volume ($)', round(float(completed['amount'].sum()), 2)),
            ('Average Transaction ($)', round(float(completed['amount'].mean()), 2) if has_rows else np.nan),
            ('Fraud Rate (%)', _rate(completed['is_fraud'], 4)),
            ('Mobile Usage (%)', _rate(completed['device_type'] == self.settings.mobile_device, 2)),
        ]
        return pd.DataFrame(metrics, columns=['metric', 'value'])


class FinancialKPIReport(BaseReport):
    """
    Business metrics dashboard over every transaction since the KPI start date.

    Unlike the other reports here, failed and pending transactions are kept so
    the success rate can be measured.
    """

    name = "financial_kpis"
    required_tables = {
        'financial_transactions': TRANSACTION_COLUMNS + ['device_type', 'is_fraudulent'],
    }

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        transactions = tables['financial_transactions']
        since = pd.to_datetime(transactions['transaction_date'], errors='coerce') >= pd.Timestamp(
            self.settings.financial_kpi_start_date
        )
        recent = transactions[since]
        has_rows = len(recent) > 0

        metrics = [
            ('Total Transactions', len(recent)),
            ('Total Volume ($)', round(float(recent['amount'].sum()), 2)),
            ('Active Customers', recent['customer_id'].nunique()),
            ('Average Transaction ($)', round(float(recent['amount'].mean()), 2) if has_rows else np.nan),
            ('Fraud Cases', int(fraud_flag(recent['is_fraudulent']).sum())),
            ('Fraud Rate (%)', _rate(fraud_flag(recent['is_fraudulent']), 4)),
            ('Success Rate (%)', _rate(recent['transaction_status'] == self.settings.completed_status, 2)),
            ('Mobile Rate (%)', _rate(recent['device_type'] == self.settings.mobile_device, 2)),
        ]
        return pd.DataFrame(metrics, columns=['metric', 'value'])


class CustomerAnalyticsView(BaseReport):
    """Per-customer transaction profile; persisted for downstream reporting tools."""

    name = "customer_analytics"
    required_tables = {
        'customers': ['customer_id', 'customer_name', 'income_bracket', 'credit_score'],
        'financial_transactions': TRANSACTION_COLUMNS + ['merchant_category'],
    }

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        completed = completed_transactions(tables['financial_transactions'], self.settings)

        profile = completed.groupby('customer_id').agg(
            transaction_count=('transaction_id', 'count'),
            total_spent=('amount', 'sum'),
            avg_transaction_value=('amount', 'mean'),
            last_transaction_date=('transaction_date', 'max'),
            diversity_score=('merchant_category', 'nunique'),
        ).reset_index()

        customers = tables['customers'][['customer_id', 'customer_name', 'income_bracket', 'credit_score']]
        view = customers.merge(profile, on='customer_id', how='inner')
        return view.sort_values('customer_id').reset_index(drop=True)


class FraudMonitoringView(BaseReport):
    """Fraudulent transactions with a value band, newest first; persisted for monitoring."""

    name = "fraud_monitoring"
    required_tables = {
        'financial_transactions': ['transaction_date', 'customer_id', 'amount', 'merchant_category',
                                   'device_type', 'location_city', 'is_fraudulent'],
    }

    def build(self, tables: Dict[str, pd.DataFrame], **kwargs) -> pd.DataFrame:
        transactions = tables['financial_transactions']
        fraud = transactions[fraud_flag(transactions['is_fraudulent'])].copy()
        fraud['transaction_date'] = pd.to_datetime(fraud['transaction_date'], errors='coerce')

        fraud['value_category'] = np.select(
            [fraud['amount'] > self.settings.high_value_amount, fraud['amount'] > self.settings.medium_value_amount],
            ['High Value', 'Medium Value'],
            default='Low Value',
        )

        columns = ['transaction_date', 'customer_id', 'amount', 'merchant_category',
                   'device_type', 'location_city', 'value_category']
        fraud = fraud.sort_values('transaction_date', ascending=False, kind='mergesort')
        return fraud[columns].reset_index(drop=True)
