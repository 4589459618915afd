"""
Test configuration and fixtures

Author: Adryan R A
"""

import os
import shutil
import tempfile
from typing import Dict, Any

import pandas as pd
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from reporting.app import app, get_report_service
from reporting.services.data_service import DataService
from reporting.services.log_service import LogService
from reporting.services.report_service import ReportService
from reporting.utils.config import Settings


@pytest.fixture
def temp_dir():
    """Create temporary directory for test data"""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir)


@pytest.fixture
def test_settings():
    """Default settings without reading the environment or a .env file"""
    return Settings(_env_file=None)


@pytest.fixture
def customers():
    """Six customers; customer 6 never orders or transacts"""
    return pd.DataFrame({
        'customer_id': ['1', '2', '3', '4', '5', '6'],
        'customer_name': ['Ann Lee', 'Budi Santoso', 'Chen Wei', 'Dewi Lestari', 'Eko Prasetyo', 'Fara Aziz'],
        'signup_date': pd.to_datetime(['2024-01-05', '2024-01-20', '2024-02-10',
                                       '2024-02-15', '2024-03-01', '2024-03-20']),
        'acquisition_channel': ['organic', 'paid', 'referral', 'organic', 'paid', 'social'],
        'income_bracket': ['High', 'Medium', 'Medium', 'Low', 'High', 'Low'],
        'credit_score': [780.0, 690.0, 710.0, 600.0, 750.0, 580.0],
        'country': ['Indonesia', 'Indonesia', 'Singapore', 'Indonesia', 'Malaysia', 'Malaysia'],
    })


@pytest.fixture
def orders():
    return pd.DataFrame({
        'order_id': ['101', '102', '103', '104', '105', '106', '107', '108'],
        'customer_id': ['1', '1', '1', '2', '3', '3', '4', '5'],
        'order_timestamp': pd.to_datetime([
            '2024-01-10 10:00', '2024-02-12 11:00', '2024-04-25 12:00', '2024-01-25 09:30',
            '2024-02-20 14:00', '2024-03-15 16:00', '2024-03-01 08:00', '2024-03-05 19:00',
        ]),
        'total_amount': [100.0, 150.0, 200.0, 50.0, 300.0, 120.0, 80.0, 60.0],
    })


@pytest.fixture
def order_items():
    return pd.DataFrame({
        'order_id': ['101', '101', '102', '102', '102', '103', '103', '104', '105', '105', '106'],
        'product_id': ['P1', 'P2', 'P1', 'P2', 'P3', 'P2', 'P3', 'P1', 'P1', 'P2', 'P4'],
        'quantity': [1, 1, 2, 1, 3, 1, 1, 1, 1, 1, 1],
    })


@pytest.fixture
def products():
    return pd.DataFrame({
        'product_id': ['P1', 'P2', 'P3', 'P4'],
        'product_name': ['Coffee Beans', 'Grinder', 'Filter Papers', 'Kettle'],
        'category': ['Food', 'Equipment', 'Supplies', 'Equipment'],
    })


@pytest.fixture
def page_events():
    """
    Seven sessions:
    s1 purchases, s2 and s7 view a product, s3 stops at home, s4 adds to
    cart without visiting home, s5 never enters the funnel, s6 reaches checkout.
    """
    rows = [
        ('s1', '1', '/home', 'page_view', '2024-04-01 10:00'),
        ('s1', '1', '/product/1', 'page_view', '2024-04-01 10:01'),
        ('s1', '1', '/product/1', 'add_to_cart', '2024-04-01 10:02'),
        ('s1', '1', '/checkout', 'page_view', '2024-04-01 10:03'),
        ('s1', '1', '/order/confirmation', 'purchase', '2024-04-01 10:04'),
        ('s2', '2', '/home', 'page_view', '2024-04-02 09:00'),
        ('s2', '2', '/product/2', 'page_view', '2024-04-02 09:01'),
        ('s3', '3', '/home', 'page_view', '2024-04-03 12:00'),
        ('s4', '3', '/product/3', 'page_view', '2024-04-04 13:00'),
        ('s4', '3', '/product/3', 'add_to_cart', '2024-04-04 13:01'),
        ('s5', '4', '/about', 'page_view', '2024-04-05 15:00'),
        ('s6', '5', '/home', 'page_view', '2024-04-06 16:00'),
        ('s6', '5', '/product/1', 'page_view', '2024-04-06 16:01'),
        ('s6', '5', '/product/1', 'add_to_cart', '2024-04-06 16:02'),
        ('s6', '5', '/checkout', 'page_view', '2024-04-06 16:03'),
        ('s7', '6', '/home', 'page_view', '2024-04-07 17:00'),
        ('s7', '6', '/product/5', 'page_view', '2024-04-07 17:01'),
    ]
    df = pd.DataFrame(rows, columns=['session_id', 'customer_id', 'page_url', 'event_type', 'event_timestamp'])
    df['event_timestamp'] = pd.to_datetime(df['event_timestamp'])
    return df


@pytest.fixture
def financial_transactions():
    """
    Customer 1 spends $500 over two completed purchases 100 days apart.
    Transactions 4 and 6 are fraudulent; transaction 5 failed.
    """
    rows = [
        ('t1', '1', 200.0, '2024-01-01 09:00', 'purchase', 'completed', 'Grocery', 'mobile', 'Jakarta', 'Indonesia', 0),
        ('t2', '1', 300.0, '2024-04-10 15:00', 'purchase', 'completed', 'Electronics', 'desktop', 'Jakarta', 'Indonesia', 0),
        ('t3', '2', 50.0, '2024-01-05 20:00', 'purchase', 'completed', 'Grocery', 'mobile', 'Bandung', 'Indonesia', 0),
        ('t4', '2', 1500.0, '2024-01-06 21:00', 'purchase', 'completed', 'Electronics', 'mobile', 'Bandung', 'Indonesia', 1),
        ('t5', '2', 20.0, '2024-01-06 22:00', 'transfer', 'failed', 'Transfer', 'mobile', 'Bandung', 'Indonesia', 0),
        ('t6', '3', 120.0, '2024-01-15 10:00', 'purchase', 'completed', 'Travel', 'tablet', 'Singapore', 'Singapore', 1),
        ('t7', '3', 80.0, '2024-01-20 11:00', 'withdrawal', 'completed', 'ATM', 'desktop', 'Singapore', 'Singapore', 0),
        ('t8', '4', 60.0, '2024-01-25 13:00', 'purchase', 'completed', 'Grocery', 'desktop', 'Jakarta', 'Indonesia', 0),
    ]
    df = pd.DataFrame(rows, columns=[
        'transaction_id', 'customer_id', 'amount', 'transaction_date', 'transaction_type',
        'transaction_status', 'merchant_category', 'device_type', 'location_city',
        'location_country', 'is_fraudulent',
    ])
    df['transaction_date'] = pd.to_datetime(df['transaction_date'])
    return df


@pytest.fixture
def accounts():
    return pd.DataFrame({
        'account_id': ['a1', 'a2', 'a3', 'a4', 'a5'],
        'customer_id': ['1', '1', '2', '3', '4'],
        'account_type': ['checking', 'savings', 'checking', 'checking', 'savings'],
        'balance': [1000.0, 5000.0, 250.0, 400.0, 900.0],
    })


@pytest.fixture
def patient_records():
    """P001 is admitted twice; the March admission is the one to keep"""
    return pd.DataFrame({
        'patient_id': ['P001', 'P001', 'P002', 'P003'],
        'first_name': ['John', 'John', 'Jane', 'Sam'],
        'last_name': ['Doe', 'Doe', 'Roe', 'Poe'],
        'date_of_birth': ['1980-01-01', '1980-01-01', '1990-05-05', '1975-07-07'],
        'gender': ['M', 'male', 'FEMALE', 'X'],
        'admission_date': ['2024-01-05', 'March 3, 2024', 'not a date', '2024-02-10'],
        'patient_address': ['12 Oak St, Springfield, IL', '12 Oak St, Springfield, IL',
                            '9 Elm Rd, Shelbyville', 'Capital City'],
        'phone_number': ['555-1234', None, '', '555-9999'],
    })


@pytest.fixture
def journey_tables(customers, orders, order_items, products, page_events) -> Dict[str, pd.DataFrame]:
    return {
        'customers': customers,
        'orders': orders,
        'order_items': order_items,
        'products': products,
        'page_events': page_events,
    }


@pytest.fixture
def financial_tables(customers, financial_transactions, accounts) -> Dict[str, pd.DataFrame]:
    return {
        'customers': customers,
        'financial_transactions': financial_transactions,
        'accounts': accounts,
    }


@pytest.fixture
def raw_database_url(temp_dir, journey_tables, financial_tables, patient_records):
    """SQLite raw database holding every source table"""
    database_url = f"sqlite:///{os.path.join(temp_dir, 'raw.db')}"
    engine = create_engine(database_url)

    tables = {**journey_tables, **financial_tables, 'patient_records': patient_records}
    for table_name, df in tables.items():
        df.to_sql(table_name, engine, index=False)

    engine.dispose()
    return database_url


@pytest.fixture
def analytics_database_url(temp_dir):
    return f"sqlite:///{os.path.join(temp_dir, 'analytics.db')}"


@pytest.fixture
def log_service(temp_dir):
    """Log service writing to a temporary database"""
    return LogService(os.path.join(temp_dir, 'test_logs.db'))


@pytest.fixture
def report_service(raw_database_url, analytics_database_url, log_service, test_settings):
    """Report service bound to the temporary databases"""
    return ReportService(
        data_service=DataService(raw_database_url, analytics_database_url),
        log_service=log_service,
        settings=test_settings
    )


@pytest.fixture
def client(report_service):
    """Create test client for FastAPI app"""
    app.dependency_overrides[get_report_service] = lambda: report_service
    yield TestClient(app)
    app.dependency_overrides.clear()


# Test utilities
class TestUtils:
    """Utility functions for testing"""

    @staticmethod
    def assert_api_response_structure(response_data: Dict[str, Any], expected_keys: list):
        """Assert that API response has expected structure"""
        for key in expected_keys:
            assert key in response_data, f"Missing key: {key}"

    @staticmethod
    def assert_log_response(response_data: Dict[str, Any]):
        """Assert log response structure"""
        required_keys = ["status", "total_records", "has_more", "logs"]
        TestUtils.assert_api_response_structure(response_data, required_keys)

    @staticmethod
    def assert_percentages(values: pd.Series):
        """Assert every non-null value is a percentage"""
        values = values.dropna()
        assert ((values >= 0) & (values <= 100)).all(), f"Out of range: {values.tolist()}"
