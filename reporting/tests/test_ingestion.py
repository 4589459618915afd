"""
Tests for CSV ingestion into the raw database

Author: Adryan R A
"""

import logging
import os

import pandas as pd
import pytest

from data_ingestion import DataIngestionEngine, FileProcessingLog, normalize_column_name


TRANSACTIONS_CSV = """Transaction ID,Customer ID,Amount,Timestamp,Type,Status,Category,Device,City,Country,Fraud_Flag
t1,1,200.00,2024-01-01 09:00:00,purchase,completed,Grocery,mobile,Jakarta,Indonesia,no
t2,1,300.50,2024-04-10 15:00:00,purchase,completed,Electronics,desktop,Jakarta,Indonesia,TRUE
t3,2,abc,2024-01-05 20:00:00,transfer,failed,Transfer,mobile,Bandung,Indonesia,0
,2,10.00,2024-01-06 20:00:00,purchase,completed,Grocery,mobile,Bandung,Indonesia,0
"""

PATIENTS_CSV = """Patient ID,First Name,Last Name,DOB,Gender,Admission Date,Address,Phone
P001,John,Doe,1980-01-01,M,"March 3, 2024","12 Oak St, Springfield, IL",555-1234
P001,John,Doe,1980-01-01,M,"March 3, 2024","12 Oak St, Springfield, IL",555-1234
P002,Jane,Roe,1990-05-05,FEMALE,not a date,"9 Elm Rd, Shelbyville",
"""

ORDERS_MIXED_DATES_CSV = """order_id,customer_id,order_date,amount
101,1,2024-01-10 10:00:00,100
102,1,01/15/2024 09:00,50
103,2,2024-02-01,75
104,2,soon,20
"""

ORDERS_WITHOUT_ID_CSV = """customer_id,order_date,amount
1,2024-01-10,100
"""


def _write(directory, file_name, content):
    path = os.path.join(directory, file_name)
    with open(path, 'w') as f:
        f.write(content)
    return path


@pytest.fixture
def data_dir(temp_dir):
    directory = os.path.join(temp_dir, 'data')
    os.makedirs(directory)
    return directory


@pytest.fixture
def ingestion_engine(temp_dir, data_dir):
    return DataIngestionEngine(f"sqlite:///{os.path.join(temp_dir, 'ingest.db')}", data_dir)


class TestFileMapping:
    """Test file and column name handling"""

    @pytest.mark.parametrize("name,expected", [
        ("Admission Date", "admission_date"),
        (" Customer-ID ", "customer_id"),
        ("is_fraudulent", "is_fraudulent"),
    ])
    def test_normalize_column_name(self, name, expected):
        assert normalize_column_name(name) == expected

    @pytest.mark.parametrize("file_name,table", [
        ("orders.csv", "orders"),
        ("orders_2024_q1.csv", "orders"),
        ("order_items.csv", "order_items"),
        ("Financial Transactions.csv", "financial_transactions"),
    ])
    def test_detect_table(self, ingestion_engine, file_name, table):
        assert ingestion_engine.detect_table(file_name) == table

    def test_unknown_file(self, ingestion_engine):
        with pytest.raises(ValueError, match="source table"):
            ingestion_engine.detect_table("inventory.csv")

    def test_field_aliases(self, ingestion_engine):
        raw = pd.DataFrame({'Customer ID': ['1'], 'Order Date': ['2024-01-10'], 'Amount': ['9.5'], 'order_id': ['A']})
        normalized = ingestion_engine._normalize_field_names(raw, 'orders')

        assert set(normalized.columns) == {'order_id', 'customer_id', 'order_timestamp', 'total_amount'}

    def test_missing_required_column(self, ingestion_engine):
        raw = pd.DataFrame({'customer_id': ['1']})
        with pytest.raises(ValueError, match="order_id"):
            ingestion_engine._normalize_field_names(raw, 'orders')


class TestDataIngestionEngine:
    """Test end-to-end CSV ingestion"""

    def test_process_transactions(self, ingestion_engine, data_dir):
        _write(data_dir, 'financial_transactions_2024.csv', TRANSACTIONS_CSV)
        results = ingestion_engine.process_all_files()

        assert results['status'] == 'completed'
        assert results['files_processed'] == 1
        # the row without a transaction id is dropped
        assert results['records_by_table'] == {'financial_transactions': 3}

        df = ingestion_engine.export_to_dataframe('financial_transactions')
        assert df['transaction_id'].tolist() == ['t1', 't2', 't3']
        assert df['is_fraudulent'].tolist() == [0, 1, 0]
        assert df['merchant_category'].tolist() == ['Grocery', 'Electronics', 'Transfer']
        assert df['amount'].iloc[1] == 300.5
        assert pd.isna(df['amount'].iloc[2])
        assert 'record_hash' not in df.columns

    def test_patient_rows_stay_free_text(self, ingestion_engine, data_dir):
        _write(data_dir, 'patient_records.csv', PATIENTS_CSV)
        ingestion_engine.process_all_files()

        df = ingestion_engine.export_to_dataframe('patient_records')
        # identical rows within one file are both kept
        assert len(df) == 3
        assert df['admission_date'].tolist() == ['March 3, 2024', 'March 3, 2024', 'not a date']
        assert df['patient_address'].iloc[0] == '12 Oak St, Springfield, IL'
        assert pd.isna(df['phone_number'].iloc[2])

    def test_mixed_timestamp_formats(self, ingestion_engine, data_dir, caplog):
        _write(data_dir, 'orders.csv', ORDERS_MIXED_DATES_CSV)

        with caplog.at_level(logging.WARNING):
            ingestion_engine.process_all_files()

        df = ingestion_engine.export_to_dataframe('orders')
        assert pd.to_datetime(df['order_timestamp']).iloc[:3].tolist() == [
            pd.Timestamp('2024-01-10 10:00:00'),
            pd.Timestamp('2024-01-15 09:00:00'),
            pd.Timestamp('2024-02-01 00:00:00'),
        ]
        assert pd.isna(df['order_timestamp'].iloc[3])
        assert "1 orders.order_timestamp values could not be parsed" in caplog.text

    def test_reingestion_skips_loaded_rows(self, ingestion_engine, data_dir):
        _write(data_dir, 'financial_transactions.csv', TRANSACTIONS_CSV)
        ingestion_engine.process_all_files()

        assert ingestion_engine.process_all_files()['status'] == 'no_files'

        results = ingestion_engine.process_all_files(force_reprocess=True)
        assert results['total_records'] == 0
        assert results['duplicates_skipped'] == 3
        assert ingestion_engine.get_database_stats()['table_counts']['financial_transactions'] == 3

    def test_bad_file_is_logged_and_skipped(self, ingestion_engine, data_dir):
        _write(data_dir, 'orders.csv', ORDERS_WITHOUT_ID_CSV)
        _write(data_dir, 'patient_records.csv', PATIENTS_CSV)
        bad_path = os.path.join(data_dir, 'orders.csv')

        results = ingestion_engine.process_all_files()

        assert results['files_processed'] == 1
        assert results['files_failed'] == 1
        assert 'order_id' in results['processing_errors'][0]

        with ingestion_engine.SessionLocal() as session:
            log = session.query(FileProcessingLog).filter_by(file_path=bad_path).one()
            assert log.processing_status == 'failed'
            assert log.table_name is None

        # failed files are picked up again on the next run
        assert ingestion_engine.get_files_to_process() == [bad_path]

    def test_database_stats(self, ingestion_engine, data_dir):
        _write(data_dir, 'patient_records.csv', PATIENTS_CSV)
        _write(data_dir, 'unknown.csv', "a,b\n1,2\n")
        ingestion_engine.process_all_files()

        stats = ingestion_engine.get_database_stats()
        assert stats['table_counts']['patient_records'] == 3
        assert stats['files_completed'] == 1
        assert stats['files_failed'] == 1
        assert 'patient_records' in ingestion_engine.list_loaded_tables()

    def test_export_unknown_table(self, ingestion_engine):
        with pytest.raises(ValueError, match="Unknown table"):
            ingestion_engine.export_to_dataframe('inventory')
