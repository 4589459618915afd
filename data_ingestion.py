#!/usr/bin/env python3
"""
Customer Analytics - Data Ingestion System
==========================================

Loads CSV extracts of the source tables (customers, orders, order items,
products, financial transactions, accounts, page events and patient records)
into the raw SQL database that the reports read from.

Author: Adryan R A

Features:
- Case and spacing insensitive column names with per-table aliases
- SQLAlchemy models for every source table
- Re-ingesting the same file skips rows that are already loaded
- Per-file processing log; a bad file is recorded as failed and skipped
"""

import os
import re
import glob
import logging
import hashlib
from datetime import datetime
from typing import List, Dict, Any, Optional, Tuple

import pandas as pd
from sqlalchemy import (
    create_engine, Column, Integer, String, Float, DateTime,
    Text, UniqueConstraint, Index, insert, inspect
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError

from reporting.utils.config import get_settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('data_ingestion.log'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# Database configuration
DATABASE_URL = get_settings().raw_database_url
Base = declarative_base()


class IngestedRecordMixin:
    """Bookkeeping columns shared by every source table"""
    row_id = Column(Integer, primary_key=True)
    source_file = Column(String(255), nullable=False)
    record_hash = Column(String(64), nullable=False, unique=True)
    ingested_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Customer(IngestedRecordMixin, Base):
    __tablename__ = 'customers'

    customer_id = Column(String(50), nullable=False, index=True)
    customer_name = Column(String(255))
    signup_date = Column(DateTime, index=True)
    acquisition_channel = Column(String(100))
    income_bracket = Column(String(50))
    credit_score = Column(Float)
    country = Column(String(100))


class Order(IngestedRecordMixin, Base):
    __tablename__ = 'orders'

    order_id = Column(String(50), nullable=False, index=True)
    customer_id = Column(String(50), nullable=False, index=True)
    order_timestamp = Column(DateTime, index=True)
    total_amount = Column(Float)


class OrderItem(IngestedRecordMixin, Base):
    __tablename__ = 'order_items'

    order_id = Column(String(50), nullable=False, index=True)
    product_id = Column(String(50), nullable=False, index=True)
    quantity = Column(Integer)


class Product(IngestedRecordMixin, Base):
    __tablename__ = 'products'

    product_id = Column(String(50), nullable=False, index=True)
    product_name = Column(String(255))
    category = Column(String(100))


class FinancialTransaction(IngestedRecordMixin, Base):
    __tablename__ = 'financial_transactions'

    transaction_id = Column(String(50), nullable=False, index=True)
    customer_id = Column(String(50), nullable=False, index=True)
    amount = Column(Float)
    transaction_date = Column(DateTime, index=True)
    transaction_type = Column(String(50))
    transaction_status = Column(String(50))
    merchant_category = Column(String(100))
    device_type = Column(String(50))
    location_city = Column(String(100))
    location_country = Column(String(100))
    is_fraudulent = Column(Integer, default=0)

    __table_args__ = (
        Index('idx_txn_customer_date', 'customer_id', 'transaction_date'),
    )


class Account(IngestedRecordMixin, Base):
    __tablename__ = 'accounts'

    account_id = Column(String(50), nullable=False, index=True)
    customer_id = Column(String(50), nullable=False, index=True)
    account_type = Column(String(50))
    balance = Column(Float)


class PageEvent(IngestedRecordMixin, Base):
    __tablename__ = 'page_events'

    session_id = Column(String(100), nullable=False, index=True)
    customer_id = Column(String(50), index=True)
    page_url = Column(String(500))
    event_type = Column(String(50))
    event_timestamp = Column(DateTime)


class PatientRecord(IngestedRecordMixin, Base):
    """Raw patient rows; dates, gender and address stay free text until cleaning"""
    __tablename__ = 'patient_records'

    patient_id = Column(String(50), nullable=False, index=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    date_of_birth = Column(String(50))
    gender = Column(String(20))
    admission_date = Column(String(50))
    patient_address = Column(String(500))
    phone_number = Column(String(50))


class FileProcessingLog(Base):
    """
    SQLAlchemy model to track which files have been processed.
    """
    __tablename__ = 'file_processing_log'

    id = Column(Integer, primary_key=True)
    file_path = Column(String(500), nullable=False, unique=True)
    file_name = Column(String(255), nullable=False)
    table_name = Column(String(100), nullable=True)
    file_size = Column(Integer, nullable=False)
    file_modified_time = Column(DateTime, nullable=False)
    records_processed = Column(Integer, nullable=False, default=0)
    duplicates_skipped = Column(Integer, nullable=False, default=0)
    processing_status = Column(String(20), nullable=False, default='pending')  # pending, completed, failed
    error_message = Column(Text, nullable=True)
    processed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_file_status', 'file_name', 'processing_status'),
    )


# Source table models keyed by table name
TABLE_MODELS = {
    model.__tablename__: model
    for model in [Customer, Order, OrderItem, Product, FinancialTransaction, Account, PageEvent, PatientRecord]
}

# Columns a row must carry to be loaded
REQUIRED_COLUMNS = {
    'customers': ['customer_id'],
    'orders': ['order_id', 'customer_id'],
    'order_items': ['order_id', 'product_id'],
    'products': ['product_id'],
    'financial_transactions': ['transaction_id', 'customer_id'],
    'accounts': ['account_id', 'customer_id'],
    'page_events': ['session_id'],
    'patient_records': ['patient_id'],
}

METADATA_COLUMNS = {'row_id', 'source_file', 'record_hash', 'ingested_at'}


def normalize_column_name(name: str) -> str:
    """'Admission Date' -> 'admission_date'"""
    return re.sub(r'[^0-9a-z]+', '_', str(name).strip().lower()).strip('_')


class DataIngestionEngine:
    """
    Main data ingestion engine for processing source CSV files.
    """

    def __init__(self, database_url: str = DATABASE_URL, data_directory: str = "data"):
        """
        Initialize the data ingestion engine.

        Args:
            database_url: SQLAlchemy database URL
            data_directory: Directory containing CSV files to process
        """
        self.database_url = database_url
        self.data_directory = data_directory
        self.engine = create_engine(database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)

        # Column name mapping to handle inconsistencies between extracts
        self.field_mappings = {
            'customers': {
                'customer_name': ['customer_name', 'name', 'full_name'],
                'signup_date': ['signup_date', 'signup', 'registration_date'],
                'acquisition_channel': ['acquisition_channel', 'channel'],
                'income_bracket': ['income_bracket', 'income'],
            },
            'orders': {
                'order_timestamp': ['order_timestamp', 'order_date', 'timestamp', 'order_time'],
                'total_amount': ['total_amount', 'amount', 'order_total', 'total'],
            },
            'order_items': {
                'quantity': ['quantity', 'qty'],
            },
            'products': {
                'product_name': ['product_name', 'name'],
                'category': ['category', 'product_category'],
            },
            'financial_transactions': {
                'transaction_date': ['transaction_date', 'timestamp', 'date', 'transaction_time'],
                'transaction_type': ['transaction_type', 'type'],
                'transaction_status': ['transaction_status', 'status'],
                'merchant_category': ['merchant_category', 'category', 'merchant'],
                'device_type': ['device_type', 'device'],
                'location_city': ['location_city', 'city', 'location'],
                'location_country': ['location_country', 'country'],
                'is_fraudulent': ['is_fraudulent', 'fraud_flag', 'is_fraud', 'fraud'],
            },
            'accounts': {
                'account_type': ['account_type', 'type'],
                'balance': ['balance', 'current_balance'],
            },
            'page_events': {
                'page_url': ['page_url', 'url', 'page'],
                'event_type': ['event_type', 'event', 'type'],
                'event_timestamp': ['event_timestamp', 'timestamp', 'event_time'],
            },
            'patient_records': {
                'date_of_birth': ['date_of_birth', 'dob', 'birth_date'],
                'admission_date': ['admission_date', 'admitted', 'admission'],
                'patient_address': ['patient_address', 'address'],
                'phone_number': ['phone_number', 'phone', 'contact_number'],
            },
        }

        self._create_tables()

    def _create_tables(self):
        """Create database tables if they don't exist."""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database tables created/verified successfully")
        except SQLAlchemyError as e:
            logger.error(f"Error creating database tables: {e}")
            raise

    def detect_table(self, file_path: str) -> str:
        """
        Work out the destination table from a file name.

        ``orders.csv`` and ``orders_2024_q1.csv`` both load into ``orders``.

        Raises:
            ValueError: If no source table matches
        """
        stem = normalize_column_name(os.path.splitext(os.path.basename(file_path))[0])
        for table_name in sorted(TABLE_MODELS, key=len, reverse=True):
            if stem == table_name or stem.startswith(table_name + '_'):
                return table_name
        raise ValueError(f"Cannot map {os.path.basename(file_path)} to a source table")

    def _normalize_field_names(self, df: pd.DataFrame, table_name: str) -> pd.DataFrame:
        """
        Rename columns to the canonical schema and drop unknown ones.

        Args:
            df: Raw rows from a CSV file
            table_name: Destination table

        Returns:
            DataFrame with canonical column names only
        """
        df = df.rename(columns=normalize_column_name)
        model_columns = [
            column.name for column in TABLE_MODELS[table_name].__table__.columns
            if column.name not in METADATA_COLUMNS
        ]

        normalized = pd.DataFrame(index=df.index)
        mappings = self.field_mappings.get(table_name, {})
        for standard_field in model_columns:
            for field_name in mappings.get(standard_field, [standard_field]):
                if field_name in df.columns:
                    normalized[standard_field] = df[field_name]
                    break

        missing_fields = [field for field in REQUIRED_COLUMNS[table_name] if field not in normalized.columns]
        if missing_fields:
            raise ValueError(f"Missing required columns for {table_name}: {missing_fields}")

        return normalized

    def _coerce_types(self, df: pd.DataFrame, table_name: str) -> pd.DataFrame:
        """Convert text columns to the model's column types; bad values become null."""
        table = TABLE_MODELS[table_name].__table__
        for column_name in df.columns:
            column_type = table.columns[column_name].type
            values = df[column_name]

            if isinstance(column_type, DateTime):
                # each value is parsed on its own; extracts mix formats
                parsed = pd.to_datetime(values, format='mixed', errors='coerce')
                unparsed = int((parsed.isna() & values.notna()).sum())
                if unparsed:
                    logger.warning(f"{unparsed} {table_name}.{column_name} values could not be parsed as dates")
                df[column_name] = parsed
            elif isinstance(column_type, Float):
                df[column_name] = pd.to_numeric(values, errors='coerce')
            elif isinstance(column_type, Integer):
                if column_name == 'is_fraudulent':
                    values = values.str.strip().str.lower().replace({'true': '1', 'false': '0', 'yes': '1', 'no': '0'})
                df[column_name] = pd.to_numeric(values, errors='coerce').round().astype('Int64')
            else:
                df[column_name] = values.str.strip()

        return df

    def _generate_record_hash(self, record: Dict[str, Any], table_name: str, source_file: str, row_number: int) -> str:
        """
        Generate a hash for a record to detect re-ingestion.

        The file name and row number are part of the hash so identical rows
        within one file are all kept.

        Args:
            record: Normalized record
            table_name: Destination table
            source_file: File the record came from
            row_number: Position of the record in the file

        Returns:
            MD5 hash of the record
        """
        hash_fields = [table_name, source_file, str(row_number)] + [str(record[key]) for key in sorted(record)]
        hash_string = '|'.join(hash_fields)
        return hashlib.md5(hash_string.encode('utf-8')).hexdigest()

    def _process_csv_file(self, file_path: str, session: Session) -> Tuple[str, int, int]:
        """
        Process a single CSV file and insert records into database.

        Args:
            file_path: Path to the CSV file
            session: SQLAlchemy session

        Returns:
            Tuple of (table_name, records_processed, duplicates_skipped)
        """
        logger.info(f"Processing file: {file_path}")
        table_name = self.detect_table(file_path)
        model = TABLE_MODELS[table_name]

        raw = pd.read_csv(file_path, dtype=str, skipinitialspace=True)
        df = self._coerce_types(self._normalize_field_names(raw, table_name), table_name)

        # Rows missing a key column cannot be joined by any report
        required = REQUIRED_COLUMNS[table_name]
        invalid_rows = df[required].isna().any(axis=1)
        if invalid_rows.any():
            logger.warning(f"Dropping {int(invalid_rows.sum())} rows without {required} from {file_path}")
            df = df[~invalid_rows]

        source_file = os.path.basename(file_path)
        records = df.astype(object).where(df.notna(), None).to_dict('records')
        for row_number, record in zip(df.index, records):
            record['record_hash'] = self._generate_record_hash(record, table_name, source_file, row_number)
            record['source_file'] = source_file

        hashes = [record['record_hash'] for record in records]
        existing = set()
        for start in range(0, len(hashes), 500):
            batch = hashes[start:start + 500]
            existing.update(
                row[0] for row in session.query(model.record_hash).filter(model.record_hash.in_(batch))
            )
        new_records = [record for record in records if record['record_hash'] not in existing]

        if new_records:
            session.execute(insert(model), new_records)
        session.commit()

        duplicates_skipped = len(records) - len(new_records)
        if duplicates_skipped:
            logger.warning(f"Skipped {duplicates_skipped} already loaded records from {file_path}")

        return table_name, len(new_records), duplicates_skipped

    def _log_file_processing(self, session: Session, file_path: str, records_processed: int,
                             status: str, table_name: Optional[str] = None,
                             duplicates_skipped: int = 0, error_message: str = None):
        """
        Log file processing status to the database.

        Args:
            session: SQLAlchemy session
            file_path: Path to the processed file
            records_processed: Number of records processed
            status: Processing status (completed, failed)
            table_name: Destination table, when it could be determined
            duplicates_skipped: Records already present
            error_message: Error message if processing failed
        """
        file_stat = os.stat(file_path)

        existing_log = session.query(FileProcessingLog).filter_by(file_path=file_path).first()

        if existing_log:
            existing_log.table_name = table_name
            existing_log.records_processed = records_processed
            existing_log.duplicates_skipped = duplicates_skipped
            existing_log.processing_status = status
            existing_log.error_message = error_message
            existing_log.processed_at = datetime.utcnow()
        else:
            file_log = FileProcessingLog(
                file_path=file_path,
                file_name=os.path.basename(file_path),
                table_name=table_name,
                file_size=file_stat.st_size,
                file_modified_time=datetime.fromtimestamp(file_stat.st_mtime),
                records_processed=records_processed,
                duplicates_skipped=duplicates_skipped,
                processing_status=status,
                error_message=error_message
            )
            session.add(file_log)

        session.commit()

    def get_files_to_process(self) -> List[str]:
        """
        Get list of CSV files that need to be processed.

        Returns:
            List of file paths to process
        """
        csv_files = sorted(glob.glob(os.path.join(self.data_directory, "*.csv")))

        with self.SessionLocal() as session:
            processed_files = session.query(FileProcessingLog.file_path).filter_by(
                processing_status='completed'
            ).all()
            processed_file_paths = {row[0] for row in processed_files}

        # Return files that haven't been successfully processed
        files_to_process = [f for f in csv_files if f not in processed_file_paths]

        logger.info(f"Found {len(csv_files)} total CSV files, {len(files_to_process)} to process")
        return files_to_process

    def process_all_files(self, force_reprocess: bool = False) -> Dict[str, Any]:
        """
        Process all CSV files in the data directory.

        Args:
            force_reprocess: If True, reprocess all files regardless of previous processing

        Returns:
            Dictionary with processing statistics
        """
        start_time = datetime.utcnow()

        if force_reprocess:
            csv_files = sorted(glob.glob(os.path.join(self.data_directory, "*.csv")))
        else:
            csv_files = self.get_files_to_process()

        if not csv_files:
            logger.info("No files to process")
            return {
                'files_processed': 0,
                'files_failed': 0,
                'total_records': 0,
                'duplicates_skipped': 0,
                'processing_time': 0,
                'status': 'no_files'
            }

        total_records = 0
        total_duplicates = 0
        files_processed = 0
        processing_errors = []
        records_by_table = {}

        with self.SessionLocal() as session:
            for file_path in csv_files:
                try:
                    table_name, records_processed, duplicates_skipped = self._process_csv_file(file_path, session)

                    self._log_file_processing(
                        session, file_path, records_processed, 'completed',
                        table_name=table_name, duplicates_skipped=duplicates_skipped
                    )

                    total_records += records_processed
                    total_duplicates += duplicates_skipped
                    files_processed += 1
                    records_by_table[table_name] = records_by_table.get(table_name, 0) + records_processed

                    logger.info(f"Successfully processed {file_path}: {records_processed} records into {table_name}")

                except (ValueError, SQLAlchemyError, pd.errors.ParserError, UnicodeDecodeError) as e:
                    session.rollback()
                    error_msg = f"Failed to process {file_path}: {e}"
                    processing_errors.append(error_msg)
                    logger.error(error_msg)

                    self._log_file_processing(
                        session, file_path, 0, 'failed', error_message=error_msg
                    )

        processing_time = (datetime.utcnow() - start_time).total_seconds()

        # Log summary
        logger.info(f"Processing completed:")
        logger.info(f"  Files processed: {files_processed}")
        logger.info(f"  Files failed: {len(processing_errors)}")
        logger.info(f"  Total records: {total_records}")
        logger.info(f"  Duplicates skipped: {total_duplicates}")
        logger.info(f"  Processing time: {processing_time:.2f} seconds")

        return {
            'files_processed': files_processed,
            'files_failed': len(processing_errors),
            'total_records': total_records,
            'duplicates_skipped': total_duplicates,
            'records_by_table': records_by_table,
            'processing_errors': processing_errors,
            'processing_time': processing_time,
            'status': 'completed'
        }

    def get_database_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the database content.

        Returns:
            Dictionary with row counts per source table and file log counts
        """
        with self.SessionLocal() as session:
            table_counts = {
                table_name: session.query(model).count()
                for table_name, model in TABLE_MODELS.items()
            }
            completed_files = session.query(FileProcessingLog).filter_by(processing_status='completed').count()
            failed_files = session.query(FileProcessingLog).filter_by(processing_status='failed').count()

        return {
            'table_counts': table_counts,
            'total_records': sum(table_counts.values()),
            'files_completed': completed_files,
            'files_failed': failed_files
        }

    def export_to_dataframe(self, table_name: str, limit: int = None) -> pd.DataFrame:
        """
        Export a source table to a pandas DataFrame.

        Args:
            table_name: Source table to export
            limit: Maximum number of records to export

        Returns:
            Pandas DataFrame with the table's canonical columns
        """
        if table_name not in TABLE_MODELS:
            raise ValueError(f"Unknown table: {table_name}. Available tables: {', '.join(TABLE_MODELS)}")

        model = TABLE_MODELS[table_name]
        columns = [column for column in model.__table__.columns if column.name not in METADATA_COLUMNS]

        with self.SessionLocal() as session:
            query = session.query(*columns).order_by(model.row_id)

            if limit:
                query = query.limit(limit)

            rows = query.all()

        return pd.DataFrame(rows, columns=[column.name for column in columns])

    def list_loaded_tables(self) -> List[str]:
        """Source tables that currently exist in the database"""
        existing = set(inspect(self.engine).get_table_names())
        return [table_name for table_name in TABLE_MODELS if table_name in existing]


def main():
    """Main function for command-line usage."""
    import argparse

    parser = argparse.ArgumentParser(description='Data Ingestion System for Customer Analytics Source Data')
    parser.add_argument('--data-dir', default='data', help='Directory containing CSV files')
    parser.add_argument('--database-url', default=DATABASE_URL, help='Database URL')
    parser.add_argument('--force-reprocess', action='store_true', help='Reprocess all files')
    parser.add_argument('--stats', action='store_true', help='Show database statistics')
    parser.add_argument('--export-table', help='Source table to export to CSV')
    parser.add_argument('--export-csv', help='Export file path for --export-table')

    args = parser.parse_args()

    # Initialize engine
    engine = DataIngestionEngine(
        database_url=args.database_url,
        data_directory=args.data_dir
    )

    if args.stats:
        stats = engine.get_database_stats()
        print("\nDatabase Statistics:")
        print("=" * 50)
        for key, value in stats.items():
            print(f"{key}: {value}")
        return

    if args.export_table:
        df = engine.export_to_dataframe(args.export_table)
        output_path = args.export_csv or f"{args.export_table}.csv"
        df.to_csv(output_path, index=False)
        print(f"Data exported to {output_path}")
        return

    # Process files
    results = engine.process_all_files(force_reprocess=args.force_reprocess)

    print("\nProcessing Results:")
    print("=" * 50)
    for key, value in results.items():
        if key != 'processing_errors':
            print(f"{key}: {value}")

    if results.get('processing_errors', []):
        print(f"\nErrors ({len(results['processing_errors'])}):")
        for error in results['processing_errors'][:10]:  # Show first 10 errors
            print(f"  - {error}")


if __name__ == "__main__":
    main()
