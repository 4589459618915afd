#!/usr/bin/env python3
"""
Customer Analytics - Patient Record Cleaning Pipeline
=====================================================

Reads raw patient records from the raw database, standardises them and
writes the cleaned table plus a data quality report row to the analytics
database.

Author: Adryan R A

Cleaning steps:
- Free-text admission dates parsed to dates (unparseable values become null)
- Gender codes mapped to Male / Female / Unknown
- Addresses split into street, city and state
- Missing phone numbers replaced by a sentinel
- Duplicate patients reduced to their latest admission
"""

import logging
import pandas as pd
from datetime import datetime
from typing import Dict, Any, Tuple, Optional

from sqlalchemy import create_engine, Column, Integer, String, Float, DateTime, Date, Index, func, inspect
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.exc import SQLAlchemyError

from reporting.services.data_service import INGESTION_COLUMNS
from reporting.utils.config import Settings, get_settings
from reporting.utils.validation import require_columns

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('data_cleaning.log'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# Database configuration
RAW_DATABASE_URL = get_settings().raw_database_url
ANALYTICS_DATABASE_URL = get_settings().analytics_database_url

SOURCE_TABLE = 'patient_records'
CLEAN_TABLE = 'patient_records_clean'
DEDUP_KEYS = ['patient_id', 'first_name', 'last_name', 'date_of_birth']

Base = declarative_base()


class DataQualityReport(Base):
    """
    Analytics database - quality assessment of one cleaning run.
    """
    __tablename__ = 'data_quality_reports'

    id = Column(Integer, primary_key=True)
    report_date = Column(Date, nullable=False, index=True)
    table_name = Column(String(100), nullable=False)

    total_records = Column(Integer, nullable=False, default=0)
    valid_records = Column(Integer, nullable=False, default=0)
    invalid_dates = Column(Integer, nullable=False, default=0)
    unknown_genders = Column(Integer, nullable=False, default=0)
    missing_phones = Column(Integer, nullable=False, default=0)
    duplicates_removed = Column(Integer, nullable=False, default=0)

    # Share of kept rows with both a parsed admission date and a known gender
    overall_quality_score = Column(Float, nullable=False, default=1.0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_report_date_table', 'report_date', 'table_name'),
    )


class PatientRecordCleaner:
    """
    Stateless cleaning rules for raw patient rows.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def parse_admission_dates(self, values: pd.Series) -> pd.Series:
        """Parse free-text dates one by one; anything unparseable becomes NaT."""
        text = values.astype('string').str.strip()
        parsed = pd.to_datetime(text, format='mixed', errors='coerce')
        return parsed.dt.normalize()

    def normalize_gender(self, values: pd.Series) -> pd.Series:
        codes = values.astype('string').str.strip().str.lower()
        gender = pd.Series('Unknown', index=values.index, dtype=object)
        gender[codes.isin(self.settings.male_codes).fillna(False).astype(bool)] = 'Male'
        gender[codes.isin(self.settings.female_codes).fillna(False).astype(bool)] = 'Female'
        return gender

    def split_address(self, addresses: pd.Series) -> pd.DataFrame:
        """
        Split 'street, city, ..., state' addresses.

        Street is the first part, city the second and state the last. With a
        single comma city and state are the same part; without commas all
        three hold the whole address.

        Args:
            addresses: Raw comma-delimited addresses

        Returns:
            DataFrame with street, city and state columns
        """
        parts = addresses.astype('string').str.split(',')
        street = parts.str[0]
        city = parts.str[1].fillna(street)
        state = parts.str[-1]

        return pd.DataFrame({
            'street': street.str.strip(),
            'city': city.str.strip(),
            'state': state.str.strip(),
        }, index=addresses.index)

    def fill_phone_numbers(self, values: pd.Series) -> pd.Series:
        text = values.astype('string').str.strip()
        missing = text.isna() | (text == '')
        return text.mask(missing, self.settings.phone_sentinel).astype(object)

    def deduplicate(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Keep one row per patient key, the one with the latest admission date.

        Rows without an admission date rank last; ties keep the first row in
        input order. Surviving rows stay in input order.
        """
        ranked = df.sort_values('admission_date', ascending=False, na_position='last', kind='mergesort')
        kept = ranked.drop_duplicates(subset=DEDUP_KEYS, keep='first')
        return kept.sort_index()

    def clean(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, Dict[str, int]]:
        """
        Clean raw patient rows and count quality issues.

        Args:
            df: Raw patient records

        Returns:
            Tuple of (cleaned_df, quality_metrics)
        """
        require_columns(df, DEDUP_KEYS + ['gender', 'admission_date', 'patient_address', 'phone_number'], SOURCE_TABLE)
        logger.info(f"Starting data cleaning for {len(df)} records")

        cleaned_df = df.copy()
        cleaned_df['admission_date'] = self.parse_admission_dates(df['admission_date'])
        cleaned_df['gender'] = self.normalize_gender(df['gender'])
        cleaned_df = cleaned_df.join(self.split_address(df['patient_address']))
        cleaned_df['phone_number'] = self.fill_phone_numbers(df['phone_number'])

        quality_metrics = {
            'total_records': len(df),
            'invalid_dates': int(cleaned_df['admission_date'].isna().sum()),
            'unknown_genders': int((cleaned_df['gender'] == 'Unknown').sum()),
            'missing_phones': int((cleaned_df['phone_number'] == self.settings.phone_sentinel).sum()),
        }

        deduplicated = self.deduplicate(cleaned_df).reset_index(drop=True)
        quality_metrics['duplicates_removed'] = len(cleaned_df) - len(deduplicated)
        quality_metrics['valid_records'] = len(deduplicated)

        if quality_metrics['invalid_dates']:
            logger.warning(f"{quality_metrics['invalid_dates']} admission dates could not be parsed")

        logger.info(f"Data cleaning completed. Valid records: {quality_metrics['valid_records']}")
        return deduplicated, quality_metrics


class DataCleaningPipeline:
    """
    Raw database -> cleaning rules -> analytics database.
    """

    def __init__(self,
                 raw_database_url: str = RAW_DATABASE_URL,
                 analytics_database_url: str = ANALYTICS_DATABASE_URL,
                 settings: Optional[Settings] = None):
        """
        Initialize the data cleaning pipeline.

        Args:
            raw_database_url: Database holding the ingested patient_records table
            analytics_database_url: Database receiving the cleaned table and quality report
            settings: Cleaning settings, defaults to the cached settings
        """
        self.raw_database_url = raw_database_url
        self.analytics_database_url = analytics_database_url
        self.cleaner = PatientRecordCleaner(settings)

        self.raw_engine = create_engine(raw_database_url, echo=False)
        self.analytics_engine = create_engine(analytics_database_url, echo=False)
        self.AnalyticsSession = sessionmaker(bind=self.analytics_engine)

        self._create_analytics_tables()

    def _create_analytics_tables(self):
        """Create analytics database tables if they don't exist."""
        try:
            Base.metadata.create_all(bind=self.analytics_engine)
            logger.info("Analytics database tables created/verified successfully")
        except SQLAlchemyError as e:
            logger.error(f"Error creating analytics database tables: {e}")
            raise

    def load_raw_records(self) -> pd.DataFrame:
        """Read the raw patient table without ingestion bookkeeping columns."""
        if SOURCE_TABLE not in inspect(self.raw_engine).get_table_names():
            raise ValueError(f"Table '{SOURCE_TABLE}' not found in {self.raw_database_url}")

        df = pd.read_sql_table(SOURCE_TABLE, self.raw_engine)
        df = df.drop(columns=INGESTION_COLUMNS, errors='ignore')
        logger.info(f"Loaded {len(df)} records from raw database")
        return df

    def _quality_report(self, cleaned_df: pd.DataFrame, quality_metrics: Dict[str, int]) -> DataQualityReport:
        if len(cleaned_df) > 0:
            usable = cleaned_df['admission_date'].notna() & (cleaned_df['gender'] != 'Unknown')
            quality_score = float(usable.mean())
        else:
            quality_score = 0.0

        return DataQualityReport(
            report_date=datetime.now().date(),
            table_name=SOURCE_TABLE,
            total_records=quality_metrics['total_records'],
            valid_records=quality_metrics['valid_records'],
            invalid_dates=quality_metrics['invalid_dates'],
            unknown_genders=quality_metrics['unknown_genders'],
            missing_phones=quality_metrics['missing_phones'],
            duplicates_removed=quality_metrics['duplicates_removed'],
            overall_quality_score=quality_score
        )

    def _save_to_analytics_database(self, cleaned_df: pd.DataFrame, quality_report: DataQualityReport):
        """
        Replace the cleaned table and append the quality report row.

        Args:
            cleaned_df: Cleaned patient records
            quality_report: Quality report for this run
        """
        logger.info("Saving cleaned records to analytics database")

        with self.AnalyticsSession() as session:
            try:
                cleaned_df.to_sql(CLEAN_TABLE, session.connection(), if_exists='replace', index=False)
                logger.info(f"Saved {len(cleaned_df)} cleaned patient records")

                session.add(quality_report)
                session.commit()
                logger.info("Quality report saved to analytics database")

            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Error saving to analytics database: {e}")
                raise

    def process_patient_records(self) -> Dict[str, Any]:
        """
        Run the full cleaning pipeline.

        Returns:
            Dictionary with processing results
        """
        start_time = datetime.utcnow()
        logger.info("Starting patient record cleaning pipeline")

        try:
            raw_df = self.load_raw_records()

            if raw_df.empty:
                logger.warning("No patient records found in raw database")
                return {
                    'status': 'no_data',
                    'records_processed': 0,
                    'processing_time': 0,
                    'quality_score': 0.0
                }

            cleaned_df, quality_metrics = self.cleaner.clean(raw_df)
            quality_report = self._quality_report(cleaned_df, quality_metrics)
            quality_score = quality_report.overall_quality_score

            self._save_to_analytics_database(cleaned_df, quality_report)

            processing_time = (datetime.utcnow() - start_time).total_seconds()

            results = {
                'status': 'completed',
                'records_processed': quality_metrics['valid_records'],
                'total_input_records': quality_metrics['total_records'],
                'processing_time': processing_time,
                'quality_score': quality_score,
                'data_quality_issues': {
                    'invalid_dates': quality_metrics['invalid_dates'],
                    'unknown_genders': quality_metrics['unknown_genders'],
                    'missing_phones': quality_metrics['missing_phones'],
                    'duplicates_removed': quality_metrics['duplicates_removed']
                }
            }

            logger.info(f"Data cleaning pipeline completed successfully in {processing_time:.2f} seconds")
            logger.info(f"Kept {results['records_processed']} records with {quality_score:.3f} quality score")

            return results

        except Exception as e:
            logger.error(f"Error in data cleaning pipeline: {e}")
            raise

    def get_analytics_database_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the cleaned data.

        Returns:
            Dictionary with cleaned table and quality report statistics
        """
        stats = {}

        if CLEAN_TABLE in inspect(self.analytics_engine).get_table_names():
            cleaned_df = pd.read_sql_table(CLEAN_TABLE, self.analytics_engine)
            stats['patient_records_clean'] = {
                'record_count': len(cleaned_df),
                'gender_counts': cleaned_df['gender'].value_counts().to_dict()
            }

        with self.AnalyticsSession() as session:
            quality_count = session.query(DataQualityReport).count()
            if quality_count > 0:
                avg_quality = session.query(func.avg(DataQualityReport.overall_quality_score)).scalar()
                last_run = session.query(func.max(DataQualityReport.created_at)).scalar()
                stats['quality_reports'] = {
                    'record_count': quality_count,
                    'average_quality_score': float(avg_quality) if avg_quality else 0.0,
                    'last_run': last_run
                }

        return stats


def main():
    """Main function for command-line usage."""
    import argparse

    parser = argparse.ArgumentParser(description='Patient Record Cleaning Pipeline')
    parser.add_argument('--raw-database', default=RAW_DATABASE_URL, help='Raw database URL')
    parser.add_argument('--analytics-database', default=ANALYTICS_DATABASE_URL, help='Analytics database URL')
    parser.add_argument('--stats', action='store_true', help='Show analytics database statistics')

    args = parser.parse_args()

    # Initialize pipeline
    pipeline = DataCleaningPipeline(
        raw_database_url=args.raw_database,
        analytics_database_url=args.analytics_database
    )

    if args.stats:
        stats = pipeline.get_analytics_database_stats()
        print("\nAnalytics Database Statistics:")
        print("=" * 50)
        for category, metrics in stats.items():
            print(f"\n{category.upper()}:")
            for key, value in metrics.items():
                print(f"  {key}: {value}")
        return

    # Run pipeline
    results = pipeline.process_patient_records()

    print("\nData Cleaning Pipeline Results:")
    print("=" * 50)
    for key, value in results.items():
        if key != 'data_quality_issues':
            print(f"{key}: {value}")

    if 'data_quality_issues' in results:
        print(f"\nData Quality Issues:")
        for issue, count in results['data_quality_issues'].items():
            print(f"  {issue}: {count}")


if __name__ == "__main__":
    main()
