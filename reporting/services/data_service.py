"""
Data service for reading source tables and persisting report tables

Author: Adryan R A
"""

import logging
import asyncio
from typing import Optional, Dict, List, Any, Iterable
import pandas as pd
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError

from reporting.utils.config import get_settings

logger = logging.getLogger(__name__)

# Bookkeeping columns written by ingestion, not part of the source schema
INGESTION_COLUMNS = ["row_id", "source_file", "record_hash", "ingested_at"]


def _create_engine(database_url: str):
    # Blocking work runs on executor threads, so SQLite connections must be shareable
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url)


class DataService:
    """
    Service for the raw source database and the analytics output database
    """

    def __init__(self,
                 raw_database_url: Optional[str] = None,
                 analytics_database_url: Optional[str] = None):
        settings = get_settings()
        self.raw_database_url = raw_database_url or settings.raw_database_url
        self.analytics_database_url = analytics_database_url or settings.analytics_database_url

        self.raw_engine = _create_engine(self.raw_database_url)
        self.analytics_engine = _create_engine(self.analytics_database_url)

    async def initialize(self):
        """Initialize data service"""
        logger.info("Initializing Data Service")

        status = await self.check_connection()
        if status != "healthy":
            logger.warning("Database connectivity issues detected")

        logger.info("Data Service initialized")

    async def cleanup(self):
        """Dispose of database connection pools"""
        self.raw_engine.dispose()
        self.analytics_engine.dispose()
        logger.info("Data Service cleanup completed")

    async def check_connection(self) -> str:
        """
        Check database connectivity

        Returns:
            "healthy" when both databases answer, "unhealthy" otherwise
        """
        def _sync_check():
            for engine in (self.raw_engine, self.analytics_engine):
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))

        try:
            await self._run_sync(_sync_check)
            return "healthy"
        except SQLAlchemyError as e:
            logger.error(f"Database connection check failed: {e}")
            return "unhealthy"

    async def list_tables(self) -> List[str]:
        """Names of the tables in the raw database"""
        return await self._run_sync(lambda: sorted(inspect(self.raw_engine).get_table_names()))

    async def load_tables(self, table_names: Iterable[str]) -> Dict[str, pd.DataFrame]:
        """
        Read whole source tables

        Args:
            table_names: Tables to read

        Returns:
            DataFrames keyed by table name

        Raises:
            ValueError: If a table does not exist
        """
        table_names = list(table_names)
        available = set(await self.list_tables())
        missing = [name for name in table_names if name not in available]
        if missing:
            raise ValueError(f"Source tables not found: {', '.join(missing)}")

        def _sync_load():
            with self.raw_engine.connect() as conn:
                return {
                    name: pd.read_sql_table(name, conn).drop(columns=INGESTION_COLUMNS, errors="ignore")
                    for name in table_names
                }

        try:
            tables = await self._run_sync(_sync_load)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load tables {table_names}: {e}")
            raise

        logger.info(f"Loaded {len(tables)} tables: " +
                    ", ".join(f"{name}={len(df)}" for name, df in tables.items()))
        return tables

    async def save_table(self, df: pd.DataFrame, table_name: str) -> int:
        """
        Replace a table in the analytics database

        Args:
            df: Rows to write
            table_name: Destination table

        Returns:
            Number of rows written
        """
        def _sync_save():
            with self.analytics_engine.begin() as conn:
                df.to_sql(table_name, conn, if_exists='replace', index=False)

        try:
            await self._run_sync(_sync_save)
        except SQLAlchemyError as e:
            logger.error(f"Failed to save table {table_name}: {e}")
            raise

        logger.info(f"Saved {len(df)} rows to {table_name}")
        return len(df)

    async def get_data_summary(self) -> Dict[str, Any]:
        """
        Row counts of every source table

        Returns:
            Table names with their row counts
        """
        table_names = await self.list_tables()

        def _sync_count():
            counts = {}
            with self.raw_engine.connect() as conn:
                for name in table_names:
                    quoted = self.raw_engine.dialect.identifier_preparer.quote(name)
                    counts[name] = conn.execute(text(f"SELECT COUNT(*) FROM {quoted}")).scalar()
            return counts

        counts = await self._run_sync(_sync_count)
        return {
            'database_url': self.raw_database_url,
            'tables': counts,
            'total_rows': sum(counts.values())
        }

    async def _run_sync(self, func):
        """Run blocking database work in the default thread pool"""
        return await asyncio.get_running_loop().run_in_executor(None, func)
