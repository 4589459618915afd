"""
Configuration management for the customer analytics reports

Author: Adryan R A
"""

from datetime import date
from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ANALYTICS_",
        case_sensitive=False,
    )

    # API Configuration
    debug_mode: bool = False
    log_level: str = "INFO"
    allowed_origins: List[str] = ["*"]  # Configure for production

    # Database Configuration
    raw_database_url: str = "sqlite:///file.db"
    analytics_database_url: str = "sqlite:///analytics.db"
    log_database_path: str = "report_logs.db"

    # Reference dates ("today" for each dataset)
    journey_reference_date: date = date(2024, 4, 30)
    financial_reference_date: date = date(2024, 2, 1)
    financial_kpi_start_date: date = date(2024, 1, 1)
    kpi_window_days: int = 30

    # Patient record cleaning
    phone_sentinel: str = "Not Provided"
    male_codes: List[str] = ["m", "male"]
    female_codes: List[str] = ["f", "female"]

    # Funnel / path analysis
    home_url: str = "/home"
    product_url_prefix: str = "/product/"
    cart_url: str = "/cart"
    checkout_url: str = "/checkout"
    confirmation_url: str = "/order/confirmation"
    add_to_cart_event: str = "add_to_cart"
    purchase_event: str = "purchase"
    path_separator: str = " → "

    # Cohort retention
    cohort_month_offsets: int = 3  # month_0 .. month_2

    # RFM segmentation / CLV
    rfm_buckets: int = 5
    rfm_missing_recency_days: int = 999
    rfm_champion_min_score: int = 4
    rfm_loyal_min_score: int = 3
    rfm_new_min_recency: int = 4
    rfm_at_risk_min_frequency: int = 3
    rfm_financial_at_risk_min_frequency: int = 4
    rfm_lost_max_score: int = 2
    clv_lifespan_years: float = 1.0
    value_segment_buckets: int = 4

    # Anomaly detection
    anomaly_min_transactions: int = 3
    anomaly_high_z: float = 3.0
    anomaly_medium_z: float = 2.0

    # Churn risk
    churn_low_risk_days: int = 30
    churn_medium_risk_days: int = 60
    churn_high_risk_days: int = 90
    repeat_buyer_max_orders: int = 5

    # Market-basket affinity
    affinity_high_pct: float = 20.0
    affinity_medium_pct: float = 10.0
    affinity_top_n: int = 15

    # Engagement tiers
    engagement_order_weight: float = 0.4
    engagement_spend_weight: float = 0.3
    engagement_session_weight: float = 0.3
    engagement_spend_unit: float = 100.0
    engagement_tiers: List[float] = [8.0, 6.0, 4.0, 2.0]  # Platinum, Gold, Silver, Bronze
    acquisition_cost_ratio: float = 0.15

    # Financial reports
    completed_status: str = "completed"
    purchase_type: str = "purchase"
    checking_account_type: str = "checking"
    mobile_device: str = "mobile"
    high_value_amount: float = 1000.0
    medium_value_amount: float = 100.0
    moving_average_months: int = 3
    min_sequence_occurrences: int = 2

    # Logging Configuration
    log_retention_days: int = 30
    max_log_entries: int = 10000


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings"""
    return Settings()


# Report catalogue, keyed by report name
REPORT_DESCRIPTIONS = {
    "funnel": "Session funnel with stage-to-stage conversion",
    "paths": "Most common session journeys",
    "cohort_retention": "Signup-month cohort retention",
    "cohort_activity": "Active customers and revenue per cohort month",
    "rfm_segments": "RFM segments with predicted 1-year CLV",
    "churn_risk": "Churn risk by customer type",
    "product_affinity": "Market-basket product pairs",
    "engagement_tiers": "Engagement score tiers",
    "journey_kpis": "Order and clickstream KPI dashboard",
    "customer_value": "Annual CLV by customer value segment",
    "transaction_rfm": "RFM segments over financial transactions",
    "anomalies": "Z-score anomaly levels with fraud capture rate",
    "monthly_trends": "Monthly transaction trends",
    "merchant_categories": "Merchant category performance",
    "geography": "Regional performance",
    "devices": "Device channel performance",
    "transaction_sequences": "Recurring transaction type sequences",
    "fraud_breakdown": "Fraud rate by time, channel and location",
    "income_brackets": "Spending and fraud by income bracket",
    "executive_summary": "Financial executive summary",
    "financial_kpis": "Transaction KPI dashboard across all statuses",
    "customer_analytics": "Customer analytics report view",
    "fraud_monitoring": "Fraud monitoring report view",
}

# Persisted report views
REPORT_VIEWS = ["customer_analytics", "fraud_monitoring"]

# API response status codes
API_STATUS = {
    "SUCCESS": "success",
    "ERROR": "error",
    "WARNING": "warning",
    "SKIPPED": "skipped"
}
