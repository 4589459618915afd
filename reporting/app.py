"""
Customer Analytics Reporting API

FastAPI application that serves the customer journey and financial analytics
reports as JSON rows for downstream reporting tools.

Author: Adryan R A
"""

import logging
from datetime import datetime, date
from typing import Optional, Dict, List, Any
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException, Depends, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from reporting.services.report_service import ReportService, to_records
from reporting.utils.config import REPORT_DESCRIPTIONS, API_STATUS, get_settings
from reporting.utils.validation import sanitize_log_parameters

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Load configuration
settings = get_settings()

API_VERSION = "1.0.0"

_report_service: Optional[ReportService] = None


def get_report_service() -> ReportService:
    """Shared report service, created on first use"""
    global _report_service
    if _report_service is None:
        _report_service = ReportService()
    return _report_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting Customer Analytics Reporting API")
    service = get_report_service()
    await service.data_service.initialize()
    logger.info("API initialization complete")

    yield

    logger.info("Shutting down Customer Analytics Reporting API")
    await service.data_service.cleanup()


# Create FastAPI app
app = FastAPI(
    title="Customer Analytics Reporting API",
    description="Funnel, cohort, RFM, churn, affinity and fraud-anomaly reports",
    version=API_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Pydantic models for responses
class ReportInfo(BaseModel):
    name: str
    description: str
    required_tables: List[str]
    is_view: bool


class CatalogueResponse(BaseModel):
    status: str
    total_reports: int
    reports: List[ReportInfo]


class ReportResponse(BaseModel):
    status: str
    report: str
    description: str
    reference_date: Optional[date]
    row_count: int
    rows: List[Dict[str, Any]]
    generated_at: datetime


class RefreshResponse(BaseModel):
    status: str
    views: Dict[str, int]
    refreshed_at: datetime


class LogsResponse(BaseModel):
    status: str
    total_records: int
    has_more: bool
    logs: List[Dict[str, Any]]


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    database_status: str
    reports_available: int


# API Endpoints

@app.get("/", response_model=Dict[str, str])
async def root():
    """Root endpoint with API information"""
    return {
        "service": "Customer Analytics Reporting API",
        "version": API_VERSION,
        "status": "healthy",
        "documentation": "/docs"
    }


@app.get("/health", response_model=HealthResponse)
async def health_check(service: ReportService = Depends(get_report_service)):
    """Health check endpoint"""
    try:
        db_status = await service.data_service.check_connection()

        return HealthResponse(
            status="healthy" if db_status == "healthy" else "degraded",
            timestamp=datetime.now(),
            version=API_VERSION,
            database_status=db_status,
            reports_available=len(service.list_reports())
        )
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail="Service unavailable")


@app.get("/reports", response_model=CatalogueResponse)
async def list_reports(service: ReportService = Depends(get_report_service)):
    """List every available report"""
    reports = service.list_reports()
    return CatalogueResponse(
        status=API_STATUS["SUCCESS"],
        total_reports=len(reports),
        reports=reports
    )


@app.get("/reports/{report_name}", response_model=ReportResponse)
async def get_report(
    report_name: str,
    limit: Optional[int] = Query(None, ge=1, le=10000, description="Maximum number of rows"),
    reference_date: Optional[date] = Query(None, description="Overrides the dataset reference date"),
    service: ReportService = Depends(get_report_service)
):
    """Run a report and return its rows"""
    try:
        rows = await service.run_report(report_name, reference_date=reference_date, limit=limit)
        name = service.get_report(report_name).name

        return ReportResponse(
            status=API_STATUS["SUCCESS"],
            report=name,
            description=REPORT_DESCRIPTIONS.get(name, ""),
            reference_date=reference_date,
            row_count=len(rows),
            rows=to_records(rows),
            generated_at=datetime.now()
        )

    except ValueError:
        raise
    except Exception as e:
        logger.error(f"Report {report_name} failed: {e}")
        raise HTTPException(status_code=500, detail=f"Report failed: {str(e)}")


@app.post("/reports/views/refresh", response_model=RefreshResponse)
async def refresh_views(service: ReportService = Depends(get_report_service)):
    """Rebuild the persisted report views"""
    try:
        views = await service.refresh_views()
        return RefreshResponse(
            status=API_STATUS["SUCCESS"],
            views=views,
            refreshed_at=datetime.now()
        )

    except ValueError:
        raise
    except Exception as e:
        logger.error(f"View refresh failed: {e}")
        raise HTTPException(status_code=500, detail=f"View refresh failed: {str(e)}")


@app.get("/logs", response_model=LogsResponse)
async def get_logs(
    report_name: Optional[str] = Query(None, description="Filter by report"),
    status: Optional[str] = Query(None, description="Filter by run status"),
    start_date: Optional[date] = Query(None, description="Start date for log filtering"),
    end_date: Optional[date] = Query(None, description="End date for log filtering"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of records"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    service: ReportService = Depends(get_report_service)
):
    """Retrieve report run logs"""
    report_name, status, limit, offset = sanitize_log_parameters(report_name, status, limit, offset)

    try:
        result = await service.log_service.get_logs(
            report_name=report_name,
            status=status,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset
        )

        return LogsResponse(
            status=API_STATUS["SUCCESS"],
            total_records=result['total_count'],
            has_more=result['has_more'],
            logs=result['logs']
        )

    except Exception as e:
        logger.error(f"Failed to retrieve logs: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to retrieve logs: {str(e)}")


# Error handlers
@app.exception_handler(ValueError)
async def value_error_handler(request, exc):
    logger.error(f"ValueError: {exc}")
    return JSONResponse(
        status_code=400,
        content={"status": API_STATUS["ERROR"], "detail": str(exc)}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"status": API_STATUS["ERROR"], "detail": "Internal server error"}
    )


if __name__ == "__main__":
    uvicorn.run(
        "reporting.app:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug_mode,
        log_level="info"
    )
