"""
Unit tests for API endpoints

Author: Adryan R A
"""

import pytest
from unittest.mock import AsyncMock, patch

from conftest import TestUtils
from reporting.services.report_service import ReportService


class TestRootEndpoint:
    """Test root endpoint"""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "Customer Analytics Reporting API"


class TestHealthEndpoint:
    """Test health check endpoint"""

    def test_health_check(self, client):
        """Test health check returns 200"""
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        TestUtils.assert_api_response_structure(
            data, ["status", "timestamp", "version", "database_status", "reports_available"]
        )
        assert data["status"] == "healthy"
        assert data["database_status"] == "healthy"
        assert data["reports_available"] == 23

    def test_health_check_degraded(self, client):
        """Test unreachable databases degrade the status"""
        with patch('reporting.services.data_service.DataService.check_connection',
                   new=AsyncMock(return_value="unhealthy")):
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"


class TestCatalogueEndpoint:
    """Test report catalogue endpoint"""

    def test_list_reports(self, client):
        response = client.get("/reports")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "success"
        assert data["total_reports"] == len(data["reports"])
        names = {report["name"] for report in data["reports"]}
        assert {"funnel", "cohort_retention", "rfm_segments", "churn_risk", "anomalies"} <= names


class TestReportEndpoint:
    """Test report endpoint"""

    def test_funnel_report(self, client):
        response = client.get("/reports/funnel")
        assert response.status_code == 200

        data = response.json()
        TestUtils.assert_api_response_structure(
            data, ["status", "report", "description", "reference_date", "row_count", "rows", "generated_at"]
        )
        assert data["report"] == "funnel"
        assert data["row_count"] == 6
        assert data["rows"][0] == {"funnel_step": "Home Page", "sessions": 6, "conversion_rate": 85.71}

    def test_report_name_is_normalized(self, client):
        response = client.get("/reports/Executive Summary")
        assert response.status_code == 200
        assert response.json()["report"] == "executive_summary"

    def test_reference_date_and_limit(self, client):
        response = client.get("/reports/churn_risk?reference_date=2024-05-31&limit=2")
        assert response.status_code == 200

        data = response.json()
        assert data["reference_date"] == "2024-05-31"
        assert data["row_count"] == 2

    def test_null_values_serialize(self, client):
        response = client.get("/reports/customer_value")
        assert response.status_code == 200

        rows = response.json()["rows"]
        assert rows[-1]["avg_annual_clv"] is None

    def test_report_validation(self, client):
        """Test input validation"""
        response = client.get("/reports/forecast")
        assert response.status_code == 400
        assert "not supported" in response.json()["detail"]

        response = client.get("/reports/funnel?limit=0")
        assert response.status_code == 422

        response = client.get("/reports/funnel?reference_date=yesterday")
        assert response.status_code == 422

    @patch('reporting.services.report_service.ReportService.run_report')
    def test_report_failure(self, mock_run, client):
        """Test unexpected failures become 500s"""
        mock_run.side_effect = RuntimeError("database went away")

        response = client.get("/reports/funnel")

        assert response.status_code == 500
        assert "database went away" in response.json()["detail"]

    def test_missing_source_table(self, client, report_service):
        report_service.data_service.load_tables = AsyncMock(side_effect=ValueError("Source tables not found: orders"))

        response = client.get("/reports/churn_risk")

        assert response.status_code == 400
        assert response.json() == {"status": "error", "detail": "Source tables not found: orders"}


class TestRefreshEndpoint:
    """Test report view refresh endpoint"""

    def test_refresh_views(self, client):
        response = client.post("/reports/views/refresh")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "success"
        assert data["views"] == {"customer_analytics": 4, "fraud_monitoring": 2}

    @patch.object(ReportService, 'refresh_views', new_callable=AsyncMock)
    def test_refresh_failure(self, mock_refresh, client):
        mock_refresh.side_effect = RuntimeError("disk full")

        response = client.post("/reports/views/refresh")
        assert response.status_code == 500


class TestLogsEndpoint:
    """Test logs endpoint"""

    def test_logs_endpoint_validation(self, client):
        """Test logs endpoint input validation"""
        # Test invalid date format
        response = client.get("/logs?start_date=invalid-date")
        assert response.status_code == 422

        # Test invalid limit
        response = client.get("/logs?limit=-1")
        assert response.status_code == 422

        # Test invalid offset
        response = client.get("/logs?offset=-1")
        assert response.status_code == 422

        # Test invalid status
        response = client.get("/logs?status=pending")
        assert response.status_code == 400

        # Test unknown report
        response = client.get("/logs?report_name=forecast")
        assert response.status_code == 400

    def test_logs_after_report_runs(self, client):
        client.get("/reports/funnel")
        client.get("/reports/paths")

        response = client.get("/logs?report_name=funnel")
        assert response.status_code == 200

        data = response.json()
        TestUtils.assert_log_response(data)
        assert data["total_records"] == 1
        assert data["logs"][0]["report_name"] == "funnel"
        assert data["logs"][0]["status"] == "completed"

    @patch('reporting.services.log_service.LogService.get_logs')
    def test_logs_endpoint_with_filters(self, mock_get_logs, client):
        """Test log retrieval with filters"""
        mock_get_logs.return_value = {
            "logs": [],
            "total_count": 0,
            "limit": 50,
            "offset": 0,
            "has_more": False
        }

        response = client.get("/logs?report_name=Cohort Retention&status=failed&limit=50")
        assert response.status_code == 200

        mock_get_logs.assert_called_once()
        kwargs = mock_get_logs.call_args.kwargs
        assert kwargs["report_name"] == "cohort_retention"
        assert kwargs["status"] == "failed"
        assert kwargs["limit"] == 50
