"""Tests for the GEKO sync control API."""

from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import status
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.api.geko import (
    as_utc,
    get_sync_controller,
    validate_file_extension,
)
from catalog_sync.database import get_db
from catalog_sync.main import app
from catalog_sync.models import ImportJob, SyncHealth
from catalog_sync.services.geko_client import FetchError
from catalog_sync.services.pipeline import SyncRunResult
from catalog_sync.services.scheduler import SchedulingError, SyncController
from catalog_sync.services.sync_health import SyncHealthStats, SyncStatus

FEED_URL = "https://api.geko.com/products"

SCHEDULE = {
    "is_running": True,
    "expression": "*/15 * * * *",
    "interval_minutes": 15,
    "api_url": FEED_URL,
    "next_run_at": "2026-10-19T10:15:00+00:00",
    "last_run_at": None,
}


def run_result(status_: SyncStatus, error: Exception | None = None) -> SyncRunResult:
    """Build a pipeline result."""
    return SyncRunResult(
        sync_id=7,
        status=status_,
        duration_seconds=1.25,
        items_processed={"products": 2} if status_ != SyncStatus.FAILED else {},
        error_count=0 if error is None else 1,
        error=error,
    )


@pytest.fixture
def controller() -> MagicMock:
    """Mock sync controller."""
    controller = MagicMock(spec=SyncController)
    controller.start.return_value = SCHEDULE
    controller.status.return_value = SCHEDULE
    controller.stop = AsyncMock(return_value=True)
    controller.manual_sync = AsyncMock(return_value=run_result(SyncStatus.SUCCESS))
    return controller


@pytest.fixture
def mock_db_session() -> AsyncMock:
    """Create a mock database session."""
    return AsyncMock(spec=AsyncSession)


@pytest.fixture
def client(controller: MagicMock, mock_db_session: AsyncMock) -> Iterator[TestClient]:
    """Test client with the controller and database overridden."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield mock_db_session

    app.dependency_overrides[get_sync_controller] = lambda: controller
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestValidateFileExtension:
    """Tests for validate_file_extension function."""

    def test_validate_xml_extension(self) -> None:
        """Test validation of .xml extension."""
        assert validate_file_extension("catalog.xml") == ".xml"

    def test_validate_uppercase_extension(self) -> None:
        """Test validation handles uppercase extensions."""
        assert validate_file_extension("catalog.XML") == ".xml"

    def test_invalid_extension_raises_error(self) -> None:
        """Test that other extensions are rejected."""
        with pytest.raises(ValueError, match="Unsupported file type"):
            validate_file_extension("catalog.csv")

    def test_empty_filename_raises_error(self) -> None:
        """Test that an empty filename is rejected."""
        with pytest.raises(ValueError, match="Filename is required"):
            validate_file_extension("")


class TestScheduleEndpoints:
    """Tests for start, stop and status."""

    def test_start_sync(self, client: TestClient, controller: MagicMock) -> None:
        """Test starting the recurring sync with URL and interval."""
        response = client.post(
            "/geko-api/start-sync", json={"apiUrl": FEED_URL, "intervalMinutes": 15}
        )

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["success"] is True
        assert body["data"]["expression"] == "*/15 * * * *"
        controller.start.assert_called_once_with(FEED_URL, 15)

    def test_start_sync_defaults(self, client: TestClient, controller: MagicMock) -> None:
        """Test starting without a body uses the configured defaults."""
        response = client.post("/geko-api/start-sync")

        assert response.status_code == status.HTTP_200_OK
        controller.start.assert_called_once_with(None, None)

    def test_start_sync_invalid_interval(
        self, client: TestClient, controller: MagicMock
    ) -> None:
        """Test that unsupported intervals answer 400 in the envelope."""
        controller.start.side_effect = SchedulingError("Interval 90 is not supported")

        response = client.post("/geko-api/start-sync", json={"intervalMinutes": 90})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["success"] is False
        assert "Interval 90" in body["error"]

    def test_stop_sync(self, client: TestClient, controller: MagicMock) -> None:
        """Test stopping an active sync."""
        response = client.post("/geko-api/stop-sync")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["message"] == "Catalog sync stopped"
        controller.stop.assert_awaited_once()

    def test_stop_sync_when_idle(self, client: TestClient, controller: MagicMock) -> None:
        """Test that stopping when nothing is scheduled still succeeds."""
        controller.stop.return_value = False

        response = client.post("/geko-api/stop-sync")

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "No catalog sync was scheduled"

    def test_sync_status(self, client: TestClient) -> None:
        """Test reporting the schedule."""
        response = client.get("/geko-api/sync-status")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"] == SCHEDULE


class TestManualSync:
    """Tests for the manual sync endpoint."""

    def test_manual_sync(self, client: TestClient, controller: MagicMock) -> None:
        """Test a successful manual run."""
        response = client.post("/geko-api/manual-sync", json={"apiUrl": FEED_URL})

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "success"
        assert body["data"]["duration_seconds"] == 1.25
        assert body["data"]["items_processed"] == {"products": 2}
        controller.manual_sync.assert_awaited_once_with(FEED_URL, incremental=False)

    def test_manual_sync_incremental(self, client: TestClient, controller: MagicMock) -> None:
        """Test requesting an incremental run."""
        client.post("/geko-api/manual-sync", json={"incremental": True})

        controller.manual_sync.assert_awaited_once_with(None, incremental=True)

    def test_manual_sync_partial_success(
        self, client: TestClient, controller: MagicMock
    ) -> None:
        """Test that a partial success is still reported as success."""
        controller.manual_sync.return_value = run_result(SyncStatus.PARTIAL_SUCCESS)

        response = client.post("/geko-api/manual-sync")

        assert response.status_code == status.HTTP_200_OK
        assert "partial_success" in response.json()["message"]

    def test_manual_sync_failed(self, client: TestClient, controller: MagicMock) -> None:
        """Test that a failed run answers 500 with the error."""
        controller.manual_sync.return_value = run_result(
            SyncStatus.FAILED, FetchError("Catalog request failed with status 503", FEED_URL, 503)
        )

        response = client.post("/geko-api/manual-sync")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        body = response.json()
        assert body["success"] is False
        assert "503" in body["error"]
        assert body["data"]["status"] == "failed"

    def test_manual_sync_crash(self, client: TestClient, controller: MagicMock) -> None:
        """Test that unexpected exceptions are reported in the envelope."""
        controller.manual_sync.side_effect = RuntimeError("database exploded")

        response = client.post("/geko-api/manual-sync")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["error"] == "database exploded"


class TestImportEndpoint:
    """Tests for queueing catalog file uploads."""

    @pytest.fixture
    def job(self) -> ImportJob:
        """A freshly created pending job."""
        return ImportJob(
            id="5b0f6c1e-job",
            status="pending",
            filename="catalog.xml",
            file_path="/tmp/geko_imports/5b0f6c1e-job.xml",
            file_size=24,
            incremental=False,
            created_at=datetime(2026, 10, 19, 9, 0, tzinfo=UTC),
        )

    @pytest.fixture
    def create_job(self, job: ImportJob) -> Iterator[AsyncMock]:
        """Patch job creation."""
        with patch(
            "catalog_sync.api.geko.create_import_job", AsyncMock(return_value=job)
        ) as mock_create:
            yield mock_create

    @pytest.fixture
    def task(self) -> Iterator[MagicMock]:
        """Patch the Celery import task."""
        with patch("catalog_sync.api.geko.import_catalog_task") as mock_task:
            yield mock_task

    def test_import_queues_job(
        self,
        client: TestClient,
        mock_db_session: AsyncMock,
        create_job: AsyncMock,
        task: MagicMock,
    ) -> None:
        """Test that an upload is stored as a job and handed to a worker."""
        response = client.post(
            "/geko-api/import",
            files={"file": ("catalog.xml", b"<geko><products/></geko>", "application/xml")},
        )

        assert response.status_code == status.HTTP_202_ACCEPTED
        body = response.json()
        assert body["success"] is True
        assert body["data"]["id"] == "5b0f6c1e-job"
        assert body["data"]["status"] == "pending"
        assert "5b0f6c1e-job" in body["message"]
        create_job.assert_awaited_once_with(
            mock_db_session, "catalog.xml", b"<geko><products/></geko>", incremental=False
        )
        mock_db_session.commit.assert_awaited()
        task.delay.assert_called_once_with("5b0f6c1e-job")

    def test_import_incremental(
        self, client: TestClient, create_job: AsyncMock, task: MagicMock
    ) -> None:
        """Test the incremental form flag."""
        client.post(
            "/geko-api/import",
            files={"file": ("catalog.xml", b"<geko/>", "text/xml")},
            data={"incremental": "true"},
        )

        assert create_job.call_args.kwargs["incremental"] is True

    def test_import_queue_unavailable(
        self,
        client: TestClient,
        job: ImportJob,
        create_job: AsyncMock,
        task: MagicMock,
    ) -> None:
        """Test that a broker failure fails the job and answers 503."""
        task.delay.side_effect = ConnectionError("broker unreachable")
        job.status = "failed"
        job.error = "Could not queue import: broker unreachable"

        with (
            patch(
                "catalog_sync.api.geko.finish_import_job", AsyncMock(return_value=job)
            ) as mock_finish,
            patch("catalog_sync.api.geko.remove_upload") as mock_remove,
        ):
            response = client.post(
                "/geko-api/import",
                files={"file": ("catalog.xml", b"<geko/>", "application/xml")},
            )

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "broker unreachable"
        assert body["data"]["status"] == "failed"
        assert "broker unreachable" in mock_finish.call_args.kwargs["error"]
        mock_remove.assert_called_once_with(job)

    def test_import_wrong_extension(
        self, client: TestClient, create_job: AsyncMock, task: MagicMock
    ) -> None:
        """Test that non-XML files are rejected."""
        response = client.post(
            "/geko-api/import",
            files={"file": ("catalog.csv", b"a,b", "text/csv")},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "Unsupported file type" in response.json()["error"]
        create_job.assert_not_awaited()
        task.delay.assert_not_called()

    def test_import_wrong_content_type(self, client: TestClient, create_job: AsyncMock) -> None:
        """Test that non-XML content types are rejected."""
        response = client.post(
            "/geko-api/import",
            files={"file": ("catalog.xml", b"<geko/>", "image/png")},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        create_job.assert_not_awaited()

    def test_import_empty_file(self, client: TestClient, create_job: AsyncMock) -> None:
        """Test that empty uploads are rejected."""
        response = client.post(
            "/geko-api/import",
            files={"file": ("catalog.xml", b"", "application/xml")},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "Uploaded file is empty"
        create_job.assert_not_awaited()

    def test_import_too_large(self, client: TestClient, create_job: AsyncMock) -> None:
        """Test that oversized uploads are rejected."""
        with patch("catalog_sync.api.geko.MAX_FILE_SIZE", 16):
            response = client.post(
                "/geko-api/import",
                files={"file": ("catalog.xml", b"<geko>" + b"x" * 16, "application/xml")},
            )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "exceeds maximum" in response.json()["error"]
        create_job.assert_not_awaited()


class TestHealthEndpoints:
    """Tests for sync history reporting."""

    def test_recent(self, client: TestClient) -> None:
        """Test listing recent runs."""
        record = SyncHealth(
            id=3,
            sync_type="manual",
            status="success",
            start_time=datetime(2026, 10, 19, 9, 0, tzinfo=UTC),
            items_processed={"products": 2},
            error_count=0,
            errors=[],
        )
        with patch(
            "catalog_sync.api.geko.get_recent_sync_health",
            AsyncMock(return_value=[record]),
        ) as mock_recent:
            response = client.get("/geko-api/health/recent?limit=5&offset=10")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()["data"]
        assert data["items"][0]["id"] == 3
        assert data["items"][0]["start_time"] == "2026-10-19T09:00:00+00:00"
        assert data["limit"] == 5
        assert mock_recent.call_args.kwargs == {"limit": 5, "offset": 10}

    def test_recent_limit_validated(self, client: TestClient) -> None:
        """Test that the page size is bounded."""
        response = client.get("/geko-api/health/recent?limit=500")
        assert response.status_code == 422

    def test_stats(self, client: TestClient) -> None:
        """Test aggregate statistics for a window."""
        stats = SyncHealthStats(
            start_date=datetime(2026, 10, 12, tzinfo=UTC),
            end_date=datetime(2026, 10, 19, tzinfo=UTC),
            total_syncs=4,
            success_rate=75.0,
            average_duration_seconds=12.5,
            total_errors=2,
            items_processed={"products": 40},
            syncs_by_status={"success": 3, "failed": 1},
        )
        with patch(
            "catalog_sync.api.geko.get_sync_health_stats", AsyncMock(return_value=stats)
        ) as mock_stats:
            response = client.get(
                "/geko-api/health/stats",
                params={"startDate": "2026-10-12T00:00:00Z", "endDate": "2026-10-19T00:00:00Z"},
            )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()["data"]
        assert data["success_rate"] == 75.0
        assert data["syncs_by_status"] == {"success": 3, "failed": 1}
        assert mock_stats.call_args.kwargs["start_date"] == datetime(2026, 10, 12, tzinfo=UTC)

    def test_stats_invalid_range(self, client: TestClient) -> None:
        """Test that a start after the end is rejected."""
        response = client.get(
            "/geko-api/health/stats",
            params={"startDate": "2026-10-19T00:00:00Z", "endDate": "2026-10-12T00:00:00Z"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["success"] is False

    def test_stats_mixed_naive_and_aware_dates(self, client: TestClient) -> None:
        """Test that a naive start and an aware end are compared as UTC."""
        stats = SyncHealthStats(
            start_date=datetime(2026, 1, 1, tzinfo=UTC),
            end_date=datetime(2026, 1, 2, tzinfo=UTC),
            total_syncs=0,
            success_rate=0.0,
            average_duration_seconds=0.0,
            total_errors=0,
            items_processed={},
            syncs_by_status={},
        )
        with patch(
            "catalog_sync.api.geko.get_sync_health_stats", AsyncMock(return_value=stats)
        ) as mock_stats:
            response = client.get(
                "/geko-api/health/stats",
                params={"startDate": "2026-01-01T00:00:00", "endDate": "2026-01-02T00:00:00Z"},
            )

        assert response.status_code == status.HTTP_200_OK
        kwargs = mock_stats.call_args.kwargs
        assert kwargs["start_date"] == datetime(2026, 1, 1, tzinfo=UTC)
        assert kwargs["start_date"].tzinfo is not None
        assert kwargs["end_date"] == datetime(2026, 1, 2, tzinfo=UTC)

    def test_unhandled_error_uses_envelope(self, client: TestClient) -> None:
        """Test that an uncaught exception answers a JSON 500 envelope."""
        with patch(
            "catalog_sync.api.geko.get_recent_sync_health",
            AsyncMock(side_effect=RuntimeError("connection reset")),
        ):
            response = TestClient(app, raise_server_exceptions=False).get(
                "/geko-api/health/recent"
            )

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Internal server error"
        assert body["error"] == "connection reset"


class TestAsUtc:
    """Tests for as_utc function."""

    def test_naive_is_taken_as_utc(self) -> None:
        """Test that naive datetimes get UTC attached."""
        assert as_utc(datetime(2026, 1, 1, 12, 0)) == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def test_aware_is_converted(self) -> None:
        """Test that other offsets are converted to UTC."""
        warsaw = timezone(timedelta(hours=2))
        converted = as_utc(datetime(2026, 6, 1, 14, 0, tzinfo=warsaw))
        assert converted.tzinfo is UTC
        assert converted.hour == 12

    def test_none(self) -> None:
        """Test that a missing date stays missing."""
        assert as_utc(None) is None


def test_health_check() -> None:
    """Test the service health endpoint."""
    response = TestClient(app).get("/health")
    assert response.json() == {"status": "healthy"}
