"""Tests for sync alert emails."""

import smtplib
from datetime import UTC, datetime
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from catalog_sync.config import Settings
from catalog_sync.services.alerts import (
    alert_level,
    build_alert_body,
    build_alert_subject,
    send_sync_alert,
)


@pytest.fixture
def summary() -> dict[str, Any]:
    """A failed sync summary."""
    return {
        "id": 12,
        "sync_type": "scheduled",
        "status": "failed",
        "start_time": "2026-10-19T08:00:00+00:00",
        "duration_seconds": 4.25,
        "api_url": "https://api.geko.com/products",
        "error_count": 1,
        "errors": [
            {
                "type": "fetch",
                "message": "Catalog request failed with status 503",
                "timestamp": "2026-10-19T08:00:04+00:00",
            }
        ],
        "items_processed": {"products": 0},
    }


@pytest.fixture
def alert_settings() -> Settings:
    """Settings with alerting enabled."""
    return Settings(
        sync_alerts_enabled=True,
        alert_email_to="ops@example.com, buyer@example.com",
        alert_email_from="sync@example.com",
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_use_tls=True,
        smtp_user="sync",
        smtp_password="secret",
    )


class TestAlertContent:
    """Tests for alert subject and body."""

    def test_alert_levels(self) -> None:
        """Test FAILURE for failed runs and WARNING otherwise."""
        assert alert_level("failed") == "FAILURE"
        assert alert_level("partial_success") == "WARNING"

    def test_subject(self, summary: dict[str, Any]) -> None:
        """Test the subject format."""
        now = datetime(2026, 10, 19, 8, 0, 5, tzinfo=UTC)
        subject = build_alert_subject(summary, now)
        assert subject == "[Catalog] GEKO Sync FAILURE - 2026-10-19T08:00:05+00:00"

    def test_subject_warning(self, summary: dict[str, Any]) -> None:
        """Test the subject of a partial success."""
        summary["status"] = "partial_success"
        assert build_alert_subject(summary).startswith("[Catalog] GEKO Sync WARNING - ")

    def test_body_contents(self, summary: dict[str, Any]) -> None:
        """Test that the body lists the run details and errors."""
        body = build_alert_body(summary)
        assert "Catalog request failed with status 503" in body
        assert "4.25 seconds" in body
        assert "https://api.geko.com/products" in body
        assert "&quot;products&quot;: 0" in body

    def test_body_escapes_html(self, summary: dict[str, Any]) -> None:
        """Test that error messages are HTML-escaped."""
        summary["errors"][0]["message"] = "<script>alert(1)</script>"
        body = build_alert_body(summary)
        assert "<script>" not in body
        assert "&lt;script&gt;" in body


class TestSendSyncAlert:
    """Tests for send_sync_alert."""

    async def test_sends_email(self, summary: dict[str, Any], alert_settings: Settings) -> None:
        """Test that the alert is delivered over SMTP with TLS and login."""
        with patch("catalog_sync.services.alerts.smtplib.SMTP") as mock_smtp:
            server = MagicMock()
            mock_smtp.return_value.__enter__.return_value = server

            sent = await send_sync_alert(summary, alert_settings)

        assert sent is True
        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("sync", "secret")
        from_addr, recipients, message = server.sendmail.call_args[0]
        assert from_addr == "sync@example.com"
        assert recipients == ["ops@example.com", "buyer@example.com"]
        assert "GEKO Sync FAILURE" in message

    async def test_disabled(self, summary: dict[str, Any]) -> None:
        """Test that nothing is sent when alerts are off."""
        config = Settings(environment="development", sync_alerts_enabled=False)
        with patch("catalog_sync.services.alerts.smtplib.SMTP") as mock_smtp:
            sent = await send_sync_alert(summary, config)

        assert sent is False
        mock_smtp.assert_not_called()

    async def test_missing_recipient(self, summary: dict[str, Any]) -> None:
        """Test that alerts without a recipient are skipped."""
        config = Settings(sync_alerts_enabled=True, alert_email_to="")
        with patch("catalog_sync.services.alerts.smtplib.SMTP") as mock_smtp:
            sent = await send_sync_alert(summary, config)

        assert sent is False
        mock_smtp.assert_not_called()

    async def test_smtp_error_not_raised(
        self, summary: dict[str, Any], alert_settings: Settings
    ) -> None:
        """Test that SMTP failures are logged and reported as not sent."""
        with patch(
            "catalog_sync.services.alerts.smtplib.SMTP",
            side_effect=smtplib.SMTPConnectError(421, "unavailable"),
        ):
            sent = await send_sync_alert(summary, alert_settings)

        assert sent is False

    async def test_connection_refused_not_raised(
        self, summary: dict[str, Any], alert_settings: Settings
    ) -> None:
        """Test that network errors are reported as not sent."""
        with patch(
            "catalog_sync.services.alerts.smtplib.SMTP",
            side_effect=ConnectionRefusedError("refused"),
        ):
            sent = await send_sync_alert(summary, alert_settings)

        assert sent is False
