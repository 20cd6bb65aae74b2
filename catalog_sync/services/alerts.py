"""Email alerts for degraded or failed catalog syncs."""

import asyncio
import html
import json
import logging
import smtplib
from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from catalog_sync.config import Settings, settings

logger = logging.getLogger(__name__)

MAX_ALERT_ERRORS = 50


def alert_level(status: str) -> str:
    """FAILURE for failed runs, WARNING for anything else worth alerting on."""
    return "FAILURE" if status == "failed" else "WARNING"


def build_alert_subject(summary: dict[str, Any], now: datetime | None = None) -> str:
    """Build the alert subject line for a sync summary."""
    timestamp = (now or datetime.now(UTC)).isoformat()
    return f"[Catalog] GEKO Sync {alert_level(summary.get('status', ''))} - {timestamp}"


def build_alert_body(summary: dict[str, Any]) -> str:
    """Render the HTML body of an alert email.

    Args:
        summary: Sync summary as produced by ``SyncHealthTracker.to_dict``.

    Returns:
        HTML document describing the run, its errors and item counts.
    """
    errors = summary.get("errors") or []
    rows = "".join(
        "<li><strong>{}</strong>: {}<br><small>{}</small></li>".format(
            html.escape(str(error.get("type", ""))),
            html.escape(str(error.get("message", ""))),
            html.escape(str(error.get("timestamp", ""))),
        )
        for error in errors[:MAX_ALERT_ERRORS]
    )
    if len(errors) > MAX_ALERT_ERRORS:
        rows += f"<li>... and {len(errors) - MAX_ALERT_ERRORS} more</li>"

    items = json.dumps(summary.get("items_processed") or {}, indent=2, sort_keys=True)
    duration = summary.get("duration_seconds")
    duration_text = f"{duration:.2f} seconds" if duration is not None else "n/a"

    def field(label: str, value: Any) -> str:
        return f"<p><strong>{label}:</strong> {html.escape(str(value))}</p>"

    return (
        f"<h2>GEKO Sync {alert_level(summary.get('status', ''))}</h2>"
        + field("Sync ID", summary.get("id"))
        + field("Type", summary.get("sync_type"))
        + field("Status", summary.get("status"))
        + field("Started", summary.get("start_time"))
        + field("Duration", duration_text)
        + field("Source", summary.get("api_url"))
        + field("Error count", summary.get("error_count", 0))
        + f"<h3>Errors</h3><ul>{rows or '<li>None recorded</li>'}</ul>"
        + f"<h3>Items processed</h3><pre>{html.escape(items)}</pre>"
    )


def _send_email(config: Settings, subject: str, body: str) -> None:
    """Send an HTML email over SMTP (blocking)."""
    msg = MIMEMultipart()
    msg["From"] = config.alert_email_from
    msg["To"] = config.alert_email_to
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "html", "utf-8"))

    recipients = [addr.strip() for addr in config.alert_email_to.split(",") if addr.strip()]
    with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=30) as server:
        if config.smtp_use_tls:
            server.starttls()
        if config.smtp_user:
            server.login(config.smtp_user, config.smtp_password)
        server.sendmail(config.alert_email_from, recipients, msg.as_string())


async def send_sync_alert(summary: dict[str, Any], config: Settings | None = None) -> bool:
    """Email an alert about a sync run.

    Delivery problems are logged and never raised.

    Args:
        summary: Sync summary as produced by ``SyncHealthTracker.to_dict``.
        config: Settings to use (defaults to the application settings).

    Returns:
        True if the email was handed to the SMTP server.
    """
    config = config or settings
    if not config.alerts_active:
        logger.debug("Sync alerts disabled, skipping alert for sync %s", summary.get("id"))
        return False
    if not config.alert_email_to:
        logger.warning(
            "No alert recipient configured, skipping alert for sync %s", summary.get("id")
        )
        return False

    subject = build_alert_subject(summary)
    body = build_alert_body(summary)

    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, _send_email, config, subject, body)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send sync alert for sync %s: %s", summary.get("id"), e)
        return False

    logger.info("Sent sync alert %r to %s", subject, config.alert_email_to)
    return True
