"""Async email sender for research report delivery.

Uses aiosmtplib for non-blocking SMTP (STARTTLS).
Best-effort: errors are logged and reported as False, never raised into the run.
"""

from __future__ import annotations

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import aiosmtplib

from relevx.config import settings
from relevx.email.templates.research_report import render_report_email
from relevx.models.project import ResearchProject
from relevx.models.research import CompiledReport

logger = logging.getLogger(__name__)


def is_email_configured() -> bool:
    """Check if SMTP credentials are set."""
    return bool(settings.smtp_user and settings.smtp_password)


def report_subject(report: CompiledReport, project: ResearchProject) -> str:
    email = project.delivery.email
    if email and email.subject:
        return email.subject
    return f"Research Report: {report.title}"


async def send_report_email(
    to_address: str,
    report: CompiledReport,
    project: ResearchProject,
    delivery_log_id: str | None = None,
) -> bool:
    """Send a compiled research report via email.

    Args:
        to_address: Recipient address.
        report: The compiled report.
        project: The project the report belongs to (subject override, dashboard link).
        delivery_log_id: Delivery log reference for the dashboard link.

    Returns:
        True if email was sent successfully, False otherwise.
    """
    if not is_email_configured():
        logger.debug("Email not configured, skipping send")
        return False
    if not to_address:
        logger.debug("No recipient, skipping send")
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = report_subject(report, project)
    msg["From"] = settings.smtp_from_address or settings.smtp_user
    msg["To"] = to_address
    # Plain-text part first; clients prefer the last alternative they support
    msg.attach(MIMEText(report.markdown, "plain", "utf-8"))
    msg.attach(MIMEText(render_report_email(report, project, delivery_log_id), "html", "utf-8"))

    try:
        await aiosmtplib.send(
            msg,
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            start_tls=True,
            username=settings.smtp_user,
            password=settings.smtp_password,
        )
        logger.info("Report email sent to %s", to_address)
        return True
    except Exception as e:
        logger.warning("Failed to send report email: %s", e)
        return False
