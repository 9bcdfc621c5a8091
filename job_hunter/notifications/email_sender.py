"""Digest delivery via Resend (HTTP) or SMTP."""

import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from sqlalchemy.orm import Session

from job_hunter.config import EmailConfig
from job_hunter.errors import DigestError
from job_hunter.notifications.templates import render_digest_email
from job_hunter.storage.database import mark_jobs_seen, unseen_strong_matches
from job_hunter.storage.ledger import RunStats

logger = logging.getLogger("job_hunter.notifications")

SMTP_TIMEOUT = 30


def send_email(config: EmailConfig, subject: str, html_body: str, resend_api_key: str = "") -> bool:
    """Send email via Resend if a key is provided, otherwise SMTP.

    Returns True on success; raises DigestError on failure.
    """
    if not config.recipient_email:
        raise DigestError("Recipient email not configured")

    if resend_api_key:
        if not config.email_from:
            raise DigestError("Sender (email_from) not configured for Resend")
        import resend

        resend.api_key = resend_api_key
        try:
            resend.Emails.send({
                "from": config.email_from,
                "to": [config.recipient_email],
                "subject": subject,
                "html": html_body,
            })
        except Exception as e:
            raise DigestError(f"Resend error: {type(e).__name__}: {e}") from e
        logger.info("Email sent via Resend to %s", config.recipient_email)
        return True

    if not config.sender_email or not config.sender_password:
        raise DigestError("Sender password not configured (or add a Resend API key)")

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = config.sender_email
    msg["To"] = config.recipient_email
    msg.attach(MIMEText(f"View this email in an HTML-capable client.\n\nSubject: {subject}", "plain"))
    msg.attach(MIMEText(html_body, "html"))

    try:
        with smtplib.SMTP(config.smtp_server, config.smtp_port, timeout=SMTP_TIMEOUT) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            server.login(config.sender_email, config.sender_password)
            server.sendmail(config.sender_email, config.recipient_email, msg.as_string())
    except smtplib.SMTPAuthenticationError as e:
        raise DigestError(
            "SMTP authentication failed. Make sure you're using a Gmail App Password."
        ) from e
    except (smtplib.SMTPException, OSError) as e:
        raise DigestError(f"SMTP error: {type(e).__name__}: {e}") from e

    logger.info("Email sent via SMTP to %s", config.recipient_email)
    return True


def send_digest(
    session: Session,
    config: EmailConfig,
    stats: RunStats,
    resend_api_key: str = "",
    now: Optional[datetime] = None,
) -> int:
    """Send every unseen strong match and mark them seen once delivery succeeds.

    Returns the number of jobs included. Raises DigestError when sending fails;
    the jobs then stay unseen for the next digest.
    """
    jobs = unseen_strong_matches(session)
    subject, html = render_digest_email(jobs, stats, now)
    send_email(config, subject, html, resend_api_key)

    mark_jobs_seen(session, [job.id for job in jobs], now or datetime.now(timezone.utc))
    logger.info("Digest sent with %d jobs; marked them seen", len(jobs))
    return len(jobs)
