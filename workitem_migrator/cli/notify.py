"""End-of-run summary notification by email."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import TYPE_CHECKING, Optional

from workitem_migrator.utils.logging import get_log_summary_text, log_with_context

if TYPE_CHECKING:
    from workitem_migrator.core.config import MigrationConfig

SUBJECT = "Work item migration summary"


def build_message(config: MigrationConfig, text: str) -> EmailMessage:
    settings = config.email_settings
    message = EmailMessage()
    message["Subject"] = SUBJECT
    message["From"] = settings.from_address
    message["To"] = ", ".join(settings.to_addresses)
    message.set_content(text)
    return message


def send_summary_notification(
    config: Optional[MigrationConfig], text: str = ""
) -> bool:
    """
    Email the run summary when notifications are configured.

    Never raises: a failed notification is logged and must not hide the
    outcome of the run itself.

    Args:
        config: The run configuration, or None when it could not be loaded
        text: Summary text; the collected warnings and errors are appended

    Returns:
        True if a message was sent
    """
    if config is None or not config.send_email_notification:
        log_with_context(logging.DEBUG, "Email notification is disabled")
        return False

    settings = config.email_settings
    if not settings.is_complete:
        log_with_context(
            logging.WARNING,
            "Email notification is enabled but email_settings is incomplete; not sending",
        )
        return False

    digest = get_log_summary_text()
    body = "\n\n".join(part for part in (text, digest) if part) or "No summary available."
    message = build_message(config, body)

    smtp_class = smtplib.SMTP_SSL if settings.use_ssl else smtplib.SMTP
    try:
        with smtp_class(settings.smtp_server, settings.port, timeout=30) as smtp:
            if settings.user_name:
                smtp.login(settings.user_name, settings.password)
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError) as e:
        log_with_context(logging.ERROR, f"Failed to send summary notification: {e}")
        return False

    log_with_context(
        logging.INFO,
        f"Summary notification sent to {', '.join(settings.to_addresses)}",
    )
    return True
