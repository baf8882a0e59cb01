"""
Operator notifications for backup outcomes.

Supports:
- LoggingNotifier: writes the notification to the log only
- EmailNotifier: sends the notification over SMTP
"""

import json
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, formatdate
from typing import Optional, Tuple

from snapvault.config import BackupSettings
from snapvault.models import OperationOutcome


logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when a notification cannot be delivered."""
    pass


class NotificationDispatcher:
    """Interface of a notification channel."""

    def send(self, subject: str, body: str):
        raise NotImplementedError


class LoggingNotifier(NotificationDispatcher):
    """Channel used when no mail server is configured."""

    def __init__(self, recipient: Optional[str] = None):
        self.recipient = recipient

    def send(self, subject: str, body: str):
        logger.info(f"Backup notification for {self.recipient or 'operator'}: {subject}\n{body}")


class EmailNotifier(NotificationDispatcher):
    """
    Notification delivery via email.

    Opens a fresh SMTP connection per message: a backup run sends at most
    one notification, so there is nothing to pool.
    """

    def __init__(
        self,
        recipient: str,
        smtp_host: str,
        smtp_port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_address: str = 'backups@localhost',
        from_name: str = 'snapvault',
        timeout: int = 30
    ):
        self.recipient = recipient
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address
        self.from_name = from_name
        self.timeout = timeout

    def _prepare_message(self, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg['To'] = self.recipient
        msg['From'] = formataddr((self.from_name, self.from_address))
        msg['Subject'] = subject
        msg['Date'] = formatdate(localtime=True)
        msg.set_content(body)
        return msg

    def send(self, subject: str, body: str):
        """
        Send one email.

        Raises:
            NotificationError: If the SMTP exchange fails
        """
        msg = self._prepare_message(subject, body)

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Failed to send email to {self.recipient} via {self.smtp_host}: {e}")

        logger.info(f"Backup notification emailed to {self.recipient}")


def build_notification(outcome: OperationOutcome) -> Tuple[str, str]:
    """
    Render an outcome as a subject/body pair.

    Args:
        outcome: Result of a backup run

    Returns:
        (subject, body)
    """
    if outcome.success:
        subject = 'Backup completed successfully'
    else:
        subject = f"Backup failed: {outcome.error_class or 'error'}"

    body = '\n'.join([
        'Backup status',
        f"Date: {outcome.timestamp.isoformat()}",
        f"Result: {'Success' if outcome.success else 'Failure'}",
        'Details:',
        json.dumps(outcome.to_dict(), indent=2, default=str),
    ])
    return subject, body


def create_dispatcher(settings: BackupSettings) -> Optional[NotificationDispatcher]:
    """
    Factory function to create the notification channel from settings.

    Returns:
        EmailNotifier when SMTP is configured, LoggingNotifier otherwise,
        or None when ALERT_EMAIL is unset (notifications are skipped)
    """
    if not settings.alert_email:
        return None

    if settings.smtp_host:
        return EmailNotifier(
            recipient=settings.alert_email,
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_address=settings.alert_from
        )

    return LoggingNotifier(settings.alert_email)
