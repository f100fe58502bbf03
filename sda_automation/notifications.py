"""
Run notification dispatch.

Contract:
    ``Notifier`` is the seam the run guard talks to.  Implementations
    return a ``NotificationResult`` and never raise for delivery failures;
    a notification that cannot be sent must not fail a billing run.

Implementations:
    SendGridNotifier -- email via the SendGrid API.
    LoggingNotifier  -- writes the message to the log only; used when no
                        SendGrid API key is configured.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Content, Email, Mail, To

from sda_config.schema import AutomationSettings, EngineSettings
from sda_kernel.domain.types import DrawdownRunSummary
from sda_kernel.logging_config import get_logger

from sda_automation.summary import FAILURE_SUBJECT, completion_subject

logger = get_logger("automation.notifications")

_ACCEPTED_STATUS = (200, 201, 202)


@dataclass(frozen=True)
class NotificationResult:
    """Outcome of one dispatch attempt."""

    sent: bool
    recipients: tuple[str, ...] = ()
    error: str | None = None


class Notifier(Protocol):
    """Delivers run reports to an organization's administrators."""

    def send_completion_report(
        self,
        settings: AutomationSettings,
        summary: DrawdownRunSummary,
        narrative: str,
    ) -> NotificationResult: ...

    def send_failure_report(
        self,
        settings: AutomationSettings,
        error_message: str,
    ) -> NotificationResult: ...


def _failure_body(settings: AutomationSettings, error_message: str) -> str:
    return (
        f"The automated billing run for {settings.organization_name} failed.\n\n"
        f"Error: {error_message}\n\n"
        f"No transactions were created and no run log was written. "
        f"The run can be retried once the error is resolved.\n"
    )


class SendGridNotifier:
    """Email notifier backed by the SendGrid v3 API."""

    def __init__(
        self,
        api_key: str,
        from_email: str,
        client: SendGridAPIClient | None = None,
    ):
        self._client = client or SendGridAPIClient(api_key=api_key)
        self._from_email = from_email

    def send_completion_report(
        self,
        settings: AutomationSettings,
        summary: DrawdownRunSummary,
        narrative: str,
    ) -> NotificationResult:
        return self._send(settings, completion_subject(summary), narrative)

    def send_failure_report(
        self,
        settings: AutomationSettings,
        error_message: str,
    ) -> NotificationResult:
        return self._send(settings, FAILURE_SUBJECT, _failure_body(settings, error_message))

    def _send(self, settings: AutomationSettings, subject: str, body: str) -> NotificationResult:
        recipients = settings.admin_emails
        if not recipients:
            logger.warning(
                "notification_skipped_no_recipients",
                extra={"organization_id": str(settings.organization_id)},
            )
            return NotificationResult(sent=False, error="No recipients configured")

        try:
            message = Mail(
                from_email=Email(self._from_email),
                to_emails=[To(address) for address in recipients],
                subject=subject,
            )
            message.add_content(Content("text/plain", body))
            response = self._client.send(message)
        except Exception as exc:
            logger.exception(
                "notification_send_failed",
                extra={
                    "organization_id": str(settings.organization_id),
                    "subject": subject,
                },
            )
            return NotificationResult(sent=False, recipients=recipients, error=str(exc))

        sent = response.status_code in _ACCEPTED_STATUS
        if sent:
            logger.info(
                "notification_sent",
                extra={
                    "organization_id": str(settings.organization_id),
                    "subject": subject,
                    "recipient_count": len(recipients),
                    "status_code": response.status_code,
                },
            )
            return NotificationResult(sent=True, recipients=recipients)

        logger.error(
            "notification_rejected",
            extra={
                "organization_id": str(settings.organization_id),
                "subject": subject,
                "status_code": response.status_code,
            },
        )
        return NotificationResult(
            sent=False,
            recipients=recipients,
            error=f"SendGrid responded with status {response.status_code}",
        )


class LoggingNotifier:
    """Writes notifications to the log instead of sending them."""

    def send_completion_report(
        self,
        settings: AutomationSettings,
        summary: DrawdownRunSummary,
        narrative: str,
    ) -> NotificationResult:
        logger.info(
            "notification_logged",
            extra={
                "organization_id": str(settings.organization_id),
                "subject": completion_subject(summary),
                "body": narrative,
                "recipients": list(settings.admin_emails),
            },
        )
        return NotificationResult(sent=False, recipients=settings.admin_emails)

    def send_failure_report(
        self,
        settings: AutomationSettings,
        error_message: str,
    ) -> NotificationResult:
        logger.info(
            "notification_logged",
            extra={
                "organization_id": str(settings.organization_id),
                "subject": FAILURE_SUBJECT,
                "body": _failure_body(settings, error_message),
                "recipients": list(settings.admin_emails),
            },
        )
        return NotificationResult(sent=False, recipients=settings.admin_emails)


def build_notifier(engine: EngineSettings) -> Notifier:
    """SendGrid when an API key and sender are configured, else log only."""
    if engine.sendgrid_api_key and engine.sendgrid_from_email:
        return SendGridNotifier(engine.sendgrid_api_key, engine.sendgrid_from_email)
    logger.warning("sendgrid_not_configured")
    return LoggingNotifier()
