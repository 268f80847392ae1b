"""Outgoing mail: the SMTP transport, an in-memory outbox, and customer notices."""

from dataclasses import dataclass
from email.message import EmailMessage
import logging
import smtplib
from typing import Protocol

from billrun.config import Settings
from billrun.db_models import Invoice, Subscription
from billrun.retry import RetryPolicy


logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send(self, to: str, subject: str, body: str) -> None: ...


@dataclass(frozen=True)
class OutgoingMessage:
    to: str
    subject: str
    body: str


class OutboxMailer:
    """Collects messages in memory instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[OutgoingMessage] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append(OutgoingMessage(to=to, subject=subject, body=body))
        logger.info("message queued in outbox", extra={"to": to, "subject": subject})


class SmtpMailer:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.retry_policy = RetryPolicy(
            max_retries=settings.max_delivery_retries,
            backoff_seconds=settings.retry_backoff_seconds,
        )

    def send(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.settings.mail_from
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        self.retry_policy.call(
            lambda: self._deliver(message),
            # Rejected recipients do not recover on retry.
            should_retry=lambda exc: not isinstance(exc, smtplib.SMTPRecipientsRefused),
        )
        logger.info("message sent", extra={"to": to, "subject": subject})

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=30) as smtp:
            if self.settings.smtp_use_tls:
                smtp.starttls()
            if self.settings.smtp_username:
                smtp.login(self.settings.smtp_username, self.settings.smtp_password)
            smtp.send_message(message)


def build_mailer(settings: Settings) -> Mailer:
    if settings.smtp_host:
        return SmtpMailer(settings)
    logger.info("no SMTP host configured, using in-memory outbox")
    return OutboxMailer()


def _amount(cents: int) -> str:
    return f"{cents / 100:.2f}"


def paid_notice(invoice: Invoice) -> tuple[str, str]:
    return (
        f"Receipt for invoice #{invoice.id}",
        f"We received your payment of {_amount(invoice.amount_cents)} for the period "
        f"{invoice.period_start:%Y-%m-%d} to {invoice.period_end:%Y-%m-%d}.\n",
    )


def pending_notice(invoice: Invoice) -> tuple[str, str]:
    return (
        f"New invoice #{invoice.id}",
        f"Invoice #{invoice.id} for {_amount(invoice.amount_cents)} is due on {invoice.due_on:%Y-%m-%d}.\n",
    )


def overdue_notice(invoice: Invoice) -> tuple[str, str]:
    return (
        f"Invoice #{invoice.id} is overdue",
        f"Invoice #{invoice.id} for {_amount(invoice.amount_cents)} was due on {invoice.due_on:%Y-%m-%d} "
        "and has not been paid.\nYour account has been deactivated until the balance is settled.\n",
    )


def trial_expired_notice(subscription: Subscription) -> tuple[str, str]:
    return (
        "Your trial has expired",
        f"The trial of {subscription.description} has expired and your account was deactivated.\n"
        "Subscribe to a plan to reactivate it.\n",
    )


def trial_will_expire_notice(subscription: Subscription) -> tuple[str, str]:
    return (
        "Your trial is about to expire",
        f"The trial of {subscription.description} expires on {subscription.is_trial_expiring_on:%Y-%m-%d}.\n",
    )
