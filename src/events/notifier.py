"""
Email notifications for claim events.

Runs on the event bus worker, never on the request path.
"""

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional, Protocol

from ..utils.config import Settings
from .bus import ClaimEvent, ClaimEventKind

logger = logging.getLogger(__name__)


class MailSender(Protocol):
    def send(self, to: str, subject: str, body: str) -> None:
        ...


class LoggingMailSender:
    """Writes outgoing mail to the log instead of delivering it."""

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append((to, subject, body))
        logger.info(f"Mail to {to}: {subject}")


class SmtpMailSender:
    """Delivers mail through an SMTP relay."""

    def __init__(self, host: str, port: int, sender: str,
                 username: Optional[str] = None, password: Optional[str] = None,
                 use_tls: bool = True, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)


def build_mail_sender(settings: Settings) -> MailSender:
    """SMTP when a host is configured, logging otherwise."""
    if settings.smtp_host:
        return SmtpMailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.mail_from,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
    return LoggingMailSender()


def format_amount(amount_minor_units: int, currency: str) -> str:
    """5000, 'USD' -> 'USD 50.00'"""
    return f"{currency} {amount_minor_units / 100:.2f}"


class EmailNotifier:
    """
    Turns claim events into emails for the owner (and admins for new claims).

    Events without an owner email are skipped.
    """

    def __init__(self, sender: MailSender, admin_email: Optional[str] = None,
                 web_base_url: str = ""):
        self.sender = sender
        self.admin_email = admin_email
        self.web_base_url = web_base_url.rstrip("/")

    def handle(self, event: ClaimEvent) -> None:
        handler = {
            ClaimEventKind.CREATED: self._created,
            ClaimEventKind.APPROVED: self._approved,
            ClaimEventKind.REJECTED: self._rejected,
            ClaimEventKind.RECALLED: self._recalled,
        }.get(event.kind)
        if handler is not None:
            handler(event)

    def _to_owner(self, event: ClaimEvent, subject: str, body: str) -> None:
        if not event.owner_email:
            logger.warning(f"No email on file for owner of claim {event.claim_id}, skipping {event.kind.value} mail")
            return
        self.sender.send(event.owner_email, subject, body)

    def _created(self, event: ClaimEvent) -> None:
        amount = format_amount(event.amount_minor_units, event.currency_code)
        self._to_owner(
            event,
            f"Claim submitted: #{event.claim_id}",
            "Hi,\n\n"
            "Your claim has been submitted.\n"
            f"• Claim ID: #{event.claim_id}\n"
            f"• Title: {event.title}\n"
            f"• Amount: {amount}\n\n"
            "We'll email you when it's reviewed.\n",
        )
        if self.admin_email:
            self.sender.send(
                self.admin_email,
                f"New claim submitted: #{event.claim_id}",
                "A new claim was submitted.\n\n"
                f"• Claim ID: #{event.claim_id}\n"
                f"• Title: {event.title}\n"
                f"• Amount: {amount}\n"
                f"• Review: {self.web_base_url}/admin\n",
            )

    def _approved(self, event: ClaimEvent) -> None:
        amount = format_amount(event.amount_minor_units, event.currency_code)
        self._to_owner(
            event,
            f"Claim approved: #{event.claim_id}",
            "Great news!\n\n"
            "Your claim has been approved.\n"
            f"• Claim ID: #{event.claim_id}\n"
            f"• Title: {event.title}\n"
            f"• Amount: {amount}\n",
        )

    def _rejected(self, event: ClaimEvent) -> None:
        reason = event.comment if event.comment and event.comment.strip() else "—"
        self._to_owner(
            event,
            f"Claim rejected: #{event.claim_id}",
            "Your claim was rejected.\n\n"
            f"• Claim ID: #{event.claim_id}\n"
            f"• Title: {event.title}\n"
            f"• Reason: {reason}\n\n"
            "You can review and resubmit if appropriate.\n",
        )

    def _recalled(self, event: ClaimEvent) -> None:
        attachment = "Please attach a receipt when you resubmit.\n" if event.requires_attachment else ""
        self._to_owner(
            event,
            f"Claim returned for changes: #{event.claim_id}",
            "Your claim was returned to you for correction.\n\n"
            f"• Claim ID: #{event.claim_id}\n"
            f"• Title: {event.title}\n"
            f"• Reason: {event.comment or '—'}\n\n"
            f"{attachment}"
            f"Update it at {self.web_base_url}/claims/{event.claim_id}\n",
        )
