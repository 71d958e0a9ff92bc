from __future__ import annotations

import smtplib
import socket
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import make_msgid
from pathlib import Path
from typing import Protocol

from .config import Settings


@dataclass(frozen=True)
class MailAttachment:
    filename: str
    content: bytes
    maintype: str = "application"
    subtype: str = "pdf"


@dataclass(frozen=True)
class OutgoingEmail:
    recipient: str
    subject: str
    html_body: str
    attachments: tuple[MailAttachment, ...] = field(default_factory=tuple)


class MailDeliveryError(Exception):
    """Raised when a mailer cannot hand a message to its transport."""

    def __init__(self, error_code: str, message: str) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class Mailer(Protocol):
    def send(self, email: OutgoingEmail) -> str: ...


class StubMailer:
    """In-process mailer that records messages instead of sending them."""

    def __init__(self, *, enabled: bool) -> None:
        self._enabled = enabled
        self.sent: list[OutgoingEmail] = []

    def send(self, email: OutgoingEmail) -> str:
        if not self._enabled:
            raise MailDeliveryError("mailer_disabled", "Live mail delivery is disabled")
        if "fail" in email.recipient.lower():
            raise MailDeliveryError("stub_delivery_failed", "Stub mailer forced failure for recipient")
        self.sent.append(email)
        attempted_at = datetime.now(timezone.utc)
        return f"stub-{len(self.sent)}-{int(attempted_at.timestamp())}"


class SmtpMailer:
    """SMTP mailer; writes ``.eml`` files when a pickup directory is configured."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout_seconds: float = 10.0,
        pickup_directory: str = "",
    ) -> None:
        stripped_host = host.strip()
        stripped_pickup = pickup_directory.strip()
        if not stripped_host and not stripped_pickup:
            raise ValueError("host or pickup_directory must be set")
        self._host = stripped_host
        self._port = port
        self._sender = sender
        self._username = username.strip()
        self._password = password
        self._use_tls = use_tls
        self._timeout_seconds = timeout_seconds
        self._pickup_directory = Path(stripped_pickup) if stripped_pickup else None

    def send(self, email: OutgoingEmail) -> str:
        message = self._build_message(email)
        if self._pickup_directory is not None:
            return self._write_pickup(message, self._pickup_directory)
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout_seconds) as client:
                if self._use_tls:
                    client.starttls()
                if self._username:
                    client.login(self._username, self._password)
                client.send_message(message)
        except smtplib.SMTPRecipientsRefused as exc:
            raise MailDeliveryError(
                "recipient_refused",
                f"Recipient refused: {mask_email(email.recipient)}",
            ) from exc
        except smtplib.SMTPAuthenticationError as exc:
            raise MailDeliveryError("auth_failed", f"SMTP authentication failed: {exc.smtp_code}") from exc
        except smtplib.SMTPException as exc:
            raise MailDeliveryError("smtp_error", f"SMTP error: {exc}") from exc
        except (socket.timeout, TimeoutError) as exc:
            raise MailDeliveryError("timeout", f"SMTP connection timed out: {exc}") from exc
        except OSError as exc:
            raise MailDeliveryError("connection_error", f"Connection error: {exc}") from exc
        return str(message["Message-ID"])

    def _build_message(self, email: OutgoingEmail) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = email.recipient
        message["Subject"] = email.subject
        message["Message-ID"] = make_msgid()
        message.set_content("This invoice is best viewed in an HTML capable mail client.")
        message.add_alternative(email.html_body, subtype="html")
        for attachment in email.attachments:
            message.add_attachment(
                attachment.content,
                maintype=attachment.maintype,
                subtype=attachment.subtype,
                filename=attachment.filename,
            )
        return message

    def _write_pickup(self, message: EmailMessage, directory: Path) -> str:
        message_id = str(message["Message-ID"])
        filename = message_id.strip("<>").replace("@", "_").replace("/", "_") + ".eml"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            (directory / filename).write_bytes(message.as_bytes())
        except OSError as exc:
            raise MailDeliveryError("pickup_write_failed", f"Could not write pickup file: {exc}") from exc
        return message_id


def create_mailer(settings: Settings) -> Mailer:
    if settings.mailer_type == "smtp":
        return SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.sender_address(),
            username=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout_seconds=settings.smtp_timeout_seconds,
            pickup_directory=settings.smtp_pickup_directory,
        )
    return StubMailer(enabled=settings.mailer_enabled)


def mask_email(address: str) -> str:
    normalized = address.strip()
    if not normalized:
        return "***"
    if "@" in normalized:
        local, domain = normalized.split("@", 1)
        if len(local) <= 1:
            return f"*@{domain}"
        return f"{local[0]}***@{domain}"
    if len(normalized) <= 4:
        return "*" * len(normalized)
    return f"{normalized[:2]}***{normalized[-2:]}"
