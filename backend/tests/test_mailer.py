from __future__ import annotations

import smtplib
from dataclasses import replace
from email import message_from_bytes
from email.policy import default as default_policy
from pathlib import Path
from unittest.mock import patch

import pytest

from invoicing_scheduler.config import Settings
from invoicing_scheduler.mailer import (
    MailAttachment,
    MailDeliveryError,
    OutgoingEmail,
    SmtpMailer,
    StubMailer,
    create_mailer,
    mask_email,
)


def _email(recipient: str = "billing@example.com", *, with_pdf: bool = False) -> OutgoingEmail:
    attachments = (MailAttachment(filename="invoice-T1-00001.pdf", content=b"%PDF-1.4 test"),) if with_pdf else ()
    return OutgoingEmail(
        recipient=recipient,
        subject="Invoice T1-00001",
        html_body="<div><h2>Invoice T1-00001</h2></div>",
        attachments=attachments,
    )


def test_stub_mailer_records_enabled_sends() -> None:
    mailer = StubMailer(enabled=True)

    message_id = mailer.send(_email())

    assert message_id.startswith("stub-1-")
    assert [email.recipient for email in mailer.sent] == ["billing@example.com"]


def test_stub_mailer_disabled_raises() -> None:
    mailer = StubMailer(enabled=False)

    with pytest.raises(MailDeliveryError) as exc_info:
        mailer.send(_email())

    assert exc_info.value.error_code == "mailer_disabled"
    assert mailer.sent == []


def test_smtp_mailer_requires_host_or_pickup_directory() -> None:
    with pytest.raises(ValueError):
        SmtpMailer(host=" ", port=25, sender="noreply@example.com")


def test_pickup_directory_receives_eml_with_attachment(tmp_path: Path) -> None:
    mailer = SmtpMailer(host="", port=25, sender="noreply@example.com", pickup_directory=str(tmp_path / "outbox"))

    message_id = mailer.send(_email(with_pdf=True))

    files = list((tmp_path / "outbox").glob("*.eml"))
    assert len(files) == 1
    parsed = message_from_bytes(files[0].read_bytes(), policy=default_policy)
    assert parsed["Subject"] == "Invoice T1-00001"
    assert parsed["To"] == "billing@example.com"
    assert parsed["From"] == "noreply@example.com"
    assert parsed["Message-ID"] == message_id
    attachments = list(parsed.iter_attachments())
    assert [part.get_filename() for part in attachments] == ["invoice-T1-00001.pdf"]
    assert attachments[0].get_content() == b"%PDF-1.4 test"


def test_unwritable_pickup_directory_maps_to_delivery_error(tmp_path: Path) -> None:
    blocker = tmp_path / "outbox"
    blocker.write_text("not a directory")
    mailer = SmtpMailer(host="", port=25, sender="noreply@example.com", pickup_directory=str(blocker))

    with pytest.raises(MailDeliveryError) as exc_info:
        mailer.send(_email())

    assert exc_info.value.error_code == "pickup_write_failed"


def test_smtp_connection_failure_maps_to_delivery_error() -> None:
    mailer = SmtpMailer(host="smtp.example.com", port=587, sender="noreply@example.com")

    with patch("invoicing_scheduler.mailer.smtplib.SMTP", side_effect=OSError("connection refused")):
        with pytest.raises(MailDeliveryError) as exc_info:
            mailer.send(_email())

    assert exc_info.value.error_code == "connection_error"
    assert "connection refused" in exc_info.value.message


def test_smtp_refused_recipient_is_masked_in_error() -> None:
    mailer = SmtpMailer(host="smtp.example.com", port=587, sender="noreply@example.com", use_tls=False)

    with patch("invoicing_scheduler.mailer.smtplib.SMTP") as smtp_cls:
        client = smtp_cls.return_value.__enter__.return_value
        client.send_message.side_effect = smtplib.SMTPRecipientsRefused({"billing@example.com": (550, b"no")})
        with pytest.raises(MailDeliveryError) as exc_info:
            mailer.send(_email())

    assert exc_info.value.error_code == "recipient_refused"
    assert exc_info.value.message == "Recipient refused: b***@example.com"
    client.starttls.assert_not_called()


def test_smtp_send_uses_tls_and_login_when_configured() -> None:
    mailer = SmtpMailer(
        host="smtp.example.com",
        port=587,
        sender="noreply@example.com",
        username="mailer",
        password="secret",
    )

    with patch("invoicing_scheduler.mailer.smtplib.SMTP") as smtp_cls:
        client = smtp_cls.return_value.__enter__.return_value
        mailer.send(_email())

    smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=10.0)
    client.starttls.assert_called_once()
    client.login.assert_called_once_with("mailer", "secret")
    client.send_message.assert_called_once()


def test_create_mailer_follows_settings() -> None:
    base = Settings()

    stub = create_mailer(base)
    assert isinstance(stub, StubMailer)
    with pytest.raises(MailDeliveryError):
        stub.send(_email())

    assert isinstance(create_mailer(replace(base, mailer_enabled=True)), StubMailer)
    smtp = create_mailer(replace(base, mailer_type="smtp", smtp_host="smtp.example.com"))
    assert isinstance(smtp, SmtpMailer)


def test_mask_email() -> None:
    assert mask_email("billing@example.com") == "b***@example.com"
    assert mask_email("a@example.com") == "*@example.com"
    assert mask_email("  ") == "***"
    assert mask_email("abc") == "***"
    assert mask_email("operator") == "op***or"
