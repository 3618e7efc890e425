import asyncio
import smtplib

import pytest

from circlein import email_service
from circlein.email_service import EmailDeliveryError, Mailer


class FakeSMTP:
    """Stands in for smtplib.SMTP and remembers how each connection ended"""

    connections = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.closed = False
        self.sent = []
        self.fail_login = False
        self.fail_starttls = False
        FakeSMTP.connections.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def starttls(self, context=None):
        if self.fail_starttls:
            raise smtplib.SMTPNotSupportedError("STARTTLS extension not supported by server.")

    def login(self, username, password):
        if self.fail_login:
            raise smtplib.SMTPAuthenticationError(535, b"Authentication failed")

    def sendmail(self, sender, recipients, message):
        self.sent.append((sender, recipients))

    def close(self):
        self.closed = True


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.connections = []
    monkeypatch.setattr(email_service.smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(email_service, "compile_mjml_to_html", lambda mjml: "<p>hi</p>")
    return FakeSMTP


def smtp_mailer(**kwargs):
    options = dict(
        from_address="CircleIn <noreply@circlein.test>",
        smtp_host="smtp.test",
        smtp_port=587,
        smtp_username="user",
        smtp_password="secret",
        smtp_use_tls=False,
        resend_api_key=None,
    )
    options.update(kwargs)
    return Mailer(**options)


def test_smtp_send_returns_message_id(fake_smtp):
    result = asyncio.run(smtp_mailer().send("alice@maple.test", "Hello", "<mjml></mjml>"))

    assert result["success"] is True
    assert result["messageId"].startswith("smtp-")
    conn = fake_smtp.connections[0]
    assert conn.sent == [("noreply@circlein.test", ["alice@maple.test"])]
    assert conn.closed is True


def test_failed_login_still_closes_connection(fake_smtp, monkeypatch):
    original_init = FakeSMTP.__init__

    def failing_init(self, *args, **kwargs):
        original_init(self, *args, **kwargs)
        self.fail_login = True

    monkeypatch.setattr(FakeSMTP, "__init__", failing_init)

    result = asyncio.run(smtp_mailer().send("alice@maple.test", "Hello", "<mjml></mjml>"))

    assert result["success"] is False
    assert "SMTP failed" in result["error"]
    assert fake_smtp.connections[0].closed is True


def test_failed_starttls_closes_connection(fake_smtp, monkeypatch):
    original_init = FakeSMTP.__init__

    def failing_init(self, *args, **kwargs):
        original_init(self, *args, **kwargs)
        self.fail_starttls = True

    monkeypatch.setattr(FakeSMTP, "__init__", failing_init)

    with pytest.raises(EmailDeliveryError):
        smtp_mailer(smtp_use_tls=True)._deliver("alice@maple.test", "Hello", "<p>hi</p>")
    assert fake_smtp.connections[0].closed is True


def test_unconfigured_mailer_reports_error():
    mailer = Mailer(smtp_host=None, resend_api_key=None)
    result = asyncio.run(mailer.send("alice@maple.test", "Hello", "<mjml></mjml>"))
    assert result["success"] is False
