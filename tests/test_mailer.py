import logging

import mailer
from config import Settings


class FakeSMTP:
    sent: list = []

    def __init__(self, host, port, timeout=None) -> None:
        self.host = host
        self.port = port
        self.logged_in = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def ehlo(self) -> None:
        pass

    def has_extn(self, name: str) -> bool:
        return False

    def login(self, user: str, password: str) -> None:
        self.logged_in = user

    def send_message(self, message) -> None:
        FakeSMTP.sent.append(message)


class BrokenSMTP(FakeSMTP):
    def send_message(self, message) -> None:
        raise OSError("connection reset")


def smtp_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite://",
        "secret_key": "test-secret",
        "smtp_host": "smtp.example.com",
        "smtp_user": "mailer@example.com",
        "smtp_password": "secret",
    }
    values.update(overrides)
    return Settings(**values)


def test_welcome_email_is_sent(monkeypatch) -> None:
    FakeSMTP.sent = []
    monkeypatch.setattr(mailer.smtplib, "SMTP", FakeSMTP)

    mailer.deliver_welcome_email(smtp_settings(), "a@x.com", "Alice")

    assert len(FakeSMTP.sent) == 1
    message = FakeSMTP.sent[0]
    assert message["To"] == "a@x.com"
    assert message["From"] == "mailer@example.com"
    assert message["Subject"] == mailer.WELCOME_SUBJECT
    assert "Hi Alice" in message.get_body(preferencelist=("plain",)).get_content()


def test_welcome_email_failure_is_logged_not_raised(monkeypatch, caplog) -> None:
    monkeypatch.setattr(mailer.smtplib, "SMTP", BrokenSMTP)

    with caplog.at_level(logging.ERROR, logger="mailer"):
        mailer.deliver_welcome_email(smtp_settings(), "a@x.com", "Alice")

    assert "welcome_email: failed" in caplog.text


def test_welcome_email_skipped_without_smtp_host(monkeypatch) -> None:
    FakeSMTP.sent = []
    monkeypatch.setattr(mailer.smtplib, "SMTP", FakeSMTP)

    mailer.deliver_welcome_email(smtp_settings(smtp_host=None), "a@x.com", "Alice")

    assert FakeSMTP.sent == []
