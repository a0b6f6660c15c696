"""Tests for outbound mail (dev mode, SMTP transport selection) and templates."""

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from app.config import get_settings
from app.core import mailer
from app.core.mailer import code_email, digest_email, mail_mode, send_mail


@pytest.fixture
def smtp_env(monkeypatch):
    monkeypatch.setenv("SHORTLY_DEV_MAIL", "false")
    monkeypatch.setenv("SHORTLY_SMTP_HOST", "smtp.acme.io")
    monkeypatch.setenv("SHORTLY_SMTP_USER", "mailer@acme.io")
    monkeypatch.setenv("SHORTLY_SMTP_PASS", "pw")
    monkeypatch.setenv("SHORTLY_SMTP_FROM", "Shortly <mailer@acme.io>")
    monkeypatch.setattr(mailer, "_smtp_failed", False)
    get_settings.cache_clear()


class TestMailMode:
    def test_dev_mail_flag(self):
        assert mail_mode() == "dev"

    def test_missing_credentials_is_dev(self, monkeypatch):
        monkeypatch.setenv("SHORTLY_DEV_MAIL", "false")
        monkeypatch.setenv("SHORTLY_SMTP_USER", "")
        get_settings.cache_clear()
        assert mail_mode() == "dev"

    def test_configured_is_smtp(self, smtp_env):
        assert mail_mode() == "smtp"


class TestSendMail:
    def test_dev_mode_never_touches_smtp(self):
        with patch("app.core.mailer.smtplib.SMTP_SSL") as ssl_cls, patch("app.core.mailer.smtplib.SMTP") as plain_cls:
            assert send_mail("a@acme.io", "Hi", "body") == "dev"
        ssl_cls.assert_not_called()
        plain_cls.assert_not_called()

    def test_port_465_uses_ssl(self, smtp_env, monkeypatch):
        monkeypatch.setenv("SHORTLY_SMTP_PORT", "465")
        get_settings.cache_clear()
        with patch("app.core.mailer.smtplib.SMTP_SSL") as ssl_cls:
            assert send_mail("a@acme.io", "Hi", "body", "<p>body</p>") == "smtp"
        server = ssl_cls.return_value.__enter__.return_value
        server.login.assert_called_once_with("mailer@acme.io", "pw")
        msg = server.send_message.call_args[0][0]
        assert msg["To"] == "a@acme.io"
        assert msg["Subject"] == "Hi"

    def test_port_587_uses_starttls(self, smtp_env, monkeypatch):
        monkeypatch.setenv("SHORTLY_SMTP_PORT", "587")
        monkeypatch.setenv("SHORTLY_SMTP_SECURE", "false")
        get_settings.cache_clear()
        with patch("app.core.mailer.smtplib.SMTP") as plain_cls:
            assert send_mail("a@acme.io", "Hi", "body") == "smtp"
        server = plain_cls.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.send_message.assert_called_once()

    def test_smtp_failure_falls_back_to_dev(self, smtp_env):
        failing = MagicMock(side_effect=smtplib.SMTPException("boom"))
        with patch("app.core.mailer.smtplib.SMTP_SSL", failing):
            assert send_mail("a@acme.io", "Hi", "body") == "dev"
        assert mail_mode() == "dev"


class TestTemplates:
    def test_code_email(self):
        text, html = code_email("Verify your email", "123456", hint="Use it soon.")
        assert "123456" in text
        assert "10 minutes" in text
        assert "Use it soon." in text
        assert "123456" in html
        assert "<h2>Verify your email</h2>" in html

    def test_digest_email(self):
        top = [{"short_url": f"https://sho.rt/r/c{i}", "code": f"c{i}", "clicks": 10 - i} for i in range(7)]
        text = digest_email("Alice", 42, top, "https://sho.rt/analytics")
        assert "Hi Alice" in text
        assert "Total clicks: 42" in text
        assert "https://sho.rt/r/c4" in text
        assert "https://sho.rt/r/c5" not in text
        assert "Open dashboard: https://sho.rt/analytics" in text

    def test_digest_email_without_links(self):
        assert "Top links:\n—" in digest_email("", 0, [], "https://sho.rt/analytics")
