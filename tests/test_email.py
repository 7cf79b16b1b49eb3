"""Sipariş onay e-postası: içerik ve SMTP gönderimi (gerçek sunucu yok)."""
import smtplib

from app.core.config import settings
from app.services import email_sender


class FakeSMTP:
    sent: list = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def sendmail(self, from_addr, to_addrs, message):
        FakeSMTP.sent.append((from_addr, to_addrs, message))


def test_confirmation_html_escapes_codes():
    subject, body = email_sender.build_order_confirmation_html(12, "Oyun:\n  KEY<1>\n", 1999, "usd")
    assert subject.endswith("Siparişiniz hazır (#12)")
    assert "KEY&lt;1&gt;" in body
    assert "19.99 USD" in body


def test_send_without_smtp_returns_false(monkeypatch):
    monkeypatch.setattr(settings, "smtp_host", "")
    assert email_sender.send_order_confirmation_email("buyer@example.com", 1, "KEY", 100, "usd") is False


def test_send_uses_smtp(monkeypatch):
    FakeSMTP.sent = []
    monkeypatch.setattr(settings, "smtp_host", "smtp.example.com")
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    assert email_sender.send_order_confirmation_email("buyer@example.com", 3, "KEY-1", 5000, "usd") is True
    from_addr, to_addrs, _ = FakeSMTP.sent[0]
    assert to_addrs == ["buyer@example.com"]
    assert from_addr == settings.smtp_from


def test_smtp_failure_returns_false(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(settings, "smtp_host", "smtp.example.com")
    monkeypatch.setattr(smtplib, "SMTP", refuse)
    assert email_sender.send_email("buyer@example.com", "konu", "<p>x</p>") is False
