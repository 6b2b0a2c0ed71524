"""
Tests for the SMTP fallback transport.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import pytest

from core.exceptions import FallbackFailed
from services.fallback_transport import SMTPFallbackTransport, UnconfiguredFallbackTransport


def smtp_double():
    smtp = MagicMock()
    smtp.__aenter__ = AsyncMock(return_value=smtp)
    smtp.__aexit__ = AsyncMock(return_value=False)
    smtp.login = AsyncMock()
    smtp.send_message = AsyncMock()
    return smtp


@pytest.fixture
def transport():
    return SMTPFallbackTransport(
        host="smtp.example.org", port=587, username="relay", password="relay-pass",
        from_address="owner@example.org", from_name="Test Site",
    )


class TestBuildMessage:

    def test_headers(self, transport):
        msg = transport.build_message("owner@example.org", "[Test Site] Hi", "<p>Hi</p>",
                                      "Ada <ada@example.com>")

        assert msg["Subject"] == "[Test Site] Hi"
        assert msg["To"] == "owner@example.org"
        assert msg["From"] == "Test Site <owner@example.org>"
        assert msg["Reply-To"] == "Ada <ada@example.com>"
        assert msg["Message-ID"].endswith("@example.org>")
        assert msg.get_content_subtype() == "html"

    def test_body_is_unchanged_html(self, transport):
        msg = transport.build_message("owner@example.org", "Hi", "<p>Café</p>", "ada@example.com")

        assert msg.get_payload(decode=True).decode("utf-8") == "<p>Café</p>"


class TestSend:

    def test_send_logs_in_and_delivers(self, transport):
        smtp = smtp_double()
        with patch("services.fallback_transport.aiosmtplib.SMTP", return_value=smtp) as smtp_cls:
            transport.send("owner@example.org", "Hi", "<p>Hi</p>", "ada@example.com")

        kwargs = smtp_cls.call_args.kwargs
        assert kwargs["hostname"] == "smtp.example.org"
        assert kwargs["port"] == 587
        assert kwargs["start_tls"] is True
        assert kwargs["use_tls"] is False
        smtp.login.assert_awaited_once_with("relay", "relay-pass")
        smtp.send_message.assert_awaited_once()
        assert smtp.send_message.await_args.args[0]["Subject"] == "Hi"

    def test_implicit_tls_on_465(self):
        transport = SMTPFallbackTransport(host="smtp.example.org", port=465,
                                          from_address="owner@example.org")
        smtp = smtp_double()
        with patch("services.fallback_transport.aiosmtplib.SMTP", return_value=smtp) as smtp_cls:
            transport.send("owner@example.org", "Hi", "<p>Hi</p>", "ada@example.com")

        assert smtp_cls.call_args.kwargs["use_tls"] is True
        smtp.login.assert_not_awaited()

    def test_smtp_error_becomes_fallback_failed(self, transport):
        smtp = smtp_double()
        smtp.send_message.side_effect = aiosmtplib.SMTPRecipientsRefused([])
        with patch("services.fallback_transport.aiosmtplib.SMTP", return_value=smtp):
            with pytest.raises(FallbackFailed):
                transport.send("owner@example.org", "Hi", "<p>Hi</p>", "ada@example.com")

    def test_unreachable_relay_becomes_fallback_failed(self, transport):
        smtp = smtp_double()
        smtp.__aenter__.side_effect = ConnectionRefusedError("refused")
        with patch("services.fallback_transport.aiosmtplib.SMTP", return_value=smtp):
            with pytest.raises(FallbackFailed):
                transport.send("owner@example.org", "Hi", "<p>Hi</p>", "ada@example.com")


def test_unconfigured_transport_always_fails():
    with pytest.raises(FallbackFailed):
        UnconfiguredFallbackTransport().send("owner@example.org", "Hi", "<p>Hi</p>", "ada@example.com")
