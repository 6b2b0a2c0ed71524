# services/fallback_transport.py
"""
Secondary delivery path used when the Graph send fails

SMTP through aiosmtplib, driven synchronously from the request thread.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate
from typing import Optional

import aiosmtplib

from core.exceptions import FallbackFailed

logger = logging.getLogger(__name__)


class FallbackTransport(ABC):
    """Mail transport configured by the site administrator"""

    @abstractmethod
    def send(self, to: str, subject: str, html_body: str, reply_to: str) -> None:
        """
        Deliver one HTML message

        Raises:
            FallbackFailed: If the message was not accepted
        """
        raise NotImplementedError


class UnconfiguredFallbackTransport(FallbackTransport):
    """Stand-in when no SMTP relay is configured; always fails"""

    def send(self, to: str, subject: str, html_body: str, reply_to: str) -> None:
        raise FallbackFailed("No fallback mail transport configured")


class SMTPFallbackTransport(FallbackTransport):
    """
    SMTP relay transport
    """

    def __init__(self, host: str, port: int = 587, username: Optional[str] = None,
                 password: Optional[str] = None, from_address: str = "",
                 from_name: str = "", timeout: float = 30, validate_certs: bool = True):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.from_name = from_name
        self.timeout = timeout
        self.validate_certs = validate_certs

    def build_message(self, to: str, subject: str, html_body: str, reply_to: str) -> MIMEText:
        msg = MIMEText(html_body, "html", "utf-8")
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, self.from_address)) if self.from_name else self.from_address
        msg["To"] = to
        msg["Reply-To"] = reply_to
        msg["Date"] = formatdate(localtime=True)
        domain = self.from_address.rpartition("@")[2] or "localhost"
        msg["Message-ID"] = f"<{uuid.uuid4()}@{domain}>"
        return msg

    async def _async_send(self, msg: MIMEText) -> None:
        smtp = aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            timeout=self.timeout,
            use_tls=self.port == 465,  # Implicit TLS
            start_tls=True if self.port == 587 else None,
            validate_certs=self.validate_certs,
        )
        async with smtp:
            if self.username and self.password:
                await smtp.login(self.username, self.password)
            await smtp.send_message(msg)

    def send(self, to: str, subject: str, html_body: str, reply_to: str) -> None:
        msg = self.build_message(to, subject, html_body, reply_to)
        try:
            asyncio.run(self._async_send(msg))
        except aiosmtplib.SMTPException as e:
            logger.error(f"Fallback SMTP delivery via {self.host}:{self.port} failed: {e}")
            raise FallbackFailed(f"SMTP error: {e.__class__.__name__}") from e
        except OSError as e:
            logger.error(f"Fallback SMTP relay {self.host}:{self.port} unreachable: {e}")
            raise FallbackFailed(f"SMTP relay unreachable: {e.__class__.__name__}") from e
        logger.info(f"Message delivered through fallback relay {self.host}")
