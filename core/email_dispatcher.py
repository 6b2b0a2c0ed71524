# core/email_dispatcher.py
"""
Primary delivery path: Microsoft Graph sendMail

The dispatcher never raises for delivery problems. It returns a
DispatchResult so the pipeline can decide whether to fall back.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from core.credential_vault import CredentialVault
from core.exceptions import (
    ContactRelayError, CredentialsError, NetworkError, SendFailed, TokenError
)
from core.token_provider import TokenProvider, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
ACCEPTED_STATUSES = (200, 202)

REASON_CREDENTIALS = "credentials"
REASON_TOKEN = "token"
REASON_NETWORK = "network"
REASON_SEND = "send"


@dataclass
class DispatchResult:
    """Outcome of one primary send attempt"""
    success: bool
    status_code: Optional[int] = None
    reason: Optional[str] = None
    error_message: Optional[str] = None
    token_acquired: bool = False

    @property
    def error(self) -> Optional[ContactRelayError]:
        if self.success:
            return None
        if self.reason == REASON_CREDENTIALS:
            return CredentialsError(self.error_message or "")
        if self.reason == REASON_TOKEN:
            return TokenError(self.error_message or "")
        if self.reason == REASON_NETWORK:
            return NetworkError(self.error_message or "")
        return SendFailed(self.error_message or "")


class EmailDispatcher:
    """
    Sends one HTML message through Graph on behalf of the configured mailbox
    """

    def __init__(self, vault: CredentialVault, token_provider: TokenProvider,
                 http_client: Optional[httpx.Client] = None,
                 site_name: str = "", admin_email: str = "",
                 graph_base_url: str = GRAPH_BASE_URL,
                 timeout: float = DEFAULT_TIMEOUT):
        self.vault = vault
        self.token_provider = token_provider
        self.http_client = http_client or token_provider.http_client
        self.site_name = site_name
        self.admin_email = admin_email
        self.graph_base_url = graph_base_url.rstrip("/")
        self.timeout = timeout

    def build_message(self, to: str, subject: str, html_body: str,
                      sender_email: str, from_name: Optional[str] = None) -> Dict[str, Any]:
        return {
            "message": {
                "subject": subject,
                "body": {
                    "contentType": "HTML",
                    "content": html_body,
                },
                "toRecipients": [
                    {"emailAddress": {"address": to}},
                ],
                "from": {
                    "emailAddress": {
                        "address": sender_email,
                        "name": from_name or self.site_name,
                    },
                },
            },
            "saveToSentItems": "true",
        }

    def send(self, to: str, subject: str, html_body: str,
             from_name: Optional[str] = None) -> DispatchResult:
        """
        Send a single-recipient HTML message

        Args:
            to: Recipient address
            subject: Subject line
            html_body: Rendered HTML content
            from_name: Display name for the sender, defaults to the site name

        Returns:
            DispatchResult; success only for HTTP 200/202
        """
        try:
            credentials = self.vault.load()
        except CredentialsError as e:
            logger.error(f"Stored credentials unusable: {e}")
            return DispatchResult(False, reason=REASON_CREDENTIALS, error_message=str(e))
        if credentials is None:
            logger.warning("Graph credentials not configured")
            return DispatchResult(False, reason=REASON_CREDENTIALS,
                                  error_message="Microsoft Graph credentials not configured")

        try:
            token = self.token_provider.fetch(credentials)
        except TokenError as e:
            return DispatchResult(False, reason=REASON_TOKEN, error_message=str(e))
        except NetworkError as e:
            return DispatchResult(False, reason=REASON_NETWORK, error_message=str(e))

        sender = credentials.sender_email or self.admin_email
        if not sender:
            return DispatchResult(False, reason=REASON_SEND, token_acquired=True,
                                  error_message="No sender mailbox configured")

        url = f"{self.graph_base_url}/users/{quote(sender, safe='@')}/sendMail"
        try:
            response = self.http_client.post(
                url,
                json=self.build_message(to, subject, html_body, sender, from_name),
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Graph sendMail request failed: {e.__class__.__name__}")
            return DispatchResult(False, reason=REASON_NETWORK, token_acquired=True,
                                  error_message=f"Mail endpoint unreachable: {e.__class__.__name__}")

        if response.status_code in ACCEPTED_STATUSES:
            logger.info(f"Message accepted by Graph (HTTP {response.status_code})")
            return DispatchResult(True, status_code=response.status_code, token_acquired=True)

        message = _graph_error_message(response)
        logger.error(f"Graph sendMail rejected (HTTP {response.status_code}): {message}")
        return DispatchResult(False, status_code=response.status_code, reason=REASON_SEND,
                              error_message=message, token_acquired=True)


def _graph_error_message(response: httpx.Response) -> str:
    """Pull error.message out of a Graph error body"""
    try:
        body = response.json()
    except ValueError:
        return "Email send failed"
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = body["error"].get("message")
        if message:
            return str(message)
    return "Email send failed"
