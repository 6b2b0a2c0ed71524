# core/token_provider.py
"""
OAuth2 client-credentials exchange against Microsoft Entra ID.

Every call performs a fresh exchange. Tokens are handed straight to the
caller and never stored, so a leaked process snapshot holds at most the
token of an in-flight send.
"""

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from core.credential_vault import Credentials
from core.exceptions import NetworkError, TokenError

logger = logging.getLogger(__name__)

DEFAULT_AUTHORITY = "https://login.microsoftonline.com"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
DEFAULT_TIMEOUT = 30.0


class TokenProvider:
    """Exchanges vault credentials for a Graph bearer token"""

    def __init__(self, http_client: Optional[httpx.Client] = None,
                 authority: str = DEFAULT_AUTHORITY,
                 scope: str = GRAPH_SCOPE,
                 timeout: float = DEFAULT_TIMEOUT):
        self.http_client = http_client or httpx.Client(timeout=timeout)
        self.authority = authority.rstrip("/")
        self.scope = scope
        self.timeout = timeout

    def token_url(self, tenant_id: str) -> str:
        return f"{self.authority}/{quote(tenant_id, safe='')}/oauth2/v2.0/token"

    def fetch(self, credentials: Credentials) -> str:
        """
        Request a bearer token for the given app registration

        Args:
            credentials: Tenant, client id and client secret

        Returns:
            Access token string

        Raises:
            NetworkError: If the identity provider could not be reached
            TokenError: If the response carries no access token
        """
        url = self.token_url(credentials.tenant_id)
        try:
            response = self.http_client.post(
                url,
                data={
                    "client_id": credentials.client_id,
                    "client_secret": credentials.client_secret,
                    "scope": self.scope,
                    "grant_type": "client_credentials",
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Token request to tenant {credentials.tenant_id} failed: {e.__class__.__name__}")
            raise NetworkError(f"Token endpoint unreachable: {e.__class__.__name__}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        token = body.get("access_token")
        if isinstance(token, str) and token:
            logger.debug(f"Access token acquired for tenant {credentials.tenant_id}")
            return token

        description = body.get("error_description") or "Failed to obtain access token"
        logger.error(f"Token request rejected (HTTP {response.status_code}): {body.get('error', 'unknown')}")
        raise TokenError(str(description))
