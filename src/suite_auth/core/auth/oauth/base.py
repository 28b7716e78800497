"""OAuth2 adapter base class.

Each federated identity provider gets one adapter that knows how to build its
authorization URL, exchange a code for tokens and normalize its user info into
``OAuthIdentity``. Adapters hold only provider credentials; pending
authorization state lives in the credential store.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from suite_auth.domain.errors import OAuthError
from suite_auth.domain.models import OAuthIdentity, OAuthProviderName, OAuthTokens

logger = logging.getLogger(__name__)

# Token endpoint error codes that indicate our client registration is wrong
# rather than the authorization code being bad
MISCONFIGURATION_ERRORS = frozenset(
    {
        "invalid_client",
        "unauthorized_client",
        "incorrect_client_credentials",
        "redirect_uri_mismatch",
        "unsupported_grant_type",
    }
)


class OAuthProvider(ABC):
    """Abstract OAuth2 authorization-code adapter"""

    name: OAuthProviderName
    label: str
    authorization_endpoint: str
    token_endpoint: str
    default_scopes: tuple[str, ...] = ()

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize adapter

        Args:
            client_id: OAuth client ID
            client_secret: OAuth client secret
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def get_authorization_url(
        self, state: str, redirect_uri: str, scopes: Optional[list[str]] = None
    ) -> str:
        """Build the provider authorization URL

        Args:
            state: Opaque CSRF state bound to this authorization attempt
            redirect_uri: Callback URL registered with the provider
            scopes: Override default scopes

        Returns:
            Authorization URL
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes or self.default_scopes),
            "state": state,
        }
        params.update(self.extra_authorization_params())
        return f"{self.authorization_endpoint}?{urlencode(params)}"

    def extra_authorization_params(self) -> dict[str, str]:
        return {}

    def get_client_secret(self) -> str:
        return self.client_secret or ""

    async def exchange_code_for_tokens(self, code: str, redirect_uri: str) -> OAuthTokens:
        """Exchange an authorization code for tokens

        Raises:
            OAuthError: OAUTH_MISCONFIGURED for client problems, OAUTH_ERROR for
                rejected codes and upstream failures
        """
        if not self.is_configured():
            raise OAuthError(
                self.name.value, f"{self.label} OAuth is not configured", misconfigured=True
            )

        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_id,
            "client_secret": self.get_client_secret(),
        }

        async with self._client() as client:
            try:
                response = await client.post(
                    self.token_endpoint, data=data, headers={"Accept": "application/json"}
                )
            except httpx.HTTPError as e:
                logger.error(f"{self.label} token endpoint unreachable: {e}")
                raise OAuthError(self.name.value, f"{self.label} token exchange failed: {e}") from e

        payload = _json_body(response)
        if response.status_code != 200 or payload.get("error"):
            raise self._exchange_error(response.status_code, payload)

        access_token = payload.get("access_token")
        if not access_token:
            raise OAuthError(self.name.value, f"{self.label} token exchange failed: no access token")

        return OAuthTokens(
            access_token=access_token,
            token_type=payload.get("token_type", "bearer"),
            refresh_token=payload.get("refresh_token"),
            id_token=payload.get("id_token"),
            expires_in=payload.get("expires_in"),
            scope=payload.get("scope"),
        )

    @abstractmethod
    async def get_user_info(self, access_token: str, id_token: Optional[str] = None) -> OAuthIdentity:
        """Fetch and normalize the authenticated user's identity"""

    def _exchange_error(self, status_code: int, payload: dict[str, Any]) -> OAuthError:
        error = payload.get("error") or f"HTTP {status_code}"
        misconfigured = error in MISCONFIGURATION_ERRORS or status_code == 401
        description = payload.get("error_description")
        logger.warning(
            f"{self.label} token exchange rejected ({status_code}): {error}"
            + (f" - {description}" if description else "")
        )
        return OAuthError(
            self.name.value,
            f"{self.label} token exchange failed: {error}",
            misconfigured=misconfigured,
        )

    async def _get_json(self, client: httpx.AsyncClient, url: str, access_token: str, what: str):
        try:
            response = await client.get(
                url,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise OAuthError(self.name.value, f"{self.label} {what} request failed: {e}") from e

        if response.status_code != 200:
            raise OAuthError(
                self.name.value, f"{self.label} {what} request failed: {response.status_code}"
            )
        return response.json()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
