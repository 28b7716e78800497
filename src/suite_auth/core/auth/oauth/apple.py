"""Sign in with Apple adapter.

Apple has no static client secret: each token request carries an ES256-signed
JWT built from the team id, key id and the downloaded private key. Apple also
has no userinfo endpoint; the identity comes from the ``id_token`` returned by
the code exchange, and the user's name only arrives once, in the ``user`` form
field of the first authorization callback.
"""

import json
import logging
import time
from typing import Any, Optional

import httpx
import jwt

from suite_auth.core.auth.oauth.base import OAuthProvider
from suite_auth.domain.errors import OAuthError
from suite_auth.domain.models import OAuthIdentity, OAuthProviderName

logger = logging.getLogger(__name__)

APPLE_ISSUER = "https://appleid.apple.com"
CLIENT_SECRET_TTL_SECONDS = 180 * 24 * 60 * 60  # Apple allows at most 6 months


def parse_user_data(user_json: Optional[str]) -> dict[str, Optional[str]]:
    """Extract first/last name from Apple's first-login ``user`` form field"""
    if not user_json:
        return {"first_name": None, "last_name": None}
    try:
        data = json.loads(user_json)
    except ValueError:
        logger.warning("Ignoring malformed Apple user payload")
        return {"first_name": None, "last_name": None}
    name = data.get("name") or {}
    return {"first_name": name.get("firstName"), "last_name": name.get("lastName")}


class AppleOAuthProvider(OAuthProvider):
    """Sign in with Apple"""

    name = OAuthProviderName.APPLE
    label = "Apple"
    authorization_endpoint = f"{APPLE_ISSUER}/auth/authorize"
    token_endpoint = f"{APPLE_ISSUER}/auth/token"
    default_scopes = ("name", "email")

    def __init__(
        self,
        client_id: Optional[str],
        team_id: Optional[str],
        key_id: Optional[str],
        private_key: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Apple adapter

        Args:
            client_id: Services ID
            team_id: Apple developer team ID
            key_id: Sign in with Apple key ID
            private_key: PEM-encoded ES256 private key (``\\n`` escapes allowed)
        """
        super().__init__(client_id, None, timeout=timeout, transport=transport)
        self.team_id = team_id
        self.key_id = key_id
        self.private_key = private_key.replace("\\n", "\n") if private_key else private_key

    def is_configured(self) -> bool:
        return bool(self.client_id and self.team_id and self.key_id and self.private_key)

    def extra_authorization_params(self) -> dict[str, str]:
        return {"response_mode": "form_post"}

    def get_client_secret(self) -> str:
        """Sign a short-lived client secret assertion"""
        now = int(time.time())
        payload = {
            "iss": self.team_id,
            "iat": now,
            "exp": now + CLIENT_SECRET_TTL_SECONDS,
            "aud": APPLE_ISSUER,
            "sub": self.client_id,
        }
        try:
            return jwt.encode(
                payload, self.private_key, algorithm="ES256", headers={"kid": self.key_id}
            )
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            logger.error(f"Apple client secret could not be signed: {e}")
            raise OAuthError(
                self.name.value, "Apple private key is invalid", misconfigured=True
            ) from e

    async def get_user_info(self, access_token: str, id_token: Optional[str] = None) -> OAuthIdentity:
        """Decode the identity from Apple's id_token

        The id_token comes straight from Apple's token endpoint over TLS, so its
        issuer and audience are checked but its signature is not.

        Raises:
            ValueError: If called without an id_token
            OAuthError: If the id_token is malformed or not meant for this client
        """
        if not id_token:
            raise ValueError("Apple requires id_token for user info")

        try:
            claims: dict[str, Any] = jwt.decode(id_token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise OAuthError(self.name.value, f"Apple OAuth error: invalid id_token ({e})") from e

        audience = claims.get("aud")
        audiences = audience if isinstance(audience, list) else [audience]
        if claims.get("iss") != APPLE_ISSUER or self.client_id not in audiences:
            raise OAuthError(
                self.name.value, "Apple OAuth error: id_token not issued for this client"
            )

        email_verified = claims.get("email_verified")
        return OAuthIdentity(
            provider=self.name,
            provider_user_id=str(claims["sub"]),
            email=claims.get("email"),
            email_verified=email_verified is True or email_verified == "true",
            raw=claims,
        )
