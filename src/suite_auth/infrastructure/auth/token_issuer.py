"""Token Issuer

Signs and verifies short-lived access tokens and mints opaque refresh tokens.

Access token format:
{
    "sub": "user-uuid",          # Subject (user_id)
    "email": "user@example.com",
    "provider": "local",         # Provider that minted the token
    "sid": "session-uuid",       # Session the token belongs to
    "idp": "github",             # Federated identity provider (OAuth logins only)
    "type": "access",
    "iss": "suite-auth",
    "iat": 1700000000,
    "exp": 1700003600,
    "jti": "token-uuid"
}

Refresh tokens carry no claims. Only their SHA-256 digest is stored, on the
session row, so revoking the row revokes the token.
"""

import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError

logger = logging.getLogger(__name__)


@dataclass
class AccessTokenValidation:
    """Result of access token validation"""

    valid: bool
    claims: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.claims.get("sub")

    @property
    def session_id(self) -> Optional[str]:
        return self.claims.get("sid")

    @property
    def expires_at(self) -> Optional[datetime]:
        exp = self.claims.get("exp")
        if exp is None:
            return None
        return datetime.fromtimestamp(exp, tz=timezone.utc)


def hash_token(token: str) -> str:
    """SHA-256 hex digest used to store refresh and one-shot tokens"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def new_opaque_token() -> str:
    """32 random bytes, hex encoded"""
    return secrets.token_hex(32)


class TokenIssuer:
    """Issues HS256 access tokens tagged with the minting provider"""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        issuer: str = "suite-auth",
        access_token_expire_minutes: int = 60,
    ):
        """Initialize token issuer

        Args:
            secret_key: Signing secret
            algorithm: JWT algorithm
            issuer: JWT issuer claim (iss)
            access_token_expire_minutes: Access token lifetime

        Raises:
            ValueError: If no secret is configured
        """
        if not secret_key:
            raise ValueError("JWT secret key is required for local auth")

        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.access_token_expire_minutes = access_token_expire_minutes

    def create_access_token(
        self,
        user_id: str,
        email: str,
        provider: str,
        session_id: str,
        identity_provider: Optional[str] = None,
        expires_delta: Optional[timedelta] = None,
    ) -> tuple[str, datetime]:
        """Create a signed access token

        Returns:
            Tuple of (token, expires_at)
        """
        now = datetime.now(timezone.utc)
        expires_at = now + (expires_delta or timedelta(minutes=self.access_token_expire_minutes))

        payload = {
            "sub": user_id,
            "email": email,
            "provider": provider,
            "sid": session_id,
            "type": "access",
            "iss": self.issuer,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": str(uuid.uuid4()),
        }
        if identity_provider:
            payload["idp"] = identity_provider

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        return token, expires_at.replace(microsecond=0)

    def verify_access_token(self, token: str, expected_provider: str) -> AccessTokenValidation:
        """Verify signature, expiry, issuer and minting provider

        Args:
            token: Encoded access token
            expected_provider: Provider attempting to trust the token

        Returns:
            AccessTokenValidation (never raises for bad tokens)
        """
        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"verify_aud": False},
            )
        except ExpiredSignatureError:
            return AccessTokenValidation(valid=False, error="token_expired")
        except JWTClaimsError as e:
            logger.debug(f"Access token claims rejected: {e}")
            return AccessTokenValidation(valid=False, error="invalid_claims")
        except JWTError as e:
            logger.debug(f"Access token rejected: {e}")
            return AccessTokenValidation(valid=False, error="invalid_token")

        if claims.get("type") != "access":
            return AccessTokenValidation(valid=False, claims=claims, error="invalid_token_type")

        if claims.get("provider") != expected_provider:
            logger.warning(
                f"Rejected token minted by '{claims.get('provider')}' on the "
                f"'{expected_provider}' verification path"
            )
            return AccessTokenValidation(valid=False, claims=claims, error="token_provider_mismatch")

        return AccessTokenValidation(valid=True, claims=claims)

    @staticmethod
    def peek_claims(token: str) -> Optional[dict[str, Any]]:
        """Read claims without verifying anything (dispatch and sign-out only)"""
        try:
            return jwt.get_unverified_claims(token)
        except JWTError:
            return None

    def decode_ignoring_expiry(self, token: str) -> Optional[dict[str, Any]]:
        """Verify signature but accept expired tokens (best-effort sign-out)"""
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError:
            return None

    @staticmethod
    def new_refresh_token() -> str:
        return new_opaque_token()

    @staticmethod
    def hash_token(token: str) -> str:
        return hash_token(token)
