"""Authentication Data Models

Purpose: Define the provider-neutral shapes every auth provider returns

Key Components:
- AuthUser: Normalized user, regardless of which provider authenticated it
- AuthSession: Access/refresh token pair bound to a user
- TokenVerificationResult: Outcome of access token verification
- AuthProviderConfig: Immutable provider selection and local policy
- OAuthIdentity / OAuthTokens: Normalized OAuth adapter output
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from suite_auth.domain.errors import AuthErrorCode


def to_json_compatible(value):
    """Convert datetime to JSON-compatible ISO format string"""
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class ProviderKind(str, Enum):
    """Credential-owning provider variants"""
    LOCAL = "local"
    MANAGED = "managed"


class OAuthProviderName(str, Enum):
    """Federated identity providers with an adapter"""
    GOOGLE = "google"
    GITHUB = "github"
    DISCORD = "discord"
    APPLE = "apple"


class AuthEventType(str, Enum):
    """Audit event kinds written to auth_events"""
    SIGN_UP = "sign_up"
    SIGN_IN = "sign_in"
    SIGN_IN_FAILED = "sign_in_failed"
    SIGN_OUT = "sign_out"
    TOKEN_REFRESH = "token_refresh"
    PASSWORD_RESET_REQUEST = "password_reset_request"
    PASSWORD_RESET_COMPLETE = "password_reset_complete"
    PASSWORD_CHANGE = "password_change"
    EMAIL_VERIFIED = "email_verified"
    VERIFICATION_EMAIL_RESENT = "verification_email_resent"
    ACCOUNT_LOCKED = "account_locked"
    OAUTH_CONNECT = "oauth_connect"
    USER_DELETED = "user_deleted"


@dataclass
class AuthUser:
    """User account as seen by the rest of the suite

    Attributes:
        id: Unique identifier (UUID string; platform id for managed users)
        email: Normalized email address
        email_verified: Whether the address has been confirmed
        display_name: Human-readable display name
        avatar_url: Optional avatar image URL
        provider: Provider that owns the credential lifecycle
        created_at: Account creation timestamp
        updated_at: Last profile update timestamp
        metadata: Provider-specific extras (never required by callers)
    """
    id: str
    email: str
    email_verified: bool
    display_name: str
    provider: ProviderKind
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "id": self.id,
            "email": self.email,
            "email_verified": self.email_verified,
            "display_name": self.display_name,
            "avatar_url": self.avatar_url,
            "provider": self.provider.value,
            "created_at": to_json_compatible(self.created_at),
            "updated_at": to_json_compatible(self.updated_at),
            "metadata": self.metadata,
        }


@dataclass
class AuthSession:
    """Issued session: short-lived access token plus opaque refresh token"""
    user: AuthUser
    access_token: str
    refresh_token: str
    expires_at: datetime
    provider: ProviderKind
    token_type: str = "bearer"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "user": self.user.to_dict(),
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": to_json_compatible(self.expires_at),
            "token_type": self.token_type,
            "provider": self.provider.value,
        }


@dataclass
class TokenVerificationResult:
    """Result of access token verification"""
    valid: bool
    user: Optional[AuthUser] = None
    error: Optional[str] = None
    error_code: Optional[AuthErrorCode] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def failure(cls, error: str, error_code: AuthErrorCode) -> "TokenVerificationResult":
        return cls(valid=False, error=error, error_code=error_code)


@dataclass(frozen=True)
class AuthProviderConfig:
    """Process-wide provider selection and local policy

    Resolved once at startup (see ``core.auth.factory.resolve_provider_config``)
    and never mutated; reloading builds a new instance.
    """
    active_provider: ProviderKind = ProviderKind.LOCAL
    managed_enabled: bool = False
    local_enabled: bool = True
    require_email_verification: bool = False
    max_failed_login_attempts: int = 5
    lockout_duration_minutes: int = 30
    session_duration_hours: int = 168
    source: str = "environment"
    reason: str = ""

    def is_enabled(self, provider: ProviderKind) -> bool:
        if provider == ProviderKind.LOCAL:
            return self.local_enabled
        return self.managed_enabled

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "active_provider": self.active_provider.value,
            "managed_enabled": self.managed_enabled,
            "local_enabled": self.local_enabled,
            "require_email_verification": self.require_email_verification,
            "max_failed_login_attempts": self.max_failed_login_attempts,
            "lockout_duration_minutes": self.lockout_duration_minutes,
            "session_duration_hours": self.session_duration_hours,
            "source": self.source,
        }


@dataclass
class OAuthTokens:
    """Tokens returned from an OAuth code exchange"""
    access_token: str
    token_type: str = "bearer"
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None


@dataclass
class OAuthIdentity:
    """Normalized identity returned by every OAuth adapter (never persisted as-is)"""
    provider: OAuthProviderName
    provider_user_id: str
    email: Optional[str]
    email_verified: bool = False
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar_url: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)
