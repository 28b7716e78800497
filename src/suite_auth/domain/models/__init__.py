"""Domain models for Suite Auth"""

from .auth import (
    AuthEventType,
    AuthProviderConfig,
    AuthSession,
    AuthUser,
    OAuthIdentity,
    OAuthProviderName,
    OAuthTokens,
    ProviderKind,
    TokenVerificationResult,
)

__all__ = [
    "AuthEventType",
    "AuthProviderConfig",
    "AuthSession",
    "AuthUser",
    "OAuthIdentity",
    "OAuthProviderName",
    "OAuthTokens",
    "ProviderKind",
    "TokenVerificationResult",
]
