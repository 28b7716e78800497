"""
SQLAlchemy models for Suite Auth.

Import all models here so Base.metadata sees every table.
"""

from suite_auth.models.base import Base, UTCDateTime
from suite_auth.models.config import AuthEvent, AuthProviderConfigRow
from suite_auth.models.oauth import OAuthConnection, OAuthState
from suite_auth.models.session import EmailVerificationToken, PasswordResetToken, UserSession
from suite_auth.models.user import LocalCredential, User

__all__ = [
    "Base",
    "UTCDateTime",
    "User",
    "LocalCredential",
    "UserSession",
    "PasswordResetToken",
    "EmailVerificationToken",
    "OAuthConnection",
    "OAuthState",
    "AuthProviderConfigRow",
    "AuthEvent",
]
