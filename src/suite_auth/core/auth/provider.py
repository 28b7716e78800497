"""Abstract authentication provider interface.

This module defines the capability set every credential-owning provider
implements. Callers (route handlers, feature-flag checks, rate limiters) depend
only on this contract and on the normalized ``AuthUser``/``AuthSession`` shapes.
"""

from abc import ABC, abstractmethod
from typing import Optional

from suite_auth.domain.errors import AuthError, AuthErrorCode
from suite_auth.domain.models import AuthSession, AuthUser, ProviderKind, TokenVerificationResult


class AuthProvider(ABC):
    """Abstract interface for authentication providers.

    Implementations: ``LocalAuthProvider`` (password credentials stored here)
    and ``ManagedIdentityProvider`` (credentials owned by an external platform).
    Failures are raised as ``AuthError``; token verification returns a result.
    """

    kind: ProviderKind

    @abstractmethod
    async def sign_up(self, email: str, password: str, name: Optional[str] = None) -> AuthSession:
        """Register a new account and issue its first session.

        Raises:
            AuthError: USER_ALREADY_EXISTS, PASSWORD_TOO_WEAK, INVALID_INPUT
        """

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthSession:
        """Authenticate with email and password.

        Raises:
            AuthError: INVALID_CREDENTIALS, ACCOUNT_LOCKED, ACCOUNT_DISABLED,
                EMAIL_NOT_VERIFIED
        """

    @abstractmethod
    async def sign_out(self, access_token: str) -> None:
        """End the session behind ``access_token``. Never raises."""

    @abstractmethod
    async def verify_token(self, access_token: str) -> TokenVerificationResult:
        """Verify an access token minted by this provider."""

    @abstractmethod
    async def refresh_session(self, refresh_token: str) -> AuthSession:
        """Rotate a refresh token into a new session.

        Raises:
            AuthError: INVALID_REFRESH_TOKEN, TOKEN_EXPIRED, ACCOUNT_DISABLED
        """

    @abstractmethod
    async def reset_password_request(self, email: str) -> None:
        """Start a password reset. Succeeds whether or not the email exists."""

    @abstractmethod
    async def reset_password(
        self,
        new_password: str,
        token: Optional[str] = None,
        user_id: Optional[str] = None,
        current_password: Optional[str] = None,
    ) -> None:
        """Complete a reset (token flow) or change a password (current-password flow)."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[AuthUser]:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[AuthUser]:
        pass

    @abstractmethod
    async def update_user(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> AuthUser:
        pass

    @abstractmethod
    async def delete_user(self, user_id: str) -> None:
        pass

    async def get_oauth_url(
        self,
        provider: str,
        state: str,
        redirect_uri: str,
        code_challenge: Optional[str] = None,
    ) -> str:
        """Build an authorization URL for a federated provider (where supported)."""
        raise self._unsupported("OAuth sign-in")

    async def handle_oauth_callback(
        self,
        provider: str,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> AuthSession:
        """Finish a federated sign-in (where supported)."""
        raise self._unsupported("OAuth sign-in")

    async def verify_email(self, token: str) -> AuthUser:
        raise self._unsupported("Email verification")

    async def resend_verification_email(self, email: str) -> None:
        raise self._unsupported("Email verification")

    def _unsupported(self, feature: str) -> AuthError:
        return AuthError(
            AuthErrorCode.PROVIDER_ERROR,
            f"{feature} is not supported by the {self.kind.value} provider",
            status_code=501,
        )
