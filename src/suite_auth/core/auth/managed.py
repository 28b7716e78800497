"""Managed identity provider (Supabase/GoTrue compatible).

Credentials, sessions and refresh-token rotation are owned by the external
platform. After every successful operation except token verification the
platform user is mirrored into the local ``users`` table (keyed by platform id)
so foreign keys elsewhere in the suite keep working regardless of provider.
Token verification only reads the mirror.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from suite_auth.core.auth.provider import AuthProvider
from suite_auth.domain.errors import AuthError, AuthErrorCode
from suite_auth.domain.models import AuthSession, AuthUser, ProviderKind, TokenVerificationResult
from suite_auth.infrastructure.auth.credential_store import (
    CredentialStore,
    default_display_name,
    to_auth_user,
)
from suite_auth.infrastructure.auth.token_issuer import TokenIssuer
from suite_auth.infrastructure.identity.platform_client import (
    IdentityPlatformClient,
    PlatformError,
    PlatformSession,
    PlatformUser,
)
from suite_auth.models import User

logger = logging.getLogger(__name__)

# (substring, code, status); first match wins
_PLATFORM_ERROR_MAP = (
    ("already registered", AuthErrorCode.USER_ALREADY_EXISTS, 409),
    ("invalid login credentials", AuthErrorCode.INVALID_CREDENTIALS, 401),
    ("email not confirmed", AuthErrorCode.EMAIL_NOT_VERIFIED, 403),
    ("invalid refresh token", AuthErrorCode.INVALID_REFRESH_TOKEN, 401),
    ("refresh token not found", AuthErrorCode.INVALID_REFRESH_TOKEN, 401),
    ("token expired", AuthErrorCode.TOKEN_EXPIRED, 401),
    ("token is expired", AuthErrorCode.TOKEN_EXPIRED, 401),
    ("jwt expired", AuthErrorCode.TOKEN_EXPIRED, 401),
    ("password should", AuthErrorCode.PASSWORD_TOO_WEAK, 400),
)


def map_platform_error(error: PlatformError) -> AuthError:
    """Translate a platform error message onto the shared taxonomy"""
    message = error.message or ""
    lowered = message.lower()
    for needle, code, status in _PLATFORM_ERROR_MAP:
        if needle in lowered:
            return AuthError(code, message, status_code=status)
    return AuthError(
        AuthErrorCode.PROVIDER_ERROR,
        message or "Identity platform error",
        status_code=error.status or 500,
    )


def _with_query(url: str, **extra: str) -> str:
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query))
    query.update(extra)
    return urlunsplit(parts._replace(query=urlencode(query)))


def _metadata_display_name(user: PlatformUser) -> Optional[str]:
    metadata = user.user_metadata
    return metadata.get("display_name") or metadata.get("full_name") or metadata.get("name")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _platform_auth_user(user: PlatformUser) -> AuthUser:
    """Platform profile as an AuthUser, for identities not yet mirrored"""
    return AuthUser(
        id=user.id,
        email=user.email,
        email_verified=user.email_confirmed_at is not None,
        display_name=_metadata_display_name(user) or default_display_name(user.email),
        avatar_url=user.user_metadata.get("avatar_url"),
        provider=ProviderKind.MANAGED,
        created_at=_parse_timestamp(user.created_at) or datetime.now(timezone.utc),
        updated_at=_parse_timestamp(user.updated_at),
    )


class ManagedIdentityProvider(AuthProvider):
    """Delegates the credential lifecycle to an external identity platform"""

    kind = ProviderKind.MANAGED

    def __init__(
        self,
        client: IdentityPlatformClient,
        store: CredentialStore,
        password_reset_url: Optional[str] = None,
    ):
        """Initialize managed provider.

        Args:
            client: Platform REST client
            store: Credential store (mirror table)
            password_reset_url: Where the platform's recovery email should land
        """
        self.client = client
        self.store = store
        self.password_reset_url = password_reset_url

    async def _mirror(self, platform_user: PlatformUser, **overrides: Any) -> User:
        metadata = platform_user.user_metadata
        return await self.store.upsert_mirrored_user(
            user_id=platform_user.id,
            email=platform_user.email,
            display_name=overrides.get("display_name") or _metadata_display_name(platform_user),
            avatar_url=overrides.get("avatar_url") or metadata.get("avatar_url"),
            email_verified=platform_user.email_confirmed_at is not None,
        )

    async def _to_session(self, platform_session: PlatformSession) -> AuthSession:
        user = await self._mirror(platform_session.user)
        if user.is_banned:
            raise AuthError(AuthErrorCode.ACCOUNT_DISABLED, "Account has been disabled")

        if platform_session.expires_at:
            expires_at = datetime.fromtimestamp(platform_session.expires_at, tz=timezone.utc)
        else:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=platform_session.expires_in)

        return AuthSession(
            user=to_auth_user(user),
            access_token=platform_session.access_token,
            refresh_token=platform_session.refresh_token,
            expires_at=expires_at,
            provider=self.kind,
            token_type=platform_session.token_type.lower(),
        )

    # ------------------------------------------------------------------

    async def sign_up(self, email: str, password: str, name: Optional[str] = None) -> AuthSession:
        try:
            result = await self.client.sign_up(
                email, password, data={"display_name": name} if name else None
            )
        except PlatformError as e:
            raise map_platform_error(e) from e

        if result.user is None:
            raise AuthError(AuthErrorCode.PROVIDER_ERROR, "Failed to create user")

        if result.session is None:
            await self._mirror(result.user, display_name=name)
            raise AuthError(
                AuthErrorCode.EMAIL_NOT_VERIFIED,
                "Account created. Check your email to confirm your address before signing in",
            )

        return await self._to_session(result.session)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        try:
            platform_session = await self.client.sign_in_with_password(email, password)
        except PlatformError as e:
            raise map_platform_error(e) from e
        return await self._to_session(platform_session)

    async def sign_out(self, access_token: str) -> None:
        claims = TokenIssuer.peek_claims(access_token)
        if claims is None or claims.get("provider") == ProviderKind.LOCAL.value:
            return
        try:
            await self.client.sign_out(access_token)
        except PlatformError as e:
            logger.warning(f"Managed sign-out failed: {e.message}")

    async def verify_token(self, access_token: str) -> TokenVerificationResult:
        claims = TokenIssuer.peek_claims(access_token)
        if claims is None:
            return TokenVerificationResult.failure("Invalid token", AuthErrorCode.INVALID_TOKEN)
        if claims.get("provider") == ProviderKind.LOCAL.value:
            logger.warning("Rejected local-provider token on the managed verification path")
            return TokenVerificationResult.failure(
                "Token not from managed provider", AuthErrorCode.INVALID_TOKEN
            )

        try:
            platform_user = await self.client.get_user(access_token)
        except PlatformError as e:
            mapped = map_platform_error(e)
            if mapped.code == AuthErrorCode.TOKEN_EXPIRED:
                return TokenVerificationResult.failure("Token expired", AuthErrorCode.TOKEN_EXPIRED)
            return TokenVerificationResult.failure("Invalid token", AuthErrorCode.INVALID_TOKEN)

        # Only session-issuing calls write the mirror
        mirrored = await self.store.get_user(platform_user.id)
        if mirrored is not None and mirrored.is_banned:
            return TokenVerificationResult.failure(
                "Account has been disabled", AuthErrorCode.ACCOUNT_DISABLED
            )
        user = to_auth_user(mirrored) if mirrored is not None else _platform_auth_user(platform_user)

        expires_at = None
        if isinstance(claims.get("exp"), (int, float)):
            expires_at = datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
        return TokenVerificationResult(valid=True, user=user, expires_at=expires_at)

    async def refresh_session(self, refresh_token: str) -> AuthSession:
        try:
            platform_session = await self.client.refresh_session(refresh_token)
        except PlatformError as e:
            mapped = map_platform_error(e)
            if mapped.code == AuthErrorCode.PROVIDER_ERROR and e.status in (400, 401):
                raise AuthError(AuthErrorCode.INVALID_REFRESH_TOKEN, "Invalid refresh token") from e
            raise mapped from e
        return await self._to_session(platform_session)

    async def reset_password_request(self, email: str) -> None:
        try:
            await self.client.recover(email, redirect_to=self.password_reset_url)
        except PlatformError as e:
            logger.warning(f"Managed password reset request failed: {e.message}")

    async def reset_password(
        self,
        new_password: str,
        token: Optional[str] = None,
        user_id: Optional[str] = None,
        current_password: Optional[str] = None,
    ) -> None:
        if token:
            try:
                await self.client.update_user(token, {"password": new_password})
            except PlatformError as e:
                mapped = map_platform_error(e)
                if mapped.code == AuthErrorCode.PASSWORD_TOO_WEAK:
                    raise mapped from e
                if e.status in (401, 403) or mapped.code == AuthErrorCode.TOKEN_EXPIRED:
                    raise AuthError(
                        AuthErrorCode.INVALID_TOKEN, "Invalid or expired reset token"
                    ) from e
                raise mapped from e
            return

        if user_id and current_password is not None:
            mirror = await self.store.get_user(user_id)
            if mirror is None:
                raise AuthError(AuthErrorCode.USER_NOT_FOUND, "User not found")
            try:
                await self.client.sign_in_with_password(mirror.email, current_password)
            except PlatformError as e:
                mapped = map_platform_error(e)
                if mapped.code == AuthErrorCode.INVALID_CREDENTIALS:
                    raise AuthError(
                        AuthErrorCode.INVALID_CREDENTIALS, "Current password is incorrect"
                    ) from e
                raise mapped from e
            try:
                await self.client.admin_update_user(user_id, {"password": new_password})
            except PlatformError as e:
                raise map_platform_error(e) from e
            return

        raise AuthError(AuthErrorCode.INVALID_INPUT, "Token or current password required")

    async def get_user(self, user_id: str) -> Optional[AuthUser]:
        try:
            platform_user = await self.client.admin_get_user(user_id)
        except PlatformError as e:
            raise map_platform_error(e) from e
        if platform_user is None:
            return None
        return to_auth_user(await self._mirror(platform_user))

    async def get_user_by_email(self, email: str) -> Optional[AuthUser]:
        user = await self.store.get_user_by_email(email)
        if user is None or user.auth_provider != self.kind.value:
            return None
        return to_auth_user(user)

    async def update_user(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> AuthUser:
        metadata = {}
        if display_name is not None:
            metadata["display_name"] = display_name
        if avatar_url is not None:
            metadata["avatar_url"] = avatar_url

        try:
            if metadata:
                platform_user = await self.client.admin_update_user(
                    user_id, {"user_metadata": metadata}
                )
            else:
                platform_user = await self.client.admin_get_user(user_id)
        except PlatformError as e:
            if e.status == 404:
                raise AuthError(AuthErrorCode.USER_NOT_FOUND, "User not found") from e
            raise map_platform_error(e) from e
        if platform_user is None:
            raise AuthError(AuthErrorCode.USER_NOT_FOUND, "User not found")

        return to_auth_user(
            await self._mirror(platform_user, display_name=display_name, avatar_url=avatar_url)
        )

    async def delete_user(self, user_id: str) -> None:
        found_on_platform = True
        try:
            await self.client.admin_delete_user(user_id)
        except PlatformError as e:
            if e.status != 404:
                raise map_platform_error(e) from e
            found_on_platform = False

        mirrored = await self.store.delete_user(user_id)
        if not found_on_platform and not mirrored:
            raise AuthError(AuthErrorCode.USER_NOT_FOUND, "User not found")

    async def get_oauth_url(
        self,
        provider: str,
        state: str,
        redirect_uri: str,
        code_challenge: Optional[str] = None,
    ) -> str:
        if not code_challenge:
            raise AuthError(AuthErrorCode.INVALID_INPUT, "PKCE code challenge required")
        return self.client.authorize_url(
            provider,
            redirect_to=_with_query(redirect_uri, state=state),
            code_challenge=code_challenge,
        )

    async def handle_oauth_callback(
        self,
        provider: str,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> AuthSession:
        if not code_verifier:
            raise AuthError(
                AuthErrorCode.INVALID_OAUTH_STATE, "Missing PKCE verifier for OAuth callback"
            )
        try:
            platform_session = await self.client.exchange_code_for_session(code, code_verifier)
        except PlatformError as e:
            raise AuthError(
                AuthErrorCode.OAUTH_ERROR,
                f"OAuth sign-in via {provider} failed: {e.message}",
                status_code=401,
            ) from e
        return await self._to_session(platform_session)
