"""Auth facade.

``AuthService`` is the only auth component the rest of the suite talks to. It
holds the resolved ``AuthProviderConfig`` and the provider instances, picks the
provider once per call, runs the OAuth flow (with server-side state) and writes
the audit trail.
"""

import base64
import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from suite_auth.core.auth.local import LocalAuthProvider
from suite_auth.core.auth.managed import ManagedIdentityProvider
from suite_auth.core.auth.oauth import OAuthProvider, parse_user_data
from suite_auth.core.auth.provider import AuthProvider
from suite_auth.domain.errors import AuthError, AuthErrorCode, OAuthError
from suite_auth.domain.models import (
    AuthEventType,
    AuthProviderConfig,
    AuthSession,
    AuthUser,
    OAuthProviderName,
    ProviderKind,
    TokenVerificationResult,
)
from suite_auth.infrastructure.auth.audit_log import AuthEventLog
from suite_auth.infrastructure.auth.credential_store import CredentialStore
from suite_auth.infrastructure.auth.token_issuer import TokenIssuer

logger = logging.getLogger(__name__)

ProviderRef = Union[ProviderKind, str, None]

_FAILED_SIGN_IN_CODES = frozenset(
    {
        AuthErrorCode.INVALID_CREDENTIALS,
        AuthErrorCode.ACCOUNT_LOCKED,
        AuthErrorCode.ACCOUNT_DISABLED,
        AuthErrorCode.EMAIL_NOT_VERIFIED,
    }
)


def pkce_challenge(code_verifier: str) -> str:
    """S256 code challenge for ``code_verifier``"""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class AuthService:
    """Uniform entry point over the configured auth providers"""

    def __init__(
        self,
        config: AuthProviderConfig,
        store: CredentialStore,
        local: LocalAuthProvider,
        managed: Optional[ManagedIdentityProvider],
        oauth_providers: dict[OAuthProviderName, OAuthProvider],
        event_log: AuthEventLog,
        oauth_state_ttl: timedelta = timedelta(minutes=10),
    ):
        self.config = config
        self.store = store
        self.local = local
        self.managed = managed
        self.oauth_providers = oauth_providers
        self.event_log = event_log
        self.oauth_state_ttl = oauth_state_ttl

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def provider_for(self, provider: ProviderRef = None) -> AuthProvider:
        """Resolve the provider handling a call (explicit, else the active one)

        Raises:
            AuthError: INVALID_INPUT for unknown names, PROVIDER_ERROR (503) for
                providers that are disabled or not configured
        """
        try:
            kind = ProviderKind(provider) if provider else self.config.active_provider
        except ValueError:
            raise AuthError(AuthErrorCode.INVALID_INPUT, f"Unknown auth provider: {provider}")

        if kind == ProviderKind.LOCAL and self.config.local_enabled:
            return self.local
        if kind == ProviderKind.MANAGED and self.config.managed_enabled and self.managed is not None:
            return self.managed

        raise AuthError(
            AuthErrorCode.PROVIDER_ERROR,
            f"Auth provider '{kind.value}' is not available",
            status_code=503,
        )

    @property
    def active_provider(self) -> AuthProvider:
        return self.provider_for(None)

    # ------------------------------------------------------------------
    # Credential lifecycle
    # ------------------------------------------------------------------

    async def sign_up(
        self, email: str, password: str, name: Optional[str] = None, provider: ProviderRef = None
    ) -> AuthSession:
        target = self.provider_for(provider)
        session = await target.sign_up(email, password, name)
        await self._record(AuthEventType.SIGN_UP, session.user, target.kind)
        return session

    async def sign_in(self, email: str, password: str, provider: ProviderRef = None) -> AuthSession:
        target = self.provider_for(provider)
        try:
            session = await target.sign_in(email, password)
        except AuthError as e:
            if e.code in _FAILED_SIGN_IN_CODES:
                await self.event_log.record(
                    AuthEventType.SIGN_IN_FAILED,
                    email=email,
                    provider=target.kind.value,
                    details={"code": e.code.value},
                )
            if e.details.get("account_locked"):
                await self.event_log.record(
                    AuthEventType.ACCOUNT_LOCKED, email=email, provider=target.kind.value
                )
            raise

        await self._record(AuthEventType.SIGN_IN, session.user, target.kind)
        return session

    async def sign_out(self, access_token: str, provider: ProviderRef = None) -> None:
        """Best-effort sign-out; never raises for bad tokens"""
        if provider:
            target = self.provider_for(provider)
        else:
            target = self._provider_for_token(access_token)
            if target is None:
                return
        await target.sign_out(access_token)

        claims = TokenIssuer.peek_claims(access_token) or {}
        await self.event_log.record(
            AuthEventType.SIGN_OUT, user_id=claims.get("sub"), provider=target.kind.value
        )

    async def verify_token(
        self, access_token: str, provider: ProviderRef = None
    ) -> TokenVerificationResult:
        if provider:
            return await self.provider_for(provider).verify_token(access_token)

        target = self._provider_for_token(access_token)
        if target is None:
            return TokenVerificationResult.failure(
                "Token not from an enabled provider", AuthErrorCode.INVALID_TOKEN
            )
        return await target.verify_token(access_token)

    def _provider_for_token(self, access_token: str) -> Optional[AuthProvider]:
        """Dispatch on the provider tag; the chosen provider still verifies it"""
        claims = TokenIssuer.peek_claims(access_token)
        if claims is None:
            return None
        if claims.get("provider") == ProviderKind.LOCAL.value:
            return self.local if self.config.local_enabled else None
        if self.config.managed_enabled and self.managed is not None:
            return self.managed
        return None

    async def refresh_session(self, refresh_token: str, provider: ProviderRef = None) -> AuthSession:
        target = self.provider_for(provider)
        session = await target.refresh_session(refresh_token)
        await self._record(AuthEventType.TOKEN_REFRESH, session.user, target.kind)
        return session

    async def reset_password_request(self, email: str, provider: ProviderRef = None) -> None:
        target = self.provider_for(provider)
        await target.reset_password_request(email)
        await self.event_log.record(
            AuthEventType.PASSWORD_RESET_REQUEST, email=email, provider=target.kind.value
        )

    async def reset_password(
        self,
        new_password: str,
        token: Optional[str] = None,
        user_id: Optional[str] = None,
        current_password: Optional[str] = None,
        provider: ProviderRef = None,
    ) -> None:
        target = self.provider_for(provider)
        await target.reset_password(
            new_password, token=token, user_id=user_id, current_password=current_password
        )
        event = AuthEventType.PASSWORD_RESET_COMPLETE if token else AuthEventType.PASSWORD_CHANGE
        await self.event_log.record(event, user_id=user_id, provider=target.kind.value)

    async def verify_email(self, token: str, provider: ProviderRef = None) -> AuthUser:
        target = self.provider_for(provider)
        user = await target.verify_email(token)
        await self._record(AuthEventType.EMAIL_VERIFIED, user, target.kind)
        return user

    async def resend_verification_email(self, email: str, provider: ProviderRef = None) -> None:
        target = self.provider_for(provider)
        await target.resend_verification_email(email)
        await self.event_log.record(
            AuthEventType.VERIFICATION_EMAIL_RESENT, email=email, provider=target.kind.value
        )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str, provider: ProviderRef = None) -> Optional[AuthUser]:
        return await self.provider_for(provider).get_user(user_id)

    async def get_user_by_email(self, email: str, provider: ProviderRef = None) -> Optional[AuthUser]:
        return await self.provider_for(provider).get_user_by_email(email)

    async def update_user(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        provider: ProviderRef = None,
    ) -> AuthUser:
        return await self.provider_for(provider).update_user(
            user_id, display_name=display_name, avatar_url=avatar_url
        )

    async def delete_user(self, user_id: str, provider: ProviderRef = None) -> None:
        target = self.provider_for(provider)
        await target.delete_user(user_id)
        await self.event_log.record(
            AuthEventType.USER_DELETED, user_id=user_id, provider=target.kind.value
        )

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def _oauth_name(self, provider: str) -> OAuthProviderName:
        try:
            return OAuthProviderName(provider)
        except ValueError:
            raise AuthError(AuthErrorCode.INVALID_INPUT, f"Unknown OAuth provider: {provider}")

    def _oauth_adapter(self, name: OAuthProviderName) -> OAuthProvider:
        adapter = self.oauth_providers.get(name)
        if adapter is None or not adapter.is_configured():
            raise OAuthError(
                name.value, f"OAuth provider '{name.value}' is not configured", misconfigured=True
            )
        return adapter

    def _oauth_via_managed(self) -> bool:
        return self.config.active_provider == ProviderKind.MANAGED and self.managed is not None

    async def get_oauth_url(
        self, provider: str, redirect_uri: str, scopes: Optional[list[str]] = None
    ) -> tuple[str, str]:
        """Start a federated sign-in

        A pending-authorization record (state, provider, redirect URI and, for
        the managed platform, the PKCE verifier) is stored server-side and must
        be presented back on the callback.

        Returns:
            Tuple of (authorization_url, state)
        """
        name = self._oauth_name(provider)
        state = secrets.token_urlsafe(32)
        expires_at = datetime.now(timezone.utc) + self.oauth_state_ttl

        if self._oauth_via_managed():
            code_verifier = secrets.token_urlsafe(64)
            url = await self.managed.get_oauth_url(
                name.value, state, redirect_uri, code_challenge=pkce_challenge(code_verifier)
            )
            await self.store.save_oauth_state(
                state, name.value, redirect_uri, expires_at, code_verifier=code_verifier
            )
            return url, state

        adapter = self._oauth_adapter(name)
        url = adapter.get_authorization_url(state, redirect_uri, scopes)
        await self.store.save_oauth_state(state, name.value, redirect_uri, expires_at)
        return url, state

    async def handle_oauth_callback(
        self, provider: str, code: str, state: str, user_data: Optional[str] = None
    ) -> AuthSession:
        """Finish a federated sign-in started by ``get_oauth_url``

        Args:
            provider: OAuth provider name
            code: Authorization code from the callback
            state: State value from the callback
            user_data: Apple's first-login ``user`` form field, if present

        Raises:
            AuthError: INVALID_OAUTH_STATE, OAUTH_ERROR, OAUTH_MISCONFIGURED,
                ACCOUNT_DISABLED
        """
        name = self._oauth_name(provider)
        pending = await self.store.consume_oauth_state(state) if state else None
        if pending is None or pending.provider != name.value:
            raise AuthError(AuthErrorCode.INVALID_OAUTH_STATE, "Invalid or expired OAuth state")

        if pending.code_verifier:
            if self.managed is None or not self.config.managed_enabled:
                raise AuthError(
                    AuthErrorCode.PROVIDER_ERROR, "Managed identity platform is not available", 503
                )
            session = await self.managed.handle_oauth_callback(
                name.value, code, pending.redirect_uri, code_verifier=pending.code_verifier
            )
            await self._record(
                AuthEventType.OAUTH_CONNECT, session.user, ProviderKind.MANAGED, {"oauth": name.value}
            )
            return session

        adapter = self._oauth_adapter(name)
        tokens = await adapter.exchange_code_for_tokens(code, pending.redirect_uri)
        identity = await adapter.get_user_info(tokens.access_token, tokens.id_token)

        if name == OAuthProviderName.APPLE and user_data:
            names = parse_user_data(user_data)
            identity.first_name = names["first_name"]
            identity.last_name = names["last_name"]
            full_name = " ".join(part for part in (names["first_name"], names["last_name"]) if part)
            identity.display_name = full_name or identity.display_name

        if not identity.email:
            raise OAuthError(name.value, "Email not provided by OAuth provider")

        user, created = await self.store.link_oauth_identity(identity)
        session = await self.local.issue_session_for_user(user, identity_provider=name.value)
        await self._record(
            AuthEventType.OAUTH_CONNECT,
            session.user,
            ProviderKind.LOCAL,
            {"oauth": name.value, "created": created},
        )
        return session

    # ------------------------------------------------------------------

    def get_available_providers(self) -> dict:
        """Provider availability for login screens"""
        return {
            "active_provider": self.config.active_provider.value,
            "local_enabled": self.config.local_enabled,
            "managed_enabled": self.config.managed_enabled and self.managed is not None,
            "oauth_providers": sorted(
                name.value
                for name, adapter in self.oauth_providers.items()
                if adapter.is_configured()
            ),
        }

    async def _record(
        self,
        event_type: AuthEventType,
        user: AuthUser,
        provider: ProviderKind,
        details: Optional[dict] = None,
    ) -> None:
        await self.event_log.record(
            event_type, user_id=user.id, email=user.email, provider=provider.value, details=details
        )
