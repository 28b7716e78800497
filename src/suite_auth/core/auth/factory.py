"""Authentication provider factory.

Resolves the process-wide ``AuthProviderConfig`` and wires providers into an
``AuthService``:

1. A persisted ``auth_provider_config`` row wins when present.
2. Otherwise the managed identity platform is selected when both
   MANAGED_IDENTITY_URL and MANAGED_IDENTITY_SERVICE_KEY are set.
3. Otherwise local auth only.

The local provider stays enabled as a fallback in every case.
"""

import logging
from datetime import timedelta
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from suite_auth.config.settings import Settings
from suite_auth.domain.errors import AuthError
from suite_auth.domain.models import AuthProviderConfig, ProviderKind
from suite_auth.infrastructure.auth.audit_log import AuthEventLog
from suite_auth.infrastructure.auth.credential_store import CredentialStore
from suite_auth.infrastructure.auth.mailer import AuthMailer, LoggingAuthMailer
from suite_auth.infrastructure.auth.password_hasher import PasswordHasher
from suite_auth.infrastructure.auth.token_issuer import TokenIssuer
from suite_auth.infrastructure.identity.platform_client import IdentityPlatformClient

from .local import LocalAuthProvider
from .managed import ManagedIdentityProvider
from .oauth import create_oauth_providers
from .service import AuthService

logger = logging.getLogger(__name__)

# Global service instance (initialized at startup)
_service_instance: Optional[AuthService] = None


async def resolve_provider_config(store: CredentialStore, settings: Settings) -> AuthProviderConfig:
    """Resolve provider selection and local policy.

    Args:
        store: Credential store (for the persisted configuration row)
        settings: Application settings (managed platform credentials, defaults)

    Returns:
        Immutable AuthProviderConfig
    """
    managed_configured = settings.managed_identity_configured

    try:
        row = await store.load_provider_config()
    except AuthError:
        logger.warning("Could not read auth_provider_config; falling back to environment detection")
        row = None

    if row is not None:
        managed_enabled = row.managed_enabled
        try:
            active = ProviderKind(row.active_provider)
        except ValueError:
            logger.warning(f"Unknown active_provider '{row.active_provider}' in config; using local")
            active = ProviderKind.LOCAL
        reason = "persisted configuration"

        if (managed_enabled or active == ProviderKind.MANAGED) and not managed_configured:
            logger.warning(
                "Persisted config enables the managed identity platform but its URL or "
                "service key is not set - disabling it"
            )
            managed_enabled = False
            reason = "persisted configuration (managed platform not configured)"
        if active == ProviderKind.MANAGED and not managed_enabled:
            active = ProviderKind.LOCAL

        config = AuthProviderConfig(
            active_provider=active,
            managed_enabled=managed_enabled,
            local_enabled=row.local_enabled or active == ProviderKind.LOCAL or not managed_enabled,
            require_email_verification=row.local_require_email_verification,
            max_failed_login_attempts=row.local_max_failed_login_attempts,
            lockout_duration_minutes=row.local_lockout_duration_minutes,
            session_duration_hours=row.local_session_duration_hours,
            source="persisted",
            reason=reason,
        )
    else:
        if managed_configured:
            active = ProviderKind.MANAGED
            reason = "managed identity platform credentials present"
        else:
            active = ProviderKind.LOCAL
            reason = "managed identity platform not configured"
            logger.info("Managed identity platform not configured - using local auth")

        config = AuthProviderConfig(
            active_provider=active,
            managed_enabled=managed_configured,
            local_enabled=True,
            require_email_verification=settings.local_require_email_verification,
            max_failed_login_attempts=settings.local_max_failed_login_attempts,
            lockout_duration_minutes=settings.local_lockout_duration_minutes,
            session_duration_hours=settings.local_session_duration_hours,
            source="environment",
            reason=reason,
        )

    logger.info(f"Auth provider selected: {config.active_provider.value} ({config.reason})")
    return config


async def create_auth_service(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    mailer: Optional[AuthMailer] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AuthService:
    """Build an AuthService from settings.

    Args:
        settings: Application settings
        session_factory: Session factory for the auth database
        mailer: Auth email sink (defaults to logging links)
        transport: Optional httpx transport for outbound calls (tests)

    Raises:
        ValueError: If the JWT secret is missing
    """
    store = CredentialStore(session_factory)
    config = await resolve_provider_config(store, settings)

    mailer = mailer or LoggingAuthMailer(
        settings.frontend_url, settings.verify_email_path, settings.reset_password_path
    )
    local = LocalAuthProvider(
        store=store,
        hasher=PasswordHasher(
            memory_cost=settings.argon2_memory_cost,
            time_cost=settings.argon2_time_cost,
            parallelism=settings.argon2_parallelism,
        ),
        token_issuer=TokenIssuer(
            secret_key=settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            access_token_expire_minutes=settings.access_token_expire_minutes,
        ),
        config=config,
        mailer=mailer,
    )

    managed = None
    if config.managed_enabled:
        managed = ManagedIdentityProvider(
            client=IdentityPlatformClient(
                settings.managed_identity_url,
                settings.managed_identity_service_key,
                transport=transport,
            ),
            store=store,
            password_reset_url=f"{settings.frontend_url.rstrip('/')}{settings.reset_password_path}",
        )

    oauth_providers = {
        name: adapter
        for name, adapter in create_oauth_providers(settings, transport).items()
        if adapter.is_configured()
    }
    logger.info(
        f"OAuth providers configured: {', '.join(p.value for p in oauth_providers) or 'none'}"
    )

    return AuthService(
        config=config,
        store=store,
        local=local,
        managed=managed,
        oauth_providers=oauth_providers,
        event_log=AuthEventLog(session_factory),
        oauth_state_ttl=timedelta(minutes=settings.oauth_state_ttl_minutes),
    )


async def init_auth_service(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession]
) -> AuthService:
    """Create the process-wide AuthService (called at startup, or to reload config)."""
    global _service_instance
    _service_instance = await create_auth_service(settings, session_factory)
    logger.info(f"Auth service initialized: {_service_instance.config.to_dict()}")
    return _service_instance


def get_auth_service() -> AuthService:
    """Get the process-wide AuthService.

    Raises:
        RuntimeError: If init_auth_service() has not run
    """
    if _service_instance is None:
        raise RuntimeError("Auth service not initialized. Call init_auth_service() first.")
    return _service_instance


def reset_auth_service() -> None:
    """Reset the global service instance (for testing)."""
    global _service_instance
    _service_instance = None
