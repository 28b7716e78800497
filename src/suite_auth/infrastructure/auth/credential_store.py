"""Credential Store

Purpose: Relational storage for users, local credentials, sessions and
one-shot tokens.

Every multi-statement sequence (sign-up, session rotation, token consumption,
OAuth linking, user deletion) runs inside ``transaction()``, which commits on
success and rolls back on any exception. Storage failures surface as
``AuthError(PROVIDER_ERROR)``; the driver error is logged, never returned.

Lookups return ``None`` for "not found", "expired" or "already consumed";
callers decide which taxonomy error that means.
"""

import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Optional

from sqlalchemy import and_, case, delete, literal, null, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from suite_auth.domain.errors import AuthError, AuthErrorCode
from suite_auth.domain.models import AuthUser, OAuthIdentity, ProviderKind
from suite_auth.models import (
    AuthProviderConfigRow,
    EmailVerificationToken,
    LocalCredential,
    OAuthConnection,
    OAuthState,
    PasswordResetToken,
    User,
    UserSession,
    UTCDateTime,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def default_display_name(email: str) -> str:
    """Display name used when none is supplied: the email local-part"""
    return email.split("@", 1)[0]


def to_auth_user(user: User) -> AuthUser:
    """Map a users row onto the provider-neutral shape"""
    return AuthUser(
        id=user.id,
        email=user.email,
        email_verified=user.email_verified,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
        provider=ProviderKind(user.auth_provider),
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


@dataclass
class NewSession:
    """Session row about to be inserted"""

    id: str
    user_id: str
    refresh_token_hash: str
    family_id: str
    expires_at: datetime
    provider: str = ProviderKind.LOCAL.value
    identity_provider: Optional[str] = None

    def to_row(self, issued_at: datetime) -> UserSession:
        return UserSession(
            id=self.id,
            user_id=self.user_id,
            refresh_token_hash=self.refresh_token_hash,
            family_id=self.family_id,
            provider=self.provider,
            identity_provider=self.identity_provider,
            issued_at=issued_at,
            expires_at=self.expires_at,
            is_active=True,
        )


class CredentialStore:
    """SQLAlchemy-backed store shared by every auth provider"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize store

        Args:
            session_factory: Async session factory bound to the auth database
        """
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Open a session with a transaction; rollback on any failure"""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error(f"Auth storage operation failed: {e.__class__.__name__}: {e}")
            raise AuthError(AuthErrorCode.PROVIDER_ERROR, "Auth storage unavailable") from e

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self.transaction() as session:
            return await session.get(User, user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self.transaction() as session:
            result = await session.execute(select(User).where(User.email == normalize_email(email)))
            return result.scalar_one_or_none()

    async def create_local_user(
        self,
        *,
        user_id: str,
        email: str,
        display_name: str,
        password_hash: str,
        verification_token_hash: str,
        verification_expires_at: datetime,
        first_session: NewSession,
    ) -> User:
        """Insert user, credential, verification token and first session atomically

        Raises:
            AuthError: USER_ALREADY_EXISTS if the email was taken concurrently
        """
        now = _utc_now()
        user = User(
            id=user_id,
            email=normalize_email(email),
            display_name=display_name,
            email_verified=False,
            is_banned=False,
            auth_provider=ProviderKind.LOCAL.value,
            created_at=now,
            updated_at=now,
        )
        user.credential = LocalCredential(
            user_id=user_id,
            password_hash=password_hash,
            failed_login_attempts=0,
            created_at=now,
            password_changed_at=now,
        )

        async with self.transaction() as session:
            session.add(user)
            session.add(
                EmailVerificationToken(
                    user_id=user_id,
                    token_hash=verification_token_hash,
                    expires_at=verification_expires_at,
                    created_at=now,
                )
            )
            session.add(first_session.to_row(now))
            try:
                await session.flush()
            except IntegrityError as e:
                raise AuthError(
                    AuthErrorCode.USER_ALREADY_EXISTS, "User with this email already exists"
                ) from e

        logger.info(f"Created local user: {user.email} (id={user_id})")
        return user

    async def update_profile(self, user_id: str, changes: dict[str, Any]) -> Optional[User]:
        """Apply display_name / avatar_url changes; other keys are ignored"""
        allowed = {k: v for k, v in changes.items() if k in ("display_name", "avatar_url")}
        async with self.transaction() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            for key, value in allowed.items():
                setattr(user, key, value)
            if allowed:
                user.updated_at = _utc_now()
            return user

    async def set_banned(self, user_id: str, banned: bool) -> bool:
        async with self.transaction() as session:
            result = await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(is_banned=banned, updated_at=_utc_now())
                .execution_options(synchronize_session=False)
            )
            if banned:
                await self._revoke_user_sessions(session, user_id, "banned")
            return result.rowcount == 1

    async def delete_user(self, user_id: str) -> bool:
        """Delete a user and everything it owns in one transaction"""
        async with self.transaction() as session:
            if await session.get(User, user_id) is None:
                return False
            for model in (
                OAuthConnection,
                PasswordResetToken,
                EmailVerificationToken,
                UserSession,
                LocalCredential,
            ):
                await session.execute(delete(model).where(model.user_id == user_id))
            await session.execute(delete(User).where(User.id == user_id))

        logger.info(f"Deleted user: {user_id}")
        return True

    async def upsert_mirrored_user(
        self,
        *,
        user_id: str,
        email: str,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        email_verified: bool = False,
    ) -> User:
        """Idempotently mirror a managed-platform identity into ``users`` (keyed by id)"""
        email = normalize_email(email)
        now = _utc_now()
        async with self.transaction() as session:
            user = await session.get(User, user_id)
            if user is None:
                user = User(
                    id=user_id,
                    email=email,
                    display_name=display_name or default_display_name(email),
                    avatar_url=avatar_url,
                    email_verified=email_verified,
                    is_banned=False,
                    auth_provider=ProviderKind.MANAGED.value,
                    created_at=now,
                    updated_at=now,
                )
                session.add(user)
            else:
                user.email = email
                user.display_name = display_name or user.display_name or default_display_name(email)
                user.avatar_url = avatar_url or user.avatar_url
                user.email_verified = email_verified
                user.updated_at = now
        return user

    # ------------------------------------------------------------------
    # Local credentials and lockout
    # ------------------------------------------------------------------

    async def record_failed_login(
        self, user_id: str, max_attempts: int, lockout_duration: timedelta
    ) -> Optional[LocalCredential]:
        """Increment the failure counter and set the lock in one UPDATE

        A lock whose window already elapsed restarts the counter at 1.

        Returns:
            The credential as stored after the update
        """
        now = _utc_now()
        lock_elapsed = and_(
            LocalCredential.locked_until.is_not(None), LocalCredential.locked_until <= now
        )
        attempts = case((lock_elapsed, 1), else_=LocalCredential.failed_login_attempts + 1)

        async with self.transaction() as session:
            await session.execute(
                update(LocalCredential)
                .where(LocalCredential.user_id == user_id)
                .values(
                    failed_login_attempts=attempts,
                    locked_until=case(
                        (attempts >= max_attempts, literal(now + lockout_duration, UTCDateTime())),
                        else_=null(),
                    ),
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(
                select(LocalCredential)
                .where(LocalCredential.user_id == user_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

    async def reset_failed_logins(self, user_id: str) -> None:
        async with self.transaction() as session:
            await session.execute(
                update(LocalCredential)
                .where(LocalCredential.user_id == user_id)
                .values(failed_login_attempts=0, locked_until=None)
                .execution_options(synchronize_session=False)
            )

    async def update_password(self, user_id: str, password_hash: str) -> bool:
        async with self.transaction() as session:
            result = await session.execute(
                update(LocalCredential)
                .where(LocalCredential.user_id == user_id)
                .values(
                    password_hash=password_hash,
                    failed_login_attempts=0,
                    locked_until=None,
                    password_changed_at=_utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, new_session: NewSession) -> UserSession:
        row = new_session.to_row(_utc_now())
        async with self.transaction() as session:
            session.add(row)
        return row

    async def get_session_by_refresh_hash(self, refresh_token_hash: str) -> Optional[UserSession]:
        async with self.transaction() as session:
            result = await session.execute(
                select(UserSession).where(UserSession.refresh_token_hash == refresh_token_hash)
            )
            return result.scalar_one_or_none()

    async def get_user_with_session(
        self, user_id: str, session_id: str
    ) -> tuple[Optional[User], bool]:
        """Fetch a user and whether ``session_id`` is one of its active sessions

        Returns:
            (user or None, session active)
        """
        async with self.transaction() as session:
            result = await session.execute(
                select(User, UserSession.is_active)
                .outerjoin(
                    UserSession,
                    and_(UserSession.id == session_id, UserSession.user_id == User.id),
                )
                .where(User.id == user_id)
            )
            row = result.first()
            if row is None:
                return None, False
            return row[0], bool(row[1])

    async def rotate_session(self, old_session_id: str, new_session: NewSession) -> bool:
        """Retire ``old_session_id`` and insert ``new_session`` atomically

        Returns:
            False (nothing written) if the old session was no longer active
        """
        now = _utc_now()
        async with self.transaction() as session:
            result = await session.execute(
                update(UserSession)
                .where(UserSession.id == old_session_id, UserSession.is_active.is_(True))
                .values(is_active=False, revoked_at=now, revoked_reason="rotated")
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False
            session.add(new_session.to_row(now))
        return True

    async def revoke_session(self, session_id: str, reason: str) -> bool:
        async with self.transaction() as session:
            result = await session.execute(
                update(UserSession)
                .where(UserSession.id == session_id, UserSession.is_active.is_(True))
                .values(is_active=False, revoked_at=_utc_now(), revoked_reason=reason)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def revoke_user_sessions(self, user_id: str, reason: str) -> int:
        async with self.transaction() as session:
            return await self._revoke_user_sessions(session, user_id, reason)

    async def revoke_session_family(self, family_id: str, reason: str) -> int:
        async with self.transaction() as session:
            result = await session.execute(
                update(UserSession)
                .where(UserSession.family_id == family_id, UserSession.is_active.is_(True))
                .values(is_active=False, revoked_at=_utc_now(), revoked_reason=reason)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    async def _revoke_user_sessions(self, session: AsyncSession, user_id: str, reason: str) -> int:
        result = await session.execute(
            update(UserSession)
            .where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
            .values(is_active=False, revoked_at=_utc_now(), revoked_reason=reason)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ------------------------------------------------------------------
    # One-shot tokens
    # ------------------------------------------------------------------

    async def create_password_reset_token(
        self, user_id: str, token_hash: str, expires_at: datetime
    ) -> None:
        """Store a reset token, superseding any outstanding one for the user"""
        now = _utc_now()
        async with self.transaction() as session:
            await session.execute(
                update(PasswordResetToken)
                .where(
                    PasswordResetToken.user_id == user_id,
                    PasswordResetToken.consumed_at.is_(None),
                )
                .values(consumed_at=now)
                .execution_options(synchronize_session=False)
            )
            session.add(
                PasswordResetToken(
                    user_id=user_id, token_hash=token_hash, expires_at=expires_at, created_at=now
                )
            )

    async def consume_password_reset_token(
        self, token_hash: str, new_password_hash: str
    ) -> Optional[str]:
        """Consume a reset token, replace the hash and revoke every session

        Returns:
            The user id, or None if the token is unknown, expired or used
        """
        now = _utc_now()
        async with self.transaction() as session:
            token = await self._claim_one_shot(session, PasswordResetToken, token_hash, now)
            if token is None:
                return None

            await session.execute(
                update(LocalCredential)
                .where(LocalCredential.user_id == token.user_id)
                .values(
                    password_hash=new_password_hash,
                    failed_login_attempts=0,
                    locked_until=None,
                    password_changed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            revoked = await self._revoke_user_sessions(session, token.user_id, "password_reset")
            logger.info(f"Password reset for user {token.user_id}; revoked {revoked} session(s)")
            return token.user_id

    async def create_email_verification_token(
        self, user_id: str, token_hash: str, expires_at: datetime
    ) -> None:
        now = _utc_now()
        async with self.transaction() as session:
            await session.execute(
                update(EmailVerificationToken)
                .where(
                    EmailVerificationToken.user_id == user_id,
                    EmailVerificationToken.consumed_at.is_(None),
                )
                .values(consumed_at=now)
                .execution_options(synchronize_session=False)
            )
            session.add(
                EmailVerificationToken(
                    user_id=user_id, token_hash=token_hash, expires_at=expires_at, created_at=now
                )
            )

    async def consume_email_verification_token(self, token_hash: str) -> Optional[User]:
        """Consume a verification token and mark the email verified"""
        now = _utc_now()
        async with self.transaction() as session:
            token = await self._claim_one_shot(session, EmailVerificationToken, token_hash, now)
            if token is None:
                return None

            user = await session.get(User, token.user_id)
            if user is None:
                return None
            user.email_verified = True
            user.updated_at = now
            await session.execute(
                update(LocalCredential)
                .where(LocalCredential.user_id == token.user_id)
                .values(email_verified_at=now)
                .execution_options(synchronize_session=False)
            )
            return user

    async def _claim_one_shot(self, session: AsyncSession, model, token_hash: str, now: datetime):
        """Mark a one-shot token consumed; None unless this call won the claim"""
        result = await session.execute(select(model).where(model.token_hash == token_hash))
        token = result.scalar_one_or_none()
        if token is None or token.consumed_at is not None or token.expires_at <= now:
            return None

        claimed = await session.execute(
            update(model)
            .where(model.id == token.id, model.consumed_at.is_(None))
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            return None
        return token

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    async def save_oauth_state(
        self,
        state: str,
        provider: str,
        redirect_uri: str,
        expires_at: datetime,
        code_verifier: Optional[str] = None,
    ) -> None:
        async with self.transaction() as session:
            session.add(
                OAuthState(
                    state=state,
                    provider=provider,
                    redirect_uri=redirect_uri,
                    code_verifier=code_verifier,
                    expires_at=expires_at,
                    created_at=_utc_now(),
                )
            )

    async def consume_oauth_state(self, state: str) -> Optional[OAuthState]:
        """Delete and return a pending authorization; None if missing or expired"""
        now = _utc_now()
        async with self.transaction() as session:
            record = await session.get(OAuthState, state)
            if record is None:
                return None
            result = await session.execute(delete(OAuthState).where(OAuthState.state == state))
            if result.rowcount != 1 or record.expires_at <= now:
                return None
            return record

    async def purge_expired_oauth_states(self) -> int:
        async with self.transaction() as session:
            result = await session.execute(
                delete(OAuthState).where(OAuthState.expires_at <= _utc_now())
            )
            return result.rowcount

    async def link_oauth_identity(self, identity: OAuthIdentity) -> tuple[User, bool]:
        """Resolve an OAuth identity to a user, creating or linking as needed

        Resolution order: existing connection, then verified email match, then
        a new password-less local account.

        Returns:
            Tuple of (user, created)

        Raises:
            AuthError: OAUTH_ERROR if the email belongs to another account and
                the provider did not verify it
        """
        email = normalize_email(identity.email or "")
        provider = identity.provider.value
        now = _utc_now()

        async with self.transaction() as session:
            result = await session.execute(
                select(OAuthConnection).where(
                    OAuthConnection.provider == provider,
                    OAuthConnection.provider_user_id == identity.provider_user_id,
                )
            )
            connection = result.scalar_one_or_none()
            if connection is not None:
                connection.last_login_at = now
                user = await session.get(User, connection.user_id)
                return user, False

            result = await session.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()
            created = user is None

            if user is not None:
                if not identity.email_verified:
                    raise AuthError(
                        AuthErrorCode.OAUTH_ERROR,
                        "An account with this email already exists",
                        status_code=409,
                        details={"provider": provider},
                    )
                if not user.email_verified:
                    user.email_verified = True
                    await session.execute(
                        update(LocalCredential)
                        .where(LocalCredential.user_id == user.id)
                        .values(email_verified_at=now)
                        .execution_options(synchronize_session=False)
                    )
                if not user.avatar_url and identity.avatar_url:
                    user.avatar_url = identity.avatar_url
                user.updated_at = now
            else:
                user = User(
                    email=email,
                    display_name=identity.display_name or default_display_name(email),
                    avatar_url=identity.avatar_url,
                    email_verified=identity.email_verified,
                    is_banned=False,
                    auth_provider=ProviderKind.LOCAL.value,
                    created_at=now,
                    updated_at=now,
                )
                user.credential = LocalCredential(
                    password_hash="",
                    failed_login_attempts=0,
                    email_verified_at=now if identity.email_verified else None,
                    created_at=now,
                )
                session.add(user)
                await session.flush()

            session.add(
                OAuthConnection(
                    user_id=user.id,
                    provider=provider,
                    provider_user_id=identity.provider_user_id,
                    email=email,
                    created_at=now,
                    last_login_at=now,
                )
            )

        logger.info(
            f"{'Created' if created else 'Linked'} user {user.email} via {provider} OAuth"
        )
        return user, created

    # ------------------------------------------------------------------
    # Provider configuration
    # ------------------------------------------------------------------

    async def load_provider_config(self) -> Optional[AuthProviderConfigRow]:
        async with self.transaction() as session:
            return await session.get(AuthProviderConfigRow, 1)

    async def save_provider_config(self, **values: Any) -> AuthProviderConfigRow:
        async with self.transaction() as session:
            row = await session.get(AuthProviderConfigRow, 1)
            if row is None:
                row = AuthProviderConfigRow(id=1)
                session.add(row)
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = _utc_now()
        return row
