"""Local authentication provider (email/password with Argon2id and JWT).

Default provider for self-hosted deployments, and always-on fallback when a
managed identity platform is active.

Account states (derived from ``users`` + ``local_credentials``):
    unverified -> active      email verification token consumed
    active     -> locked      failed attempts reach the configured threshold
    locked     -> active      lockout window elapses, or password reset
    *          -> banned      administrative action; overrides everything
"""

import asyncio
import logging
import math
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from suite_auth.core.auth.provider import AuthProvider
from suite_auth.domain.errors import AuthError, AuthErrorCode
from suite_auth.domain.models import (
    AuthProviderConfig,
    AuthSession,
    AuthUser,
    ProviderKind,
    TokenVerificationResult,
)
from suite_auth.infrastructure.auth.credential_store import (
    CredentialStore,
    NewSession,
    default_display_name,
    is_valid_email,
    normalize_email,
    to_auth_user,
)
from suite_auth.infrastructure.auth.mailer import AuthMailer
from suite_auth.infrastructure.auth.password_hasher import PasswordHasher
from suite_auth.infrastructure.auth.token_issuer import TokenIssuer, hash_token, new_opaque_token
from suite_auth.models import User

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
RESET_TOKEN_TTL = timedelta(hours=1)
VERIFICATION_TOKEN_TTL = timedelta(hours=24)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


def validate_password_strength(password: str) -> Optional[str]:
    """Return a descriptive error for weak passwords, or None"""
    if len(password or "") < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if not re.search(r"[A-Za-z]", password) or not re.search(r"\d", password):
        return "Password must contain at least one letter and one number"
    return None


def _require_strong_password(password: str) -> None:
    problem = validate_password_strength(password)
    if problem:
        raise AuthError(AuthErrorCode.PASSWORD_TOO_WEAK, problem)


def _invalid_credentials() -> AuthError:
    return AuthError(AuthErrorCode.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)


def _account_locked(locked_until: Optional[datetime]) -> AuthError:
    message = "Account is locked due to too many failed login attempts"
    details = {}
    if locked_until is not None:
        remaining = locked_until - datetime.now(timezone.utc)
        minutes = max(1, math.ceil(remaining.total_seconds() / 60))
        message = f"{message}. Try again in {minutes} minute(s)"
        details["locked_until"] = locked_until.isoformat()
    return AuthError(AuthErrorCode.ACCOUNT_LOCKED, message, details=details)


def _account_disabled() -> AuthError:
    return AuthError(AuthErrorCode.ACCOUNT_DISABLED, "Account has been disabled")


class LocalAuthProvider(AuthProvider):
    """Email/password authentication backed by the credential store.

    Features:
    - Registration with password strength rules and email verification tokens
    - Sign-in with lockout after repeated failures
    - Short-lived access tokens, rotated opaque refresh tokens
    - Password reset (one-shot token) and password change (current password)
    """

    kind = ProviderKind.LOCAL

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        token_issuer: TokenIssuer,
        config: AuthProviderConfig,
        mailer: AuthMailer,
    ):
        """Initialize local auth provider.

        Args:
            store: Credential store
            hasher: Argon2id password hasher
            token_issuer: Access/refresh token issuer
            config: Resolved provider configuration (local policy knobs)
            mailer: Outgoing auth email sink
        """
        self.store = store
        self.hasher = hasher
        self.token_issuer = token_issuer
        self.config = config
        self.mailer = mailer
        self._dummy_hash: Optional[str] = None

    # ------------------------------------------------------------------
    # Sign-up / sign-in / sign-out
    # ------------------------------------------------------------------

    async def sign_up(self, email: str, password: str, name: Optional[str] = None) -> AuthSession:
        email = normalize_email(email)
        if not is_valid_email(email):
            raise AuthError(AuthErrorCode.INVALID_INPUT, "Invalid email address")

        if await self.store.get_user_by_email(email) is not None:
            raise AuthError(AuthErrorCode.USER_ALREADY_EXISTS, "User with this email already exists")

        _require_strong_password(password)

        user_id = str(uuid.uuid4())
        display_name = (name or "").strip() or default_display_name(email)
        password_hash = await asyncio.to_thread(self.hasher.hash, password)
        verification_token = new_opaque_token()
        new_session, access_token, refresh_token, expires_at = self._prepare_session(user_id, email)

        user = await self.store.create_local_user(
            user_id=user_id,
            email=email,
            display_name=display_name,
            password_hash=password_hash,
            verification_token_hash=hash_token(verification_token),
            verification_expires_at=datetime.now(timezone.utc) + VERIFICATION_TOKEN_TTL,
            first_session=new_session,
        )

        await self._send_quietly(
            self.mailer.send_verification_email(email, display_name, verification_token),
            "verification",
        )

        return AuthSession(
            user=to_auth_user(user),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            provider=self.kind,
        )

    async def sign_in(self, email: str, password: str) -> AuthSession:
        user = await self.store.get_user_by_email(email)
        credential = user.credential if user is not None else None

        if user is None or credential is None:
            # Equalize timing for unknown emails
            await asyncio.to_thread(self.hasher.verify, self._get_dummy_hash(), password)
            raise _invalid_credentials()

        if user.is_banned:
            raise _account_disabled()

        now = datetime.now(timezone.utc)
        if credential.is_locked(now):
            raise _account_locked(credential.locked_until)

        password_ok = await asyncio.to_thread(self.hasher.verify, credential.password_hash, password)
        if not password_ok:
            updated = await self.store.record_failed_login(
                user.id,
                self.config.max_failed_login_attempts,
                timedelta(minutes=self.config.lockout_duration_minutes),
            )
            error = _invalid_credentials()
            # The attempt that sets the lock still reads as a plain failure
            if updated is not None and updated.is_locked(datetime.now(timezone.utc)):
                logger.warning(
                    f"Account locked after {updated.failed_login_attempts} "
                    f"failed attempts: {user.email}"
                )
                error.details["account_locked"] = True
            raise error

        if self.config.require_email_verification and not user.email_verified:
            raise AuthError(
                AuthErrorCode.EMAIL_NOT_VERIFIED,
                "Please verify your email address before signing in",
            )

        if credential.failed_login_attempts or credential.locked_until is not None:
            await self.store.reset_failed_logins(user.id)

        if self.hasher.needs_rehash(credential.password_hash):
            new_hash = await asyncio.to_thread(self.hasher.hash, password)
            await self.store.update_password(user.id, new_hash)
            logger.info(f"Upgraded password hash parameters for user {user.id}")

        return await self.issue_session_for_user(user)

    async def sign_out(self, access_token: str) -> None:
        claims = self.token_issuer.decode_ignoring_expiry(access_token)
        if not claims or claims.get("provider") != self.kind.value or not claims.get("sid"):
            logger.debug("Sign-out with unrecognized token ignored")
            return

        try:
            revoked = await self.store.revoke_session(claims["sid"], "signed_out")
        except AuthError as e:
            logger.warning(f"Sign-out could not revoke session {claims['sid']}: {e.message}")
            return

        if revoked:
            logger.info(f"User signed out: {claims.get('sub')}")

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    async def verify_token(self, access_token: str) -> TokenVerificationResult:
        validation = self.token_issuer.verify_access_token(access_token, self.kind.value)
        if not validation.valid:
            if validation.error == "token_expired":
                return TokenVerificationResult.failure("Token expired", AuthErrorCode.TOKEN_EXPIRED)
            if validation.error == "token_provider_mismatch":
                return TokenVerificationResult.failure(
                    "Token not from local provider", AuthErrorCode.INVALID_TOKEN
                )
            return TokenVerificationResult.failure("Invalid token", AuthErrorCode.INVALID_TOKEN)

        session_id = validation.session_id
        if not session_id:
            return TokenVerificationResult.failure("Invalid token", AuthErrorCode.INVALID_TOKEN)

        user, session_active = await self.store.get_user_with_session(
            validation.user_id, session_id
        )
        if user is None:
            return TokenVerificationResult.failure("User not found", AuthErrorCode.USER_NOT_FOUND)
        if user.is_banned:
            return TokenVerificationResult.failure(
                "Account has been disabled", AuthErrorCode.ACCOUNT_DISABLED
            )
        if not session_active:
            return TokenVerificationResult.failure("Session revoked", AuthErrorCode.INVALID_TOKEN)

        return TokenVerificationResult(
            valid=True, user=to_auth_user(user), expires_at=validation.expires_at
        )

    async def refresh_session(self, refresh_token: str) -> AuthSession:
        record = await self.store.get_session_by_refresh_hash(hash_token(refresh_token or ""))
        if record is None:
            raise AuthError(AuthErrorCode.INVALID_REFRESH_TOKEN, "Invalid refresh token")

        if not record.is_active:
            if record.revoked_reason == "rotated":
                revoked = await self.store.revoke_session_family(record.family_id, "reuse_detected")
                logger.warning(
                    f"Rotated refresh token replayed for user {record.user_id}; "
                    f"revoked {revoked} session(s) in family {record.family_id}"
                )
            raise AuthError(AuthErrorCode.INVALID_REFRESH_TOKEN, "Invalid refresh token")

        if record.expires_at <= datetime.now(timezone.utc):
            await self.store.revoke_session(record.id, "expired")
            raise AuthError(AuthErrorCode.TOKEN_EXPIRED, "Refresh token expired")

        user = await self.store.get_user(record.user_id)
        if user is None:
            raise AuthError(AuthErrorCode.INVALID_REFRESH_TOKEN, "Invalid refresh token")
        if user.is_banned:
            raise _account_disabled()

        new_session, access_token, new_refresh_token, expires_at = self._prepare_session(
            user.id,
            user.email,
            identity_provider=record.identity_provider,
            family_id=record.family_id,
        )
        if not await self.store.rotate_session(record.id, new_session):
            # Lost a race against a concurrent refresh of the same token
            raise AuthError(AuthErrorCode.INVALID_REFRESH_TOKEN, "Invalid refresh token")

        return AuthSession(
            user=to_auth_user(user),
            access_token=access_token,
            refresh_token=new_refresh_token,
            expires_at=expires_at,
            provider=self.kind,
        )

    async def issue_session_for_user(
        self, user: User, identity_provider: Optional[str] = None
    ) -> AuthSession:
        """Create a new session for an already-authenticated user"""
        if user.is_banned:
            raise _account_disabled()

        new_session, access_token, refresh_token, expires_at = self._prepare_session(
            user.id, user.email, identity_provider=identity_provider
        )
        await self.store.create_session(new_session)
        return AuthSession(
            user=to_auth_user(user),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            provider=self.kind,
        )

    def _prepare_session(
        self,
        user_id: str,
        email: str,
        identity_provider: Optional[str] = None,
        family_id: Optional[str] = None,
    ) -> tuple[NewSession, str, str, datetime]:
        session_id = str(uuid.uuid4())
        refresh_token = self.token_issuer.new_refresh_token()
        access_token, expires_at = self.token_issuer.create_access_token(
            user_id=user_id,
            email=email,
            provider=self.kind.value,
            session_id=session_id,
            identity_provider=identity_provider,
        )
        new_session = NewSession(
            id=session_id,
            user_id=user_id,
            refresh_token_hash=hash_token(refresh_token),
            family_id=family_id or session_id,
            expires_at=datetime.now(timezone.utc)
            + timedelta(hours=self.config.session_duration_hours),
            provider=self.kind.value,
            identity_provider=identity_provider,
        )
        return new_session, access_token, refresh_token, expires_at

    # ------------------------------------------------------------------
    # Password reset / change
    # ------------------------------------------------------------------

    async def reset_password_request(self, email: str) -> None:
        user = await self.store.get_user_by_email(email)
        if user is None or user.credential is None:
            logger.info("Password reset requested for unknown email")
            return

        token = new_opaque_token()
        await self.store.create_password_reset_token(
            user.id, hash_token(token), datetime.now(timezone.utc) + RESET_TOKEN_TTL
        )
        await self._send_quietly(
            self.mailer.send_password_reset_email(user.email, user.display_name, token),
            "password reset",
        )

    async def reset_password(
        self,
        new_password: str,
        token: Optional[str] = None,
        user_id: Optional[str] = None,
        current_password: Optional[str] = None,
    ) -> None:
        if token:
            _require_strong_password(new_password)
            new_hash = await asyncio.to_thread(self.hasher.hash, new_password)
            if await self.store.consume_password_reset_token(hash_token(token), new_hash) is None:
                raise AuthError(AuthErrorCode.INVALID_TOKEN, "Invalid or expired reset token")
            return

        if user_id and current_password is not None:
            user = await self.store.get_user(user_id)
            if user is None or user.credential is None:
                raise AuthError(AuthErrorCode.USER_NOT_FOUND, "User not found")

            current_ok = await asyncio.to_thread(
                self.hasher.verify, user.credential.password_hash, current_password
            )
            if not current_ok:
                raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, "Current password is incorrect")

            _require_strong_password(new_password)
            new_hash = await asyncio.to_thread(self.hasher.hash, new_password)
            await self.store.update_password(user_id, new_hash)
            logger.info(f"Password changed for user {user_id}")
            return

        raise AuthError(AuthErrorCode.INVALID_INPUT, "Token or current password required")

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    async def verify_email(self, token: str) -> AuthUser:
        user = await self.store.consume_email_verification_token(hash_token(token or ""))
        if user is None:
            raise AuthError(AuthErrorCode.INVALID_TOKEN, "Invalid or expired verification token")

        logger.info(f"Email verified for user {user.id}")
        await self._send_quietly(
            self.mailer.send_welcome_email(user.email, user.display_name), "welcome"
        )
        return to_auth_user(user)

    async def resend_verification_email(self, email: str) -> None:
        user = await self.store.get_user_by_email(email)
        if user is None:
            return
        if user.email_verified:
            raise AuthError(AuthErrorCode.EMAIL_ALREADY_VERIFIED, "Email is already verified")

        token = new_opaque_token()
        await self.store.create_email_verification_token(
            user.id, hash_token(token), datetime.now(timezone.utc) + VERIFICATION_TOKEN_TTL
        )
        await self._send_quietly(
            self.mailer.send_verification_email(user.email, user.display_name, token),
            "verification",
        )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[AuthUser]:
        user = await self.store.get_user(user_id)
        return to_auth_user(user) if user is not None else None

    async def get_user_by_email(self, email: str) -> Optional[AuthUser]:
        user = await self.store.get_user_by_email(email)
        return to_auth_user(user) if user is not None else None

    async def update_user(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> AuthUser:
        changes = {}
        if display_name is not None:
            changes["display_name"] = display_name
        if avatar_url is not None:
            changes["avatar_url"] = avatar_url

        user = await self.store.update_profile(user_id, changes)
        if user is None:
            raise AuthError(AuthErrorCode.USER_NOT_FOUND, "User not found")
        return to_auth_user(user)

    async def delete_user(self, user_id: str) -> None:
        if not await self.store.delete_user(user_id):
            raise AuthError(AuthErrorCode.USER_NOT_FOUND, "User not found")

    # ------------------------------------------------------------------

    def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash(uuid.uuid4().hex)
        return self._dummy_hash

    async def _send_quietly(self, send, kind: str) -> None:
        try:
            await send
        except Exception as e:
            logger.error(f"Failed to send {kind} email: {e}")
