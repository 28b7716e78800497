"""Unit tests for LocalAuthProvider

Tests local authentication against a temporary SQLite database.
Outgoing email is captured by a mocked AuthMailer.
"""

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from suite_auth.core.auth.local import LocalAuthProvider, validate_password_strength
from suite_auth.domain.errors import AuthError, AuthErrorCode
from suite_auth.domain.models import ProviderKind
from suite_auth.infrastructure.auth.password_hasher import PasswordHasher
from suite_auth.models import LocalCredential

PASSWORD = "correct-horse-42"


def _sent_token(mock_method) -> str:
    """Token argument of the last email the provider sent"""
    return mock_method.call_args.args[-1]


@pytest_asyncio.fixture
async def signed_up(local_provider):
    """Registered (unverified) user plus their first session"""
    return await local_provider.sign_up("alice@example.com", PASSWORD, "Alice")


def _provider_with(local_provider, **changes) -> LocalAuthProvider:
    return LocalAuthProvider(
        store=local_provider.store,
        hasher=local_provider.hasher,
        token_issuer=local_provider.token_issuer,
        config=dataclasses.replace(local_provider.config, **changes),
        mailer=local_provider.mailer,
    )


@pytest.mark.unit
class TestPasswordStrength:

    def test_rules(self):
        assert validate_password_strength("abc12345") is None
        assert "at least 8" in validate_password_strength("abc123")
        assert "letter and one number" in validate_password_strength("abcdefghij")
        assert "letter and one number" in validate_password_strength("1234567890")


@pytest.mark.unit
class TestSignUp:

    @pytest.mark.asyncio
    async def test_sign_up_success(self, local_provider, mailer):
        """Happy path: account created, session issued, verification email sent"""
        session = await local_provider.sign_up("Alice@Example.com", PASSWORD, "Alice")

        assert session.user.email == "alice@example.com"
        assert session.user.display_name == "Alice"
        assert session.user.email_verified is False
        assert session.user.provider == ProviderKind.LOCAL
        assert session.provider == ProviderKind.LOCAL
        assert session.token_type == "bearer"
        assert session.access_token
        assert len(session.refresh_token) == 64
        assert session.expires_at > datetime.now(timezone.utc)
        mailer.send_verification_email.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_display_name_defaults_to_local_part(self, local_provider):
        session = await local_provider.sign_up("bob.smith@example.com", PASSWORD)
        assert session.user.display_name == "bob.smith"

    @pytest.mark.asyncio
    async def test_duplicate_email(self, local_provider, signed_up):
        """Bad input: email already registered (case-insensitive)"""
        with pytest.raises(AuthError) as exc_info:
            await local_provider.sign_up("ALICE@example.com", PASSWORD)

        assert exc_info.value.code == AuthErrorCode.USER_ALREADY_EXISTS
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_duplicate_keeps_original_credential(self, local_provider, signed_up):
        with pytest.raises(AuthError):
            await local_provider.sign_up("alice@example.com", "other-password-7")

        session = await local_provider.sign_in("alice@example.com", PASSWORD)
        assert session.user.id == signed_up.user.id
        with pytest.raises(AuthError) as exc_info:
            await local_provider.sign_in("alice@example.com", "other-password-7")
        assert exc_info.value.code == AuthErrorCode.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_storage_failure_leaves_no_user(self, local_provider, mailer, monkeypatch):
        """A failed insert rolls back the user together with the credential and session"""

        async def failing_flush(self, objects=None):
            raise OperationalError("INSERT INTO users", {}, Exception("disk I/O error"))

        monkeypatch.setattr(AsyncSession, "flush", failing_flush)

        with pytest.raises(AuthError) as exc_info:
            await local_provider.sign_up("frank@example.com", PASSWORD)

        assert exc_info.value.code == AuthErrorCode.PROVIDER_ERROR
        assert exc_info.value.message == "Auth storage unavailable"
        mailer.send_verification_email.assert_not_awaited()

        monkeypatch.undo()
        assert await local_provider.store.get_user_by_email("frank@example.com") is None

    @pytest.mark.asyncio
    async def test_weak_password(self, local_provider):
        with pytest.raises(AuthError) as exc_info:
            await local_provider.sign_up("carol@example.com", "short1")

        assert exc_info.value.code == AuthErrorCode.PASSWORD_TOO_WEAK
        assert "8" in exc_info.value.message
        assert await local_provider.get_user_by_email("carol@example.com") is None

    @pytest.mark.asyncio
    async def test_invalid_email(self, local_provider):
        with pytest.raises(AuthError) as exc_info:
            await local_provider.sign_up("not-an-email", PASSWORD)

        assert exc_info.value.code == AuthErrorCode.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_mailer_failure_does_not_fail_sign_up(self, local_provider, mailer):
        mailer.send_verification_email.side_effect = RuntimeError("smtp down")

        session = await local_provider.sign_up("dave@example.com", PASSWORD)

        assert session.user.email == "dave@example.com"


@pytest.mark.unit
class TestSignIn:

    @pytest.mark.asyncio
    async def test_sign_in_success(self, local_provider, signed_up):
        session = await local_provider.sign_in("alice@example.com", PASSWORD)

        assert session.user.id == signed_up.user.id
        assert session.refresh_token != signed_up.refresh_token

    @pytest.mark.asyncio
    async def test_wrong_password(self, local_provider, signed_up):
        with pytest.raises(AuthError) as exc_info:
            await local_provider.sign_in("alice@example.com", "wrong-password-1")

        assert exc_info.value.code == AuthErrorCode.INVALID_CREDENTIALS
        assert exc_info.value.message == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_unknown_email_same_error(self, local_provider):
        """Unknown emails are indistinguishable from wrong passwords"""
        with pytest.raises(AuthError) as exc_info:
            await local_provider.sign_in("nobody@example.com", PASSWORD)

        assert exc_info.value.code == AuthErrorCode.INVALID_CREDENTIALS
        assert exc_info.value.message == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_lockout_at_threshold(self, local_provider, signed_up):
        """Threshold is 3: every bad password reads INVALID_CREDENTIALS, then the lock shows"""
        codes = []
        for _ in range(3):
            with pytest.raises(AuthError) as exc_info:
                await local_provider.sign_in("alice@example.com", "wrong-password-1")
            codes.append(exc_info.value.code)

        assert codes == [AuthErrorCode.INVALID_CREDENTIALS] * 3
        assert exc_info.value.details == {"account_locked": True}
        assert exc_info.value.to_dict() == {
            "error": "INVALID_CREDENTIALS",
            "message": "Invalid email or password",
        }

        # Correct password is refused while locked
        with pytest.raises(AuthError) as exc_info:
            await local_provider.sign_in("alice@example.com", PASSWORD)
        assert exc_info.value.code == AuthErrorCode.ACCOUNT_LOCKED
        assert exc_info.value.status_code == 403
        assert "minute" in exc_info.value.message
        assert "locked_until" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_failures_below_threshold_do_not_flag_lock(self, local_provider, signed_up):
        with pytest.raises(AuthError) as exc_info:
            await local_provider.sign_in("alice@example.com", "wrong-password-1")

        assert exc_info.value.details == {}

    @pytest.mark.asyncio
    async def test_lock_expires(self, local_provider, signed_up, session_factory):
        for _ in range(3):
            with pytest.raises(AuthError):
                await local_provider.sign_in("alice@example.com", "wrong-password-1")

        async with session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(LocalCredential)
                    .where(LocalCredential.user_id == signed_up.user.id)
                    .values(locked_until=datetime.now(timezone.utc) - timedelta(minutes=1))
                )

        session = await local_provider.sign_in("alice@example.com", PASSWORD)
        assert session.user.id == signed_up.user.id

        user = await local_provider.store.get_user(signed_up.user.id)
        assert user.credential.failed_login_attempts == 0
        assert user.credential.locked_until is None

    @pytest.mark.asyncio
    async def test_success_resets_counter(self, local_provider, signed_up):
        with pytest.raises(AuthError):
            await local_provider.sign_in("alice@example.com", "wrong-password-1")

        await local_provider.sign_in("alice@example.com", PASSWORD)

        user = await local_provider.store.get_user(signed_up.user.id)
        assert user.credential.failed_login_attempts == 0

    @pytest.mark.asyncio
    async def test_banned_user(self, local_provider, signed_up):
        await local_provider.store.set_banned(signed_up.user.id, True)

        with pytest.raises(AuthError) as exc_info:
            await local_provider.sign_in("alice@example.com", PASSWORD)

        assert exc_info.value.code == AuthErrorCode.ACCOUNT_DISABLED

    @pytest.mark.asyncio
    async def test_email_verification_required(self, local_provider, signed_up):
        strict = _provider_with(local_provider, require_email_verification=True)

        with pytest.raises(AuthError) as exc_info:
            await strict.sign_in("alice@example.com", PASSWORD)

        assert exc_info.value.code == AuthErrorCode.EMAIL_NOT_VERIFIED

    @pytest.mark.asyncio
    async def test_rehash_on_parameter_change(self, local_provider, signed_up):
        """Hashes made with older cost parameters are upgraded on sign-in"""
        stronger = LocalAuthProvider(
            store=local_provider.store,
            hasher=PasswordHasher(memory_cost=2048, time_cost=1, parallelism=1),
            token_issuer=local_provider.token_issuer,
            config=local_provider.config,
            mailer=local_provider.mailer,
        )

        await stronger.sign_in("alice@example.com", PASSWORD)

        user = await local_provider.store.get_user(signed_up.user.id)
        assert "m=2048" in user.credential.password_hash
        await local_provider.sign_in("alice@example.com", PASSWORD)


@pytest.mark.unit
class TestTokens:

    @pytest.mark.asyncio
    async def test_verify_token(self, local_provider, signed_up):
        result = await local_provider.verify_token(signed_up.access_token)

        assert result.valid is True
        assert result.user.id == signed_up.user.id
        assert result.expires_at is not None

    @pytest.mark.asyncio
    async def test_verify_rejects_other_provider_tag(self, local_provider, signed_up):
        token, _ = local_provider.token_issuer.create_access_token(
            signed_up.user.id, "alice@example.com", "managed", "sess"
        )

        result = await local_provider.verify_token(token)

        assert result.valid is False
        assert result.error_code == AuthErrorCode.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_verify_expired(self, local_provider, signed_up):
        token, _ = local_provider.token_issuer.create_access_token(
            signed_up.user.id,
            "alice@example.com",
            "local",
            "sess",
            expires_delta=timedelta(seconds=-5),
        )

        result = await local_provider.verify_token(token)

        assert result.valid is False
        assert result.error_code == AuthErrorCode.TOKEN_EXPIRED

    @pytest.mark.asyncio
    async def test_verify_deleted_user(self, local_provider, signed_up):
        await local_provider.delete_user(signed_up.user.id)

        result = await local_provider.verify_token(signed_up.access_token)

        assert result.valid is False
        assert result.error_code == AuthErrorCode.USER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_verify_after_sign_out(self, local_provider, signed_up):
        """Access tokens die with their session, not only at expiry"""
        await local_provider.sign_out(signed_up.access_token)

        result = await local_provider.verify_token(signed_up.access_token)

        assert result.valid is False
        assert result.error_code == AuthErrorCode.INVALID_TOKEN
        assert result.error == "Session revoked"

    @pytest.mark.asyncio
    async def test_verify_unknown_session(self, local_provider, signed_up):
        token, _ = local_provider.token_issuer.create_access_token(
            signed_up.user.id, "alice@example.com", "local", "no-such-session"
        )

        result = await local_provider.verify_token(token)

        assert result.valid is False
        assert result.error_code == AuthErrorCode.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_verify_after_refresh(self, local_provider, signed_up):
        refreshed = await local_provider.refresh_session(signed_up.refresh_token)

        assert (await local_provider.verify_token(refreshed.access_token)).valid is True
        stale = await local_provider.verify_token(signed_up.access_token)
        assert stale.error_code == AuthErrorCode.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_verify_banned_user(self, local_provider, signed_up):
        await local_provider.store.set_banned(signed_up.user.id, True)

        result = await local_provider.verify_token(signed_up.access_token)

        assert result.error_code == AuthErrorCode.ACCOUNT_DISABLED

    @pytest.mark.asyncio
    async def test_refresh_rotates(self, local_provider, signed_up):
        """Happy path: new pair issued; old refresh token stops working"""
        refreshed = await local_provider.refresh_session(signed_up.refresh_token)

        assert refreshed.refresh_token != signed_up.refresh_token
        assert refreshed.user.id == signed_up.user.id

        again = await local_provider.refresh_session(refreshed.refresh_token)
        assert again.refresh_token != refreshed.refresh_token

    @pytest.mark.asyncio
    async def test_refresh_reuse_revokes_family(self, local_provider, signed_up):
        """Replaying a rotated refresh token kills the whole rotation chain"""
        refreshed = await local_provider.refresh_session(signed_up.refresh_token)

        with pytest.raises(AuthError) as exc_info:
            await local_provider.refresh_session(signed_up.refresh_token)
        assert exc_info.value.code == AuthErrorCode.INVALID_REFRESH_TOKEN

        with pytest.raises(AuthError) as exc_info:
            await local_provider.refresh_session(refreshed.refresh_token)
        assert exc_info.value.code == AuthErrorCode.INVALID_REFRESH_TOKEN

    @pytest.mark.asyncio
    async def test_refresh_unknown_token(self, local_provider):
        with pytest.raises(AuthError) as exc_info:
            await local_provider.refresh_session("0" * 64)
        assert exc_info.value.code == AuthErrorCode.INVALID_REFRESH_TOKEN

    @pytest.mark.asyncio
    async def test_refresh_expired_session(self, local_provider):
        short = _provider_with(local_provider, session_duration_hours=0)
        session = await short.sign_up("erin@example.com", PASSWORD)

        with pytest.raises(AuthError) as exc_info:
            await short.refresh_session(session.refresh_token)
        assert exc_info.value.code == AuthErrorCode.TOKEN_EXPIRED

    @pytest.mark.asyncio
    async def test_sign_out_revokes_session(self, local_provider, signed_up):
        await local_provider.sign_out(signed_up.access_token)

        with pytest.raises(AuthError) as exc_info:
            await local_provider.refresh_session(signed_up.refresh_token)
        assert exc_info.value.code == AuthErrorCode.INVALID_REFRESH_TOKEN

    @pytest.mark.asyncio
    async def test_sign_out_other_sessions_survive(self, local_provider, signed_up):
        second = await local_provider.sign_in("alice@example.com", PASSWORD)

        await local_provider.sign_out(signed_up.access_token)

        refreshed = await local_provider.refresh_session(second.refresh_token)
        assert refreshed.user.id == signed_up.user.id

    @pytest.mark.asyncio
    async def test_sign_out_never_raises(self, local_provider):
        await local_provider.sign_out("garbage")
        await local_provider.sign_out("")


@pytest.mark.unit
class TestPasswordReset:

    @pytest.mark.asyncio
    async def test_reset_flow(self, local_provider, signed_up, mailer):
        """Happy path: request, reset, old password and sessions invalidated"""
        await local_provider.reset_password_request("alice@example.com")
        token = _sent_token(mailer.send_password_reset_email)

        await local_provider.reset_password("new-password-99", token=token)

        with pytest.raises(AuthError):
            await local_provider.sign_in("alice@example.com", PASSWORD)
        session = await local_provider.sign_in("alice@example.com", "new-password-99")
        assert session.user.id == signed_up.user.id

        with pytest.raises(AuthError) as exc_info:
            await local_provider.refresh_session(signed_up.refresh_token)
        assert exc_info.value.code == AuthErrorCode.INVALID_REFRESH_TOKEN

    @pytest.mark.asyncio
    async def test_reset_revokes_access_tokens(self, local_provider, signed_up, mailer):
        second = await local_provider.sign_in("alice@example.com", PASSWORD)
        await local_provider.reset_password_request("alice@example.com")

        await local_provider.reset_password(
            "new-password-99", token=_sent_token(mailer.send_password_reset_email)
        )

        for old in (signed_up, second):
            result = await local_provider.verify_token(old.access_token)
            assert result.valid is False
            assert result.error_code == AuthErrorCode.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_reset_token_single_use(self, local_provider, signed_up, mailer):
        await local_provider.reset_password_request("alice@example.com")
        token = _sent_token(mailer.send_password_reset_email)
        await local_provider.reset_password("new-password-99", token=token)

        with pytest.raises(AuthError) as exc_info:
            await local_provider.reset_password("another-password-1", token=token)
        assert exc_info.value.code == AuthErrorCode.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_reset_unlocks_account(self, local_provider, signed_up, mailer):
        for _ in range(3):
            with pytest.raises(AuthError):
                await local_provider.sign_in("alice@example.com", "wrong-password-1")

        await local_provider.reset_password_request("alice@example.com")
        await local_provider.reset_password(
            "new-password-99", token=_sent_token(mailer.send_password_reset_email)
        )

        session = await local_provider.sign_in("alice@example.com", "new-password-99")
        assert session.user.id == signed_up.user.id

    @pytest.mark.asyncio
    async def test_request_for_unknown_email_is_silent(self, local_provider, mailer):
        await local_provider.reset_password_request("nobody@example.com")
        mailer.send_password_reset_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reset_weak_password(self, local_provider, signed_up, mailer):
        await local_provider.reset_password_request("alice@example.com")

        with pytest.raises(AuthError) as exc_info:
            await local_provider.reset_password(
                "weak", token=_sent_token(mailer.send_password_reset_email)
            )
        assert exc_info.value.code == AuthErrorCode.PASSWORD_TOO_WEAK

    @pytest.mark.asyncio
    async def test_change_password(self, local_provider, signed_up):
        await local_provider.reset_password(
            "new-password-99", user_id=signed_up.user.id, current_password=PASSWORD
        )

        session = await local_provider.sign_in("alice@example.com", "new-password-99")
        assert session.user.id == signed_up.user.id
        # Changing a known password keeps existing sessions
        assert (await local_provider.verify_token(signed_up.access_token)).valid is True

    @pytest.mark.asyncio
    async def test_change_password_wrong_current(self, local_provider, signed_up):
        with pytest.raises(AuthError) as exc_info:
            await local_provider.reset_password(
                "new-password-99", user_id=signed_up.user.id, current_password="nope-12345"
            )
        assert exc_info.value.code == AuthErrorCode.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_reset_requires_token_or_current_password(self, local_provider):
        with pytest.raises(AuthError) as exc_info:
            await local_provider.reset_password("new-password-99")
        assert exc_info.value.code == AuthErrorCode.INVALID_INPUT


@pytest.mark.unit
class TestEmailVerification:

    @pytest.mark.asyncio
    async def test_verify_email(self, local_provider, signed_up, mailer):
        token = _sent_token(mailer.send_verification_email)

        user = await local_provider.verify_email(token)

        assert user.email_verified is True
        mailer.send_welcome_email.assert_awaited_once()
        with pytest.raises(AuthError) as exc_info:
            await local_provider.verify_email(token)
        assert exc_info.value.code == AuthErrorCode.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_verified_user_can_sign_in_when_required(self, local_provider, signed_up, mailer):
        await local_provider.verify_email(_sent_token(mailer.send_verification_email))
        strict = _provider_with(local_provider, require_email_verification=True)

        session = await strict.sign_in("alice@example.com", PASSWORD)
        assert session.user.email_verified is True

    @pytest.mark.asyncio
    async def test_resend_supersedes_previous_token(self, local_provider, signed_up, mailer):
        first = _sent_token(mailer.send_verification_email)

        await local_provider.resend_verification_email("alice@example.com")
        second = _sent_token(mailer.send_verification_email)

        assert first != second
        with pytest.raises(AuthError):
            await local_provider.verify_email(first)
        assert (await local_provider.verify_email(second)).email_verified is True

    @pytest.mark.asyncio
    async def test_resend_when_already_verified(self, local_provider, signed_up, mailer):
        await local_provider.verify_email(_sent_token(mailer.send_verification_email))

        with pytest.raises(AuthError) as exc_info:
            await local_provider.resend_verification_email("alice@example.com")
        assert exc_info.value.code == AuthErrorCode.EMAIL_ALREADY_VERIFIED


@pytest.mark.unit
class TestUserManagement:

    @pytest.mark.asyncio
    async def test_update_user(self, local_provider, signed_up):
        updated = await local_provider.update_user(
            signed_up.user.id, display_name="Alice B", avatar_url="https://img/a.png"
        )

        assert updated.display_name == "Alice B"
        assert updated.avatar_url == "https://img/a.png"
        assert (await local_provider.get_user(signed_up.user.id)).display_name == "Alice B"

    @pytest.mark.asyncio
    async def test_update_missing_user(self, local_provider):
        with pytest.raises(AuthError) as exc_info:
            await local_provider.update_user("missing", display_name="x")
        assert exc_info.value.code == AuthErrorCode.USER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_delete_user(self, local_provider, signed_up):
        await local_provider.delete_user(signed_up.user.id)

        assert await local_provider.get_user(signed_up.user.id) is None
        with pytest.raises(AuthError) as exc_info:
            await local_provider.delete_user(signed_up.user.id)
        assert exc_info.value.code == AuthErrorCode.USER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_oauth_methods_unsupported(self, local_provider):
        with pytest.raises(AuthError) as exc_info:
            await local_provider.get_oauth_url("google", "state", "https://app/cb")
        assert exc_info.value.status_code == 501


@pytest.mark.unit
class TestConcurrency:
    """Counters and rotation are single statements, so racing callers never lose updates"""

    @staticmethod
    async def _attempt(coro):
        try:
            return await coro
        except AuthError as e:
            return e

    @pytest.mark.asyncio
    async def test_concurrent_failed_logins_all_counted(self, local_provider, signed_up):
        results = await asyncio.gather(
            *(
                self._attempt(local_provider.sign_in("alice@example.com", "wrong-password-1"))
                for _ in range(2)
            )
        )

        assert [r.code for r in results] == [AuthErrorCode.INVALID_CREDENTIALS] * 2
        user = await local_provider.store.get_user(signed_up.user.id)
        assert user.credential.failed_login_attempts == 2
        assert user.credential.locked_until is None

    @pytest.mark.asyncio
    async def test_concurrent_refresh_has_one_winner(self, local_provider, signed_up):
        results = await asyncio.gather(
            *(
                self._attempt(local_provider.refresh_session(signed_up.refresh_token))
                for _ in range(5)
            )
        )

        winners = [r for r in results if not isinstance(r, AuthError)]
        losers = [r for r in results if isinstance(r, AuthError)]
        assert len(winners) == 1
        assert len(losers) == 4
        assert {e.code for e in losers} == {AuthErrorCode.INVALID_REFRESH_TOKEN}
