"""Unit tests for CredentialStore

Runs against a real (temporary) SQLite database.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from suite_auth.domain.errors import AuthError, AuthErrorCode
from suite_auth.domain.models import OAuthIdentity, OAuthProviderName
from suite_auth.infrastructure.auth.credential_store import NewSession
from suite_auth.infrastructure.auth.token_issuer import hash_token
from suite_auth.models import OAuthConnection, UserSession


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_session(user_id: str, family_id: str = None, refresh_token: str = None) -> NewSession:
    session_id = str(uuid.uuid4())
    return NewSession(
        id=session_id,
        user_id=user_id,
        refresh_token_hash=hash_token(refresh_token or uuid.uuid4().hex),
        family_id=family_id or session_id,
        expires_at=_now() + timedelta(hours=1),
    )


async def _create_user(store, email="alice@example.com"):
    user_id = str(uuid.uuid4())
    return await store.create_local_user(
        user_id=user_id,
        email=email,
        display_name="Alice",
        password_hash="$argon2id$placeholder",
        verification_token_hash=hash_token(f"verify-{email}"),
        verification_expires_at=_now() + timedelta(hours=24),
        first_session=_new_session(user_id),
    )


@pytest.mark.unit
class TestUsers:

    @pytest.mark.asyncio
    async def test_create_local_user(self, store):
        """Happy path: user, credential and first session created together"""
        user = await _create_user(store, "Alice@Example.com")

        loaded = await store.get_user_by_email("ALICE@example.com ")
        assert loaded is not None
        assert loaded.id == user.id
        assert loaded.email == "alice@example.com"
        assert loaded.auth_provider == "local"
        assert loaded.email_verified is False
        assert loaded.credential is not None
        assert loaded.credential.failed_login_attempts == 0
        assert loaded.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_duplicate_email(self, store):
        """Bad input: unique email constraint maps to USER_ALREADY_EXISTS"""
        await _create_user(store)

        with pytest.raises(AuthError) as exc_info:
            await _create_user(store)

        assert exc_info.value.code == AuthErrorCode.USER_ALREADY_EXISTS

    @pytest.mark.asyncio
    async def test_duplicate_rolls_back_everything(self, store, session_factory):
        """A losing insert keeps the original credential and adds no session"""
        original = await _create_user(store)
        user_id = str(uuid.uuid4())

        with pytest.raises(AuthError):
            await store.create_local_user(
                user_id=user_id,
                email="alice@example.com",
                display_name="Impostor",
                password_hash="$argon2id$other",
                verification_token_hash=hash_token("verify-again"),
                verification_expires_at=_now() + timedelta(hours=24),
                first_session=_new_session(user_id),
            )

        loaded = await store.get_user_by_email("alice@example.com")
        assert loaded.id == original.id
        assert loaded.credential.password_hash == "$argon2id$placeholder"
        async with session_factory() as session:
            count = await session.scalar(
                select(func.count()).select_from(UserSession).where(UserSession.user_id == user_id)
            )
        assert count == 0

    @pytest.mark.asyncio
    async def test_update_profile_ignores_unknown_fields(self, store):
        user = await _create_user(store)

        updated = await store.update_profile(
            user.id, {"display_name": "Al", "email": "hijack@example.com"}
        )

        assert updated.display_name == "Al"
        assert updated.email == "alice@example.com"
        assert await store.update_profile("missing", {"display_name": "x"}) is None

    @pytest.mark.asyncio
    async def test_delete_user_removes_everything(self, store, session_factory):
        user = await _create_user(store)

        assert await store.delete_user(user.id) is True
        assert await store.get_user(user.id) is None
        assert await store.delete_user(user.id) is False

        async with session_factory() as session:
            count = await session.scalar(
                select(func.count()).select_from(UserSession).where(UserSession.user_id == user.id)
            )
        assert count == 0

    @pytest.mark.asyncio
    async def test_upsert_mirrored_user_is_idempotent(self, store):
        first = await store.upsert_mirrored_user(
            user_id="platform-1", email="Bob@Example.com", email_verified=False
        )
        second = await store.upsert_mirrored_user(
            user_id="platform-1", email="bob@example.com", display_name="Bob", email_verified=True
        )

        assert first.id == second.id == "platform-1"
        assert first.display_name == "bob"
        assert second.display_name == "Bob"
        loaded = await store.get_user("platform-1")
        assert loaded.auth_provider == "managed"
        assert loaded.email_verified is True
        assert loaded.credential is None


@pytest.mark.unit
class TestLockout:

    @pytest.mark.asyncio
    async def test_counter_and_lock(self, store):
        user = await _create_user(store)

        first = await store.record_failed_login(user.id, 3, timedelta(minutes=15))
        second = await store.record_failed_login(user.id, 3, timedelta(minutes=15))
        assert first.failed_login_attempts == 1
        assert second.failed_login_attempts == 2
        assert second.locked_until is None

        third = await store.record_failed_login(user.id, 3, timedelta(minutes=15))
        assert third.failed_login_attempts == 3
        assert third.is_locked(_now())
        assert third.locked_until > _now() + timedelta(minutes=14)

    @pytest.mark.asyncio
    async def test_elapsed_lock_restarts_counter(self, store):
        """A lock that has already expired does not keep counting"""
        user = await _create_user(store)
        for _ in range(3):
            await store.record_failed_login(user.id, 3, timedelta(seconds=-1))

        after = await store.record_failed_login(user.id, 3, timedelta(minutes=15))

        assert after.failed_login_attempts == 1
        assert after.locked_until is None

    @pytest.mark.asyncio
    async def test_reset(self, store):
        user = await _create_user(store)
        for _ in range(3):
            await store.record_failed_login(user.id, 3, timedelta(minutes=15))

        await store.reset_failed_logins(user.id)

        loaded = await store.get_user(user.id)
        assert loaded.credential.failed_login_attempts == 0
        assert loaded.credential.locked_until is None


@pytest.mark.unit
class TestSessions:

    @pytest.mark.asyncio
    async def test_rotate_once(self, store):
        """Rotating an already-rotated session writes nothing"""
        user = await _create_user(store)
        original = await store.create_session(_new_session(user.id, refresh_token="r1"))

        replacement = _new_session(user.id, family_id=original.family_id, refresh_token="r2")
        assert await store.rotate_session(original.id, replacement) is True
        assert await store.rotate_session(original.id, _new_session(user.id)) is False

        old = await store.get_session_by_refresh_hash(hash_token("r1"))
        new = await store.get_session_by_refresh_hash(hash_token("r2"))
        assert old.is_active is False
        assert old.revoked_reason == "rotated"
        assert new.is_active is True
        assert new.family_id == original.family_id

    @pytest.mark.asyncio
    async def test_revoke_family(self, store):
        user = await _create_user(store)
        root = await store.create_session(_new_session(user.id))
        await store.create_session(_new_session(user.id, family_id=root.family_id))
        other = await store.create_session(_new_session(user.id, refresh_token="other"))

        assert await store.revoke_session_family(root.family_id, "reuse_detected") == 2

        untouched = await store.get_session_by_refresh_hash(hash_token("other"))
        assert untouched.id == other.id
        assert untouched.is_active is True

    @pytest.mark.asyncio
    async def test_revoke_session_only_once(self, store):
        user = await _create_user(store)
        row = await store.create_session(_new_session(user.id))

        assert await store.revoke_session(row.id, "signed_out") is True
        assert await store.revoke_session(row.id, "signed_out") is False

    @pytest.mark.asyncio
    async def test_get_user_with_session(self, store):
        user = await _create_user(store)
        row = await store.create_session(_new_session(user.id))

        loaded, active = await store.get_user_with_session(user.id, row.id)
        assert loaded.id == user.id
        assert active is True

        await store.revoke_session(row.id, "signed_out")
        assert (await store.get_user_with_session(user.id, row.id))[1] is False
        assert (await store.get_user_with_session(user.id, "unknown"))[1] is False
        assert await store.get_user_with_session("missing", row.id) == (None, False)

    @pytest.mark.asyncio
    async def test_get_user_with_foreign_session(self, store):
        """A live session of another user does not count"""
        alice = await _create_user(store)
        bob = await _create_user(store, "bob@example.com")
        bobs = await store.create_session(_new_session(bob.id))

        loaded, active = await store.get_user_with_session(alice.id, bobs.id)
        assert loaded.id == alice.id
        assert active is False


@pytest.mark.unit
class TestOneShotTokens:

    @pytest.mark.asyncio
    async def test_password_reset_token_single_use(self, store):
        user = await _create_user(store)
        await store.create_password_reset_token(
            user.id, hash_token("reset-1"), _now() + timedelta(hours=1)
        )

        assert await store.consume_password_reset_token(hash_token("reset-1"), "new-hash") == user.id
        assert await store.consume_password_reset_token(hash_token("reset-1"), "other") is None

        loaded = await store.get_user(user.id)
        assert loaded.credential.password_hash == "new-hash"

    @pytest.mark.asyncio
    async def test_password_reset_revokes_sessions(self, store):
        user = await _create_user(store)
        await store.create_password_reset_token(
            user.id, hash_token("reset-1"), _now() + timedelta(hours=1)
        )

        await store.consume_password_reset_token(hash_token("reset-1"), "new-hash")

        assert await store.revoke_user_sessions(user.id, "again") == 0

    @pytest.mark.asyncio
    async def test_new_reset_token_supersedes_old(self, store):
        user = await _create_user(store)
        expires = _now() + timedelta(hours=1)
        await store.create_password_reset_token(user.id, hash_token("old"), expires)
        await store.create_password_reset_token(user.id, hash_token("new"), expires)

        assert await store.consume_password_reset_token(hash_token("old"), "h") is None
        assert await store.consume_password_reset_token(hash_token("new"), "h") == user.id

    @pytest.mark.asyncio
    async def test_expired_reset_token(self, store):
        user = await _create_user(store)
        await store.create_password_reset_token(
            user.id, hash_token("reset-1"), _now() - timedelta(seconds=1)
        )

        assert await store.consume_password_reset_token(hash_token("reset-1"), "h") is None

    @pytest.mark.asyncio
    async def test_email_verification(self, store):
        user = await _create_user(store)

        verified = await store.consume_email_verification_token(hash_token(f"verify-{user.email}"))

        assert verified.email_verified is True
        loaded = await store.get_user(user.id)
        assert loaded.email_verified is True
        assert loaded.credential.email_verified_at is not None
        assert await store.consume_email_verification_token(hash_token(f"verify-{user.email}")) is None


@pytest.mark.unit
class TestOAuthRecords:

    @pytest.mark.asyncio
    async def test_oauth_state_consumed_once(self, store):
        expires_at = _now() + timedelta(minutes=10)
        await store.save_oauth_state("state-1", "github", "https://app/cb", expires_at)

        pending = await store.consume_oauth_state("state-1")
        assert pending.provider == "github"
        assert pending.redirect_uri == "https://app/cb"
        assert await store.consume_oauth_state("state-1") is None

    @pytest.mark.asyncio
    async def test_expired_oauth_state(self, store):
        expired = _now() - timedelta(seconds=1)
        await store.save_oauth_state("state-1", "github", "https://app/cb", expired)
        await store.save_oauth_state("state-2", "google", "https://app/cb", expired)

        assert await store.consume_oauth_state("state-1") is None
        assert await store.purge_expired_oauth_states() == 1

    @pytest.mark.asyncio
    async def test_link_creates_then_reuses(self, store, session_factory):
        identity = OAuthIdentity(
            provider=OAuthProviderName.GITHUB,
            provider_user_id="gh-42",
            email="Carol@Example.com",
            email_verified=True,
            display_name="Carol",
        )

        user, created = await store.link_oauth_identity(identity)
        again, created_again = await store.link_oauth_identity(identity)

        assert created is True
        assert created_again is False
        assert again.id == user.id
        assert user.email == "carol@example.com"
        assert user.email_verified is True

        loaded = await store.get_user(user.id)
        assert loaded.credential.password_hash == ""

        async with session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(OAuthConnection))
        assert count == 1

    @pytest.mark.asyncio
    async def test_link_to_existing_email_requires_verification(self, store):
        existing = await _create_user(store, "dave@example.com")
        unverified = OAuthIdentity(
            provider=OAuthProviderName.DISCORD,
            provider_user_id="d-1",
            email="dave@example.com",
            email_verified=False,
        )

        with pytest.raises(AuthError) as exc_info:
            await store.link_oauth_identity(unverified)
        assert exc_info.value.code == AuthErrorCode.OAUTH_ERROR
        assert exc_info.value.status_code == 409

        unverified.email_verified = True
        linked, created = await store.link_oauth_identity(unverified)
        assert created is False
        assert linked.id == existing.id
        assert linked.email_verified is True


@pytest.mark.unit
class TestProviderConfig:

    @pytest.mark.asyncio
    async def test_save_and_load(self, store):
        assert await store.load_provider_config() is None

        await store.save_provider_config(active_provider="managed", managed_enabled=True)
        await store.save_provider_config(local_max_failed_login_attempts=10)

        row = await store.load_provider_config()
        assert row.active_provider == "managed"
        assert row.managed_enabled is True
        assert row.local_max_failed_login_attempts == 10
        assert row.local_enabled is True
