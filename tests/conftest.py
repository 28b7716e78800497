"""
Pytest configuration and fixtures for suite auth tests.

Provides fixtures for:
- Database engine / session factory (file-based SQLite per test)
- Credential store, password hasher, token issuer
- Local auth provider and the AuthService facade
- HTTP client bound to the FastAPI app
"""

from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from suite_auth.core.auth import get_auth_service
from suite_auth.core.auth.local import LocalAuthProvider
from suite_auth.core.auth.service import AuthService
from suite_auth.domain.models import AuthProviderConfig
from suite_auth.infrastructure.auth.audit_log import AuthEventLog
from suite_auth.infrastructure.auth.credential_store import CredentialStore
from suite_auth.infrastructure.auth.mailer import AuthMailer
from suite_auth.infrastructure.auth.password_hasher import PasswordHasher
from suite_auth.infrastructure.auth.token_issuer import TokenIssuer
from suite_auth.infrastructure.database import (
    create_engine,
    create_session_factory,
    drop_models,
    init_models,
)
from suite_auth.main import app

TEST_JWT_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file per test (file-based so every session sees the tables)"""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'auth_test.sqlite'}", pooled=False)
    await init_models(engine)
    yield engine
    await drop_models(engine)
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory) -> CredentialStore:
    return CredentialStore(session_factory)


@pytest.fixture
def hasher() -> PasswordHasher:
    """Argon2id with minimal cost parameters (fast tests)"""
    return PasswordHasher(memory_cost=1024, time_cost=1, parallelism=1)


@pytest.fixture
def token_issuer() -> TokenIssuer:
    return TokenIssuer(secret_key=TEST_JWT_SECRET, access_token_expire_minutes=15)


@pytest.fixture
def auth_config() -> AuthProviderConfig:
    return AuthProviderConfig(
        max_failed_login_attempts=3,
        lockout_duration_minutes=15,
        session_duration_hours=24,
    )


@pytest.fixture
def mailer() -> AsyncMock:
    return AsyncMock(spec=AuthMailer)


@pytest.fixture
def local_provider(store, hasher, token_issuer, auth_config, mailer) -> LocalAuthProvider:
    return LocalAuthProvider(
        store=store,
        hasher=hasher,
        token_issuer=token_issuer,
        config=auth_config,
        mailer=mailer,
    )


@pytest.fixture
def event_log(session_factory) -> AuthEventLog:
    return AuthEventLog(session_factory)


@pytest.fixture
def auth_service(auth_config, store, local_provider, event_log) -> AuthService:
    """Local-only facade (no managed platform, no OAuth adapters)"""
    return AuthService(
        config=auth_config,
        store=store,
        local=local_provider,
        managed=None,
        oauth_providers={},
        event_log=event_log,
    )


@pytest_asyncio.fixture
async def client(auth_service) -> AsyncGenerator[AsyncClient, None]:
    """Test HTTP client with the auth service dependency overridden."""
    app.dependency_overrides[get_auth_service] = lambda: auth_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
