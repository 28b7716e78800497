"""Configuration Settings for Suite Auth

Manages environment variables and application configuration.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Service info
    service_name: str = "suite-auth"
    service_version: str = "1.0.0"
    environment: str = "development"

    # Server configuration
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Database configuration
    database_url: str = "sqlite+aiosqlite:///./suite_auth.db"
    database_echo: bool = False
    auto_create_schema: bool = True  # Use alembic migrations in production

    # JWT configuration (access tokens minted by the local provider)
    jwt_secret_key: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "suite-auth"
    access_token_expire_minutes: int = 60

    # Argon2id cost parameters
    argon2_memory_cost: int = 65536  # KiB
    argon2_time_cost: int = 3
    argon2_parallelism: int = 4

    # Local policy defaults (used when no auth_provider_config row exists)
    local_require_email_verification: bool = False
    local_session_duration_hours: int = 168  # 7 days
    local_max_failed_login_attempts: int = 5
    local_lockout_duration_minutes: int = 30

    # Managed identity platform (Supabase/GoTrue compatible)
    managed_identity_url: Optional[str] = None
    managed_identity_service_key: Optional[str] = None

    @property
    def managed_identity_configured(self) -> bool:
        """Both URL and service key are required; partial config counts as absent"""
        return bool(self.managed_identity_url and self.managed_identity_service_key)

    # OAuth providers
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    github_client_id: Optional[str] = None
    github_client_secret: Optional[str] = None
    discord_client_id: Optional[str] = None
    discord_client_secret: Optional[str] = None
    apple_client_id: Optional[str] = None
    apple_team_id: Optional[str] = None
    apple_key_id: Optional[str] = None
    apple_private_key: Optional[str] = None
    oauth_state_ttl_minutes: int = 10
    oauth_http_timeout_seconds: float = 10.0

    # Links embedded in outgoing auth emails
    frontend_url: str = "http://localhost:3000"
    verify_email_path: str = "/auth/verify-email"
    reset_password_path: str = "/auth/reset-password"

    # CORS configuration
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance

    Returns:
        Settings instance
    """
    return Settings()
