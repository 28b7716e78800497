"""Authentication providers and the auth facade."""

from .factory import (
    create_auth_service,
    get_auth_service,
    init_auth_service,
    reset_auth_service,
    resolve_provider_config,
)
from .provider import AuthProvider
from .service import AuthService

__all__ = [
    "AuthProvider",
    "AuthService",
    "create_auth_service",
    "get_auth_service",
    "init_auth_service",
    "reset_auth_service",
    "resolve_provider_config",
]
