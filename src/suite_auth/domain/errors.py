"""Authentication error taxonomy

Every failure raised across the provider contract is an ``AuthError`` carrying
one ``AuthErrorCode``. Callers match on ``error.code`` instead of catching
provider-specific exceptions.
"""

from enum import Enum
from typing import Any, Optional


class AuthErrorCode(str, Enum):
    """Closed set of authentication failure kinds"""

    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_DISABLED = "ACCOUNT_DISABLED"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    USER_ALREADY_EXISTS = "USER_ALREADY_EXISTS"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    PASSWORD_TOO_WEAK = "PASSWORD_TOO_WEAK"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_REFRESH_TOKEN = "INVALID_REFRESH_TOKEN"
    EMAIL_ALREADY_VERIFIED = "EMAIL_ALREADY_VERIFIED"
    INVALID_OAUTH_STATE = "INVALID_OAUTH_STATE"
    OAUTH_ERROR = "OAUTH_ERROR"
    OAUTH_MISCONFIGURED = "OAUTH_MISCONFIGURED"
    PROVIDER_ERROR = "PROVIDER_ERROR"

    @property
    def default_status(self) -> int:
        return _DEFAULT_STATUS[self]


_DEFAULT_STATUS = {
    AuthErrorCode.INVALID_CREDENTIALS: 401,
    AuthErrorCode.ACCOUNT_LOCKED: 403,
    AuthErrorCode.ACCOUNT_DISABLED: 403,
    AuthErrorCode.EMAIL_NOT_VERIFIED: 403,
    AuthErrorCode.USER_ALREADY_EXISTS: 409,
    AuthErrorCode.USER_NOT_FOUND: 404,
    AuthErrorCode.PASSWORD_TOO_WEAK: 400,
    AuthErrorCode.INVALID_INPUT: 400,
    AuthErrorCode.INVALID_TOKEN: 400,
    AuthErrorCode.TOKEN_EXPIRED: 401,
    AuthErrorCode.INVALID_REFRESH_TOKEN: 401,
    AuthErrorCode.EMAIL_ALREADY_VERIFIED: 400,
    AuthErrorCode.INVALID_OAUTH_STATE: 400,
    AuthErrorCode.OAUTH_ERROR: 502,
    AuthErrorCode.OAUTH_MISCONFIGURED: 503,
    AuthErrorCode.PROVIDER_ERROR: 500,
}


class AuthError(Exception):
    """Authentication failure scoped to a single request

    Attributes:
        code: Taxonomy kind
        message: Human-readable message safe to return to callers
        status_code: HTTP-style status (defaults per code)
        details: Optional structured context
    """

    def __init__(
        self,
        code: AuthErrorCode,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code if status_code is not None else code.default_status
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {"error": self.code.value, "message": self.message}

    def __repr__(self) -> str:
        return f"AuthError({self.code.value}, {self.message!r}, status={self.status_code})"


class OAuthError(AuthError):
    """OAuth adapter failure (upstream rejection or misconfiguration)"""

    def __init__(self, provider: str, message: str, misconfigured: bool = False):
        code = AuthErrorCode.OAUTH_MISCONFIGURED if misconfigured else AuthErrorCode.OAUTH_ERROR
        super().__init__(code, message, details={"provider": provider})
        self.provider = provider
        self.misconfigured = misconfigured
