"""Authentication API Models

Purpose: Request/response models for the auth HTTP endpoints

Key Components:
- SignUpRequest / SignInRequest: Credential input validation
- SessionResponse: Access/refresh token pair plus user profile
- UserProfile: Public user information for API responses
- ErrorResponse: Structured error body for AuthError failures
"""

from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class SignUpRequest(BaseModel):
    """Request model for account registration"""

    email: EmailStr = Field(..., examples=["alice@example.com"])
    password: str = Field(..., max_length=256, description="At least 8 chars, one letter, one digit")
    name: Optional[str] = Field(None, max_length=100, examples=["Alice"])

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        """Store emails in lowercase for consistency"""
        return v.lower()


class SignInRequest(BaseModel):
    """Request model for password sign-in"""

    email: EmailStr
    password: str = Field(..., max_length=256)


class RefreshRequest(BaseModel):
    """Token refresh request"""

    refresh_token: str = Field(..., min_length=1)
    provider: Optional[str] = Field(None, description="Provider that issued the session")


class VerifyTokenRequest(BaseModel):
    token: str


class EmailRequest(BaseModel):
    """Body for reset-password-request and resend-verification"""

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Password reset (token) or password change (current password + bearer token)"""

    new_password: str = Field(..., max_length=256)
    token: Optional[str] = None
    current_password: Optional[str] = None


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


class UpdateProfileRequest(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    avatar_url: Optional[str] = Field(None, max_length=2048)


class OAuthCallbackRequest(BaseModel):
    """Authorization code callback payload"""

    code: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    user: Optional[str] = Field(None, description="Apple first-login user JSON")


class UserProfile(BaseModel):
    """Public user profile information"""

    id: str = Field(..., examples=["550e8400-e29b-41d4-a716-446655440000"])
    email: str = Field(..., examples=["alice@example.com"])
    email_verified: bool
    display_name: str = Field(..., examples=["Alice"])
    avatar_url: Optional[str] = None
    provider: str = Field(..., examples=["local"])
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class SessionResponse(BaseModel):
    """Authentication token response"""

    access_token: str
    refresh_token: str
    token_type: str = Field(default="bearer", description="Token type (always 'bearer')")
    expires_at: str = Field(..., description="Access token expiry (ISO format)")
    provider: str
    user: UserProfile


class VerifyTokenResponse(BaseModel):
    valid: bool
    user: Optional[UserProfile] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    expires_at: Optional[str] = None


class OAuthUrlResponse(BaseModel):
    url: str
    state: str


class ProvidersResponse(BaseModel):
    active_provider: str
    local_enabled: bool
    managed_enabled: bool
    oauth_providers: List[str]


class MessageResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    """Authentication error response"""

    error: str = Field(..., description="Error code", examples=["INVALID_CREDENTIALS"])
    message: str = Field(..., examples=["Invalid email or password"])
