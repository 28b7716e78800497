"""Authentication Routes

Thin HTTP layer over ``AuthService``. Every ``AuthError`` raised below is
rendered by the application's exception handler with its own status code.

Key Endpoints:
- POST /api/v1/auth/signup, /signin, /signout, /refresh
- GET/PATCH /api/v1/auth/me
- POST /api/v1/auth/reset-password-request, /reset-password
- POST /api/v1/auth/verify-email, /resend-verification
- GET /api/v1/auth/oauth/{provider}, POST /api/v1/auth/oauth/{provider}/callback
- GET /api/v1/auth/providers
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from suite_auth.core.auth import AuthService, get_auth_service
from suite_auth.domain.errors import AuthError, AuthErrorCode
from suite_auth.domain.models import AuthSession, AuthUser
from suite_auth.domain.models.api_auth import (
    EmailRequest,
    MessageResponse,
    OAuthCallbackRequest,
    OAuthUrlResponse,
    ProvidersResponse,
    RefreshRequest,
    ResetPasswordRequest,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
    UpdateProfileRequest,
    UserProfile,
    VerifyEmailRequest,
    VerifyTokenRequest,
    VerifyTokenResponse,
)

router = APIRouter(prefix="/api/v1/auth", tags=["authentication"])
logger = logging.getLogger(__name__)


# ============================================================================
# Helper Functions
# ============================================================================

def _profile(user: AuthUser) -> UserProfile:
    return UserProfile(**{k: v for k, v in user.to_dict().items() if k != "metadata"})


def _session_response(session: AuthSession) -> SessionResponse:
    data = session.to_dict()
    data["user"] = _profile(session.user)
    return SessionResponse(**data)


async def extract_bearer_token(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Optional[str]:
    """Extract Bearer token from Authorization header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[7:].strip()


async def get_current_user(
    token: Optional[str] = Depends(extract_bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> AuthUser:
    """Get current authenticated user from token."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
        )

    result = await service.verify_token(token)
    if not result.valid:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=result.error)
    return result.user


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/signup", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def sign_up(request: SignUpRequest, service: AuthService = Depends(get_auth_service)):
    """Register a new account and start its first session."""
    session = await service.sign_up(request.email, request.password, request.name)
    logger.info(f"User signed up: {session.user.email}")
    return _session_response(session)


@router.post("/signin", response_model=SessionResponse)
async def sign_in(request: SignInRequest, service: AuthService = Depends(get_auth_service)):
    """Sign in with email and password."""
    return _session_response(await service.sign_in(request.email, request.password))


@router.post("/signout", response_model=MessageResponse)
async def sign_out(
    token: Optional[str] = Depends(extract_bearer_token),
    service: AuthService = Depends(get_auth_service),
):
    """Sign out. Always succeeds, even for missing or invalid tokens."""
    if token:
        await service.sign_out(token)
    return MessageResponse(message="Signed out")


@router.post("/refresh", response_model=SessionResponse)
async def refresh(request: RefreshRequest, service: AuthService = Depends(get_auth_service)):
    """Rotate a refresh token into a new session."""
    return _session_response(await service.refresh_session(request.refresh_token, request.provider))


@router.post("/verify-token", response_model=VerifyTokenResponse)
async def verify_token(request: VerifyTokenRequest, service: AuthService = Depends(get_auth_service)):
    """Verify an access token (for other suite services)."""
    result = await service.verify_token(request.token)
    return VerifyTokenResponse(
        valid=result.valid,
        user=_profile(result.user) if result.user else None,
        error=result.error,
        error_code=result.error_code.value if result.error_code else None,
        expires_at=result.expires_at.isoformat() if result.expires_at else None,
    )


@router.get("/me", response_model=UserProfile)
async def get_me(user: AuthUser = Depends(get_current_user)):
    """Get the authenticated user's profile."""
    return _profile(user)


@router.patch("/me", response_model=UserProfile)
async def update_me(
    request: UpdateProfileRequest,
    user: AuthUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Update display name and/or avatar."""
    updated = await service.update_user(
        user.id,
        display_name=request.display_name,
        avatar_url=request.avatar_url,
        provider=user.provider,
    )
    return _profile(updated)


@router.post("/reset-password-request", response_model=MessageResponse)
async def reset_password_request(
    request: EmailRequest, service: AuthService = Depends(get_auth_service)
):
    """Request a password reset email. Response never reveals whether the email exists."""
    await service.reset_password_request(request.email)
    return MessageResponse(message="If that email is registered, a reset link has been sent")


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    request: ResetPasswordRequest,
    token: Optional[str] = Depends(extract_bearer_token),
    service: AuthService = Depends(get_auth_service),
):
    """Complete a reset with a reset token, or change the password when signed in."""
    if request.token:
        await service.reset_password(request.new_password, token=request.token)
        return MessageResponse(message="Password has been reset")

    if request.current_password is None:
        raise AuthError(AuthErrorCode.INVALID_INPUT, "Token or current password required")

    user = await get_current_user(token, service)
    await service.reset_password(
        request.new_password,
        user_id=user.id,
        current_password=request.current_password,
        provider=user.provider,
    )
    return MessageResponse(message="Password has been changed")


@router.post("/verify-email", response_model=UserProfile)
async def verify_email(request: VerifyEmailRequest, service: AuthService = Depends(get_auth_service)):
    """Consume an email verification token."""
    return _profile(await service.verify_email(request.token))


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(
    request: EmailRequest, service: AuthService = Depends(get_auth_service)
):
    """Send a fresh verification email."""
    await service.resend_verification_email(request.email)
    return MessageResponse(message="If that email is registered, a verification link has been sent")


@router.get("/oauth/{provider}", response_model=OAuthUrlResponse)
async def oauth_start(
    provider: str,
    redirect_uri: str = Query(..., description="Callback URL registered with the provider"),
    service: AuthService = Depends(get_auth_service),
):
    """Start a federated sign-in; the returned state must come back on the callback."""
    url, state = await service.get_oauth_url(provider, redirect_uri)
    return OAuthUrlResponse(url=url, state=state)


@router.post("/oauth/{provider}/callback", response_model=SessionResponse)
async def oauth_callback(
    provider: str,
    request: OAuthCallbackRequest,
    service: AuthService = Depends(get_auth_service),
):
    """Finish a federated sign-in."""
    session = await service.handle_oauth_callback(
        provider, request.code, request.state, user_data=request.user
    )
    return _session_response(session)


@router.get("/providers", response_model=ProvidersResponse)
async def providers(service: AuthService = Depends(get_auth_service)):
    """Available sign-in methods."""
    return ProvidersResponse(**service.get_available_providers())
