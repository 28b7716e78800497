"""Managed identity platform client.

Thin async client for a GoTrue-compatible REST API (the auth server behind
Supabase). Every request carries the service key as ``apikey``; admin calls
also send it as the bearer token, user calls send the user's access token.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)


class PlatformError(Exception):
    """Non-2xx response (or transport failure) from the identity platform"""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


@dataclass
class PlatformUser:
    """User object as returned by the platform"""

    id: str
    email: str
    email_confirmed_at: Optional[str] = None
    user_metadata: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlatformUser":
        return cls(
            id=data["id"],
            email=data.get("email") or "",
            email_confirmed_at=data.get("email_confirmed_at") or data.get("confirmed_at"),
            user_metadata=data.get("user_metadata") or {},
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class PlatformSession:
    """Session object as returned by the platform"""

    access_token: str
    refresh_token: str
    expires_in: int
    expires_at: Optional[int]
    token_type: str
    user: PlatformUser

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlatformSession":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            expires_in=int(data.get("expires_in", 3600)),
            expires_at=data.get("expires_at"),
            token_type=data.get("token_type", "bearer"),
            user=PlatformUser.from_dict(data["user"]),
        )


@dataclass
class SignUpResult:
    user: Optional[PlatformUser]
    session: Optional[PlatformSession]


class IdentityPlatformClient:
    """GoTrue REST client"""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize platform client

        Args:
            base_url: Project URL (``/auth/v1`` is appended)
            service_key: Service-role key
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.auth_url = f"{self.base_url}/auth/v1"
        self.service_key = service_key
        self.timeout = timeout
        self._transport = transport

    # User-facing flows

    async def sign_up(
        self, email: str, password: str, data: Optional[dict[str, Any]] = None
    ) -> SignUpResult:
        body = await self._request(
            "POST", "/signup", json={"email": email, "password": password, "data": data or {}}
        )
        if "access_token" in body:
            session = PlatformSession.from_dict(body)
            return SignUpResult(user=session.user, session=session)
        user_data = body.get("user") or (body if body.get("id") else None)
        user = PlatformUser.from_dict(user_data) if user_data else None
        return SignUpResult(user=user, session=None)

    async def sign_in_with_password(self, email: str, password: str) -> PlatformSession:
        body = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return PlatformSession.from_dict(body)

    async def refresh_session(self, refresh_token: str) -> PlatformSession:
        body = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return PlatformSession.from_dict(body)

    async def exchange_code_for_session(self, auth_code: str, code_verifier: str) -> PlatformSession:
        body = await self._request(
            "POST",
            "/token",
            params={"grant_type": "pkce"},
            json={"auth_code": auth_code, "code_verifier": code_verifier},
        )
        return PlatformSession.from_dict(body)

    async def get_user(self, access_token: str) -> PlatformUser:
        body = await self._request("GET", "/user", bearer=access_token)
        return PlatformUser.from_dict(body)

    async def update_user(self, access_token: str, attributes: dict[str, Any]) -> PlatformUser:
        body = await self._request("PUT", "/user", json=attributes, bearer=access_token)
        return PlatformUser.from_dict(body)

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/logout", bearer=access_token)

    async def recover(self, email: str, redirect_to: Optional[str] = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        await self._request("POST", "/recover", params=params, json={"email": email})

    def authorize_url(self, provider: str, redirect_to: str, code_challenge: str) -> str:
        params = {
            "provider": provider,
            "redirect_to": redirect_to,
            "code_challenge": code_challenge,
            "code_challenge_method": "s256",
        }
        return f"{self.auth_url}/authorize?{urlencode(params)}"

    # Admin API

    async def admin_get_user(self, user_id: str) -> Optional[PlatformUser]:
        try:
            body = await self._request("GET", f"/admin/users/{user_id}", bearer=self.service_key)
        except PlatformError as e:
            if e.status == 404:
                return None
            raise
        return PlatformUser.from_dict(body)

    async def admin_update_user(self, user_id: str, attributes: dict[str, Any]) -> PlatformUser:
        body = await self._request(
            "PUT", f"/admin/users/{user_id}", json=attributes, bearer=self.service_key
        )
        return PlatformUser.from_dict(body)

    async def admin_delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/admin/users/{user_id}", bearer=self.service_key)

    # Transport

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
        bearer: Optional[str] = None,
    ) -> dict[str, Any]:
        headers = {"apikey": self.service_key, "Accept": "application/json"}
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.request(
                    method, f"{self.auth_url}{path}", params=params, json=json, headers=headers
                )
            except httpx.HTTPError as e:
                logger.error(f"Identity platform unreachable ({method} {path}): {e}")
                raise PlatformError(f"Identity platform unreachable: {e}") from e

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}

        if response.status_code >= 400:
            message = (
                body.get("msg")
                or body.get("error_description")
                or body.get("message")
                or body.get("error")
                or f"HTTP {response.status_code}"
            )
            code = body.get("error_code") or body.get("code")
            raise PlatformError(
                str(message), status=response.status_code, code=str(code) if code else None
            )

        return body if isinstance(body, dict) else {}
