"""Google OAuth adapter."""

from typing import Optional

from suite_auth.core.auth.oauth.base import OAuthProvider
from suite_auth.domain.models import OAuthIdentity, OAuthProviderName


class GoogleOAuthProvider(OAuthProvider):
    """Google sign-in via the v2 userinfo endpoint"""

    name = OAuthProviderName.GOOGLE
    label = "Google"
    authorization_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint = "https://oauth2.googleapis.com/token"
    userinfo_endpoint = "https://www.googleapis.com/oauth2/v2/userinfo"
    default_scopes = ("openid", "email", "profile")

    def extra_authorization_params(self) -> dict[str, str]:
        return {"access_type": "offline", "prompt": "consent"}

    async def get_user_info(self, access_token: str, id_token: Optional[str] = None) -> OAuthIdentity:
        async with self._client() as client:
            data = await self._get_json(client, self.userinfo_endpoint, access_token, "userinfo")

        return OAuthIdentity(
            provider=self.name,
            provider_user_id=str(data["id"]),
            email=data.get("email"),
            email_verified=bool(data.get("verified_email", False)),
            display_name=data.get("name"),
            first_name=data.get("given_name"),
            last_name=data.get("family_name"),
            avatar_url=data.get("picture"),
            raw=data,
        )
