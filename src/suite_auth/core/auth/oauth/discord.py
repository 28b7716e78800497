"""Discord OAuth adapter."""

from typing import Any, Optional

from suite_auth.core.auth.oauth.base import OAuthProvider
from suite_auth.domain.models import OAuthIdentity, OAuthProviderName

CDN_BASE = "https://cdn.discordapp.com"


def avatar_url_for(user: dict[str, Any]) -> str:
    """Custom avatar URL, or Discord's deterministic default avatar"""
    user_id = str(user["id"])
    avatar_hash = user.get("avatar")
    if avatar_hash:
        extension = "gif" if avatar_hash.startswith("a_") else "png"
        return f"{CDN_BASE}/avatars/{user_id}/{avatar_hash}.{extension}"

    discriminator = user.get("discriminator")
    if discriminator and discriminator != "0":
        index = int(discriminator) % 5
    else:
        # Accounts on the unique-username system
        index = (int(user_id) >> 22) % 6
    return f"{CDN_BASE}/embed/avatars/{index}.png"


class DiscordOAuthProvider(OAuthProvider):
    """Discord sign-in"""

    name = OAuthProviderName.DISCORD
    label = "Discord"
    authorization_endpoint = "https://discord.com/api/oauth2/authorize"
    token_endpoint = "https://discord.com/api/oauth2/token"
    user_endpoint = "https://discord.com/api/users/@me"
    default_scopes = ("identify", "email")

    async def get_user_info(self, access_token: str, id_token: Optional[str] = None) -> OAuthIdentity:
        async with self._client() as client:
            data = await self._get_json(client, self.user_endpoint, access_token, "user")

        return OAuthIdentity(
            provider=self.name,
            provider_user_id=str(data["id"]),
            email=data.get("email"),
            email_verified=bool(data.get("verified", False)),
            display_name=data.get("global_name") or data.get("username"),
            avatar_url=avatar_url_for(data),
            raw=data,
        )
