"""GitHub OAuth adapter.

GitHub omits ``email`` from ``/user`` when the user keeps it private. Only in
that case is ``/user/emails`` queried, and the primary verified address wins.
"""

import logging
from typing import Any, Optional

from suite_auth.core.auth.oauth.base import OAuthProvider
from suite_auth.domain.models import OAuthIdentity, OAuthProviderName

logger = logging.getLogger(__name__)


def select_primary_email(emails: list[dict[str, Any]]) -> Optional[str]:
    """Primary verified address, else first verified address, else None"""
    verified = [e for e in emails if e.get("verified")]
    for entry in verified:
        if entry.get("primary"):
            return entry.get("email")
    return verified[0].get("email") if verified else None


class GitHubOAuthProvider(OAuthProvider):
    """GitHub sign-in"""

    name = OAuthProviderName.GITHUB
    label = "GitHub"
    authorization_endpoint = "https://github.com/login/oauth/authorize"
    token_endpoint = "https://github.com/login/oauth/access_token"
    user_endpoint = "https://api.github.com/user"
    emails_endpoint = "https://api.github.com/user/emails"
    default_scopes = ("read:user", "user:email")

    async def get_user_info(self, access_token: str, id_token: Optional[str] = None) -> OAuthIdentity:
        async with self._client() as client:
            data = await self._get_json(client, self.user_endpoint, access_token, "user")

            email = data.get("email")
            # A public profile email on GitHub is always a verified address
            email_verified = email is not None
            if email is None:
                emails = await self._get_json(client, self.emails_endpoint, access_token, "emails")
                email = select_primary_email(emails)
                email_verified = email is not None
                if email is None:
                    logger.info(f"GitHub user {data.get('login')} has no verified email")

        return OAuthIdentity(
            provider=self.name,
            provider_user_id=str(data["id"]),
            email=email,
            email_verified=email_verified,
            display_name=data.get("name") or data.get("login"),
            avatar_url=data.get("avatar_url"),
            raw=data,
        )
