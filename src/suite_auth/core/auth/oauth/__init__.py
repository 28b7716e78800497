"""OAuth provider adapters."""

from typing import Optional

import httpx

from suite_auth.config.settings import Settings
from suite_auth.core.auth.oauth.apple import AppleOAuthProvider, parse_user_data
from suite_auth.core.auth.oauth.base import OAuthProvider
from suite_auth.core.auth.oauth.discord import DiscordOAuthProvider
from suite_auth.core.auth.oauth.github import GitHubOAuthProvider
from suite_auth.core.auth.oauth.google import GoogleOAuthProvider
from suite_auth.domain.models import OAuthProviderName


def create_oauth_providers(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> dict[OAuthProviderName, OAuthProvider]:
    """Build every adapter from settings (configured or not)"""
    timeout = settings.oauth_http_timeout_seconds
    return {
        OAuthProviderName.GOOGLE: GoogleOAuthProvider(
            settings.google_client_id, settings.google_client_secret, timeout, transport
        ),
        OAuthProviderName.GITHUB: GitHubOAuthProvider(
            settings.github_client_id, settings.github_client_secret, timeout, transport
        ),
        OAuthProviderName.DISCORD: DiscordOAuthProvider(
            settings.discord_client_id, settings.discord_client_secret, timeout, transport
        ),
        OAuthProviderName.APPLE: AppleOAuthProvider(
            settings.apple_client_id,
            settings.apple_team_id,
            settings.apple_key_id,
            settings.apple_private_key,
            timeout,
            transport,
        ),
    }


__all__ = [
    "AppleOAuthProvider",
    "DiscordOAuthProvider",
    "GitHubOAuthProvider",
    "GoogleOAuthProvider",
    "OAuthProvider",
    "create_oauth_providers",
    "parse_user_data",
]
