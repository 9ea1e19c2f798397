"""
Minimal Discord client for the OAuth2 login and guild role lookup.

Why: Keep web framework independent identity logic in a separate module. The
web adapter (FastAPI) calls into this client to build the authorization URL,
exchange the authorization code, read the user profile and read the member's
guild roles.

Security: Never log tokens or the client secret. The bot token is only used
server-side for the guild member lookup. Every call carries a timeout;
idempotent reads retry with exponential backoff on network errors, 429 and 5xx.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict
from urllib.parse import urlencode
import logging
import time

# Small indirection to ease monkeypatching in tests
import requests as http

logger = logging.getLogger("dutydesk.identity_access.discord")

DEFAULT_TIMEOUT_SECONDS = 5
_RETRY_STATUS = frozenset({429, 500, 502, 503, 504})
_sleep = time.sleep


def http_post(url: str, data: Dict[str, str], headers: Dict[str, str], timeout: float = DEFAULT_TIMEOUT_SECONDS):
    return http.post(url, data=data, headers=headers, timeout=timeout)


def http_get(url: str, headers: Dict[str, str], timeout: float = DEFAULT_TIMEOUT_SECONDS):
    return http.get(url, headers=headers, timeout=timeout)


class IdentityProviderError(Exception):
    """Raised when a Discord call fails or answers with an unusable payload."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class DiscordConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    bot_token: str
    guild_id: str
    api_base: str = "https://discord.com/api/v10"
    authorize_url: str = "https://discord.com/oauth2/authorize"
    scope: str = "identify guilds.members.read"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retries: int = 2
    backoff_seconds: float = 0.5

    @property
    def token_endpoint(self) -> str:
        return f"{self.api_base}/oauth2/token"

    @property
    def profile_endpoint(self) -> str:
        return f"{self.api_base}/users/@me"

    def member_endpoint(self, user_id: str) -> str:
        return f"{self.api_base}/guilds/{self.guild_id}/members/{user_id}"


def format_tag(profile: dict) -> str:
    """Return the display tag for a Discord profile.

    Accounts migrated to unique usernames report discriminator "0"; those get
    the bare username.
    """
    username = str(profile.get("username") or "")
    discriminator = str(profile.get("discriminator") or "")
    if not discriminator or discriminator == "0":
        return username
    return f"{username}#{discriminator}"


class DiscordClient:
    def __init__(self, config: DiscordConfig):
        self.cfg = config

    def build_authorization_url(self, *, state: str) -> str:
        """Return the authorization URL carrying the opaque anti-CSRF `state`."""
        params = {
            "client_id": self.cfg.client_id,
            "redirect_uri": self.cfg.redirect_uri,
            "response_type": "code",
            "scope": self.cfg.scope,
            "state": state,
            "prompt": "consent",
        }
        return f"{self.cfg.authorize_url}?{urlencode(params)}"

    def exchange_code_for_token(self, *, code: str) -> str:
        """Exchange an authorization code for a user access token.

        Single attempt: authorization codes are one-time use.
        Raises IdentityProviderError on failure.
        """
        data = {
            "client_id": self.cfg.client_id,
            "client_secret": self.cfg.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.cfg.redirect_uri,
        }
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        try:
            resp = http_post(self.cfg.token_endpoint, data=data, headers=headers, timeout=self.cfg.timeout_seconds)
        except http.RequestException as exc:
            raise IdentityProviderError("token_exchange_failed") from exc
        if resp.status_code != 200:
            raise IdentityProviderError("token_exchange_failed")
        try:
            body = resp.json()
        except ValueError as exc:
            raise IdentityProviderError("token_exchange_failed") from exc
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise IdentityProviderError("token_exchange_failed")
        return str(token)

    def fetch_profile(self, *, access_token: str) -> dict:
        """Return the `/users/@me` profile for a user access token."""
        body = self._get_json(self.cfg.profile_endpoint, {"Authorization": f"Bearer {access_token}"}, "profile_fetch_failed")
        if not body.get("id"):
            raise IdentityProviderError("profile_fetch_failed")
        return body

    def fetch_member_roles(self, *, user_id: str) -> list[str]:
        """Return the role ids the user holds in the configured guild."""
        body = self._get_json(
            self.cfg.member_endpoint(user_id), {"Authorization": f"Bot {self.cfg.bot_token}"}, "roles_fetch_failed"
        )
        roles = body.get("roles")
        if not isinstance(roles, list):
            return []
        return [str(r) for r in roles]

    def _get_json(self, url: str, headers: Dict[str, str], error_code: str) -> dict:
        resp = None
        attempts = max(0, int(self.cfg.retries)) + 1
        for attempt in range(attempts):
            if attempt:
                _sleep(self.cfg.backoff_seconds * (2 ** (attempt - 1)))
            try:
                resp = http_get(url, headers=headers, timeout=self.cfg.timeout_seconds)
            except http.RequestException as exc:
                logger.warning("discord.get_failed attempt=%s error=%s", attempt + 1, exc.__class__.__name__)
                resp = None
                continue
            if resp.status_code in _RETRY_STATUS:
                logger.warning("discord.get_retryable attempt=%s status=%s", attempt + 1, resp.status_code)
                continue
            break
        if resp is None or resp.status_code != 200:
            raise IdentityProviderError(error_code)
        try:
            body = resp.json()
        except ValueError as exc:
            raise IdentityProviderError(error_code) from exc
        if not isinstance(body, dict):
            raise IdentityProviderError(error_code)
        return body


__all__ = ["DiscordConfig", "DiscordClient", "IdentityProviderError", "format_tag", "http_get", "http_post"]
