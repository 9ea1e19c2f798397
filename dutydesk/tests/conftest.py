"""
Pytest configuration for DutyDesk tests.

Why: Force AnyIO to use the asyncio backend and keep every test on an
isolated app instance with in-memory state and fake external collaborators
(identity provider, report channel).
"""
from __future__ import annotations

import os

import httpx
from httpx import ASGITransport
import pytest

# Must be set before `dutydesk.web.main` is imported (it builds a default app).
os.environ["DOCUMENT_STORE"] = "memory"
os.environ["DUTYDESK_ENV"] = "dev"

from dutydesk.identity_access.capabilities import RoleConfig, resolve_capabilities  # noqa: E402
from dutydesk.identity_access.discord import DiscordConfig, IdentityProviderError  # noqa: E402
from dutydesk.identity_access.stores import Identity  # noqa: E402
from dutydesk.storage.json_file import MemoryDocumentStore  # noqa: E402
from dutydesk.web.config import Settings  # noqa: E402

TESTER_ROLE = "100"
EDITOR_ROLE = "200"
GENERAL_ROLE = "300"
RADIO_ROLE = "400"
MDT_ROLE = "500"


def make_settings(**overrides) -> Settings:
    discord = DiscordConfig(
        client_id="client-1",
        client_secret="secret-1",
        redirect_uri="http://api.test/auth/callback",
        bot_token="bot-1",
        guild_id="guild-1",
        api_base="https://discord.test/api",
        retries=2,
        backoff_seconds=0,
    )
    values = dict(
        discord=discord,
        roles=RoleConfig(
            tester_role_ids=frozenset({TESTER_ROLE}),
            editor_role_ids=frozenset({EDITOR_ROLE}),
            tester_any_role_id=GENERAL_ROLE,
            radio_role_id=RADIO_ROLE,
            mdt_role_id=MDT_ROLE,
        ),
        environment="dev",
        frontend_base_url="http://front.test",
        document_store="memory",
        duty_ttl_seconds=0,
        events_keepalive_seconds=1,
        events_max_stream_seconds=5,
    )
    values.update(overrides)
    return Settings(**values)


class FakeProvider:
    """In-memory stand-in for the Discord client."""

    def __init__(self):
        self.profiles: dict[str, dict] = {}
        self.roles: dict[str, list[str]] = {}
        self.fail_exchange = False
        self.fail_roles = False

    def add_user(self, code: str, user_id: str, username: str, roles=(), discriminator: str = "0") -> None:
        self.profiles[code] = {"id": user_id, "username": username, "discriminator": discriminator}
        self.roles[user_id] = list(roles)

    def build_authorization_url(self, *, state: str) -> str:
        return f"https://idp.test/authorize?state={state}"

    def exchange_code_for_token(self, *, code: str) -> str:
        if self.fail_exchange or code not in self.profiles:
            raise IdentityProviderError("token_exchange_failed")
        return f"tok-{code}"

    def fetch_profile(self, *, access_token: str) -> dict:
        return dict(self.profiles[access_token[len("tok-"):]])

    def fetch_member_roles(self, *, user_id: str) -> list[str]:
        if self.fail_roles:
            raise IdentityProviderError("roles_fetch_failed")
        return list(self.roles.get(user_id, []))


class FakeNotifier:
    enabled = True

    def __init__(self):
        self.sent: list[dict] = []

    def notify_submission(self, submission: dict) -> bool:
        self.sent.append(submission)
        return True


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def app(settings, provider, notifier):
    from dutydesk.web.main import create_app

    return create_app(settings, store=MemoryDocumentStore(), provider=provider, notifier=notifier)


@pytest.fixture
def ctx(app):
    return app.state.ctx


@pytest.fixture
def login(ctx, provider):
    """Open a session directly (bypassing OAuth); returns the session id."""

    async def _login(user_id: str, *roles: str, tag: str | None = None) -> str:
        provider.roles[user_id] = list(roles)
        caps = resolve_capabilities(roles, ctx.settings.roles)
        if caps.is_tester:
            await ctx.testers.allocate(user_id)
        identity = Identity(user_id=user_id, tag=tag or f"user{user_id}", capabilities=caps)
        return ctx.sessions.create(identity=identity).session_id

    return _login


@pytest.fixture
def client(app):
    """Factory for an ASGI client, optionally carrying a session cookie."""
    from dutydesk.web.routes.auth import SESSION_COOKIE_NAME

    def _client(sid: str | None = None) -> httpx.AsyncClient:
        c = httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        if sid:
            c.cookies.set(SESSION_COOKIE_NAME, sid)
        return c

    return _client


@pytest.fixture
def role_ids() -> dict[str, str]:
    return {"tester": TESTER_ROLE, "editor": EDITOR_ROLE, "general": GENERAL_ROLE, "radio": RADIO_ROLE, "mdt": MDT_ROLE}
