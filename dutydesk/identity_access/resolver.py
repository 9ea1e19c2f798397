"""
Session/capability resolver: turns an OAuth callback into a session.

Why:
    The login flow chains several identity-provider calls (code exchange,
    profile, guild roles) and a side effect (tester code allocation). Keeping
    the orchestration here lets the web adapter stay a thin translation layer
    and lets tests drive the flow with a fake provider.

Trust boundary:
    Capabilities are cached in the session at login. `refresh` re-reads live
    role membership; the web layer calls it before editor-protected mutations
    and exposes it as an explicit action.
"""
from __future__ import annotations

import asyncio
from dataclasses import replace
import functools
import logging
from typing import Protocol

from .capabilities import Capabilities, RoleConfig, resolve_capabilities
from .discord import IdentityProviderError, format_tag
from .stores import Identity, SessionRecord, SessionStore

logger = logging.getLogger("dutydesk.identity_access.resolver")


class AuthenticationError(Exception):
    """Raised when the login cannot establish an identity."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class IdentityProvider(Protocol):
    def build_authorization_url(self, *, state: str) -> str: ...

    def exchange_code_for_token(self, *, code: str) -> str: ...

    def fetch_profile(self, *, access_token: str) -> dict: ...

    def fetch_member_roles(self, *, user_id: str) -> list[str]: ...


class CodeAllocator(Protocol):
    async def allocate(self, user_id: str) -> str: ...


async def _in_thread(fn, **kwargs):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(fn, **kwargs))


class SessionResolver:
    def __init__(
        self,
        provider: IdentityProvider,
        roles: RoleConfig,
        sessions: SessionStore,
        testers: CodeAllocator,
        *,
        session_ttl_seconds: int = 86400,
    ) -> None:
        self._provider = provider
        self._roles = roles
        self._sessions = sessions
        self._testers = testers
        self._ttl = session_ttl_seconds

    async def login(self, *, code: str) -> SessionRecord:
        """Resolve an authorization code into a new session.

        Behavior:
            - Any provider failure raises AuthenticationError; no session is
              created and no capability is granted.
            - First login with tester capability allocates a tester code.
        """
        try:
            token = await _in_thread(self._provider.exchange_code_for_token, code=code)
            profile = await _in_thread(self._provider.fetch_profile, access_token=token)
            user_id = str(profile["id"])
            roles = await _in_thread(self._provider.fetch_member_roles, user_id=user_id)
        except IdentityProviderError as exc:
            logger.warning("login.failed code=%s", exc.code)
            raise AuthenticationError(exc.code) from exc
        caps = resolve_capabilities(roles, self._roles)
        identity = Identity(user_id=user_id, tag=format_tag(profile), capabilities=caps)
        if caps.is_tester:
            await self._testers.allocate(user_id)
        sess = self._sessions.create(identity=identity, ttl_seconds=self._ttl)
        logger.info("login.ok user=%s tester=%s editor=%s", user_id, caps.is_tester, caps.is_editor)
        return sess

    async def live_capabilities(self, user_id: str) -> Capabilities:
        """Read current role membership; no capability when the lookup fails."""
        try:
            roles = await _in_thread(self._provider.fetch_member_roles, user_id=user_id)
        except IdentityProviderError as exc:
            logger.warning("roles.refresh_failed user=%s code=%s", user_id, exc.code)
            return Capabilities()
        return resolve_capabilities(roles, self._roles)

    async def refresh(self, session: SessionRecord) -> SessionRecord:
        """Replace the session's cached capabilities with live ones."""
        caps = await self.live_capabilities(session.user_id)
        if caps.is_tester and not session.capabilities.is_tester:
            await self._testers.allocate(session.user_id)
        # The live flags win even when the session vanished meanwhile.
        return self._sessions.update_capabilities(session.session_id, caps) or replace(session, capabilities=caps)


__all__ = ["AuthenticationError", "IdentityProvider", "SessionResolver"]
