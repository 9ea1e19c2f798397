"""
Application context: the single owner of process-wide mutable state.

Why:
    Session/state stores, the document store, the duty registry, the ping log
    and the broadcast hub are shared by every request. Building them in one
    place and attaching the result to `app.state` keeps ownership explicit and
    lets tests construct an isolated app per case.
"""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from dutydesk.exams.configs import ConfigService
from dutydesk.exams.submissions import SubmissionService
from dutydesk.exams.testers import TesterRegistry
from dutydesk.identity_access.discord import DiscordClient
from dutydesk.identity_access.resolver import IdentityProvider, SessionResolver
from dutydesk.identity_access.stores import SessionStore, StateStore
from dutydesk.live.broadcast import BroadcastHub
from dutydesk.live.duty import DutyRegistry
from dutydesk.live.pings import PingWorkflow
from dutydesk.notifications.channel import ChannelNotifier
from dutydesk.storage.bootstrap import build_store
from dutydesk.storage.ports import DocumentStore

from .config import Settings


@dataclass
class AppContext:
    settings: Settings
    store: DocumentStore
    provider: IdentityProvider
    states: StateStore
    sessions: SessionStore
    resolver: SessionResolver
    testers: TesterRegistry
    submissions: SubmissionService
    configs: ConfigService
    hub: BroadcastHub
    duty: DutyRegistry
    pings: PingWorkflow
    notifier: ChannelNotifier


def build_context(
    settings: Settings,
    *,
    store: DocumentStore | None = None,
    provider: IdentityProvider | None = None,
    notifier: ChannelNotifier | None = None,
) -> AppContext:
    """Wire every component; explicit arguments replace the configured ones."""
    if store is None:
        store = build_store(settings.document_store, path=settings.document_store_path, dsn=settings.database_url)
    if provider is None:
        provider = DiscordClient(settings.discord)
    if notifier is None:
        notifier = ChannelNotifier(
            api_base=settings.discord.api_base,
            bot_token=settings.discord.bot_token,
            channel_id=settings.report_channel_id,
            timeout_seconds=settings.discord.timeout_seconds,
        )
    sessions = SessionStore()
    testers = TesterRegistry(store)
    hub = BroadcastHub(queue_size=settings.events_queue_size)
    return AppContext(
        settings=settings,
        store=store,
        provider=provider,
        states=StateStore(),
        sessions=sessions,
        resolver=SessionResolver(
            provider, settings.roles, sessions, testers, session_ttl_seconds=settings.session_ttl_seconds
        ),
        testers=testers,
        submissions=SubmissionService(store, testers),
        configs=ConfigService(store),
        hub=hub,
        duty=DutyRegistry(store, hub, ttl_seconds=settings.duty_ttl_seconds),
        pings=PingWorkflow(store, hub),
        notifier=notifier,
    )


def get_ctx(request: Request) -> AppContext:
    return request.app.state.ctx


__all__ = ["AppContext", "build_context", "get_ctx"]
