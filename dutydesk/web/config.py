"""
Configuration and startup security checks.

Why: All knobs come from the environment (optionally a local `.env`). Reading
them once into a frozen `Settings` keeps defaults and validation in one place
and lets tests build settings explicitly.

Permissions: The caller needs no special privileges. `load_settings` raises
`ValueError` on malformed values; `ensure_secure_config_on_startup` raises
`SystemExit` on insecure production configuration.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import os

from dutydesk.identity_access.capabilities import RoleConfig, parse_role_ids
from dutydesk.identity_access.discord import DiscordConfig
from dutydesk.storage.bootstrap import STORE_BACKENDS


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _str_env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got: {value}")
    return value


@dataclass(frozen=True)
class Settings:
    discord: DiscordConfig
    roles: RoleConfig = field(default_factory=RoleConfig)
    environment: str = "dev"
    frontend_base_url: str = "http://localhost:3000"
    report_channel_id: str = ""
    session_ttl_seconds: int = 86400
    document_store: str = "json"
    document_store_path: str = "db.json"
    database_url: str = ""
    duty_ttl_seconds: int = 43200
    duty_sweep_seconds: int = 60
    events_queue_size: int = 100
    events_keepalive_seconds: int = 25
    events_max_stream_seconds: int = 3600

    @property
    def prod_like(self) -> bool:
        return _is_prod_like(self.environment)


def load_settings() -> Settings:
    """Read settings from the environment.

    Behavior:
        - Role id lists are comma-separated; blanks are ignored.
        - Integer knobs must be non-negative integers.
        - `DOCUMENT_STORE` must be one of json/memory/db.
    """
    timeout = _int_env("HTTP_TIMEOUT_SECONDS", 5) or 5
    discord = DiscordConfig(
        client_id=_str_env("DISCORD_CLIENT_ID"),
        client_secret=_str_env("DISCORD_CLIENT_SECRET"),
        redirect_uri=_str_env("DISCORD_REDIRECT_URI", "http://localhost:8080/auth/callback"),
        bot_token=_str_env("DISCORD_BOT_TOKEN"),
        guild_id=_str_env("GUILD_ID"),
        api_base=_str_env("DISCORD_API_BASE", "https://discord.com/api/v10").rstrip("/"),
        timeout_seconds=timeout,
        retries=_int_env("HTTP_RETRIES", 2),
    )
    roles = RoleConfig(
        tester_role_ids=parse_role_ids(os.getenv("TESTER_ROLE_IDS")),
        editor_role_ids=parse_role_ids(os.getenv("EDITOR_ROLE_IDS")),
        tester_any_role_id=_str_env("TESTER_GENERAL") or None,
        radio_role_id=_str_env("INSTRUCTOR_RADIO") or None,
        mdt_role_id=_str_env("INSTRUCTOR_MDT") or None,
    )
    store = _str_env("DOCUMENT_STORE", "json").lower()
    if store not in STORE_BACKENDS:
        raise ValueError(f"DOCUMENT_STORE must be one of {sorted(STORE_BACKENDS)}, got: {store!r}")
    return Settings(
        discord=discord,
        roles=roles,
        environment=_str_env("DUTYDESK_ENV", "dev").lower(),
        frontend_base_url=_str_env("FRONTEND_BASE_URL", "http://localhost:3000").rstrip("/"),
        report_channel_id=_str_env("REPORT_CHANNEL_ID"),
        session_ttl_seconds=_int_env("SESSION_TTL_SECONDS", 86400),
        document_store=store,
        document_store_path=_str_env("DOCUMENT_STORE_PATH", "db.json"),
        database_url=_str_env("DATABASE_URL"),
        duty_ttl_seconds=_int_env("DUTY_TTL_SECONDS", 43200),
        duty_sweep_seconds=_int_env("DUTY_SWEEP_SECONDS", 60),
        events_queue_size=_int_env("EVENTS_QUEUE_SIZE", 100),
        events_keepalive_seconds=_int_env("EVENTS_KEEPALIVE_SECONDS", 25),
        events_max_stream_seconds=_int_env("EVENTS_MAX_STREAM_SECONDS", 3600),
    )


def _is_placeholder(value: str) -> bool:
    v = (value or "").strip().upper()
    return not v or v.startswith("CHANGE_ME") or v in {"REPLACE_THIS", "DUMMY_DO_NOT_USE"}


def ensure_secure_config_on_startup(settings: Settings) -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - Discord client secret and bot token must be set and not placeholders.
    - Redirect URI and frontend base URL must use https.
    - The in-memory document store is not allowed.
    """
    if not settings.prod_like:
        return

    if _is_placeholder(settings.discord.client_secret):
        raise SystemExit("Refusing to start: DISCORD_CLIENT_SECRET is unset or a placeholder in production.")
    if _is_placeholder(settings.discord.bot_token):
        raise SystemExit("Refusing to start: DISCORD_BOT_TOKEN is unset or a placeholder in production.")

    for var_name, value in (
        ("DISCORD_REDIRECT_URI", settings.discord.redirect_uri),
        ("FRONTEND_BASE_URL", settings.frontend_base_url),
    ):
        if not value.lower().startswith("https://"):
            raise SystemExit(f"Refusing to start: {var_name} must use https in production.")

    if settings.document_store == "memory":
        raise SystemExit("Refusing to start: DOCUMENT_STORE=memory loses all state on restart; not allowed in production.")
