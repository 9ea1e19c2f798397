"""
Environment configuration and the production fail-fast guard.

Production/staging must refuse to start with placeholder secrets, plain-http
URLs or the in-memory store; development stays permissive.
"""
from __future__ import annotations

import pytest

from dutydesk.web import config as cfg
from dutydesk.web.auth_utils import cookie_opts, is_cross_site

PROD_ENV = {
    "DUTYDESK_ENV": "prod",
    "DISCORD_CLIENT_SECRET": "real-secret",
    "DISCORD_BOT_TOKEN": "real-bot-token",
    "DISCORD_REDIRECT_URI": "https://api.example.org/auth/callback",
    "FRONTEND_BASE_URL": "https://app.example.org/",
    "DOCUMENT_STORE": "json",
}


def _env(monkeypatch: pytest.MonkeyPatch, **values: str) -> None:
    for key, value in values.items():
        monkeypatch.setenv(key, value)


def test_defaults(monkeypatch: pytest.MonkeyPatch):
    for name in ("DUTYDESK_ENV", "DOCUMENT_STORE", "SESSION_TTL_SECONDS", "FRONTEND_BASE_URL", "TESTER_ROLE_IDS"):
        monkeypatch.delenv(name, raising=False)
    settings = cfg.load_settings()
    assert settings.environment == "dev"
    assert settings.document_store == "json"
    assert settings.session_ttl_seconds == 86400
    assert settings.frontend_base_url == "http://localhost:3000"
    assert settings.roles.tester_role_ids == frozenset()
    assert settings.prod_like is False


def test_role_ids_and_integers_are_parsed(monkeypatch: pytest.MonkeyPatch):
    _env(
        monkeypatch,
        TESTER_ROLE_IDS="1, 2,,3",
        EDITOR_ROLE_IDS="9",
        INSTRUCTOR_RADIO="11",
        DUTY_TTL_SECONDS="0",
        EVENTS_QUEUE_SIZE="5",
        FRONTEND_BASE_URL="https://app.example.org/",
    )
    settings = cfg.load_settings()
    assert settings.roles.tester_role_ids == frozenset({"1", "2", "3"})
    assert settings.roles.editor_role_ids == frozenset({"9"})
    assert settings.roles.radio_role_id == "11"
    assert settings.roles.mdt_role_id is None
    assert settings.duty_ttl_seconds == 0
    assert settings.events_queue_size == 5
    assert settings.frontend_base_url == "https://app.example.org"


@pytest.mark.parametrize("name,value", [("SESSION_TTL_SECONDS", "soon"), ("DUTY_TTL_SECONDS", "-1")])
def test_malformed_integers_raise(monkeypatch: pytest.MonkeyPatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError) as exc:
        cfg.load_settings()
    assert name in str(exc.value)


def test_unknown_store_backend_raises(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DOCUMENT_STORE", "redis")
    with pytest.raises(ValueError):
        cfg.load_settings()


def test_prod_guard_accepts_hardened_config(monkeypatch: pytest.MonkeyPatch):
    _env(monkeypatch, **PROD_ENV)
    cfg.ensure_secure_config_on_startup(cfg.load_settings())


@pytest.mark.parametrize(
    "override",
    [
        {"DISCORD_CLIENT_SECRET": "CHANGE_ME"},
        {"DISCORD_CLIENT_SECRET": ""},
        {"DISCORD_BOT_TOKEN": "DUMMY_DO_NOT_USE"},
        {"DISCORD_REDIRECT_URI": "http://api.example.org/auth/callback"},
        {"FRONTEND_BASE_URL": "http://app.example.org"},
        {"DOCUMENT_STORE": "memory"},
    ],
)
def test_prod_guard_rejects_insecure_config(monkeypatch: pytest.MonkeyPatch, override):
    _env(monkeypatch, **{**PROD_ENV, **override})
    if "DISCORD_CLIENT_SECRET" in override and not override["DISCORD_CLIENT_SECRET"]:
        monkeypatch.delenv("DISCORD_CLIENT_SECRET")
    with pytest.raises(SystemExit):
        cfg.ensure_secure_config_on_startup(cfg.load_settings())


def test_dev_allows_placeholders(monkeypatch: pytest.MonkeyPatch):
    _env(monkeypatch, DUTYDESK_ENV="dev", DISCORD_CLIENT_SECRET="CHANGE_ME", DOCUMENT_STORE="memory")
    cfg.ensure_secure_config_on_startup(cfg.load_settings())


def test_cookie_policy_depends_on_site_relation():
    assert is_cross_site("https://app.example.org", "https://api.example.org/auth/callback") is True
    assert is_cross_site("https://example.org", "https://example.org/auth/callback") is False
    assert cookie_opts(cross_site=True) == {"secure": True, "samesite": "none"}
    assert cookie_opts(cross_site=False) == {"secure": True, "samesite": "lax"}
