"DutyDesk backend"
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
import os
import sys

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dutydesk.identity_access.resolver import IdentityProvider
from dutydesk.notifications.channel import ChannelNotifier
from dutydesk.storage.ports import DocumentStore

from .config import Settings, ensure_secure_config_on_startup, load_settings
from .context import AppContext, build_context
from .routes.auth import SESSION_COOKIE_NAME, auth_router
from .routes.duty import duty_router
from .routes.exams import exams_router
from .routes.live import live_router

logger = logging.getLogger("dutydesk.web")


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via DUTYDESK_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("DUTYDESK_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


async def _duty_sweeper(ctx: AppContext) -> None:
    interval = ctx.settings.duty_sweep_seconds
    while True:
        await asyncio.sleep(interval)
        try:
            await ctx.duty.prune_expired()
        except Exception as exc:
            logger.error("duty.sweep_failed error=%s", exc.__class__.__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ctx: AppContext = app.state.ctx
    sweeper = None
    if ctx.settings.duty_ttl_seconds and ctx.settings.duty_sweep_seconds:
        sweeper = asyncio.create_task(_duty_sweeper(ctx))
    logger.info("app.started env=%s store=%s", ctx.settings.environment, ctx.settings.document_store)
    yield
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
    logger.info("app.stopped")


def create_app(
    settings: Settings | None = None,
    *,
    store: DocumentStore | None = None,
    provider: IdentityProvider | None = None,
    notifier: ChannelNotifier | None = None,
) -> FastAPI:
    """Build the FastAPI app with its own `AppContext`.

    Explicit `store`, `provider` and `notifier` replace the configured ones
    (tests pass in-memory fakes).
    """
    if settings is None:
        settings = load_settings()
    ensure_secure_config_on_startup(settings)

    app = FastAPI(title="DutyDesk", description="Tester codes, duty roster and instructor pings", version="1.0.0", lifespan=lifespan)
    app.state.ctx = build_context(settings, store=store, provider=provider, notifier=notifier)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_base_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type"],
    )

    @app.middleware("http")
    async def attach_session(request: Request, call_next):
        # Expose the session (or None) to handlers; each route decides whether it is required.
        request.state.session = None
        sid = request.cookies.get(SESSION_COOKIE_NAME)
        if sid:
            request.state.session = request.app.state.ctx.sessions.get(sid)
        return await call_next(request)

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        return response

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError):
        fields = sorted({".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()})
        return JSONResponse(
            {"error": "bad_request", "detail": ",".join(f for f in fields if f) or "invalid_body"},
            status_code=400,
            headers={"Cache-Control": "private, no-store"},
        )

    app.include_router(auth_router)
    app.include_router(exams_router)
    app.include_router(duty_router)
    app.include_router(live_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/")
    async def root():
        return {"service": "dutydesk", "status": "live"}

    return app


if _should_load_dotenv():
    from dotenv import load_dotenv

    load_dotenv()

app = create_app()


def main() -> None:
    """CLI entrypoint: `python -m dutydesk.web.main`."""
    import uvicorn

    level_name = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()
    logging.basicConfig(level=level_name, format="%(levelname)s:%(name)s:%(message)s")
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8080")), proxy_headers=True)


if __name__ == "__main__":
    main()
