"""FastAPI application entry point."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request

from flowgate.auth.deps import authorize_request
from flowgate.auth.gate import RequestAuthorizationGate
from flowgate.auth.rules import ConfigurationError, RoleRuleSet
from flowgate.auth.verifier import JwtTokenVerifier
from flowgate.config import Settings, settings as default_settings
from flowgate.connectors.token_provider import ClientCredentialsAuth, OutboundTokenProvider
from flowgate.tasks.http_task import HttpTask, HttpTaskExecutor

# Routers
from flowgate.api.auth import router as auth_router
from flowgate.api.tasks import router as tasks_router

from flowgate.utils.logger import ctx_request_id, setup_logger

logger = logging.getLogger("flowgate")


def build_token_provider(cfg: Settings) -> OutboundTokenProvider | None:
    """Return the outbound token provider, or ``None`` when outbound auth is off."""
    if not cfg.OUTBOUND_AUTH_ENABLED:
        return None
    if cfg.outbound_registration is None:
        raise ConfigurationError(
            f"OUTBOUND_AUTH_ENABLED is set but client registration "
            f"'{cfg.OUTBOUND_CLIENT_REGISTRATION_ID}' is not in OAUTH_CLIENT_REGISTRATIONS"
        )
    return OutboundTokenProvider(
        cfg.OAUTH_CLIENT_REGISTRATIONS,
        clock_skew=cfg.OAUTH_TOKEN_CLOCK_SKEW_SECONDS,
        timeout=cfg.OAUTH_TOKEN_TIMEOUT_SECONDS,
    )


def build_http_task(cfg: Settings, token_provider: OutboundTokenProvider | None) -> HttpTask:
    auth = None
    if token_provider is not None:
        auth = ClientCredentialsAuth(token_provider, cfg.OUTBOUND_CLIENT_REGISTRATION_ID)
    executor = HttpTaskExecutor(
        max_in_memory_size=cfg.HTTP_CLIENT_MAX_IN_MEMORY_SIZE,
        connect_timeout=cfg.HTTP_CONNECT_TIMEOUT_SECONDS,
        auth=auth,
    )
    return HttpTask(executor)


def create_app(cfg: Settings | None = None) -> FastAPI:
    """Build the application.  Raises ``ConfigurationError`` on bad security config."""
    cfg = cfg or default_settings

    gate = RequestAuthorizationGate(
        RoleRuleSet.from_config(cfg.AUTH_ROLES),
        enabled=cfg.AUTH_ENABLED,
        open_fallback=cfg.AUTH_OPEN_FALLBACK,
    )
    if not cfg.AUTH_ENABLED:
        logger.warning("AUTH_ENABLED=false: every API request is permitted")
    verifier = JwtTokenVerifier(
        cfg.AUTH_SECRET_KEY,
        algorithms=cfg.AUTH_ALGORITHMS,
        audience=cfg.AUTH_AUDIENCE,
        issuer=cfg.AUTH_ISSUER,
    )
    token_provider = build_token_provider(cfg)
    http_task = build_http_task(cfg, token_provider)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "flowgate started (auth=%s, outbound_auth=%s)",
            cfg.AUTH_ENABLED, cfg.OUTBOUND_AUTH_ENABLED,
        )
        try:
            yield
        finally:
            await http_task.executor.aclose()
            if token_provider is not None:
                await token_provider.aclose()

    app = FastAPI(
        title="flowgate",
        description="Workflow API authorization and outbound HTTP tasks",
        lifespan=lifespan,
        dependencies=[Depends(authorize_request)],
    )
    app.state.settings = cfg
    app.state.gate = gate
    app.state.verifier = verifier
    app.state.token_provider = token_provider
    app.state.http_task = http_task

    @app.middleware("http")
    async def bind_request_id(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = ctx_request_id.set(request_id)
        try:
            response = await call_next(request)
        finally:
            ctx_request_id.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
    app.include_router(tasks_router, prefix="/api/tasks", tags=["tasks"])

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app


setup_logger(
    log_format=default_settings.LOG_FORMAT,
    log_level="DEBUG" if default_settings.DEBUG else "INFO",
)
app = create_app()
