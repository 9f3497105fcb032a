"""Application factory for the edge service.

Centralizes app construction (state, middleware, handlers, routers) so tests
can build isolated apps with their own settings, clock and counters.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from app.adapters.rate_limit.in_memory import ShardedInMemoryWindowStore
from app.api.routes import health_router
from app.core.admission import AdmissionController, epoch_ms
from app.core.config import Settings, settings as default_settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.rate_limit import rate_limit_middleware
from app.core.rate_policy import build_policy_resolver
from app.core.reaper import WindowReaper
from app.core.security_headers import https_redirect_middleware, security_headers_middleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    reaper: WindowReaper = app.state.reaper
    await reaper.start()
    try:
        yield
    finally:
        await reaper.stop()


def create_app(
    app_settings: Settings | None = None,
    *,
    clock: Callable[[], int] = epoch_ms,
    configure_logs: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to use; defaults to the environment-loaded ones.
        clock: Epoch-millisecond time source shared by limiter and reaper.
        configure_logs: Whether to (re)configure root logging.

    Returns:
        Configured FastAPI app.

    Raises:
        ConfigurationAppError: If a rate policy is malformed.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    if configure_logs:
        configure_logging(cfg.log)

    # Fails here, before serving, on a bad policy.
    resolver = build_policy_resolver(cfg.rate_limit)
    store = ShardedInMemoryWindowStore(shard_count=cfg.rate_limit.shard_count)
    controller = AdmissionController(store=store, resolver=resolver, clock=clock)
    reaper = WindowReaper(
        store,
        interval_seconds=cfg.rate_limit.reaper_interval_seconds,
        grace_windows=cfg.rate_limit.reaper_grace_windows,
        clock=clock,
    )

    app = FastAPI(
        title="MiabeSite Edge",
        description=(
            "Edge layer for the MiabeSite website builder: per-IP admission "
            "control, security headers and HTTPS enforcement."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.admission_controller = controller
    app.state.reaper = reaper

    # Middleware: last registered runs first.
    app.middleware("http")(https_redirect_middleware)
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(security_headers_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(health_router)

    logger.info(
        "app.configured",
        extra={
            "environment": cfg.app.environment,
            "rate_limit_enabled": cfg.rate_limit.enabled,
            "policies": {p.name: [p.max_requests, p.window_ms] for p in resolver.policies},
        },
    )
    return app
