"""FastAPI web application for the StanceStream debate service."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import AppConfig, get_default_config
from web.admission import GeneralRateLimitMiddleware
from web.errors import register_exception_handlers
from web.services import Services, build_services

from web.endpoints.agents import router as agents_router
from web.endpoints.debates import router as debates_router, ws_router as debates_ws_router
from web.endpoints.facts import router as facts_router
from web.endpoints.system import router as system_router

logger: logging.Logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 5.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan - startup and shutdown."""
    services: Services = app.state.services

    if await services.store.connect():
        if services.config.store.auto_setup:
            await services.schema.initialize()
    else:
        logger.warning("Starting without Redis; reads will degrade until it returns")

    services.broadcaster.start()

    yield

    stopped = await services.manager.stop_all()
    if stopped:
        logger.info(f"Stopped {len(stopped)} debates on shutdown")
    await services.manager.wait_for_tasks(timeout=SHUTDOWN_GRACE_SECONDS)
    await services.broadcaster.stop()
    await services.store.disconnect()
    logger.info("Shutdown complete")


def create_app(config: AppConfig | None = None, services: Services | None = None) -> FastAPI:
    """Build the application. Tests inject ``services`` wired to fakes."""
    if services is None:
        config = config or get_default_config()
        services = build_services(config)
    config = services.config

    app = FastAPI(
        title="StanceStream",
        description="Multi-agent debate orchestration over Redis",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    register_exception_handlers(app, production=config.system.environment == "production")

    # Added before CORS so rate limit rejections still carry CORS headers
    app.add_middleware(GeneralRateLimitMiddleware, limiter=services.general_limiter)

    if config.system.allowed_origins:
        logger.info(f"Setting CORS allowed origins: {config.system.allowed_origins}")
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.system.allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    else:
        logger.info("No allowed origins configured, using development CORS settings")
        app.add_middleware(
            CORSMiddleware,
            allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(system_router)
    app.include_router(debates_router)
    app.include_router(agents_router)
    app.include_router(facts_router)
    app.include_router(debates_ws_router)

    return app
