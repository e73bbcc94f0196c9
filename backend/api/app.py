"""
FastAPI application for the Solana Data Gateway

Run: uvicorn api.app:app --app-dir backend --port 3001
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gateway import (
    DataGateway,
    ErrorTracker,
    GatewayConfig,
    load_config,
    register_exception_handlers,
)

from .gateway_router import router as gateway_router
from .infrastructure_router import router as infrastructure_router

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    config: Optional[GatewayConfig] = None,
    gateway: Optional[DataGateway] = None,
) -> FastAPI:
    """
    Build the app. The gateway is started on startup and closed on shutdown.

    Pass `gateway` to share a pre-built instance (tests inject one with a mock transport).
    """
    if config is None:
        config = gateway.config if gateway is not None else load_config()
    configure_logging(config.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.gateway = gateway or DataGateway(config)
        await app.state.gateway.start()
        try:
            yield
        finally:
            await app.state.gateway.close()

    app = FastAPI(
        title="Solana Data Gateway",
        version="1.0.0",
        debug=config.debug,
        lifespan=lifespan,
    )
    app.state.error_tracker = ErrorTracker()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(gateway_router)
    app.include_router(infrastructure_router)

    logger.info(f"App created for environment: {config.environment.value}")
    return app


def _build_default_app() -> FastAPI:
    load_dotenv()
    return create_app()


app = _build_default_app()
