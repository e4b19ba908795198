"""
Call Router - Main Application Entry Point

Execution plane of a multi-tenant business PBX: receives inbound call
webhooks from the telephony platform and answers with CXML routing
documents, safely under duplicate, out-of-order and concurrent delivery.
"""

from contextlib import asynccontextmanager
from typing import Callable, Optional

import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import router as api_router
from .api.security import WebhookSignatureVerifier
from .calls.state_store import CallStateStore
from .core.config import Settings, settings as default_settings
from .core.exceptions import CallRouterException, TransientError
from .core.logging import get_logger, setup_logging
from .core.redis_client import close_redis_client, create_redis_client
from .cxml.builder import ResponseBuilder, ResponseBuilderConfig
from .events.publisher import EventPublisher
from .integrations.control_plane import ControlPlaneConfigReader
from .reliability.call_lock import CallLockManager
from .reliability.idempotency import IdempotencyGuard
from .routing.config_reader import (
    CachedRoutingConfigReader,
    InMemoryRoutingConfigReader,
    RoutingConfigReader,
)
from .routing.engine import RoutingDecisionEngine
from .services.call_processor import CallProcessor

logger = get_logger(__name__)

VERSION = "1.0.0"


def build_config_reader(settings: Settings) -> RoutingConfigReader:
    """Pick the routing configuration source from settings"""
    if settings.control_plane_base_url:
        reader: RoutingConfigReader = ControlPlaneConfigReader(
            base_url=settings.control_plane_base_url,
            token=settings.control_plane_token,
            timeout=settings.control_plane_timeout_seconds,
        )
        logger.info(f"Routing config source: control plane at {settings.control_plane_base_url}")
    elif settings.routing_config_file:
        reader = InMemoryRoutingConfigReader.from_file(settings.routing_config_file)
        logger.info(f"Routing config source: file {settings.routing_config_file}")
    else:
        logger.warning("No routing config source configured; every DID will be unknown")
        reader = InMemoryRoutingConfigReader()

    if settings.routing_cache_ttl_seconds > 0:
        reader = CachedRoutingConfigReader(reader, ttl_seconds=settings.routing_cache_ttl_seconds)
    return reader


def build_processor(
    settings: Settings,
    redis_client: redis.Redis,
    reader: RoutingConfigReader,
    publisher: EventPublisher,
) -> CallProcessor:
    return CallProcessor(
        guard=IdempotencyGuard(
            redis_client,
            ttl_seconds=settings.idempotency_ttl_seconds,
            max_response_bytes=settings.idempotency_max_response_bytes,
        ),
        locks=CallLockManager(
            redis_client,
            ttl_seconds=settings.lock_ttl_seconds,
            acquire_timeout_seconds=settings.lock_acquire_timeout_seconds,
            retry_interval_seconds=settings.lock_retry_interval_seconds,
        ),
        states=CallStateStore(
            redis_client,
            state_ttl_seconds=settings.call_state_ttl_seconds,
            grace_seconds=settings.call_state_grace_seconds,
        ),
        reader=reader,
        engine=RoutingDecisionEngine(default_ring_timeout=settings.default_ring_timeout_seconds),
        builder=ResponseBuilder(ResponseBuilderConfig.from_settings(settings)),
        publisher=publisher,
        deadline_seconds=settings.webhook_deadline_seconds,
    )


def create_app(
    settings: Optional[Settings] = None,
    redis_factory: Optional[Callable[[], redis.Redis]] = None,
    config_reader: Optional[RoutingConfigReader] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings override (defaults to environment settings)
        redis_factory: Builds the Redis client at startup (defaults to a
            pooled client on settings.redis_url)
        config_reader: Routing config source override
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler for startup and shutdown events
        """
        logger.info("=" * 60)
        logger.info("Starting Call Router")
        logger.info(f"Version: {VERSION}")
        logger.info(f"Environment: {settings.environment}")
        logger.info(f"Webhook Base URL: {settings.webhook_base_url}")
        logger.info("=" * 60)

        owns_redis = redis_factory is None
        redis_client = redis_factory() if redis_factory else create_redis_client(settings)
        reader = config_reader or build_config_reader(settings)
        publisher = EventPublisher(
            redis_client,
            service_name=settings.service_name,
            send_timeout_seconds=settings.event_publish_timeout_seconds,
            stream_maxlen=settings.event_stream_maxlen,
        )

        if not settings.webhook_verify_signature:
            logger.warning("Webhook signature verification is DISABLED")

        app.state.settings = settings
        app.state.redis = redis_client
        app.state.config_reader = reader
        app.state.publisher = publisher
        app.state.signature_verifier = WebhookSignatureVerifier(
            secret=settings.webhook_secret,
            header=settings.webhook_signature_header,
            enabled=settings.webhook_verify_signature,
        )
        app.state.call_processor = build_processor(settings, redis_client, reader, publisher)

        logger.info("All services initialized successfully")

        yield

        logger.info("Shutting down Call Router")
        await publisher.drain(timeout=settings.event_publish_timeout_seconds)
        await reader.close()
        if owns_redis:
            await close_redis_client(redis_client)
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Call Router API",
        description="Inbound call routing webhooks for a multi-tenant PBX",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings

    @app.exception_handler(TransientError)
    async def transient_exception_handler(request: Request, exc: TransientError):
        """Ask the platform to retry the webhook"""
        logger.warning(f"TransientError: {exc.error_code} - {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers={"Retry-After": str(settings.retry_after_seconds)},
        )

    @app.exception_handler(CallRouterException)
    async def call_router_exception_handler(request: Request, exc: CallRouterException):
        """Handle custom call router exceptions"""
        logger.warning(f"CallRouterException: {exc.error_code} - {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle all unhandled exceptions"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "details": {"exception": str(exc)} if settings.debug else {},
            },
        )

    app.include_router(api_router)
    return app


setup_logging()
app = create_app()


def run():
    """Console entry point"""
    import uvicorn

    uvicorn.run(
        "call_router.main:app",
        host=default_settings.server_host,
        port=default_settings.server_port,
        reload=default_settings.debug,
    )


if __name__ == "__main__":
    run()
