# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api.api import api_router
from app.api.ws.realtime_namespace import register_realtime_namespace
from app.core.cache import cache_manager
from app.core.config import settings
from app.core.context import new_request_id, set_request_context
from app.core.exceptions import (
    CustomHTTPException,
    RealtimeError,
    http_exception_handler,
    python_exception_handler,
    realtime_exception_handler,
    validation_exception_handler,
)
from app.core.logging import setup_logging
from app.core.redis_factory import RedisClientFactory
from app.core.scheduler import RealtimeScheduler
from app.core.socketio import create_socketio_app, get_sio
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.models import *  # noqa: F401,F403
from app.services.change_feed.publisher import ChangeFeedPublisher
from app.services.container import ServiceContainer, build_container
from app.services.jobs import register_jobs

# Initialize logging at module level for use in lifespan
setup_logging()
_logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.
    Handles startup and shutdown events.
    """
    logger = _logger
    services: ServiceContainer = app.state.services

    # ==================== STARTUP ====================
    if settings.DB_AUTO_CREATE_TABLES:
        Base.metadata.create_all(bind=engine)
        logger.info("✓ Database tables ensured")

    publisher = None
    if settings.CHANGE_FEED_ENABLED:
        publisher = ChangeFeedPublisher()
        publisher.install(SessionLocal)
        services.watcher.start()
        logger.info("✓ Change feed started")
    else:
        logger.info("Change feed is disabled")

    scheduler = RealtimeScheduler()
    app.state.scheduler = scheduler
    if settings.SCHEDULER_ENABLED:
        register_jobs(scheduler, services.sweep, services.dispatcher)
        scheduler.start()
        logger.info("✓ Background jobs started")

    logger.info("Application startup completed successfully!")

    # ==================== YIELD (app is running) ====================
    yield

    # ==================== SHUTDOWN ====================
    logger.info("Graceful shutdown initiated...")
    scheduler.stop()
    await services.watcher.close()
    if publisher is not None:
        publisher.uninstall()
    await RedisClientFactory.close()
    logger.info("Application shutdown completed")


def create_app() -> FastAPI:
    # Toggle API docs/OpenAPI via environment (settings.ENABLE_API_DOCS, default True)
    enable_docs = settings.ENABLE_API_DOCS
    openapi_url = f"{settings.API_PREFIX}/openapi.json" if enable_docs else None
    docs_url = f"{settings.API_PREFIX}/docs" if enable_docs else None

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Realtime rooms, chat, notifications and presence",
        version=settings.VERSION,
        openapi_url=openapi_url,
        docs_url=docs_url,
        redoc_url=None,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = new_request_id()
        request.state.request_id = request_id
        set_request_context(request_id)
        start_time = time.time()
        client_ip = request.client.host if request.client else "Unknown"

        _logger.info(
            f"request : {request.method} {request.url.path} {request.query_params} {request_id} {client_ip}"
        )
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000
        _logger.info(
            f"response: {request.method} {request.url.path} {request_id} {response.status_code} {process_time:.2f}ms"
        )
        response.headers["X-Request-ID"] = request_id
        return response

    # Setup CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL, "*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register exception handlers
    app.add_exception_handler(CustomHTTPException, http_exception_handler)
    app.add_exception_handler(RealtimeError, realtime_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, python_exception_handler)

    # Include API routes
    app.include_router(api_router, prefix=settings.API_PREFIX)

    return app


def create_socketio_asgi_app(fastapi_app: FastAPI):
    """
    Create combined ASGI app with Socket.IO mounted.

    Services are wired here, before any client can connect, and shared with
    the REST endpoints through app.state.
    """
    sio = get_sio()
    services = build_container(sio, cache_manager, settings.SOCKETIO_NAMESPACE)
    fastapi_app.state.services = services
    register_realtime_namespace(sio, services, settings.SOCKETIO_NAMESPACE)
    return create_socketio_app(sio, other_asgi_app=fastapi_app)


# Create FastAPI app
_fastapi_app = create_app()
app = create_socketio_asgi_app(_fastapi_app)
