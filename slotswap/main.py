"""
Application entrypoint: FastAPI app with backend lifecycle management.

Startup order: database pool (postgres storage) -> schema -> Redis and the
notification relay (redis notifications) -> event bus subscription.
Shutdown runs in reverse and drains in-flight notifications first.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from slotswap.config import settings
from slotswap.db.pool import db_pool
from slotswap.features.swaps.api.dependencies import (
    get_event_bus,
    get_notification_dispatcher,
)
from slotswap.features.swaps.api.router import router as swaps_router
from slotswap.features.swaps.api.websocket import router as notifications_router
from slotswap.features.swaps.notifications.redis_relay import RedisEventRelay
from slotswap.features.swaps.repository.postgres import ensure_schema
from slotswap.infrastructure.observability.logging import get_logger, log_request, setup_logging
from slotswap.middleware.request_context import RequestContextMiddleware
from slotswap.routes import health
from slotswap.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        storage_backend=settings.STORAGE_BACKEND,
        notification_backend=settings.NOTIFICATION_BACKEND,
    )

    event_bus = get_event_bus()
    dispatcher = get_notification_dispatcher()
    relay: RedisEventRelay | None = None
    subscriber = dispatcher.handle_event
    startup_tasks = []

    try:
        if settings.uses_postgres():
            logger.info("Initializing database pool")
            await db_pool.initialize()
            startup_tasks.append("database_pool")

            if settings.DB_AUTO_MIGRATE:
                await ensure_schema()
                startup_tasks.append("schema")

        if settings.uses_redis():
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
            startup_tasks.append("redis")

            relay = RedisEventRelay(fast_redis, dispatcher, settings.NOTIFICATION_CHANNEL)
            await relay.start()
            subscriber = relay.publish
            startup_tasks.append("redis_relay")

        event_bus.subscribe(subscriber)
        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if relay is not None and "redis_relay" in startup_tasks:
            try:
                await relay.stop()
            except Exception as cleanup_error:
                logger.error("Error stopping Redis relay", error=str(cleanup_error))

        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    event_bus.unsubscribe(subscriber)
    await event_bus.drain()

    if relay is not None:
        try:
            await relay.stop()
        except Exception as e:
            logger.error("Error stopping Redis relay", error=str(e))
            shutdown_errors.append(f"Relay: {e}")

    if settings.uses_redis():
        try:
            logger.info("Closing Redis connection")
            await fast_redis.close()
        except Exception as e:
            logger.error("Error closing Redis", error=str(e))
            shutdown_errors.append(f"Redis: {e}")

    if settings.uses_postgres():
        try:
            logger.info("Closing database pool")
            await db_pool.close()
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))
            shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="SlotSwap",
    description="Calendar slot swapping between group members with real-time notifications",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(swaps_router)
app.include_router(notifications_router)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors: answer 400, not 422."""
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    logger.info("Request validation failed", path=request.url.path, errors=errors)
    return JSONResponse(status_code=400, content={"detail": errors})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
        request_id=getattr(request.state, "request_id", None),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
