"""
Wilnara Tranças - notification service.
Main FastAPI application entry point. Owns the process-wide NotificationQueue.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from wilnara.config import get_settings
from wilnara.api.router import api_router
from wilnara.database import dispose_engine
from wilnara.services.notification_queue import NotificationQueue
from wilnara.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("wilnara")

SHUTDOWN_DRAIN_SECONDS = 10.0


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("Wilnara notifications starting up (env=%s)", settings.app_env)

    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    if not settings.sendgrid_api_key:
        logger.warning("SENDGRID_API_KEY not set - email jobs will fail and retry")
    if not settings.twilio_account_sid:
        logger.warning("TWILIO_ACCOUNT_SID not set - SMS jobs will fail and retry")
    if not settings.push_gateway_url:
        logger.warning("PUSH_GATEWAY_URL not set - push jobs will fail and retry")
    if not settings.admin_api_key and settings.app_env != "development":
        logger.warning("ADMIN_API_KEY not set - queue admin endpoints are disabled")

    queue = NotificationQueue.from_settings(settings)
    app.state.notification_queue = queue

    if settings.queue_autostart:
        queue.start_processing()
    else:
        logger.info("Queue processing disabled (QUEUE_AUTOSTART=false) - enqueue only")

    yield

    logger.info("Shutting down - draining %d in-flight jobs", queue.in_flight)
    await queue.shutdown(timeout=SHUTDOWN_DRAIN_SECONDS)
    await dispose_engine()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Wilnara Notifications",
        description="Asynchronous email, SMS, push and webhook dispatch",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)

    return application


app = create_app()
