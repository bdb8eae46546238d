"""
Inbox engine - inbound message ingestion service.
Main FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from inbox_engine.config import get_settings
from inbox_engine.api.router import api_router
from inbox_engine.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("inbox_engine")


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
    logger.info("Inbox engine starting up (env=%s)", settings.app_env)

    if not settings.business_name:
        logger.warning(
            "BUSINESS_NAME not set - self-introductions naming the business "
            "will not be filtered from contact names."
        )

    yield

    from inbox_engine.database import _engine
    if _engine is not None:
        await _engine.dispose()
    logger.info("Inbox engine shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Inbox Engine",
        description="Inbound message ingestion and conversation resolution",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)

    return application


app = create_app()
