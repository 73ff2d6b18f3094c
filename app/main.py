"""
Application entry point for the Link AI service.
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Callable, Optional

import mlflow
import sentry_sdk
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from slowapi.middleware import SlowAPIMiddleware

from app.ai_service.api.health_routes import router as health_router
from app.ai_service.api.summarize_routes import router as summarize_router
from app.ai_service.clients.chat_client import ChatServiceClient
from app.ai_service.config import Settings, get_settings
from app.ai_service.repositories.summary_cache import build_summary_cache
from app.ai_service.services.gemini_service import build_ai_service
from app.ai_service.services.summarize_service import SummarizeService
from app.ai_service.utils.logger import get_logger, set_log_level
from app.common.mlflow_control import mlflow_safe
from app.consent_service.router import router as consent_router
from app.consent_service.service import PrivacyService
from app.core.audit_middleware import ClientInfoMiddleware
from app.core.errors import register_exception_handlers
from app.core.middleware import PanicRecoveryMiddleware, RequestLoggingMiddleware
from app.core.rate_limit import UserRateLimiter, build_global_limiter
from app.db import mongodb

load_dotenv()

logger = get_logger(__name__)


def _init_sentry(settings: Settings) -> None:
    if settings.ENV != "prod" or not settings.SENTRY_DSN:
        return

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[
            FastApiIntegration(),
            StarletteIntegration(),
        ],
        traces_sample_rate=0.1,
        profiles_sample_rate=0.1,
        environment=settings.ENV,
    )
    logger.info("Sentry initialized for error tracking")


def create_app(
    settings: Optional[Settings] = None,
    *,
    privacy_service=None,
    chat_client=None,
    ai_service=None,
    summary_cache=None,
    database_check: Optional[Callable[[], None]] = None,
    rate_limiter: Optional[UserRateLimiter] = None,
) -> FastAPI:
    """
    Build the application.

    Collaborators default to the configured production implementations
    and can be replaced for tests.
    """
    settings = settings or get_settings()
    set_log_level(settings.LOG_LEVEL)

    if privacy_service is None:
        privacy_service = PrivacyService(
            allow_user_id_header=settings.ALLOW_USER_ID_HEADER,
        )
    if chat_client is None:
        chat_client = ChatServiceClient.from_settings(settings)
    if ai_service is None:
        ai_service = build_ai_service(settings)
    # Caches and limiters define __len__, so an empty one is falsy
    if summary_cache is None:
        summary_cache = build_summary_cache(settings)
    if rate_limiter is None:
        rate_limiter = UserRateLimiter(
            requests_per_minute=settings.RATE_LIMIT_AI_REQUESTS_PER_MINUTE,
            burst=settings.RATE_LIMIT_AI_BURST,
            idle_ttl=settings.RATE_LIMIT_IDLE_TTL_SECONDS,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting application",
            extra={"service": settings.SERVICE_NAME, "env": settings.ENV},
        )

        if settings.MLFLOW_TRACKING_URI:
            mlflow_safe(mlflow.set_tracking_uri, settings.MLFLOW_TRACKING_URI)
            mlflow_safe(mlflow.set_experiment, settings.SERVICE_NAME)

        background = [
            asyncio.create_task(rate_limiter.run_eviction(settings.RATE_LIMIT_SWEEP_SECONDS))
        ]
        # Redis expires keys on its own
        run_cleanup = getattr(summary_cache, "run_cleanup", None)
        if run_cleanup is not None:
            background.append(asyncio.create_task(run_cleanup(settings.CACHE_CLEANUP_SECONDS)))

        yield

        for task in background:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        for resource in (summary_cache, chat_client):
            close = getattr(resource, "close", None)
            if close is not None:
                try:
                    close()
                except Exception:
                    logger.exception("Failed to close resource during shutdown")

        mongodb.close_connection()
        logger.info("Application stopped")

    app = FastAPI(
        lifespan=lifespan,
        title="Link AI Service",
        version=settings.VERSION,
    )

    app.state.settings = settings
    app.state.privacy_service = privacy_service
    app.state.user_rate_limiter = rate_limiter
    app.state.summarize_service = SummarizeService(
        ai_service=ai_service,
        chat_client=chat_client,
        privacy_service=privacy_service,
        summary_cache=summary_cache,
        summary_ttl_seconds=settings.SUMMARY_TTL_SECONDS,
    )
    app.state.database_check = database_check or mongodb.ping
    app.state.cache_check = summary_cache.health
    app.state.ai_check = ai_service.health

    # =========================================================
    # Middleware (last added runs first)
    # =========================================================
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    app.state.limiter = build_global_limiter(
        settings.GLOBAL_RATE_LIMIT,
        enabled=settings.GLOBAL_RATE_LIMIT_ENABLED,
    )
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(ClientInfoMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(PanicRecoveryMiddleware)

    register_exception_handlers(app)

    # =========================================================
    # Routers
    # =========================================================
    app.include_router(summarize_router)
    app.include_router(consent_router)
    app.include_router(health_router)

    logger.info(
        "API routers registered",
        extra={"routers": ["summarize", "consent", "health"]},
    )

    _init_sentry(settings)

    return app


app = create_app()
