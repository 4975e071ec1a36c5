"""FastAPI application entrypoint for the healthcare portal auth service."""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from healthportal.api import admin, routes
from healthportal.api.errors import register_exception_handlers, unhandled_error_response
from healthportal.api.responses import envelope
from healthportal.core.config import Settings, settings as default_settings
from healthportal.core.logging import get_logger, setup_logging
from healthportal.core.tokens import TokenService
from healthportal.infrastructure.database import create_db_engine, create_session_factory, init_db
from healthportal.infrastructure.redis import RevocationList, get_redis_client
from healthportal.infrastructure.user_store import UserStore
from healthportal.services.auth_service import AuthService
from healthportal.services.notifications import EmailNotifier

logger = get_logger(__name__)

# Application metadata
APP_VERSION = "1.0.0"
APP_NAME = "Healthcare Portal Auth Service"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'self'; object-src 'none'; frame-src 'none'",
    "Cache-Control": "no-store",
}


def build_revocation_list(settings: Settings) -> Optional[RevocationList]:
    if not settings.token_revocation_enabled:
        return None
    redis_client = get_redis_client(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password,
        timeout_seconds=settings.db_timeout_seconds,
    )
    if redis_client is None:
        logger.warning("Redis unavailable, falling back to in-memory revocation list")
    return RevocationList(redis_client=redis_client)


def create_app(
    settings: Optional[Settings] = None,
    notifier: Optional[EmailNotifier] = None,
) -> FastAPI:
    """Build the application with its store, token service and auth service on ``app.state``.

    Args:
        settings: Settings to use (default: loaded from the environment)
        notifier: Email sender override, mainly for tests
    """
    settings = settings or default_settings
    setup_logging(level=settings.log_level, json_format=settings.is_production)

    engine = create_db_engine(settings.database_url, timeout_seconds=settings.db_timeout_seconds)
    init_db(engine)
    store = UserStore(create_session_factory(engine))
    token_service = TokenService.from_settings(settings, revocation=build_revocation_list(settings))
    auth_service = AuthService.from_settings(settings, store, token_service, notifier=notifier)
    expose_errors = settings.debug and not settings.is_production

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application starting up", extra={"version": APP_VERSION})
        if settings.seed_demo_users:
            await run_in_threadpool(auth_service.seed_demo_users, settings.demo_user_password)
        yield
        logger.info("Application shutting down")
        engine.dispose()

    app = FastAPI(
        title=APP_NAME,
        description="Authentication and role-based authorization for the healthcare portal",
        version=APP_VERSION,
        docs_url="/docs" if not settings.is_production else None,  # Disable in prod
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.user_store = store
    app.state.token_service = token_service
    app.state.auth_service = auth_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log every request with timing and status code, and add security headers."""
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        request_logger = get_logger(__name__, {"request_id": request_id})

        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            return unhandled_error_response(
                request,
                e,
                expose_errors=expose_errors,
                log=request_logger,
                extra={"duration_ms": round(duration_ms, 2)},
                headers={"X-Request-ID": request_id, **SECURITY_HEADERS},
            )

        duration_ms = (time.time() - start_time) * 1000
        request_logger.info(
            f"Request completed: {request.method} {request.url.path}",
            extra={
                "method": request.method,
                "endpoint": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }
        )

        response.headers["X-Request-ID"] = request_id
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response

    register_exception_handlers(app, expose_errors=expose_errors)

    app.include_router(routes.router, prefix=settings.api_prefix)
    app.include_router(admin.router, prefix=settings.api_prefix)

    @app.get(f"{settings.api_prefix}/health")
    def health_check():
        """Liveness probe."""
        return envelope(
            "Healthcare portal API is running",
            {"version": APP_VERSION, "environment": settings.environment},
        )

    return app


app = create_app()
