import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import get_settings, Settings
from .core.logging import init_logging, request_context_middleware
from .core import errors
from .routers import health, rates, stream
from .services.broadcast import ConnectionManager
from .services.rates.base import Clock, RateProvider, Timer, wall_clock_ms
from .services.rates.cache_service import RateCache
from .services.rates.conversion import ConversionEngine
from .services.rates.errors import RateQueryError
from .services.rates.providers import ExchangeRateApiProvider
from .services.rates.scheduler import RefreshScheduler

logger = logging.getLogger("fxrelay")


def create_app(
    settings_override: Settings | None = None,
    *,
    provider: Optional[RateProvider] = None,
    clock: Clock = wall_clock_ms,
    timer: Optional[Timer] = None,
) -> FastAPI:
    """Application factory and composition root.

    settings_override: pass an already constructed Settings instance for tests
    to isolate environment. Falls back to cached get_settings().
    provider/clock/timer: substitutes for the upstream client and time sources;
    when `provider` is omitted an ExchangeRate-API client is built on startup.

    The rate cache, conversion engine and subscriber registry are created here
    and shared through `app.state`; the refresh loop runs for the lifetime of
    the app (bootstrap fetch on startup, stopped on shutdown).
    """
    settings = settings_override or get_settings()
    # Initialize logging early
    init_logging(debug=settings.debug)

    rate_cache = RateCache(ttl_ms=settings.cache_ttl_ms)
    engine = ConversionEngine(rate_cache, clock=clock)
    broadcaster = ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http_client: Optional[httpx.AsyncClient] = None
        upstream = provider
        if upstream is None:
            http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
            upstream = ExchangeRateApiProvider(
                api_key=settings.exr_api_key,
                base_currency=settings.base_currency,
                base_url=settings.exchange_api_base_url,
                timeout=settings.http_timeout_seconds,
                client=http_client,
            )
        scheduler = RefreshScheduler(
            upstream,
            rate_cache,
            broadcaster,
            timer=timer,
            clock=clock,
            backoff_ms=settings.refresh_backoff_ms,
            bootstrap_retry_ms=settings.bootstrap_retry_ms,
        )
        app.state.scheduler = scheduler
        logger.info(
            "starting rate refresh for base %s (ttl %d ms)",
            settings.base_currency,
            settings.cache_ttl_ms,
        )
        await scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()
            if http_client is not None:
                await http_client.aclose()

    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.clock = clock
    app.state.rate_cache = rate_cache
    app.state.conversion_engine = engine
    app.state.broadcaster = broadcaster
    app.state.scheduler = None

    # Middleware (request id / structured logging, CORS)
    app.middleware("http")(request_context_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # Error handlers
    app.add_exception_handler(StarletteHTTPException, errors.http_exception_handler)
    app.add_exception_handler(RequestValidationError, errors.validation_error_handler)
    app.add_exception_handler(RateQueryError, errors.rate_query_error_handler)
    app.add_exception_handler(Exception, errors.server_error_handler)

    # Routers
    app.include_router(health.router)
    app.include_router(rates.router)
    app.include_router(stream.router)

    @app.get("/")
    async def root():
        return {"message": "FX Relay API", "version": settings.version}

    return app
