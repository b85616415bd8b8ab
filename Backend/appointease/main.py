import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import Settings, get_settings
from .core.db import AsyncSessionLocal, create_tables as create_db_tables, dispose_engine
from .core.responses import register_error_handlers
from .tenancy.cache import TenantCache
from .tenancy.repository import SqlAlchemyTenantRepository
from .tenancy.resolver import TenantResolutionMiddleware
from .themes.converter import build_fallback_theme
from .themes.mutator import TenantLockRegistry
from .themes.routes import router as themes_router


logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def default_repository_factory(settings: Settings) -> Callable:
    """Session-per-lookup repository for the tenant resolution middleware."""

    @asynccontextmanager
    async def factory():
        async with AsyncSessionLocal() as session:
            yield SqlAlchemyTenantRepository(session, timeout_seconds=settings.repository_timeout_seconds)

    return factory


def create_app(
    settings: Optional[Settings] = None,
    repository_factory: Optional[Callable] = None,
    manage_database: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_database:
            await create_db_tables()

        sweeper = asyncio.create_task(
            app.state.tenant_cache.run_sweeper(settings.tenant_cache_sweep_interval_seconds)
        )
        logger.info(
            f"Tenant cache sweeper started (ttl={settings.tenant_cache_ttl_seconds}s, "
            f"interval={settings.tenant_cache_sweep_interval_seconds}s)"
        )
        try:
            yield
        finally:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
            logger.info("Tenant cache sweeper stopped")
            if manage_database:
                await dispose_engine()

    app = FastAPI(title="AppointEase Tenancy & Theming", lifespan=lifespan)

    app.state.settings = settings
    app.state.tenant_cache = TenantCache(ttl_seconds=settings.tenant_cache_ttl_seconds)
    app.state.theme_locks = TenantLockRegistry()
    app.state.fallback_theme = build_fallback_theme(settings.fallback_theme)

    app.add_middleware(
        TenantResolutionMiddleware,
        cache_getter=lambda: app.state.tenant_cache,
        repository_factory=repository_factory or default_repository_factory(settings),
        reserved_words=settings.reserved_slugs_set,
        base_domain=settings.platform_base_domain,
    )
    # Added last so it wraps tenant resolution and answers preflights first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(themes_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "tenant_cache": app.state.tenant_cache.get_stats()}

    return app


app = create_app()
