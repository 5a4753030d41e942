"""FastAPI application entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI

from batchops.api.exceptions import register_exception_handlers
from batchops.api.routes import batch
from batchops.audit import AuditEmitter, AuditEventBus
from batchops.batch.engine import BatchOperationEngine
from batchops.batch.models import BatchProcessingOptions
from batchops.cache import InMemoryCache, RedisCache
from batchops.config import settings
from batchops.credentials import make_hasher
from batchops.db import SoftDeleteStore, UserRepository
from batchops.observability.logging import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup and shutdown lifecycle."""
    configure_logging(settings.log_level, settings.log_format)
    logger.info("batchops_starting", environment=settings.environment)

    # ── Database layer ──────────────────────────────────────────
    store: Any = None
    engine = None
    try:
        from sqlalchemy import text

        from batchops.db.session import create_async_engine, get_session_factory

        engine = create_async_engine(settings.database_url, pool_size=settings.database_pool_size)
        session_factory = get_session_factory()
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        store = UserRepository(session_factory)
        logger.info("database_initialized")
    except Exception as e:
        logger.warning("database_init_failed", error=str(e), detail="falling back to in-memory")
        store = SoftDeleteStore()
        if engine:
            try:
                await engine.dispose()
            except Exception:
                logger.debug("engine_dispose_failed_on_fallback")
            engine = None

    # ── Cache layer ─────────────────────────────────────────────
    cache: Any = None
    redis_cache: RedisCache | None = None
    if settings.cache_enabled:
        try:
            redis_cache = RedisCache(
                redis_url=settings.redis_url,
                default_ttl=settings.cache_user_ttl_seconds,
                key_prefix=settings.cache_key_prefix,
            )
            await redis_cache.connect()
            health = await redis_cache.health_check()
            if health["status"] != "healthy":
                raise ConnectionError(health.get("error", "redis ping failed"))
            cache = redis_cache
            logger.info("redis_cache_initialized")
        except Exception as e:
            logger.warning("redis_cache_init_failed", error=str(e), detail="using in-process cache")
            if redis_cache is not None:
                await redis_cache.disconnect()
            redis_cache = None
            cache = InMemoryCache(default_ttl=settings.cache_user_ttl_seconds)

    # ── Audit events ────────────────────────────────────────────
    bus = AuditEventBus()
    emitter = AuditEmitter(bus)
    app.state.audit_bus = bus

    batch_engine = BatchOperationEngine(
        store=store,
        cache=cache,
        emitter=emitter,
        password_hasher=make_hasher(settings.password_hash_rounds),
        default_options=BatchProcessingOptions(chunk_size=settings.batch_default_chunk_size),
    )
    batch.set_engine(batch_engine)
    app.state.store = store
    app.state.engine = engine
    logger.info("batch_engine_initialized", store=type(store).__name__, cache=type(cache).__name__)

    yield

    # ── Shutdown ────────────────────────────────────────────────
    logger.info("batchops_shutting_down")
    batch.set_engine(None)
    await emitter.drain()
    if redis_cache is not None:
        await redis_cache.disconnect()
    if engine is not None:
        await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Chunked batch operations over user records",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )
    register_exception_handlers(app)

    app.include_router(batch.router, prefix=settings.api_prefix, tags=["Batch"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.app_version}

    return app


app = create_app()
