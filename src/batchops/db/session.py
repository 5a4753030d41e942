"""Async database session management."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine as _create_engine,
)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_async_engine(database_url: str, pool_size: int = 20) -> AsyncEngine:
    """Create and cache the async SQLAlchemy engine."""
    global _engine, _session_factory
    kwargs: dict = {"echo": False}
    if not database_url.startswith("sqlite"):
        kwargs.update(pool_size=pool_size, max_overflow=10)
    _engine = _create_engine(database_url, **kwargs)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the cached session factory."""
    if _session_factory is None:
        raise RuntimeError("Database engine not initialized. Call create_async_engine() first.")
    return _session_factory
