"""
Data-source management.

A data source is a named async SQLAlchemy engine with its session factory.
The default data source is built lazily from ``Settings.async_url``;
further ones come from ``Settings.data_sources`` or are registered at
runtime with ``register_data_source``.

Engines are created once per name and reused.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from crudkit.core.config import DEFAULT_DATA_SOURCE, get_settings, to_async_url
from crudkit.core.errors import UnknownDataSourceError

logger = logging.getLogger(__name__)

_engines: dict[str, AsyncEngine] = {}
_sessionmakers: dict[str, async_sessionmaker[AsyncSession]] = {}


def _normalize_name(name: str | None) -> str:
    return name or DEFAULT_DATA_SOURCE


def create_engine_for_url(url: str, *, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for a URL.

    In-memory SQLite gets a StaticPool so every session sees the same
    database; other URLs keep the driver's default pooling.
    """
    url = to_async_url(url)
    in_memory = ":memory:" in url or url.rstrip("/").endswith(":")
    if url.startswith("sqlite") and in_memory:
        return create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def register_data_source(name: str | None, url_or_engine: str | AsyncEngine) -> AsyncEngine:
    """
    Register (or replace) a named data source.

    Args:
        name: Data-source name; None registers the default one
        url_or_engine: Database URL or an already-built AsyncEngine

    Returns:
        The engine now bound to the name
    """
    key = _normalize_name(name)
    if isinstance(url_or_engine, AsyncEngine):
        engine = url_or_engine
    else:
        engine = create_engine_for_url(url_or_engine, echo=get_settings().echo_sql)

    _engines[key] = engine
    _sessionmakers.pop(key, None)
    logger.info(f"Registered data source: {key}", extra={"data_source": key})
    return engine


def get_async_engine(name: str | None = None) -> AsyncEngine:
    """
    Return the engine for a data source, creating it from settings on first use.

    Raises:
        UnknownDataSourceError: If the name is neither registered nor configured
    """
    key = _normalize_name(name)
    engine = _engines.get(key)
    if engine is not None:
        return engine

    urls = get_settings().data_source_urls
    if key not in urls:
        raise UnknownDataSourceError(
            f"Data source '{key}' is not registered",
            details={"data_source": key, "known": sorted({*urls, *_engines})},
        )
    return register_data_source(key, urls[key])


def get_async_sessionmaker(name: str | None = None) -> async_sessionmaker[AsyncSession]:
    """
    Get or create the async sessionmaker for a data source.

    Returns:
        Async sessionmaker factory
    """
    key = _normalize_name(name)
    maker = _sessionmakers.get(key)
    if maker is not None:
        return maker

    maker = async_sessionmaker(
        bind=get_async_engine(key),
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )
    _sessionmakers[key] = maker
    return maker


@asynccontextmanager
async def session_scope(name: str | None = None) -> AsyncIterator[AsyncSession]:
    """Open a session on a data source for one unit of work.

    Usage:
        async with session_scope("reporting") as db:
            result = await db.execute(select(Item))

    Ensures:
        Commit on success, rollback and re-raise on error, close always
    """
    session_maker = get_async_sessionmaker(name)
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_data_sources() -> None:
    """Dispose every engine and forget all data sources.

    Useful for tests and for process shutdown.
    """
    for key, engine in list(_engines.items()):
        await engine.dispose()
        logger.debug(f"Disposed data source: {key}")
    _engines.clear()
    _sessionmakers.clear()
