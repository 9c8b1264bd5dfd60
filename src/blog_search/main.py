"""
Search Service Application Entry Point

This module defines the FastAPI application instance, wires the search
engines into the index manager, registers all routers and configures global
exception handling.

Design Goals
------------
- Explicit engine construction and startup order
- Background maintenance tied to the application lifespan
- Global exception safety net
- Test-friendly via create_app()
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Tuple

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import Settings, settings
from .core.errors import database_exception_handler, unhandled_exception_handler
from .db import AsyncSessionLocal, async_engine
from .search.cluster_engine import ClusterSearchEngine
from .search.database_engine import DatabaseSearchEngine
from .search.manager import SearchIndexManager

from .api import (
    admin_routes,
    health_routes,
    search_routes,
)


logger = logging.getLogger("blog_search.app")


# ---------------------------------------------------------------------
# Engine Wiring
# ---------------------------------------------------------------------

def build_search_manager(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    conf: Settings = settings,
) -> Tuple[SearchIndexManager, Optional[ClusterSearchEngine]]:
    """
    Construct the fallback database engine, the cluster engine (unless
    disabled) and the manager over both.

    Returns
    -------
    tuple
        The manager and the cluster engine, which the caller owns and closes.
    """
    fallback = DatabaseSearchEngine(session_factory)

    cluster: Optional[ClusterSearchEngine] = None
    if conf.search_primary_enabled:
        cluster = ClusterSearchEngine(conf=conf, ensure_on_init=False)
    else:
        logger.info("Search cluster disabled, serving from the database only")

    return SearchIndexManager(cluster, fallback, session_factory, conf), cluster


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Starting blog-search")

    manager, cluster = build_search_manager()
    if cluster is not None:
        await cluster.ensure_index()

    app.state.search_manager = manager
    manager.start()

    try:
        yield
    finally:
        logger.info("Shutting down blog-search")
        await manager.stop()
        if cluster is not None:
            await cluster.close()
        await async_engine.dispose()


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Tests can skip the lifespan and place a stub manager on
    ``app.state.search_manager`` directly.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="blog-search",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(search_routes.router)
    app.include_router(admin_routes.router)

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
