"""
FastAPI application factory.

Creates and configures the automation engine API application.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from automation_engine import __version__
from automation_engine.api.routes import health_router, router
from automation_engine.config import Settings, get_settings
from automation_engine.orchestrator.engine import AutomationEngine
from automation_engine.storage.postgres.database import Database
from automation_engine.storage.postgres.store import PostgresWorkflowStore
from automation_engine.storage.redis.cache import WorkflowCache
from automation_engine.storage.redis.connection import RedisConnection

logger = logging.getLogger(__name__)


def build_lifespan(settings: Settings, engine: Optional[AutomationEngine] = None):
    """
    Build the application lifespan.

    With an injected engine only its scheduler is started and stopped; the
    caller owns the store behind it.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting Workflow Automation Engine...")
        database = None
        redis_connection = None

        if engine is None:
            database = Database(settings.postgres)
            await database.init()
            app.state.database = database
            logger.info("Database connection established")

            cache = None
            if settings.redis.enabled:
                redis_connection = RedisConnection(settings.redis)
                await redis_connection.init()
                app.state.redis = redis_connection
                cache = WorkflowCache(redis_connection.client, ttl=settings.redis.cache_ttl)
                logger.info("Redis cache enabled")

            store = PostgresWorkflowStore(database, cache=cache, entity_tables=settings.entities.tables)
            app.state.engine = AutomationEngine(store, settings=settings)
        else:
            app.state.engine = engine

        await app.state.engine.start()
        logger.info(f"Automation Engine started - Environment: {settings.environment.value}")

        yield

        # Shutdown
        logger.info("Shutting down Workflow Automation Engine...")
        await app.state.engine.stop()

        if database is not None:
            await database.close()
        if redis_connection is not None:
            await redis_connection.close()

        logger.info("Automation Engine shutdown complete")

    return lifespan


def create_app(engine: Optional[AutomationEngine] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        engine: Pre-built engine; when omitted one is built on startup over
            PostgreSQL (and Redis, if enabled)
        settings: Settings override, mainly for tests
    """
    settings = settings or get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        description="Event-driven workflow automation engine",
        version=__version__,
        lifespan=build_lifespan(settings, engine),
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # Injected engines are reachable before the lifespan runs
    if engine is not None:
        app.state.engine = engine

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(router)

    # Root endpoint
    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": settings.app_name,
            "version": __version__,
            "status": "running",
        }

    return app


# Application instance for uvicorn
app = create_app()
