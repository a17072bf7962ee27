"""FastAPI application factory."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from visioncore.api.errors import ApiError, api_error_handler
from visioncore.api.routes import generate, user_keys
from visioncore.core.config import Settings, configure_logging
from visioncore.core.database import create_engine, create_tables, setup_db_session
from visioncore.services.crypto.vault import KeyVault
from visioncore.services.generation.service import GenerationService
from visioncore.services.key_resolver import KeyResolver
from visioncore.uow import create_uow_factory

logger = structlog.get_logger()


def build_vault(settings: Settings) -> KeyVault | None:
    """Create the key vault, or None when no encryption secret is configured."""
    if not settings.server_encryption_key:
        logger.warning("vault.disabled", reason="SERVER_ENCRYPTION_KEY not set")
        return None
    return KeyVault(settings.server_encryption_key)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, create engine and tables, wire services into app.state
    - Shutdown: Dispose database engine
    """
    settings: Settings = app.state.settings

    configure_logging(settings)

    engine = create_engine(settings.database_url, settings.db_pool_size)
    await create_tables(engine)
    session_factory = setup_db_session(engine)
    uow_factory = create_uow_factory(session_factory)
    vault = build_vault(settings)

    # Store in app.state for access in routes
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.vault = vault
    app.state.key_resolver = KeyResolver(settings, uow_factory, vault)
    app.state.generation_service = GenerationService(settings)

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        operator_key_override=settings.operator_key is not None,
    )

    yield

    logger.info("application.shutdown")
    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings to use (loaded from the environment when omitted)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="VisionCore API",
        description="Product imagery and video generation proxy",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ApiError, api_error_handler)  # type: ignore[arg-type]

    # Routers carry their own "/api/..." prefixes
    app.include_router(generate.router)
    app.include_router(user_keys.router)

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
