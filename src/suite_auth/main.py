"""Suite Auth Service

Main FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from suite_auth.api.routes import auth
from suite_auth.config.settings import get_settings
from suite_auth.core.auth import get_auth_service, init_auth_service, reset_auth_service
from suite_auth.domain.errors import AuthError
from suite_auth.infrastructure.database import create_engine, create_session_factory, init_models

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database and resolve the auth providers; tear both down on exit"""
    settings = get_settings()
    logger.info(
        f"Starting {settings.service_name} v{settings.service_version} ({settings.environment})"
    )

    engine = create_engine(settings.database_url, echo=settings.database_echo)
    if settings.auto_create_schema:
        await init_models(engine)
        logger.info("Database schema ensured")

    try:
        await init_auth_service(settings, create_session_factory(engine))
    except Exception as e:
        logger.error(f"Failed to initialize auth service: {e}")
        await engine.dispose()
        raise

    yield

    # Shutdown
    logger.info("Shutting down Suite Auth")
    reset_auth_service()
    await engine.dispose()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title="Suite Auth Service",
    version=settings.service_version,
    description="Authentication and session lifecycle for the suite",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


@app.get("/health")
async def health_check():
    """Liveness plus the provider currently serving credential operations"""
    try:
        auth_provider = get_auth_service().config.active_provider.value
    except RuntimeError:
        auth_provider = None
    return {
        "status": "healthy",
        "service": settings.service_name,
        "version": settings.service_version,
        "auth_provider": auth_provider,
    }


# auth.router already carries the /api/v1/auth prefix
app.include_router(auth.router)


@app.exception_handler(AuthError)
async def auth_error_handler(request, exc: AuthError):
    """Render provider-neutral auth failures with their own status code"""
    if exc.status_code >= 500:
        logger.error(f"Auth failure: {exc.code.value}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please try again later."
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "suite_auth.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
