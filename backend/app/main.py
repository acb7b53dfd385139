"""
FastAPI Application Entry Point.

This is the main application file for the School Van Tracking Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from backend.app.core.config import settings
from backend.app.api.v1.router import router as api_v1_router, ws_router
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from backend.app.services.engine import build_engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Builds the tracking engine on the configured store.
    2. Restores the active route and prunes expired notifications.
    3. Stops the simulator and closes the store on shutdown.
    """
    configure_logging()
    engine = await build_engine(settings)
    await engine.start()
    app.state.engine = engine
    yield
    await engine.close()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Real-time school van tracking with guardian notifications",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and store/push state
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        **await request.app.state.engine.health(),
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
app.include_router(ws_router)


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to School Van Tracking Backend API",
        "docs": "/docs",
        "health": "/health",
    }
