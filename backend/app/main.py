"""
My Mechanic - FastAPI Application

Main entry point for the backend API.
Provides subscription checkout, Stripe webhooks and the metered chat endpoint.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config.settings import settings
from app.domain.plans import get_plan_catalog
from app.infrastructure.exceptions import MechanicAPIError
from app.infrastructure.services.audit_logger import get_audit_logger

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(f"My Mechanic API starting in {settings.environment} mode...")

    get_plan_catalog().validate()

    try:
        from app.infrastructure.db.database import init_db
        await init_db()
        logger.info("SQLModel database connection pool initialized")
    except Exception as e:
        logger.warning(f"SQLModel database initialization skipped: {e}")

    audit = get_audit_logger()
    audit.start()

    yield

    # Shutdown
    await audit.stop()

    try:
        from app.infrastructure.db.database import close_db
        await close_db()
        logger.info("SQLModel database connection pool closed")
    except Exception as e:
        logger.warning(f"SQLModel database shutdown error: {e}")

    logger.info("My Mechanic API shutting down...")


app = FastAPI(
    title="My Mechanic",
    description="UK automotive advice assistant with metered subscriptions",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(MechanicAPIError)
async def mechanic_error_handler(request: Request, exc: MechanicAPIError):
    """Render application errors with their status and machine-readable code."""
    if exc.status_code >= 500:
        logger.error(
            f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}",
            exc_info=exc.original_error,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "my-mechanic"}


@app.get("/api/health")
async def api_health_check():
    return {"status": "ok", "message": "My Mechanic API is running"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "My Mechanic API",
        "version": "1.0.0",
        "docs": "/docs",
    }


# ============================================================================
# Import and register routers
# ============================================================================

from app.api.routes import chat, subscriptions, webhooks

app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(chat.router, prefix="/api", tags=["Chat"])
