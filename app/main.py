"""FastAPI application — main entry point."""

import structlog
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import get_settings
from app.infrastructure.database import engine, Base
from app.core.logging import configure_logging
from app.core.middleware import setup_middleware
from app.core.exceptions import AppError, global_exception_handler

# Import all models so SQLAlchemy knows about them
from app.domain.models.user import User  # noqa: F401
from app.domain.models.api_key import ApiKeyCredential  # noqa: F401
from app.domain.models.activity_log import ActivityLog  # noqa: F401
from app.domain.models.transaction import ChargingTransaction  # noqa: F401
from app.domain.models.sync_iteration import SyncIteration  # noqa: F401

# Import routers
from app.interfaces.api.portal import router as portal_router
from app.interfaces.api.users import router as users_router
from app.interfaces.api.sync import router as sync_router

settings = get_settings()

# Configure logging immediately
configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown events."""
    logger.info("Starting EV Portal Bridge...", env=settings.ENVIRONMENT)

    # Create DB tables (dev only — use migrations in production)
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")

    if settings.SCHEDULER_ENABLED:
        from app.scheduler.jobs import start_scheduler
        start_scheduler()

    yield

    if settings.SCHEDULER_ENABLED:
        from app.scheduler.jobs import stop_scheduler
        stop_scheduler()
    logger.info("EV Portal Bridge stopped")


app = FastAPI(
    title="EV Portal Bridge",
    description="Provisions users in Odoo and SteVe, syncs charging sessions into billing",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

# Setup Middleware (Correlation ID, Logging)
setup_middleware(app)

# Global Exception Handling
app.add_exception_handler(AppError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Include routers
app.include_router(portal_router)
app.include_router(users_router)
app.include_router(sync_router)
