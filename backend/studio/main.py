"""FastAPI application entry point."""

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from studio.config import get_settings
from studio.db.database import close_database, init_database

# Configure logging
settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown."""
    await init_database(get_settings().database_path)
    logger.info("Studio service started")

    yield

    await close_database()


app = FastAPI(
    title="Studio Workflow Core",
    description="Run block workflows locally and deliver polled mailbox changes to webhooks",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Import and include routers after app is created to avoid circular imports
from studio.api import execute, poll  # noqa: E402

app.include_router(poll.router, tags=["polling"])
app.include_router(execute.router, tags=["execute"])
