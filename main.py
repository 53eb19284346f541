"""
Collaborative Guest List - FastAPI Backend
Main application entry point
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from guestlist.core.config import settings
from guestlist.core.db import engine, Base
from guestlist.core.exceptions import register_exception_handlers
from guestlist.services.broadcast_hub import InMemoryBroadcastHub
from guestlist.api import (
    routes_assistant,
    routes_guests,
    routes_organizations,
    routes_public,
    routes_stream,
    routes_transfer,
)
import guestlist.models  # noqa: F401  registers tables on Base

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    # Create database tables
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")

    # One hub per process; route handlers reach it through app.state
    app.state.broadcast_hub = InMemoryBroadcastHub()
    await app.state.broadcast_hub.start()
    logger.info("Broadcast hub started")
    yield
    await app.state.broadcast_hub.stop()
    logger.info("Application shutdown")

# Create FastAPI application
app = FastAPI(
    title="Collaborative Guest List",
    description="Multi-tenant guest list management with real-time collaboration",
    version="1.0.0",
    lifespan=lifespan
)

register_exception_handlers(app)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(routes_public.router, prefix="/api", tags=["public"])
app.include_router(routes_organizations.router, prefix="/api", tags=["organizations"])
app.include_router(routes_guests.router, prefix="/api", tags=["guests"])
app.include_router(routes_stream.router, prefix="/api", tags=["stream"])
app.include_router(routes_transfer.router, prefix="/api", tags=["transfer"])
app.include_router(routes_assistant.router, prefix="/api", tags=["assistant"])

# Note: the broadcast hub lives in process memory, so run a single worker.

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="127.0.0.1",
        port=8000,
        reload=True
    )
