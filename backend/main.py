"""
ErgoPulse - FastAPI Application Entry Point
Ergonomic health monitoring: posture, eye strain, blink rate, breaks
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.database import init_db
from app.utils.logger import setup_logging

# Setup logging
setup_logging("DEBUG" if settings.DEBUG else "INFO")
logger = logging.getLogger("ergo.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle manager"""
    logger.info("=" * 60)
    logger.info("  ErgoPulse - Starting")
    logger.info("=" * 60)

    init_db()
    logger.info("Database initialized")

    from app.services.ergo_service import get_ergo_service
    service = get_ergo_service()
    service.prune_old_metrics(settings.METRIC_RETENTION_DAYS)
    service.start()

    logger.info(f"Environment: {settings.ERGO_ENV}")
    logger.info(f"CORS Origins: {settings.cors_origins_list}")
    logger.info("ErgoPulse is ready!")
    logger.info("=" * 60)

    yield

    await service.stop()
    logger.info("ErgoPulse shutting down...")


# Create FastAPI app
app = FastAPI(
    title="ErgoPulse - Ergonomic Health Monitor",
    description="Posture, eye strain and break coaching from webcam landmarks",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
from app.routers import breaks, monitor

app.include_router(monitor.router)
app.include_router(breaks.router)


# Health check endpoint
@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": "1.0.0",
    }


@app.get("/api/info")
def api_info():
    return {
        "name": "ErgoPulse API",
        "version": "1.0.0",
        "description": "Ergonomic health monitoring",
        "endpoints": {
            "monitor": "/api/monitor",
            "breaks": "/api/breaks",
            "websocket_monitor": "/ws/monitor",
            "websocket_breaks": "/ws/breaks",
            "health": "/health",
        }
    }
