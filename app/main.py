"""
Partner Matching Engine - Main Application
FastAPI Entry Point with APScheduler for the pattern-learning sweep
"""

from asgi_correlation_id import CorrelationIdMiddleware
from fastapi import FastAPI
from fastapi.responses import JSONResponse
import structlog

from app.config import settings
from app.database import init_db
from app.routers import categories_router, files_router, learning_router, partners_router, transactions_router
from app.scheduler import start_scheduler, stop_scheduler
from app.services.monitoring import init_sentry, setup_logging

# Structured Logging Setup (stdlib JSON handler + structlog)
setup_logging()
init_sentry()
logger = structlog.get_logger()

# FastAPI App
app = FastAPI(
    title="Partner Matching Engine",
    description="Matches bank transactions and receipts to partners and learns matching patterns",
    version="0.4.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
)

app.add_middleware(CorrelationIdMiddleware, header_name="X-Request-ID")

# APScheduler instance (set on startup)
scheduler = None

# Register routers
app.include_router(partners_router)
app.include_router(categories_router)
app.include_router(files_router)
app.include_router(learning_router)
app.include_router(transactions_router)


@app.on_event("startup")
async def startup_event():
    """Application Startup"""
    global scheduler
    logger.info("startup", environment=settings.environment)

    # Initialize database connection
    init_db()
    logger.info("database_initialized")

    # Learning queue sweep (skipped in testing)
    scheduler = start_scheduler(settings.environment)


@app.on_event("shutdown")
async def shutdown_event():
    """Application Shutdown"""
    logger.info("shutdown")
    stop_scheduler(scheduler)


@app.get("/")
async def root():
    """Root Endpoint"""
    return {
        "message": "Partner Matching Engine API",
        "version": "0.4.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """
    Health Check Endpoint
    Reports scheduler and database status
    """
    from app.database import SessionLocal

    health_status = {
        "status": "healthy",
        "environment": settings.environment,
        "services": {
            "api": "running",
            "scheduler": "running" if scheduler is not None and scheduler.running else "stopped",
            "database": "configured" if SessionLocal is not None else "not_configured",
            "oracle": "configured" if settings.anthropic_api_key else "not_configured",
        }
    }

    return JSONResponse(
        content=health_status,
        status_code=200
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development"
    )
