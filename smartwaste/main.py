"""
FastAPI main application
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from smartwaste.database import connect_to_mongo, close_mongo_connection
from smartwaste.config import settings
from smartwaste.errors import register_exception_handlers
from smartwaste.api.routes import admin, bins, collections, routes, payments, stats, health

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info(f"Starting Smart Waste Collection API ({settings.environment})...")
    await connect_to_mongo()
    if settings.notification_webhook_url:
        logger.info(f"Events will be delivered to {settings.notification_webhook_url}")
    else:
        logger.info("No notification webhook configured; events will only be logged")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await close_mongo_connection()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Smart Waste Collection API",
    description="Bin fill tracking, collection requests, collector routes and reporting",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware - must be added before routes
# Cannot use "*" with allow_credentials=True; origins come from CORS_ORIGINS (comma-separated)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    max_age=3600,
)

register_exception_handlers(app)

# Include routers
app.include_router(bins.router)
app.include_router(collections.router)
app.include_router(routes.router)
app.include_router(payments.router)
app.include_router(stats.router)
app.include_router(health.router)
app.include_router(admin.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Smart Waste Collection",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "bins": "/api/bins",
            "collections": "/api/collections",
            "routes": "/api/routes",
            "payments": "/api/payments",
            "stats": "/api/stats/dashboard",
            "health": "/api/health",
            "alerts": "/api/health/alerts",
            "notifications": "/api/admin/notifications"
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "smartwaste.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
