import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from dotenv import load_dotenv

from core.config import settings
from core.db import Base, engine, SessionLocal
from core.celery import celery_app
from core.errors import register_exception_handlers
from core.logging import configure_logging
import models  # noqa: F401
from routes.stores import router as stores_router
from routes.listings import router as listings_router
from routes.notifications import router as notifications_router
from services.plans import seed_default_plans
from services.sweeper import StoreStatusSweeper

load_dotenv()
configure_logging()

logger = logging.getLogger(__name__)

# Ensure tables exist (for dev/test; in prod use Alembic)
Base.metadata.create_all(bind=engine)

sweeper = StoreStatusSweeper()


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = SessionLocal()
    try:
        created = seed_default_plans(db)
        if created:
            logger.info("Seeded %s store plans", created)
    finally:
        db.close()

    if settings.STATUS_SWEEP_ENABLED:
        await sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

register_exception_handlers(app)

app.include_router(stores_router)
app.include_router(listings_router)
app.include_router(notifications_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "status_sweep": "running" if sweeper.running else "stopped",
    }


@app.get("/celery-health")
async def celery_health_check():
    """Check Celery worker status"""
    try:
        inspect = celery_app.control.inspect()
        stats = inspect.stats()
        if stats:
            return {"status": "healthy", "workers": len(stats)}
        else:
            return {"status": "no_workers", "message": "No Celery workers running"}
    except Exception as e:
        logger.warning("Celery health check failed: %s", e)
        return {"status": "unhealthy", "error": str(e)}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG,
    )
