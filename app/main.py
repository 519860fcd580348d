import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from app.core.config import settings
from app.core.database import engine, create_tables
from app.api.router import api_router

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# Create missing tables on startup, close the pool on shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await create_tables()
        logger.info("Database tables are ready")
    except Exception as e:
        logger.error(f"Table creation failed during startup: {e}")

    yield
    await engine.dispose()


app = FastAPI(title="Pain Point Tracker API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Welcome to the Pain Point Tracker API"}
