"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from booknook.api.activity_routes import router as activity_router
from booknook.api.recommendation_routes import router as recommendation_router
from booknook.api.release_routes import router as release_router
from booknook.api.routes import router as books_router
from booknook.api.task_routes import router as task_router
from booknook.core.dependencies import get_new_release_cache
from booknook.infrastructure.database.connection import init_db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting BookNook application")
    await init_db()
    logger.info("Database initialized")
    get_new_release_cache()
    yield
    logger.info("Shutting down BookNook application")


app = FastAPI(
    title="BookNook",
    description="EPUB library with metadata extraction and reading-based recommendations",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(books_router)
app.include_router(activity_router)
app.include_router(recommendation_router)
app.include_router(release_router)
app.include_router(task_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
