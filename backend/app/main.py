"""mindnote Backend API - FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from mindnote.logging_config import setup_mindnote_logging

from .config import get_settings
from .rate_limit import limiter
from .routes import thoughts_router

logger = logging.getLogger("mindnote.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    setup_mindnote_logging(level="DEBUG" if settings.debug else settings.log_level)
    logger.info("Starting mindnote backend (debug=%s)", settings.debug)
    yield
    logger.info("Shutting down mindnote backend")


app = FastAPI(
    title="mindnote Backend API",
    description="Thought processing orchestration API",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(thoughts_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "mindnote-backend",
        "version": "0.1.0",
        "status": "ok",
    }


@app.get("/health")
async def health():
    """Health check with a store round trip."""
    from .database import get_document_store

    try:
        get_document_store().get("health/probe")
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)[:50]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
    }
