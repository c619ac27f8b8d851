"""API routes."""

from .thoughts import router as thoughts_router

__all__ = ["thoughts_router"]
