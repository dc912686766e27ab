"""
API routes initialization.

This module aggregates all API routers and provides a single router
to include in the main application.
"""

from fastapi import APIRouter

from brandforge.api.routes import admin, rag

# Create main API router
api_router = APIRouter()

# Generation-time retrieval and interactive vectorization
api_router.include_router(rag.router)

# Admin: vectorization jobs, RAG settings
api_router.include_router(admin.router)
