"""
API route modules.

Import all route modules here for easy access.
"""

from brandforge.api.routes import admin, rag

__all__ = ["admin", "rag"]
