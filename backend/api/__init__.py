"""API module for HTTP routes.

This module exposes the FastAPI routers for the Sentinel backend.
"""

from api.routes import api_router, router

__all__ = ["api_router", "router"]
