"""Version 1 API endpoints."""

from .endpoints import counters_router

__all__ = ["counters_router"]
