# src/farmlink/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import conversations_router, orders_router

__all__ = [
    "conversations_router",
    "orders_router",
]
