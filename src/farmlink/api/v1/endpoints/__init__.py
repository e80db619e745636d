# src/farmlink/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .conversations import router as conversations_router
from .orders import router as orders_router

__all__ = [
    "conversations_router",
    "orders_router",
]
