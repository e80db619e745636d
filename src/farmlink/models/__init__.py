# src/farmlink/models/__init__.py
"""SQLAlchemy models for the FarmLink reference store."""

from .conversation import Conversation, Message
from .order import Order, OrderItem

__all__ = [
    "Conversation", "Message",
    "Order", "OrderItem",
]
