# src/farmlink/services/__init__.py
"""Order and chat services for the FarmLink core."""

from .chat import ChatSession, Notice, SendOutcome
from .conversations import ConversationResolutionError, ConversationResolver
from .offline_queue import OfflineQueue
from .order_poller import OrderStatusPoller
from .orders import OrderAdvanceError, OrderNotFoundError, OrderTracker
from .translation import GoogleTranslateClient, Translator

__all__ = [
    "ChatSession", "Notice", "SendOutcome",
    "ConversationResolutionError", "ConversationResolver",
    "OfflineQueue",
    "OrderStatusPoller",
    "OrderAdvanceError", "OrderNotFoundError", "OrderTracker",
    "GoogleTranslateClient", "Translator",
]
