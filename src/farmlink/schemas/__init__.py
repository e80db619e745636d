"""
Pydantic schemas for gateway records and API request/response models.
"""

from .conversation import (
    ConversationListItem,
    ConversationResolve,
    ConversationResponse,
    MarkRead,
    MarkReadResponse,
    MessageCreate,
    MessageResponse,
    MessageSent,
)
from .order import AdvanceResponse, OrderItemResponse, OrderResponse
from .records import (
    ConversationRecord,
    ConversationSummary,
    MessageRecord,
    OrderItemRecord,
    OrderRecord,
    OrderStatus,
)

__all__ = [
    "ConversationListItem", "ConversationResolve", "ConversationResponse",
    "MarkRead", "MarkReadResponse",
    "MessageCreate", "MessageResponse", "MessageSent",
    "AdvanceResponse", "OrderItemResponse", "OrderResponse",
    "ConversationRecord", "ConversationSummary", "MessageRecord",
    "OrderItemRecord", "OrderRecord", "OrderStatus",
]
