"""Conversation and chat message Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ConversationResolve(BaseModel):
    """Schema for finding or starting a conversation."""

    product_id: int = Field(..., ge=0, description="Product under negotiation")
    producer_id: str = Field(..., min_length=1, description="Producer (farmer) user id")
    buyer_id: str = Field(..., min_length=1, description="Buyer (retailer) user id")


class ConversationResponse(BaseModel):
    """Schema for conversation information returned by the API."""

    id: int
    product_id: int
    producer_id: str
    buyer_id: str
    last_message: str | None = None
    last_message_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationListItem(BaseModel):
    """Schema for one row of a user's conversation list."""

    conversation: ConversationResponse
    counterpart_id: str
    last_message: str | None
    last_message_at: datetime
    has_unread: bool


class MessageCreate(BaseModel):
    """Schema for sending a chat message."""

    sender_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, description="Text in the sender's language")
    client_ref: str | None = Field(
        None,
        max_length=32,
        description="Client-generated key; a retried send with the same key is not stored twice",
    )


class MessageResponse(BaseModel):
    """Schema for a chat message returned by the API."""

    id: int
    conversation_id: int
    sender_id: str
    content: str
    created_at: datetime
    read_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class MessageSent(MessageResponse):
    """Schema for a stored message plus the language detected in the input."""

    detected_language: str | None = None


class MarkRead(BaseModel):
    """Schema for marking a conversation read."""

    reader_id: str = Field(..., min_length=1)


class MarkReadResponse(BaseModel):
    updated: int
