"""Typed records exchanged with the data gateway.

Every row read from the store is validated into one of these models before it
reaches the order or chat components, so a malformed row is rejected at the
boundary instead of surfacing as a missing field in the UI layer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class OrderStatus(str, Enum):
    """Stages of the order lifecycle, in order."""

    ORDERED = "ordered"
    PACKED = "packed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


STAGE_SEQUENCE: Final[tuple[OrderStatus, ...]] = (
    OrderStatus.ORDERED,
    OrderStatus.PACKED,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything the core stores is UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class OrderItemRecord(BaseModel):
    """One product line of an order."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    product_id: int
    quantity: Decimal = Field(..., ge=0)
    unit_price: Decimal = Field(..., ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price


class OrderRecord(BaseModel):
    """Order as seen by the core."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    buyer_id: str
    status: OrderStatus
    items: tuple[OrderItemRecord, ...] = ()
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_times(cls, value: datetime) -> datetime | None:
        return _as_utc(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))


class ConversationRecord(BaseModel):
    """Negotiation thread keyed by (product, producer, buyer)."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    product_id: int
    producer_id: str
    buyer_id: str
    last_message: str | None = None
    last_message_at: datetime | None = None
    last_sender_id: str | None = None
    created_at: datetime

    @field_validator("last_message_at", "created_at")
    @classmethod
    def normalize_times(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    def counterpart_of(self, user_id: str) -> str:
        """Return the other participant's id."""
        return self.buyer_id if user_id == self.producer_id else self.producer_id


class MessageRecord(BaseModel):
    """Stored message; `content` is always in the canonical language."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    conversation_id: int
    sender_id: str
    content: str
    client_ref: str | None = None
    created_at: datetime
    read_at: datetime | None = None

    @field_validator("created_at", "read_at")
    @classmethod
    def normalize_times(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class ConversationSummary(BaseModel):
    """Row of a user's conversation list."""

    model_config = ConfigDict(frozen=True)

    conversation: ConversationRecord
    last_message: str | None
    last_message_at: datetime
    has_unread: bool
