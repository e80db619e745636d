# src/farmlink/models/conversation.py
"""Models describing negotiation conversations and their messages."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from farmlink.db.session import Base
from farmlink.db.time import utcnow


class Conversation(Base):
    """Negotiation thread between a producer and a buyer about one product.

    At most one row exists per (product, producer, buyer); the unique
    constraint is the authority when two callers race to create it.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("product_id", "producer_id", "buyer_id", name="uq_conversation_triple"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(Integer, nullable=False)
    producer_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    buyer_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)

    last_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sender_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Message(Base):
    """A chat message, stored in the canonical language."""

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sender_id: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    # Client-generated idempotency key; a re-sent queued message collides here.
    client_ref: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
