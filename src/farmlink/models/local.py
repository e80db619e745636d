# src/farmlink/models/local.py
"""Local-only models kept on the device."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from farmlink.db.local import LocalBase
from farmlink.db.time import utcnow


class OfflineMessage(LocalBase):
    """A chat message whose remote insert has not been confirmed yet."""

    __tablename__ = "offline_message"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(Integer, nullable=False)
    sender_id: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    client_ref: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class LocalSetting(LocalBase):
    """Key/value preference stored on the device."""

    __tablename__ = "local_setting"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
