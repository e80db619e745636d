"""Persistent queue of chat messages awaiting a confirmed remote insert."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import delete, func, select
from sqlalchemy.orm import sessionmaker

from farmlink.core.settings import settings
from farmlink.models.local import OfflineMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueuedMessage:
    """A message payload that has not been persisted remotely yet."""

    id: int
    conversation_id: int
    sender_id: str
    content: str
    client_ref: str


class OfflineQueue:
    """Bounded FIFO queue stored in the on-device database.

    Entries survive a restart. When the cap is exceeded the oldest entries are
    dropped. An entry leaves the queue only through `remove()`, which callers
    invoke right after that entry's remote insert is confirmed.
    """

    def __init__(self, session_factory: sessionmaker, *, max_entries: int | None = None) -> None:
        self._session_factory = session_factory
        self.max_entries = max_entries if max_entries is not None else settings.offline_queue_max

    def __len__(self) -> int:
        with self._session_factory() as db:
            return int(db.scalar(select(func.count(OfflineMessage.id))) or 0)

    def entries(self) -> list[QueuedMessage]:
        """Return queued entries oldest first."""
        with self._session_factory() as db:
            rows = db.scalars(select(OfflineMessage).order_by(OfflineMessage.id)).all()
            return [
                QueuedMessage(
                    id=row.id,
                    conversation_id=row.conversation_id,
                    sender_id=row.sender_id,
                    content=row.content,
                    client_ref=row.client_ref,
                )
                for row in rows
            ]

    def enqueue(
        self, conversation_id: int, sender_id: str, content: str, client_ref: str
    ) -> QueuedMessage:
        """Append a payload and drop the oldest entries beyond the cap."""
        with self._session_factory() as db:
            existing = db.scalars(
                select(OfflineMessage).where(OfflineMessage.client_ref == client_ref)
            ).first()
            if existing is None:
                existing = OfflineMessage(
                    conversation_id=conversation_id,
                    sender_id=sender_id,
                    content=content,
                    client_ref=client_ref,
                )
                db.add(existing)
                db.flush()

            overflow = int(db.scalar(select(func.count(OfflineMessage.id))) or 0) - self.max_entries
            if overflow > 0:
                oldest = db.scalars(
                    select(OfflineMessage.id).order_by(OfflineMessage.id).limit(overflow)
                ).all()
                db.execute(delete(OfflineMessage).where(OfflineMessage.id.in_(oldest)))
                logger.warning("Offline queue full; dropped %d oldest messages", overflow)

            db.commit()
            return QueuedMessage(
                id=existing.id,
                conversation_id=existing.conversation_id,
                sender_id=existing.sender_id,
                content=existing.content,
                client_ref=existing.client_ref,
            )

    def remove(self, entry_id: int) -> None:
        with self._session_factory() as db:
            db.execute(delete(OfflineMessage).where(OfflineMessage.id == entry_id))
            db.commit()
