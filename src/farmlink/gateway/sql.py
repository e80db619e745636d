"""SQLAlchemy-backed reference implementation of the data gateway.

Runs the whole core against any SQLAlchemy database (SQLite in tests and local
development). Blocking session work is handed to a worker thread so callers on
the event loop keep running while the store answers. Row change notifications
are emulated in process: every insert committed through this gateway is pushed
to matching subscriptions from the event loop thread.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from farmlink.gateway.base import (
    DataGateway,
    DuplicateKeyError,
    MalformedRowError,
    RemoteUnavailableError,
    RowCallback,
    Subscription,
)
from farmlink.models import Conversation, Message, Order
from farmlink.schemas.records import (
    ConversationRecord,
    MessageRecord,
    OrderRecord,
    OrderStatus,
)

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)
ResultT = TypeVar("ResultT")


def _to_record(model: type[RecordT], row: Any) -> RecordT:
    try:
        return model.model_validate(row, from_attributes=True)
    except ValidationError as exc:
        raise MalformedRowError(f"Rejected malformed {model.__name__} row: {exc}") from exc


def _to_records(model: type[RecordT], rows: Sequence[Any]) -> list[RecordT]:
    records: list[RecordT] = []
    for row in rows:
        try:
            records.append(_to_record(model, row))
        except MalformedRowError as exc:
            logger.warning("%s", exc)
    return records


def _order_query():
    return select(Order).options(selectinload(Order.items))


class SqlDataGateway(DataGateway):
    """Data gateway over a SQLAlchemy session factory.

    Each call is one unit of work on its own session. Units run one at a time
    in a worker thread; an abandoned call (for example after a caller timeout)
    still finishes in its thread.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db: Session = self._session_factory()
        try:
            yield db
        except IntegrityError as exc:
            db.rollback()
            raise DuplicateKeyError(str(exc.orig)) from exc
        except (DBAPIError, SQLAlchemyError) as exc:
            db.rollback()
            raise RemoteUnavailableError(f"Store request failed: {exc}") from exc
        finally:
            db.close()

    def _work(self, unit: Callable[[Session], ResultT]) -> ResultT:
        with self._lock, self._session() as db:
            return unit(db)

    async def _run(self, unit: Callable[[Session], ResultT]) -> ResultT:
        return await asyncio.to_thread(self._work, unit)

    # --- orders -----------------------------------------------------------------
    async def list_orders(self, buyer_id: str | None = None) -> list[OrderRecord]:
        def unit(db: Session) -> list[OrderRecord]:
            query = _order_query()
            if buyer_id is not None:
                query = query.where(Order.buyer_id == buyer_id)
            rows = db.scalars(query.order_by(Order.created_at.desc())).all()
            return _to_records(OrderRecord, rows)

        return await self._run(unit)

    async def get_order(self, order_id: str) -> OrderRecord | None:
        def unit(db: Session) -> OrderRecord | None:
            row = db.scalars(_order_query().where(Order.id == order_id)).first()
            return _to_record(OrderRecord, row) if row else None

        return await self._run(unit)

    async def update_order_status(
        self,
        order_id: str,
        *,
        expected: OrderStatus,
        status: OrderStatus,
        updated_at: datetime,
    ) -> OrderRecord | None:
        def unit(db: Session) -> OrderRecord | None:
            result = db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == expected.value)
                .values(status=status.value, updated_at=updated_at)
            )
            db.commit()
            if result.rowcount == 0:
                return None
            row = db.scalars(_order_query().where(Order.id == order_id)).one()
            return _to_record(OrderRecord, row)

        return await self._run(unit)

    # --- conversations ----------------------------------------------------------
    async def get_conversation(self, conversation_id: int) -> ConversationRecord | None:
        def unit(db: Session) -> ConversationRecord | None:
            row = db.get(Conversation, conversation_id)
            return _to_record(ConversationRecord, row) if row else None

        return await self._run(unit)

    async def find_conversation(
        self, product_id: int, producer_id: str, buyer_id: str
    ) -> ConversationRecord | None:
        def unit(db: Session) -> ConversationRecord | None:
            row = db.scalars(
                select(Conversation).where(
                    Conversation.product_id == product_id,
                    Conversation.producer_id == producer_id,
                    Conversation.buyer_id == buyer_id,
                )
            ).first()
            return _to_record(ConversationRecord, row) if row else None

        return await self._run(unit)

    async def create_conversation(
        self,
        product_id: int,
        producer_id: str,
        buyer_id: str,
        *,
        opening_preview: str,
        created_at: datetime,
    ) -> ConversationRecord:
        def unit(db: Session) -> ConversationRecord:
            conversation = Conversation(
                product_id=product_id,
                producer_id=producer_id,
                buyer_id=buyer_id,
                last_message=opening_preview,
                last_message_at=created_at,
                created_at=created_at,
            )
            db.add(conversation)
            db.commit()
            db.refresh(conversation)
            return _to_record(ConversationRecord, conversation)

        return await self._run(unit)

    async def list_conversations(self, user_id: str) -> list[ConversationRecord]:
        def unit(db: Session) -> list[ConversationRecord]:
            rows = db.scalars(
                select(Conversation)
                .where(or_(Conversation.producer_id == user_id, Conversation.buyer_id == user_id))
                .order_by(Conversation.created_at)
            ).all()
            return _to_records(ConversationRecord, rows)

        return await self._run(unit)

    async def update_conversation_preview(
        self,
        conversation_id: int,
        *,
        preview: str,
        at: datetime,
        sender_id: str,
    ) -> None:
        def unit(db: Session) -> None:
            db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(last_message=preview, last_message_at=at, last_sender_id=sender_id)
            )
            db.commit()

        await self._run(unit)

    # --- messages ---------------------------------------------------------------
    async def list_messages(self, conversation_id: int) -> list[MessageRecord]:
        def unit(db: Session) -> list[MessageRecord]:
            rows = db.scalars(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
            ).all()
            return _to_records(MessageRecord, rows)

        return await self._run(unit)

    async def latest_messages(self, conversation_ids: Sequence[int]) -> dict[int, MessageRecord]:
        if not conversation_ids:
            return {}

        def unit(db: Session) -> dict[int, MessageRecord]:
            rows = db.scalars(
                select(Message)
                .where(Message.conversation_id.in_(list(conversation_ids)))
                .order_by(Message.created_at.desc(), Message.id.desc())
            ).all()
            latest: dict[int, MessageRecord] = {}
            for record in _to_records(MessageRecord, rows):
                latest.setdefault(record.conversation_id, record)
            return latest

        return await self._run(unit)

    async def unread_conversation_ids(
        self, conversation_ids: Sequence[int], reader_id: str
    ) -> set[int]:
        if not conversation_ids:
            return set()

        def unit(db: Session) -> set[int]:
            rows = db.execute(
                select(Message.conversation_id, func.count(Message.id))
                .where(
                    Message.conversation_id.in_(list(conversation_ids)),
                    Message.sender_id != reader_id,
                    Message.read_at.is_(None),
                )
                .group_by(Message.conversation_id)
            ).all()
            return {conversation_id for conversation_id, _ in rows}

        return await self._run(unit)

    async def insert_message(
        self,
        conversation_id: int,
        sender_id: str,
        content: str,
        *,
        client_ref: str | None = None,
    ) -> MessageRecord:
        def unit(db: Session) -> MessageRecord:
            message = Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=content,
                client_ref=client_ref,
            )
            db.add(message)
            db.commit()
            db.refresh(message)
            return _to_record(MessageRecord, message)

        record = await self._run(unit)
        self._publish("messages", record.model_dump())
        return record

    async def mark_messages_read(
        self, conversation_id: int, reader_id: str, at: datetime
    ) -> int:
        def unit(db: Session) -> int:
            result = db.execute(
                update(Message)
                .where(
                    Message.conversation_id == conversation_id,
                    Message.sender_id != reader_id,
                    Message.read_at.is_(None),
                )
                .values(read_at=at)
            )
            db.commit()
            return int(result.rowcount or 0)

        return await self._run(unit)

    # --- push -------------------------------------------------------------------
    def subscribe(self, table: str, *, column: str, value: Any, callback: RowCallback) -> Subscription:
        subscription = Subscription(table, column, value, callback)
        subscription.add_close_hook(self._forget)
        self._subscriptions.append(subscription)
        logger.debug("Subscribed to %s where %s = %s", table, column, value)
        return subscription

    def _forget(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _publish(self, table: str, row: dict[str, Any]) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.matches(table, row):
                continue
            try:
                subscription.deliver(row)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error("Subscriber failed on %s insert: %s", table, e, exc_info=True)
