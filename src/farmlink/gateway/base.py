"""Contract for the remote data store consumed by the core.

The store is treated as an opaque relational service with row-level change
notifications. Implementations translate their transport failures into the
exceptions below so the order and chat components can tell a transient
outage from a conflict.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from farmlink.schemas.records import (
    ConversationRecord,
    MessageRecord,
    OrderRecord,
    OrderStatus,
)


class GatewayError(RuntimeError):
    """Base exception raised for data-gateway failures."""


class RemoteUnavailableError(GatewayError):
    """Raised when the store cannot be reached or refuses the request."""


class DuplicateKeyError(GatewayError):
    """Raised when an insert collides with a unique key."""


class MalformedRowError(GatewayError):
    """Raised when a row read from the store fails validation."""


RowCallback = Callable[[dict[str, Any]], None]


class Subscription:
    """Handle for a push subscription.

    Once `close()` has been called the callback is never invoked again, even
    for notifications that were already being dispatched.
    """

    def __init__(self, table: str, column: str, value: Any, callback: RowCallback) -> None:
        self.table = table
        self.column = column
        self.value = value
        self._callback = callback
        self._active = True
        self._on_close: list[Callable[[Subscription], None]] = []

    @property
    def active(self) -> bool:
        return self._active

    def matches(self, table: str, row: dict[str, Any]) -> bool:
        return self._active and table == self.table and row.get(self.column) == self.value

    def deliver(self, row: dict[str, Any]) -> None:
        if self._active:
            self._callback(row)

    def add_close_hook(self, hook: Callable[[Subscription], None]) -> None:
        self._on_close.append(hook)

    def close(self) -> None:
        if not self._active:
            return
        self._active = False
        for hook in self._on_close:
            hook(self)


class DataGateway(ABC):
    """Async access to orders, conversations and messages."""

    # --- orders -----------------------------------------------------------------
    @abstractmethod
    async def list_orders(self, buyer_id: str | None = None) -> list[OrderRecord]:
        """Return orders newest first; all orders when `buyer_id` is None."""

    @abstractmethod
    async def get_order(self, order_id: str) -> OrderRecord | None:
        """Return a single order or None."""

    @abstractmethod
    async def update_order_status(
        self,
        order_id: str,
        *,
        expected: OrderStatus,
        status: OrderStatus,
        updated_at: datetime,
    ) -> OrderRecord | None:
        """Set `status` only if the stored status still equals `expected`.

        Returns:
            The updated order, or None when no row matched.
        """

    # --- conversations ----------------------------------------------------------
    @abstractmethod
    async def get_conversation(self, conversation_id: int) -> ConversationRecord | None:
        """Return a conversation by id or None."""

    @abstractmethod
    async def find_conversation(
        self, product_id: int, producer_id: str, buyer_id: str
    ) -> ConversationRecord | None:
        """Look a conversation up by its composite key."""

    @abstractmethod
    async def create_conversation(
        self,
        product_id: int,
        producer_id: str,
        buyer_id: str,
        *,
        opening_preview: str,
        created_at: datetime,
    ) -> ConversationRecord:
        """Insert a conversation; raises DuplicateKeyError if the triple exists."""

    @abstractmethod
    async def list_conversations(self, user_id: str) -> list[ConversationRecord]:
        """Return conversations in which the user is producer or buyer."""

    @abstractmethod
    async def update_conversation_preview(
        self,
        conversation_id: int,
        *,
        preview: str,
        at: datetime,
        sender_id: str,
    ) -> None:
        """Record the latest message preview on the conversation."""

    # --- messages ---------------------------------------------------------------
    @abstractmethod
    async def list_messages(self, conversation_id: int) -> list[MessageRecord]:
        """Return all messages of a conversation, newest first."""

    @abstractmethod
    async def latest_messages(self, conversation_ids: Sequence[int]) -> dict[int, MessageRecord]:
        """Return the newest message of each conversation that has one."""

    @abstractmethod
    async def unread_conversation_ids(
        self, conversation_ids: Sequence[int], reader_id: str
    ) -> set[int]:
        """Return ids of conversations holding unread messages from someone else."""

    @abstractmethod
    async def insert_message(
        self,
        conversation_id: int,
        sender_id: str,
        content: str,
        *,
        client_ref: str | None = None,
    ) -> MessageRecord:
        """Insert a message; raises DuplicateKeyError if `client_ref` was seen."""

    @abstractmethod
    async def mark_messages_read(
        self, conversation_id: int, reader_id: str, at: datetime
    ) -> int:
        """Set the read timestamp on messages sent by the other participant."""

    # --- push -------------------------------------------------------------------
    @abstractmethod
    def subscribe(self, table: str, *, column: str, value: Any, callback: RowCallback) -> Subscription:
        """Deliver inserted rows of `table` where `column == value` to `callback`."""
