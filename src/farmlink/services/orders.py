"""Order status state machine.

Orders move strictly forward through ``ordered -> packed -> shipped ->
delivered``, one stage per advance. Two sources drive an advance: the
periodic poller and a user's manual action. Both go through the same
conditional update, so when they race only one of them moves the order and
the other refreshes its projection from the store.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from farmlink.db.time import utcnow
from farmlink.gateway.base import DataGateway, GatewayError
from farmlink.schemas.records import STAGE_SEQUENCE, OrderRecord, OrderStatus

logger = logging.getLogger(__name__)

TERMINAL_STATUS = STAGE_SEQUENCE[-1]


class OrderAdvanceError(RuntimeError):
    """Raised when an advance could not be persisted."""


class OrderNotFoundError(LookupError):
    """Raised when an order id is not part of the loaded projection."""


class AdvanceOutcome(str, Enum):
    """What an advance call did."""

    ADVANCED = "advanced"
    ALREADY_DELIVERED = "already_delivered"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class AdvanceResult:
    """Result of a single advance call."""

    order_id: str
    outcome: AdvanceOutcome
    status: OrderStatus


def stage_index(status: OrderStatus) -> int:
    return STAGE_SEQUENCE.index(status)


def next_stage(status: OrderStatus) -> OrderStatus | None:
    """Return the stage after `status`, or None if it is terminal."""
    index = stage_index(status)
    if index >= len(STAGE_SEQUENCE) - 1:
        return None
    return STAGE_SEQUENCE[index + 1]


def progress_fraction(status: OrderStatus) -> float:
    """Map a status to the 0..1 fill of the stage-progress indicator."""
    return stage_index(status) / (len(STAGE_SEQUENCE) - 1)


class OrderTracker:
    """In-memory projection of a buyer's orders plus the advance operations.

    The projection is refreshed wholesale by `load()` and patched in place
    after each confirmed advance. It is never written before the store
    confirms a change.
    """

    def __init__(
        self,
        gateway: DataGateway,
        buyer_id: str | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._gateway = gateway
        self.buyer_id = buyer_id
        self._clock = clock
        self._orders: dict[str, OrderRecord] = {}
        self._closed = False

    @property
    def orders(self) -> list[OrderRecord]:
        """Loaded orders, newest first."""
        return list(self._orders.values())

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, order_id: str) -> OrderRecord:
        try:
            return self._orders[order_id]
        except KeyError as exc:
            raise OrderNotFoundError(order_id) from exc

    def progress(self, order_id: str) -> float:
        return progress_fraction(self.get(order_id).status)

    async def load(self) -> list[OrderRecord]:
        """Replace the projection with a fresh read from the store."""
        records = await self._gateway.list_orders(self.buyer_id)
        if not self._closed:
            self._orders = {record.id: record for record in records}
        return records

    def close(self) -> None:
        """Stop accepting writes to the projection."""
        self._closed = True

    def _store(self, record: OrderRecord) -> None:
        if self._closed:
            return
        if record.id in self._orders:
            self._orders[record.id] = record
        else:
            self._orders = {record.id: record, **self._orders}

    async def advance(self, order_id: str) -> AdvanceResult:
        """Move one order exactly one stage forward.

        Returns:
            An `AdvanceResult`; `already_delivered` when the order is terminal,
            `superseded` when another writer advanced it first.

        Raises:
            OrderNotFoundError: If the order is not loaded.
            OrderAdvanceError: If the store rejected or could not take the write.
        """
        order = self.get(order_id)
        target = next_stage(order.status)
        if target is None:
            return AdvanceResult(order_id, AdvanceOutcome.ALREADY_DELIVERED, order.status)

        try:
            updated = await self._gateway.update_order_status(
                order_id,
                expected=order.status,
                status=target,
                updated_at=self._clock(),
            )
        except GatewayError as exc:
            logger.warning("Advancing order %s to %s failed: %s", order_id, target.value, exc)
            raise OrderAdvanceError(f"Could not advance order {order_id}") from exc

        if updated is None:
            return await self._refresh_after_conflict(order)

        self._store(updated)
        logger.info("Order %s advanced %s -> %s", order_id, order.status.value, updated.status.value)
        return AdvanceResult(order_id, AdvanceOutcome.ADVANCED, updated.status)

    async def _refresh_after_conflict(self, stale: OrderRecord) -> AdvanceResult:
        try:
            fresh = await self._gateway.get_order(stale.id)
        except GatewayError as exc:
            raise OrderAdvanceError(f"Could not refresh order {stale.id}") from exc

        if fresh is None:
            raise OrderAdvanceError(f"Order {stale.id} disappeared from the store")

        # The stored status only moves forward; never let a stale read regress the view.
        if stage_index(fresh.status) >= stage_index(stale.status):
            self._store(fresh)
        logger.info("Order %s was already advanced to %s", stale.id, fresh.status.value)
        return AdvanceResult(stale.id, AdvanceOutcome.SUPERSEDED, fresh.status)

    async def advance_all(self) -> list[AdvanceResult]:
        """Advance every non-terminal order by one stage.

        A failure on one order is logged and does not stop the others.
        """
        results: list[AdvanceResult] = []
        for order in self.orders:
            if self._closed:
                break
            if order.status == TERMINAL_STATUS:
                continue
            try:
                results.append(await self.advance(order.id))
            except (OrderAdvanceError, OrderNotFoundError) as exc:
                logger.warning("Skipping order %s this tick: %s", order.id, exc)
        return results
