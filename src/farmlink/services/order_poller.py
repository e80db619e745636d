"""Background auto-advance of order statuses.

This module provides the OrderStatusPoller class that periodically moves every
loaded, undelivered order one stage forward.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from farmlink.core.settings import settings
from farmlink.gateway.base import GatewayError
from farmlink.services.orders import AdvanceResult, OrderTracker

# Configure logger for this module
logger = logging.getLogger(__name__)


class OrderStatusPoller:
    """Periodically advances the orders held by an `OrderTracker`.

    The poller and manual advances are not mutually exclusive; the tracker's
    conditional update keeps them from double-advancing an order.
    """

    def __init__(
        self,
        tracker: OrderTracker,
        *,
        interval: float | None = None,
        reload_each_tick: bool = False,
    ) -> None:
        """Initialize the poller.

        Args:
            tracker: Order projection whose orders are advanced.
            interval: Seconds between ticks. Defaults to the configured interval.
            reload_each_tick: Refresh the projection from the store before advancing.
        """
        self.tracker = tracker
        self.interval = max(
            0.01,
            float(interval if interval is not None else settings.order_advance_interval_seconds),
        )
        self.reload_each_tick = reload_each_tick
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop."""

        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background loop; a tick already in flight is cancelled."""

        self._stopping.set()
        if self._task is None:
            return

        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
                return
            except TimeoutError:
                pass

            try:
                await self.tick()
            except GatewayError as e:
                logger.warning("OrderStatusPoller could not reload orders: %s", e)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error("OrderStatusPoller encountered data error: %s", e, exc_info=True)

    async def tick(self) -> list[AdvanceResult]:
        """Run one auto-advance pass. A no-op once the poller was stopped."""
        if self._stopping.is_set() or self.tracker.closed:
            return []

        if self.reload_each_tick:
            await self.tracker.load()
        results = await self.tracker.advance_all()
        if results:
            logger.debug("Auto-advanced %d orders", len(results))
        return results
