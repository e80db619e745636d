# src/farmlink/api/v1/endpoints/orders.py
"""Order tracking endpoints for the FarmLink API."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from farmlink.api.v1.dependencies import GatewayDep
from farmlink.gateway import GatewayError
from farmlink.schemas.order import AdvanceResponse, OrderResponse
from farmlink.schemas.records import OrderRecord
from farmlink.services.orders import (
    OrderAdvanceError,
    OrderNotFoundError,
    OrderTracker,
    progress_fraction,
)

router = APIRouter(prefix="/orders", tags=["orders"])


def _serialize_order(order: OrderRecord) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        buyer_id=order.buyer_id,
        status=order.status,
        progress=progress_fraction(order.status),
        total=order.total,
        items=[item.model_dump() for item in order.items],
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


@router.get("/", response_model=list[OrderResponse])
async def list_orders(
    gateway: GatewayDep,
    buyer_id: str | None = Query(None, description="Only orders placed by this buyer"),
) -> list[OrderResponse]:
    """List orders newest first with their current stage."""
    try:
        orders = await gateway.list_orders(buyer_id)
    except GatewayError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Order store unavailable",
        ) from exc
    return [_serialize_order(order) for order in orders]


@router.post("/{order_id}/advance", response_model=AdvanceResponse)
async def advance_order(order_id: str, gateway: GatewayDep) -> AdvanceResponse:
    """Move an order one stage forward."""
    try:
        order = await gateway.get_order(order_id)
    except GatewayError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Order store unavailable",
        ) from exc

    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    tracker = OrderTracker(gateway, order.buyer_id)
    try:
        await tracker.load()
        result = await tracker.advance(order_id)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found") from exc
    except (OrderAdvanceError, GatewayError) as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not advance order; try again",
        ) from exc
    finally:
        tracker.close()

    return AdvanceResponse(
        order_id=result.order_id,
        outcome=result.outcome.value,
        status=result.status,
        progress=progress_fraction(result.status),
    )
