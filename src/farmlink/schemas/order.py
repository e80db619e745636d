"""Order-related Pydantic schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from farmlink.schemas.records import OrderStatus


class OrderItemResponse(BaseModel):
    """Schema for one line of an order."""

    product_id: int
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    """Schema for order information returned by the API."""

    id: str
    buyer_id: str
    status: OrderStatus
    progress: float
    total: Decimal
    items: list[OrderItemResponse]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AdvanceResponse(BaseModel):
    """Schema for the result of a manual advance."""

    order_id: str
    outcome: str
    status: OrderStatus
    progress: float
