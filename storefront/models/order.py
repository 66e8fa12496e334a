# storefront/models/order.py
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from enum import Enum

class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    FAILED = "failed"

class TransactionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

# Fulfillment moves an order along these in order; failed orders never enter it
TRACKING_STEPS = (
    (OrderStatus.PENDING, "Pending Payment"),
    (OrderStatus.CONFIRMED, "Paid"),
    (OrderStatus.PROCESSING, "Processing"),
    (OrderStatus.SHIPPED, "Shipped"),
    (OrderStatus.DELIVERED, "Delivered"),
)

class OrderReceipt(BaseModel):
    order_id: str
    transaction_id: str
    total: float
    currency: str
    status: OrderStatus = OrderStatus.CONFIRMED

class TrackingStep(BaseModel):
    status: OrderStatus
    label: str
    reached: bool
    current: bool

class OrderItemResponse(BaseModel):
    id: int
    product_id: str
    seller_id: Optional[str] = None
    title: str
    quantity: int
    unit_price: float
    total_price: float

class OrderResponse(BaseModel):
    id: int
    transaction_id: str
    status: OrderStatus
    total_amount: float
    currency: str
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemResponse] = []

class OrderDetailResponse(OrderResponse):
    shipping_address: Optional[str] = None
    card_brand: Optional[str] = None
    card_last_four: Optional[str] = None
    tracking: List[TrackingStep] = []

def tracking_steps(order_status: OrderStatus) -> List[TrackingStep]:
    keys = [s for s, _ in TRACKING_STEPS]
    current = keys.index(order_status) if order_status in keys else -1
    return [
        TrackingStep(status=s, label=label, reached=i <= current, current=i == current)
        for i, (s, label) in enumerate(TRACKING_STEPS)
    ]
