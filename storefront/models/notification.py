# storefront/models/notification.py
from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from storefront.models.checkout import PaymentDescriptor, ShippingDetails

class OrderInfo(BaseModel):
    order_id: str
    product_name: str
    quantity: int
    amount: float
    currency: str

class CheckoutSummary(BaseModel):
    session_id: str
    buyer_id: str
    shipping: ShippingDetails
    # Masked descriptor only; raw card numbers never leave the capture step
    payment: PaymentDescriptor
    order_info: OrderInfo

class NotificationResponse(BaseModel):
    id: int
    buyer_id: str
    order_id: Optional[int] = None
    message: str
    is_read: bool
    created_at: datetime
