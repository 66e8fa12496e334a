# storefront/models/cart.py
from pydantic import BaseModel, Field
from typing import List, Optional

class CartItemCreate(BaseModel):
    product_id: str
    title: str
    image: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=0)
    moq: int = Field(1, ge=1)
    unit: Optional[str] = None
    seller_id: Optional[str] = None
    seller_name: Optional[str] = None

class CartItem(CartItemCreate):
    id: str

class QuantityUpdate(BaseModel):
    quantity: int = Field(..., ge=0)

class SellerGroup(BaseModel):
    seller_id: Optional[str] = None
    seller_name: Optional[str] = None
    items: List[CartItem] = []
    subtotal: float = 0.0

class CartResponse(BaseModel):
    items: List[CartItem] = []
    item_count: int
    total: float

class HistoryEntryCreate(BaseModel):
    id: str
    slug: Optional[str] = None
    title: str
    image: Optional[str] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None

class HistoryEntry(HistoryEntryCreate):
    viewed_at: int
