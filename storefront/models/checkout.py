# storefront/models/checkout.py
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import List, Optional
from datetime import datetime
from enum import Enum
from storefront.models.order import OrderReceipt
from storefront.models.otp import ChallengeConfig, OTPView

class CheckoutStep(str, Enum):
    SHIPPING = "shipping"
    PAYMENT = "payment"
    OTP = "otp"
    REVIEW = "review"
    CONFIRMATION = "confirmation"

class ShippingDetails(BaseModel):
    full_name: str = Field(..., min_length=2)
    phone_number: str = Field(..., min_length=10)
    email: EmailStr
    street_address: str = Field(..., min_length=5)
    city: str = Field(..., min_length=2)
    state_province: str = Field(..., min_length=2)
    postal_code: str = Field(..., min_length=3)
    country: str = Field(..., min_length=2)

    def formatted_address(self) -> str:
        return f"{self.street_address}, {self.city}, {self.state_province} {self.postal_code}, {self.country}"

class CardSubmission(BaseModel):
    cardholder_name: str
    card_number: str
    expiry_month: str
    expiry_year: str
    cvv: str

class PaymentDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    holder_name: str
    masked_number: str
    brand: str
    expiry_month: str
    expiry_year: str
    last_four: str

class LineItem(BaseModel):
    product_id: str
    title: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    seller_id: Optional[str] = None
    seller_name: Optional[str] = None
    unit: Optional[str] = None

    @property
    def subtotal(self) -> float:
        return self.price * self.quantity

class PaymentSettings(BaseModel):
    """Read-only verification parameters captured when a session starts."""
    model_config = ConfigDict(frozen=True)

    otp_enabled: bool = True
    code_length: int = Field(6, ge=1)
    expiry_seconds: int = Field(60, ge=1)
    max_attempts: int = Field(3, ge=1)
    channel: str = "mock_sms"
    require_card_verification: bool = True

    @property
    def verification_required(self) -> bool:
        return self.otp_enabled and self.require_card_verification

    def challenge_config(self) -> ChallengeConfig:
        return ChallengeConfig(
            code_length=self.code_length,
            expiry_seconds=self.expiry_seconds,
            max_attempts=self.max_attempts,
            channel=self.channel,
        )

class CheckoutSession(BaseModel):
    id: str
    buyer_id: str
    step: CheckoutStep = CheckoutStep.SHIPPING
    shipping: Optional[ShippingDetails] = None
    payment: Optional[PaymentDescriptor] = None
    verified_payment: Optional[PaymentDescriptor] = None
    verification_waived: bool = False
    blocked: bool = False
    items: List[LineItem] = []
    total: float = 0.0
    currency: str = "USD"
    transaction_id: Optional[str] = None
    order: Optional[OrderReceipt] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    from_cart: bool = False
    closed: bool = False

    @property
    def payment_verified(self) -> bool:
        """True when the descriptor currently on file passed verification."""
        if self.payment is None:
            return False
        return self.verified_payment == self.payment

class CheckoutErrorInfo(BaseModel):
    code: str
    message: str
    retryable: bool = False

class CheckoutSessionView(BaseModel):
    id: str
    step: CheckoutStep
    shipping: Optional[ShippingDetails] = None
    payment: Optional[PaymentDescriptor] = None
    items: List[LineItem] = []
    total: float
    currency: str
    otp: Optional[OTPView] = None
    order: Optional[OrderReceipt] = None
    blocked: bool = False
    verification_waived: bool = False
    can_confirm: bool = False
    error: Optional[CheckoutErrorInfo] = None

class StartCheckoutRequest(BaseModel):
    # Omitted items means "check out the buyer's cart"
    items: Optional[List[LineItem]] = None

class OTPVerifyRequest(BaseModel):
    code: str
    pasted: bool = False
