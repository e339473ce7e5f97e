# schemas/commerce.py
# ============================================================================
# STOREFRONT CHECKOUT — DOMAIN MODELS
# ============================================================================
# Catalog, order aggregate, payment record and the request/response payloads
# exchanged at the checkout boundary.
# ============================================================================

import hashlib
import uuid
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator


# ============================================================================
# SECTION 1: ENUMS
# ============================================================================

class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class PaymentMethod(str, Enum):
    RAZORPAY = "RAZORPAY"
    COD = "COD"


# Forward path an order takes after payment; CANCELLED is reached only via cancel.
FULFILMENT_SEQUENCE = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]

CANCELLABLE_STATUSES = {OrderStatus.PENDING, OrderStatus.CONFIRMED}


def to_minor_units(amount: Decimal) -> int:
    """Rupees -> paise, rounded half-up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ============================================================================
# SECTION 2: CATALOG
# ============================================================================

class Product(BaseModel):
    """Parent product; owns the price every variant sells at."""
    id: str
    name: str
    price: Decimal = Field(ge=0)
    is_active: bool = True


class ProductVariant(BaseModel):
    """Inventory unit: a size/color combination with its own stock counter."""
    id: str
    product_id: str
    size: Optional[str] = None
    color: Optional[str] = None
    stock: int = Field(ge=0)
    sku: str


class CartItem(BaseModel):
    user_id: str
    variant_id: str
    quantity: int = Field(ge=1)


# ============================================================================
# SECTION 3: ORDER AGGREGATE
# ============================================================================

class OrderItem(BaseModel):
    """Line item. `price` is the unit price captured when the order was placed."""
    variant_id: str
    quantity: int = Field(ge=1)
    price: Decimal = Field(ge=0)

    @computed_field
    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class Order(BaseModel):
    """Order aggregate"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    order_number: str
    user_id: str

    items: List[OrderItem]
    subtotal: Decimal
    shipping_cost: Decimal
    total_amount: Decimal

    shipping_address: Dict[str, Any]
    contact_email: Optional[str] = None
    payment_method: PaymentMethod

    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    stock_committed: bool = False
    tracking_number: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @computed_field
    @property
    def amount_minor(self) -> int:
        return to_minor_units(self.total_amount)

    @staticmethod
    def generate_order_number(seed: Optional[str] = None) -> str:
        h = hashlib.sha256(f"order:{seed or uuid.uuid4()}".encode()).hexdigest()[:6].upper()
        return f"ORD-{datetime.utcnow().strftime('%Y%m%d')}-{h}"

    def transition_to(self, status: OrderStatus, **changes) -> "Order":
        """Copy with a new status; the stored row is only replaced on save."""
        return self.model_copy(update={
            "status": status,
            "updated_at": datetime.utcnow(),
            **changes,
        })

    def summary(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
        }


class PaymentRecord(BaseModel):
    """One-to-one shadow of an order tracking the gateway's identifiers."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    order_id: str
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_signature: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


# ============================================================================
# SECTION 4: REQUESTS
# ============================================================================

class OrderLineRequest(BaseModel):
    variant_id: str = Field(min_length=1)
    quantity: int = Field(ge=1)


class CreateOrderRequest(BaseModel):
    """Incoming checkout request."""
    items: List[OrderLineRequest] = Field(min_length=1)
    shipping_address: Dict[str, Any]
    payment_method: PaymentMethod
    contact_email: Optional[str] = None

    @field_validator("shipping_address")
    @classmethod
    def address_not_empty(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if not v:
            raise ValueError("Shipping address is required")
        return v


class VerifyPaymentRequest(BaseModel):
    """Client-side confirmation after the gateway checkout closes."""
    razorpay_order_id: str = ""
    razorpay_payment_id: str = ""
    razorpay_signature: str = ""


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None


class TrackOrderRequest(BaseModel):
    """Public lookup: order id or order number, plus the email it was placed with."""
    order_id: str = Field(min_length=1)
    email: str = Field(min_length=1)


# ============================================================================
# SECTION 5: GATEWAY VIEWS
# ============================================================================

class GatewayOrder(BaseModel):
    """Order opened on the gateway side."""
    id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: str = "created"


class GatewayPayment(BaseModel):
    """The gateway's own record of a payment (authoritative)."""
    id: str
    order_id: Optional[str] = None
    amount: int
    currency: str = "INR"
    status: str

    @computed_field
    @property
    def is_captured(self) -> bool:
        return self.status == "captured"
