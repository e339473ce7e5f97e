# schemas/__init__.py
from schemas.commerce import (
    CANCELLABLE_STATUSES,
    FULFILMENT_SEQUENCE,
    CartItem,
    CreateOrderRequest,
    GatewayOrder,
    GatewayPayment,
    Order,
    OrderItem,
    OrderLineRequest,
    OrderStatus,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
    Product,
    ProductVariant,
    TrackOrderRequest,
    UpdateOrderStatusRequest,
    VerifyPaymentRequest,
    to_minor_units,
)
from schemas.results import (
    HTTP_STATUS_BY_KIND,
    AmountMismatch,
    CommerceError,
    ErrorKind,
    GatewayError,
    InsufficientStock,
    InvalidSignature,
    NotFound,
    ServiceResult,
    TransientError,
    Unauthenticated,
    Unauthorized,
    ValidationFailed,
)

__all__ = [
    # Domain
    "CANCELLABLE_STATUSES",
    "FULFILMENT_SEQUENCE",
    "CartItem",
    "CreateOrderRequest",
    "GatewayOrder",
    "GatewayPayment",
    "Order",
    "OrderItem",
    "OrderLineRequest",
    "OrderStatus",
    "PaymentMethod",
    "PaymentRecord",
    "PaymentStatus",
    "Product",
    "ProductVariant",
    "TrackOrderRequest",
    "UpdateOrderStatusRequest",
    "VerifyPaymentRequest",
    "to_minor_units",
    # Results
    "HTTP_STATUS_BY_KIND",
    "AmountMismatch",
    "CommerceError",
    "ErrorKind",
    "GatewayError",
    "InsufficientStock",
    "InvalidSignature",
    "NotFound",
    "ServiceResult",
    "TransientError",
    "Unauthenticated",
    "Unauthorized",
    "ValidationFailed",
]
