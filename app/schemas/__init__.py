from .checkout import (
    AddStockRequest,
    AddStockResponse,
    AdminOrderResponse,
    ApplyCouponRequest,
    CouponResponse,
    CreateCouponRequest,
    CreateIntentRequest,
    CreateOrderRequest,
    IntentResponse,
    OrderItemResponse,
    OrderResponse,
    PaymentSummary,
    RefundRequest,
    RefundResponse,
    StockLine,
    WebhookResponse,
)

__all__ = [
    "AddStockRequest",
    "AddStockResponse",
    "AdminOrderResponse",
    "ApplyCouponRequest",
    "CouponResponse",
    "CreateCouponRequest",
    "CreateIntentRequest",
    "CreateOrderRequest",
    "IntentResponse",
    "OrderItemResponse",
    "OrderResponse",
    "PaymentSummary",
    "RefundRequest",
    "RefundResponse",
    "StockLine",
    "WebhookResponse",
]
